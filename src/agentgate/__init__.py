"""agentgate: a draft, confirm and apply gate around LLM-planned workspace changes."""

from .errors import AgentError
from .service import AgentService

__all__ = ["AgentError", "AgentService"]
__version__ = "0.1.0"
