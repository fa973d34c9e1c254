"""The draft, confirm and apply phases of the protocol."""

from .apply import ApplyExecutor, ApplyResult, OperationOutcome
from .authorization import PlanAuthorizer
from .confirm import ConfirmationGate, ConfirmResult
from .stager import PlanStager

__all__ = [
    "ApplyExecutor",
    "ApplyResult",
    "ConfirmResult",
    "ConfirmationGate",
    "OperationOutcome",
    "PlanAuthorizer",
    "PlanStager",
]
