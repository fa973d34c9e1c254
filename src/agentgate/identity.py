"""Identity boundary: who is making the current request."""

from __future__ import annotations

from typing import Optional, Protocol

from .errors import Unauthorized


class IdentityProvider(Protocol):
    """Return the authenticated user id, or ``None`` when there is no session."""

    def current_user_id(self) -> Optional[str]: ...


class StaticIdentity:
    """Identity provider bound to a fixed user id (CLI and tests)."""

    def __init__(self, user_id: Optional[str]) -> None:
        self._user_id = user_id.strip() if isinstance(user_id, str) and user_id.strip() else None

    def current_user_id(self) -> Optional[str]:
        return self._user_id


def require_user(identity: IdentityProvider) -> str:
    """Resolve the authenticated user id or raise ``Unauthorized``."""
    user_id = identity.current_user_id()
    if not user_id:
        raise Unauthorized("Sign in to use the workspace agent.")
    return user_id


__all__ = ["IdentityProvider", "StaticIdentity", "require_user"]
