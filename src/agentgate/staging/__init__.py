"""Durable staging state: drafts, confirmation tokens and the idempotency ledger."""

from .ledger import IdempotencyLedger, confirm_key, create_key
from .schema import ConfirmationToken, Draft, DraftStatus
from .store import DraftStore

__all__ = [
    "ConfirmationToken",
    "Draft",
    "DraftStatus",
    "DraftStore",
    "IdempotencyLedger",
    "confirm_key",
    "create_key",
]
