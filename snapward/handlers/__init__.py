"""Save-time decision handling."""

from snapward.handlers.allowances import TemporaryAllowances
from snapward.handlers.decision import (
    BufferDocument,
    ConfirmationRequest,
    DecisionReason,
    DecisionResult,
    DecisionState,
    DocumentAccessor,
    Notification,
    ProtectionDecisionHandler,
)

__all__ = [
    "BufferDocument",
    "ConfirmationRequest",
    "DecisionReason",
    "DecisionResult",
    "DecisionState",
    "DocumentAccessor",
    "Notification",
    "ProtectionDecisionHandler",
    "TemporaryAllowances",
]
