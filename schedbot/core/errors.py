"""Exception hierarchy for schedbot."""

from __future__ import annotations


class SchedbotError(Exception):
    """Base class for all schedbot errors."""


class ValidationError(SchedbotError):
    """User input rejected; message is safe to show in chat."""


class CapExceededError(ValidationError):
    """Per-group active schedule cap reached."""

    def __init__(self, kind: str, cap: int) -> None:
        self.kind = kind
        self.cap = cap
        noun = "scheduled payments" if kind == "payment" else "scheduled prompts"
        super().__init__(
            f"❌ You already have {cap} active {noun} in this group. "
            "Delete or pause some before adding new ones."
        )


class StoreError(SchedbotError):
    """Persistence layer failure."""


class RegistrationError(SchedbotError):
    """Timer binding failed."""


class ExternalServiceError(SchedbotError):
    """A collaborator (AI, payments, Telegram) failed."""


class ContentGenerationError(ExternalServiceError):
    pass


class PaymentError(ExternalServiceError):
    pass


class TelegramError(ExternalServiceError):
    pass
