"""Error types raised by the removal pipeline and the credit ledger."""

BILLING_MARKERS = ("billing", "quota")
BILLING_CODES = {"billing", "quota", "insufficient_quota"}


class RemoverError(Exception):
    """Base class for ex-remover errors."""


class InsufficientCredits(RemoverError):
    """Raised when a reservation asks for more credits than the balance holds."""

    def __init__(self, needed: int, available: int) -> None:
        self.needed = needed
        self.available = available
        super().__init__(
            f"You need {needed} credit(s) for this job, "
            f"but you only have {available}. Please buy more."
        )

    @property
    def shortfall(self) -> int:
        return self.needed - self.available


class AdapterError(RemoverError):
    """Raised by a vision/edit adapter when the provider call fails.

    Args:
        message: Human-readable message, surfaced verbatim to the user
        code: Optional structured error code reported by the provider
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def is_billing(self) -> bool:
        return is_billing_error(self)


class CreditStoreError(RemoverError):
    """Raised when the durable credit store exists but cannot be read."""


class RecordBusy(RemoverError):
    """Raised when a second sequence tries to advance an in-flight record."""


class InvalidTransition(RemoverError):
    """Raised when a status update does not follow the image state machine."""


def is_billing_error(error: BaseException | str) -> bool:
    """Decide whether a failure means the provider refused to run at all.

    A structured code on an AdapterError wins. Otherwise the message is
    searched for "billing" or "quota". The substring match is a heuristic:
    providers are not guaranteed to mention either word.

    Args:
        error: Exception or message text

    Returns:
        True if the failure should be treated as a billing/quota refusal
    """
    code = getattr(error, "code", None)
    if isinstance(code, str) and code.lower() in BILLING_CODES:
        return True

    message = error if isinstance(error, str) else str(error)
    lowered = message.lower()
    return any(marker in lowered for marker in BILLING_MARKERS)
