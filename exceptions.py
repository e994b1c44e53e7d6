# ondc_relay/exceptions.py

CONTEXT_ERROR = "CONTEXT-ERROR"
DOMAIN_ERROR = "DOMAIN-ERROR"
CORE_ERROR = "CORE-ERROR"

# Wire error codes
MISSING_FIELDS = "30001"
MISSING_ORDER_ID = "30004"
MISSING_ORDER_STATE = "30005"
UNEXPECTED_ORDER_STATE = "30008"
STALE_REQUEST = "30011"
ORDER_NOT_FOUND = "31002"
ORDER_MISMATCH = "31003"
INCOMPLETE_ORDER = "40000"
ALREADY_CANCELLED_BY_BUYER = "40001"
INVALID_CANCELLATION_REASON = "40005"
CORE_FAILURE = "50000"
NON_CANCELLABLE_STATE = "50001"
NON_CANCELLABLE_ITEM = "50002"


class ProtocolError(Exception):
    """Base for every error that ends up in an ACK/NACK envelope or an error callback."""
    error_type = CORE_ERROR
    default_code = CORE_FAILURE

    def __init__(self, message: str, code: str | None = None, *, http_status: int = 400):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.http_status = http_status

    def to_dict(self) -> dict:
        return {"type": self.error_type, "code": self.code, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict | None) -> "ProtocolError":
        data = data or {}
        kind = {
            CONTEXT_ERROR: ContextError,
            DOMAIN_ERROR: DomainError,
        }.get(data.get("type"), CoreError)
        return kind(data.get("message") or "", data.get("code"))


class ContextError(ProtocolError):
    """Malformed or stale envelope metadata."""
    error_type = CONTEXT_ERROR
    default_code = MISSING_FIELDS


class DomainError(ProtocolError):
    """Business-rule violation: unknown order, non-cancellable, mismatch, bad reason code."""
    error_type = DOMAIN_ERROR
    default_code = INCOMPLETE_ORDER


class CoreError(ProtocolError):
    """Unexpected internal failure."""
    error_type = CORE_ERROR
    default_code = CORE_FAILURE

    def __init__(self, message: str, code: str | None = None, *, http_status: int = 500):
        super().__init__(message, code, http_status=http_status)
