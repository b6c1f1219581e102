"""Error taxonomy for the Yappy integration.

Every error raised by this package subclasses `YappyError`. Vendor error codes
are kept verbatim so callers can branch on the non-fatal ones.
"""

ERROR_SESSION_ALREADY_CLOSED = "YP-0001"
ERROR_SESSION_ALREADY_OPEN = "YP-0004"
ERROR_INVALID_SESSION_TOKEN = "YP-0006"
ERROR_OPEN_SESSION = "YP-0007"
ERROR_MISSING_REQUIRED_FIELDS = "YP-0009"
ERROR_INVALID_DATA = "YP-0010"
ERROR_VOID_TRANSACTION = "YP-0013"
ERROR_TRANSACTION_ALREADY_SETTLED = "YP-0014"
ERROR_TRANSACTION_ALREADY_VOIDED = "YP-0016"
ERROR_CLOSE_SESSION = "YP-0400"
ERROR_AMOUNTS_MISMATCH = "YP-0405"

VENDOR_ERROR_DESCRIPTIONS: dict[str, str] = {
    ERROR_SESSION_ALREADY_CLOSED: "Session was already closed",
    ERROR_SESSION_ALREADY_OPEN: "Session was already open",
    ERROR_INVALID_SESSION_TOKEN: "Invalid session token",
    ERROR_OPEN_SESSION: "Could not open session",
    ERROR_MISSING_REQUIRED_FIELDS: "Required fields are missing from the request body",
    ERROR_INVALID_DATA: "Invalid data",
    ERROR_VOID_TRANSACTION: "Could not void the transaction",
    ERROR_TRANSACTION_ALREADY_SETTLED: "Transaction was already settled",
    ERROR_TRANSACTION_ALREADY_VOIDED: "Transaction was already voided",
    ERROR_CLOSE_SESSION: "Could not close session",
    ERROR_AMOUNTS_MISMATCH: "Charge amounts do not add up",
}


def describe_error(code: str) -> str:
    """Human description for a vendor error code."""

    return VENDOR_ERROR_DESCRIPTIONS.get(code, f"Unknown error ({code})")


class YappyError(Exception):
    """Base class for all integration errors."""


class ValidationError(YappyError):
    """Caller input rejected before any network call. Never retried."""


class ConfigurationError(YappyError):
    """Stored or fetched configuration is missing or malformed."""


class NetworkError(YappyError):
    """DNS, connect, timeout or socket failure talking to a remote endpoint."""


class VendorError(YappyError):
    """Non-2xx or unreadable response from the Yappy API."""

    def __init__(self, code: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def description(self) -> str:
        return describe_error(self.code)


class SessionError(YappyError):
    """Opening a device session failed."""

    recoverable = False

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class SessionAlreadyOpenError(SessionError):
    """The vendor reports a device session is still open (YP-0004)."""

    recoverable = True


class QrError(YappyError):
    """QR generation returned no usable transaction id or hash."""
