"""
Errors raised by the M-Pesa payment core.

Configuration and validation errors are raised before any network call or
database write. Provider errors carry a category code and a hint that the
views pass straight through to the API response.
"""


class MpesaError(Exception):
    """Base class for all M-Pesa payment errors."""


class ConfigurationError(MpesaError):
    def __init__(self, message, missing=None, warnings=None):
        super().__init__(message)
        self.missing = list(missing or [])
        self.warnings = list(warnings or [])


class ValidationError(MpesaError):
    """Malformed phone number or amount."""


class AuthError(MpesaError):
    """The OAuth token could not be obtained."""


class ProviderError(MpesaError):
    CONNECTION_ERROR = "CONNECTION_ERROR"
    TIMEOUT = "TIMEOUT"
    AUTH_ERROR = "AUTH_ERROR"
    SERVER_ERROR = "MPESA_SERVER_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    HINTS = {
        CONNECTION_ERROR: "Check the server's internet connection and the Daraja base URL.",
        TIMEOUT: "The request may still reach the phone; query its status before retrying.",
        AUTH_ERROR: "Check MPESA_CONSUMER_KEY and MPESA_CONSUMER_SECRET.",
        SERVER_ERROR: "Safaricom returned an internal error. Try again later.",
        UNKNOWN_ERROR: "Check the shortcode, passkey and callback URL configuration.",
    }

    def __init__(self, message, code=UNKNOWN_ERROR, details=None, hint=None):
        super().__init__(message)
        self.code = code
        self.details = details
        self.hint = hint or self.HINTS.get(code, "")

    def as_dict(self):
        return {
            "error": str(self),
            "error_code": self.code,
            "details": self.details,
            "hint": self.hint,
        }


class CallbackParseError(MpesaError):
    """The inbound callback envelope is malformed."""
