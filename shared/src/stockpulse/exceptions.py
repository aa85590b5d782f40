"""Exception hierarchy for the billing backend."""


class StockPulseError(Exception):
    """Base exception for StockPulse."""

    pass


class ConfigurationError(StockPulseError):
    """Raised when required PayPal settings are missing."""

    pass


class AuthError(StockPulseError):
    """Raised when PayPal rejects the client-credentials exchange."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class VerificationFailure(StockPulseError):
    """Raised when a webhook signature is not confirmed by PayPal."""

    pass


class VerificationUnavailable(StockPulseError):
    """Raised when the signature check could not complete in time."""

    pass


class PayPalAPIError(StockPulseError):
    """Raised when a PayPal REST call returns a non-success response."""

    def __init__(self, message: str, status_code: int | None = None, detail: object = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class PersistenceError(StockPulseError):
    """Raised when subscription state could not be stored."""

    pass
