class MpesaError(Exception):
    """Base class for everything that goes wrong talking to Daraja."""


class MpesaConfigError(MpesaError):
    """Credentials, shortcode or passkey missing. Raised before any network call."""


class MpesaProviderError(MpesaError):
    """Daraja refused the request or could not be reached.

    status_code is the provider's HTTP status when it answered, 500 otherwise.
    """

    def __init__(self, message: str, status_code: int = 500, details=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class InvalidPhoneError(ValueError):
    pass


INVALID_PHONE_MESSAGE = (
    "Invalid phone number. Please provide a Kenyan phone in one of: "
    "07XXXXXXXX, 7XXXXXXXX, +2547XXXXXXXX, or 2547XXXXXXXX"
)


class OrderNotPayableError(ValueError):
    """The order exists but is already paid or cancelled."""
