"""Exception types raised by the PrintBridge agent."""


class BridgeError(Exception):
    """Base class for all agent errors."""

    pass


class ApiError(BridgeError):
    """Remote API call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None):
        """Initialize the error.

        Args:
            message: Human-readable error description.
            status_code: HTTP status code, if a response was received.
        """
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ApiError):
    """Remote resource does not exist (HTTP 404)."""

    pass


class AuthenticationError(ApiError):
    """Remote API rejected our credentials and the token could not be refreshed."""

    pass


class DecodeError(BridgeError):
    """Malformed payload received from the remote API or the push channel."""

    pass


class SpoolerError(BridgeError):
    """Error during a local spooler operation."""

    pass


class PrinterNotFoundError(SpoolerError):
    """Requested printer is not known to the local spooler."""

    pass


class NoPrinterAvailableError(SpoolerError):
    """No local printer exists to submit a job to."""

    pass


class PushProtocolError(BridgeError):
    """Push channel handshake or subscription failed."""

    pass
