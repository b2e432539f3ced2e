"""Exception types shared across the deposit relay."""


class RelayError(Exception):
    """Base class for relay errors."""


class BackendError(RelayError):
    """Raised when the Supabase REST API rejects or fails a request.

    Attributes:
        status_code: HTTP status code, or None for transport failures
        message: Error message reported by PostgREST or the transport
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTP {self.status_code}: {self.message}"


class EventDecodeError(RelayError):
    """Raised when a log cannot be decoded into a presale event."""
