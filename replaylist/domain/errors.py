class TemporaryFailure(Exception):
    """Transient backend or network failure. Retrying may succeed."""


class PermanentFailure(Exception):
    """Non-retriable failure, e.g. the backend rejected the request."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeFailure(Exception):
    """Response body was not valid JSON or lacked required fields."""


class UnsupportedProvider(Exception):
    """Backend exposes no endpoint for this provider and operation."""


# Everything a Backend implementation is expected to raise
BACKEND_ERRORS = (TemporaryFailure, PermanentFailure, DecodeFailure, UnsupportedProvider)
