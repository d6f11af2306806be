"""Error hierarchy for the ScombZ client.

Transient failures (network hiccups) are separated from permanent ones
(rejected credentials, expired sessions, page layout changes) so callers can
decide what deserves a retry. The core itself never retries network calls.

Example usage with tenacity in a caller-side scheduler:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(3))
    async def sync():
        await repository.sync_now()
"""


class ScombError(Exception):
    """Base exception for all ScombZ client errors."""

    pass


class TransientError(ScombError):
    """Temporary failure that may succeed on retry."""

    pass


class NetworkError(TransientError):
    """Transport-level failure or non-2xx response from the portal."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentError(ScombError):
    """Failure that won't succeed on retry without outside action."""

    pass


class AuthenticationError(PermanentError):
    """Credentials rejected, provider error page shown, or 2FA never completed.

    Carries the identity provider's message when one was displayed.
    """

    pass


class NotAuthenticatedError(AuthenticationError):
    """No session token is stored - a login is required first."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class SessionExpiredError(AuthenticationError):
    """A page expected to be authenticated rendered the login form instead."""

    def __init__(self, message: str = "Session has expired. Please log in again.") -> None:
        super().__init__(message)


class SessionTimeoutError(PermanentError):
    """The session cookie never appeared within the polling window."""

    pass


class ExtractionError(PermanentError):
    """Page structure did not match the expected shape.

    Raised for a single row/cell (caught by the extractor, row skipped) or for
    a whole page (propagated to the caller).
    """

    pass


class StorageError(PermanentError):
    """Record or secret store read/write failed."""

    pass


class RecordNotFoundError(PermanentError):
    """A record looked up by identity does not exist in the store."""

    pass
