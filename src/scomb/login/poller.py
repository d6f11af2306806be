"""Session cookie polling.

After the 2FA number is displayed (or the landing page is reached) the portal
sets its SESSION cookie asynchronously. SessionPoller checks the cookie jar at
a fixed interval for a bounded time using tenacity, sleeping between checks.
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from src.scomb.logging import get_logger

logger = get_logger(__name__)

CookieReader = Callable[[], Awaitable[Mapping[str, str]]]


def _log_attempt(retry_state: RetryCallState) -> None:
    # Every 10th check, to show progress on long 2FA waits
    if retry_state.attempt_number % 10 == 0:
        logger.debug("session_poll_progress", attempt=retry_state.attempt_number)


class SessionPoller:
    """Waits for the session cookie to appear in the browser's cookie jar.

    At most one background poll runs at a time: start() while a poll is
    active returns the running task instead of starting a second one.
    """

    def __init__(
        self,
        read_cookies: CookieReader,
        cookie_name: str = "SESSION",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._read_cookies = read_cookies
        self.cookie_name = cookie_name
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    async def _check(self) -> str | None:
        cookies = await self._read_cookies()
        return cookies.get(self.cookie_name) or None

    async def poll_for_session_cookie(self, timeout: float, interval: float) -> str | None:
        """Check for the session cookie every ``interval`` seconds for ``timeout`` seconds.

        The first check happens immediately, so a zero timeout means exactly
        one check.

        Returns:
            The cookie value, or None if it never appeared (timed out).
        """
        attempts = int(timeout // interval) + 1 if interval > 0 else 1
        logger.info("session_poll_started", timeout=timeout, interval=interval)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(interval),
            retry=retry_if_result(lambda value: value is None),
            retry_error_callback=lambda retry_state: None,
            after=_log_attempt,
            sleep=self._sleep,
        )
        token = await retrying(self._check)

        if token is None:
            logger.warning("session_poll_timeout", attempts=attempts)
        else:
            logger.info("session_poll_succeeded", token_prefix=token[:6])
        return token

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task if self.active else None

    def start(self, timeout: float, interval: float) -> asyncio.Task:
        """Run a poll in the background; a no-op if one is already running."""
        if self.active:
            logger.debug("session_poll_already_active")
            return self._task
        self._task = asyncio.create_task(self.poll_for_session_cookie(timeout, interval))
        return self._task

    def stop(self) -> None:
        """Cancel the background poll, if any."""
        if self.active:
            self._task.cancel()
            logger.debug("session_poll_stopped")
        self._task = None
