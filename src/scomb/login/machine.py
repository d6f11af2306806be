"""Login state machine for the SAML/ADFS portal login.

Drives a LoginDriver through the identity-provider pages:

  IDLE -> SUBMITTING -> AWAITING_PROVIDER_CHOICE -> AWAITING_TWO_FACTOR
       -> POLLING_SESSION -> AUTHENTICATED | FAILED

Each page load is classified and handled to completion before the next one
is awaited, so login state is never mutated concurrently. Progress is
reported as an async stream of LoginEvent objects; closing the stream (or
cancelling the task consuming it) stops polling, closes the browser and
drops the credential.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from enum import Enum

from pydantic import BaseModel, Field

from src.scomb.config import ScombConfig
from src.scomb.errors import (
    AuthenticationError,
    NetworkError,
    ScombError,
    SessionTimeoutError,
)
from src.scomb.logging import get_logger
from src.scomb.login.classifier import PageKind, PageSnapshot, PageState, classify_page
from src.scomb.login.driver import LoginDriver
from src.scomb.login.poller import SessionPoller
from src.scomb.models import Credential
from src.scomb.session import SESSION_KEY, USERNAME_KEY, SecretStore

logger = get_logger(__name__)

SESSION_NOT_ESTABLISHED = "session not established"
LOGIN_TIMED_OUT = "login timed out"


class LoginState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_PROVIDER_CHOICE = "awaiting_provider_choice"
    AWAITING_TWO_FACTOR = "awaiting_two_factor"
    POLLING_SESSION = "polling_session"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


TERMINAL_STATES = frozenset({LoginState.AUTHENTICATED, LoginState.FAILED})


class LoginEvent(BaseModel):
    pass


class StateChanged(LoginEvent):
    state: LoginState


class TwoFactorCodeAvailable(LoginEvent):
    code: str


class Succeeded(LoginEvent):
    token: str = Field(repr=False)


class Failed(LoginEvent):
    reason: str
    retryable: bool = False  # browser or network failure, not a rejected login


class _PollOutcome(BaseModel):
    token: str | None = Field(default=None, repr=False)
    error: str | None = None


class LoginStateMachine:
    """Runs one login attempt against the portal's identity provider.

    A machine owns its driver and closes it when the attempt ends, so a retry
    is a new machine with a new driver and fresh credentials.
    """

    def __init__(
        self,
        driver: LoginDriver,
        config: ScombConfig | None = None,
        secret_store: SecretStore | None = None,
        poller: SessionPoller | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.driver = driver
        self.config = config or ScombConfig()
        self.secret_store = secret_store
        self.poller = poller or SessionPoller(
            driver.read_cookies, cookie_name=self.config.session_cookie_name
        )
        self._clock = clock
        self.state = LoginState.IDLE
        self._two_factor_reported = False
        self._poll_task: asyncio.Task | None = None

    def _transition(self, state: LoginState) -> list[LoginEvent]:
        if state is self.state:
            return []
        logger.info("login_state_changed", previous=self.state.value, state=state.value)
        self.state = state
        return [StateChanged(state=state)]

    def _fail(self, reason: str, retryable: bool = False) -> list[LoginEvent]:
        logger.warning("login_failed", reason=reason, retryable=retryable)
        return self._transition(LoginState.FAILED) + [
            Failed(reason=reason, retryable=retryable)
        ]

    def _finish(self, token: str | None, username: str) -> list[LoginEvent]:
        if not token:
            return self._fail(SESSION_NOT_ESTABLISHED)
        if self.secret_store is not None:
            self.secret_store.set(SESSION_KEY, token)
            self.secret_store.set(USERNAME_KEY, username)
        logger.info("login_succeeded", token_prefix=token[:6])
        return self._transition(LoginState.AUTHENTICATED) + [Succeeded(token=token)]

    def _settle(self, outcome: _PollOutcome, username: str) -> list[LoginEvent]:
        if outcome.error:
            return self._fail(outcome.error, retryable=True)
        return self._finish(outcome.token, username)

    def _start_polling(self) -> asyncio.Task:
        self._poll_task = self.poller.start(
            self.config.session_poll_timeout, self.config.session_poll_interval
        )
        return self._poll_task

    async def _poll_outcome(self) -> _PollOutcome:
        """Result of the background poll; a failed poll becomes an error outcome."""
        task = self._poll_task if self._poll_task is not None else self._start_polling()
        try:
            return _PollOutcome(token=await task)
        except ScombError as e:
            logger.warning("session_poll_failed", error=str(e))
            return _PollOutcome(error=str(e))

    async def _next_signal(self, timeout: float) -> PageSnapshot | _PollOutcome | None:
        """Wait for the next page load, or for a background poll to finish."""
        page_wait = asyncio.ensure_future(self.driver.wait_for_page(timeout))
        if self._poll_task is None:
            return await page_wait

        try:
            done, _ = await asyncio.wait(
                {page_wait, self._poll_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if not page_wait.done():
                page_wait.cancel()

        if self._poll_task in done:
            return await self._poll_outcome()
        return page_wait.result()

    async def _react(self, page: PageState, credential: Credential) -> list[LoginEvent]:
        config = self.config

        if page.kind is PageKind.ERROR_MESSAGE:
            return self._fail(page.message or "login error")

        if page.kind is PageKind.AUTHENTICATED_LANDING:
            events = self._transition(LoginState.POLLING_SESSION)
            if page.token:
                events += self._finish(page.token, credential.username)
            return events

        if page.kind is PageKind.TWO_FACTOR_DISPLAY:
            self._two_factor_reported = True
            logger.info("two_factor_code_displayed")
            events: list[LoginEvent] = [TwoFactorCodeAvailable(code=page.code)]
            events += self._transition(LoginState.AWAITING_TWO_FACTOR)
            # The session is established out-of-band once the code is confirmed
            self._start_polling()
            return events

        if page.kind is PageKind.PROVIDER_SELECTION:
            await self.driver.click(config.provider_link_selector)
            logger.info("provider_link_clicked")
            return self._transition(LoginState.AWAITING_PROVIDER_CHOICE)

        if page.kind is PageKind.CREDENTIAL_ENTRY:
            await self.driver.fill(config.username_selector, credential.username)
            await self.driver.fill(config.password_selector, credential.password)
            if not await self.driver.click(config.submit_selector):
                await self.driver.submit_form(config.password_selector)
            logger.info("credentials_submitted")
            return self._transition(LoginState.SUBMITTING)

        return []

    async def login(self, username: str, password: str) -> AsyncIterator[LoginEvent]:
        """Run the login flow, yielding events until success or failure.

        Yields:
            StateChanged, TwoFactorCodeAvailable (at most once),
            then exactly one of Succeeded or Failed.

        Raises:
            RuntimeError: If this machine has already been used.
        """
        if self.state is not LoginState.IDLE:
            raise RuntimeError("A LoginStateMachine runs a single login attempt")

        credential: Credential | None = Credential(username=username, password=password)
        self._two_factor_reported = False
        deadline = self._clock() + self.config.login_timeout

        try:
            for event in self._transition(LoginState.SUBMITTING):
                yield event
            await self.driver.load_url(self.config.login_url)

            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    for event in self._fail(LOGIN_TIMED_OUT):
                        yield event
                    return

                signal = await self._next_signal(
                    min(remaining, self.config.page_event_timeout)
                )
                if isinstance(signal, _PollOutcome):
                    for event in self._settle(signal, credential.username):
                        yield event
                    return
                if signal is None:
                    # No navigation happened; re-check the page as it is now
                    signal = await self.driver.snapshot()

                page = classify_page(signal, self.config, self._two_factor_reported)
                logger.debug("login_page_classified", kind=page.kind.value, state=self.state.value)

                for event in await self._react(page, credential):
                    yield event
                if self.state in TERMINAL_STATES:
                    return

                if self.state is LoginState.POLLING_SESSION:
                    outcome = await self._poll_outcome()
                    for event in self._settle(outcome, credential.username):
                        yield event
                    return
        except NetworkError as e:
            for event in self._fail(str(e), retryable=True):
                yield event
        finally:
            credential = None
            self.poller.stop()
            self._poll_task = None
            if self.state not in TERMINAL_STATES:
                logger.info("login_cancelled", state=self.state.value)
                self.state = LoginState.IDLE
            await self.driver.close()

    async def authenticate(
        self,
        username: str,
        password: str,
        on_two_factor_code: Callable[[str], None] | None = None,
    ) -> str:
        """Log in and return the session token.

        Args:
            on_two_factor_code: Called with the number to confirm on the
                second device, if the provider displays one.

        Raises:
            SessionTimeoutError: If the session cookie never appeared.
            AuthenticationError: If the provider rejected the login.
            NetworkError: If the browser failed during the attempt.
        """
        async with aclosing(self.login(username, password)) as events:
            async for event in events:
                if isinstance(event, TwoFactorCodeAvailable) and on_two_factor_code:
                    on_two_factor_code(event.code)
                elif isinstance(event, Succeeded):
                    return event.token
                elif isinstance(event, Failed):
                    if event.retryable:
                        raise NetworkError(event.reason)
                    if event.reason == SESSION_NOT_ESTABLISHED:
                        raise SessionTimeoutError("Session was not established, please try again")
                    raise AuthenticationError(event.reason)
        raise AuthenticationError("Login ended without a result")
