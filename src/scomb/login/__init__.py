"""Browser-driven SAML/ADFS login: page classifier, state machine, session poller."""

from src.scomb.login.classifier import PageKind, PageSnapshot, PageState, classify_page
from src.scomb.login.driver import LoginDriver, PlaywrightLoginDriver
from src.scomb.login.machine import (
    Failed,
    LoginEvent,
    LoginState,
    LoginStateMachine,
    StateChanged,
    Succeeded,
    TwoFactorCodeAvailable,
)
from src.scomb.login.poller import SessionPoller

__all__ = [
    "Failed",
    "LoginDriver",
    "LoginEvent",
    "LoginState",
    "LoginStateMachine",
    "PageKind",
    "PageSnapshot",
    "PageState",
    "PlaywrightLoginDriver",
    "SessionPoller",
    "StateChanged",
    "Succeeded",
    "TwoFactorCodeAvailable",
    "classify_page",
]
