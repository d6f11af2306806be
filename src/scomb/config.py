"""Client configuration loaded from environment variables.

The config object is passed explicitly to every component constructor.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class ScombConfig(BaseSettings):
    """ScombZ client configuration loaded from environment variables.

    Settings are loaded from ``SCOMB_*`` environment variables with sensible
    defaults. For local development, create a .env file in the project root.
    """

    # Portal settings
    base_url: str = Field(
        default="https://scombz.shibaura-it.ac.jp",
        description="ScombZ portal URL",
    )
    idp_entity_id: str = Field(
        default="http://adfs.sic.shibaura-it.ac.jp/adfs/services/trust",
        description="SAML identity provider entity id passed as ?idp=",
    )
    username: str = Field(
        default="",
        description="Portal username for browser login",
    )
    password: str = Field(
        default="",
        description="Portal password for browser login",
    )

    # Paths
    state_dir: str = Field(
        default="data/state",
        description="Directory for the secret store and cached records",
    )

    # Network
    request_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds",
    )

    # Login flow
    login_timeout: float = Field(
        default=120.0,
        description="Upper bound for a whole login attempt in seconds",
    )
    session_poll_interval: float = Field(
        default=2.0,
        description="Seconds between session cookie checks",
    )
    session_poll_timeout: float = Field(
        default=120.0,
        description="Seconds to wait for the session cookie after 2FA/landing",
    )
    page_event_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for the next page load before re-checking",
    )
    headless: bool = Field(
        default=True,
        description="Run the login browser without a window",
    )
    session_cookie_name: str = Field(
        default="SESSION",
        description="Name of the portal session cookie",
    )
    landing_path: str = Field(
        default="/portal/home",
        description="Path prefix of the authenticated landing page",
    )

    # Identity provider page selectors (override for a changed ADFS layout)
    username_selector: str = Field(
        default="#userNameInput, input[name=UserName]",
        description="CSS selector for the username input",
    )
    password_selector: str = Field(
        default="#passwordInput, input[name=Password]",
        description="CSS selector for the password input",
    )
    submit_selector: str = Field(
        default="#submitButton, #primaryButton",
        description="CSS selector for the credential submit button",
    )
    error_selector: str = Field(
        default="#errorText, .error",
        description="CSS selector for the provider error text",
    )
    two_factor_code_selector: str = Field(
        default="#validEntropyNumber",
        description="CSS selector for the displayed 2FA number",
    )
    provider_link_selector: str = Field(
        default="#AzureMfaAuthentication",
        description="CSS selector for the MFA provider link",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Force DEBUG logging regardless of log_level",
    )

    model_config = {
        "env_prefix": "SCOMB_",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def login_url(self) -> str:
        return f"{self.base_url}/saml/login?idp={self.idp_entity_id}"

    @property
    def landing_url(self) -> str:
        return f"{self.base_url}{self.landing_path}"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level
