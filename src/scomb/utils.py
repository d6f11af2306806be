"""Playwright page setup for the browser login flow."""

from playwright.async_api import Page, Route

from src.scomb.logging import get_logger

log = get_logger(__name__)

# The login flow only needs documents and scripts
BLOCKED_RESOURCE_TYPES: frozenset[str] = frozenset({"image", "font", "media"})


async def configure_page_for_login(page: Page, *, timeout_ms: int = 30000) -> None:
    """Set up a Playwright page for the ADFS login flow.

    Blocks images, fonts and media to keep the identity-provider pages light,
    and applies navigation/action timeouts.

    Args:
        page: Playwright Page instance.
        timeout_ms: Default timeout for actions and navigations.
    """

    async def _block_resources(route: Route) -> None:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()

    await page.route("**/*", _block_resources)
    page.set_default_timeout(timeout_ms)
    page.set_default_navigation_timeout(timeout_ms)
    log.debug("login_page_configured", blocked=sorted(BLOCKED_RESOURCE_TYPES))
