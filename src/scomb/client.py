"""HTTP client for the authenticated ScombZ pages.

Sends the session token as ``Cookie: SESSION=<token>`` and returns raw HTML.
Blocking requests calls run in a worker thread so several page kinds can be
fetched concurrently from asyncio code. There is no retry here; transport
failures surface as NetworkError.
"""

import asyncio

import requests

from src.scomb.config import ScombConfig
from src.scomb.errors import NetworkError
from src.scomb.logging import get_logger
from src.scomb.pages import communities, news, surveys, tasks, timetable

logger = get_logger(__name__)


class ScombClient:
    """Fetches raw page HTML from the portal for a given session token."""

    def __init__(
        self,
        config: ScombConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config or ScombConfig()
        self.session = session or requests.Session()

    def _get_sync(self, path: str, token: str, params: dict | None = None) -> str:
        url = f"{self.config.base_url}{path}"
        headers = {"Cookie": f"{self.config.session_cookie_name}={token}"}
        try:
            resp = self.session.get(
                url,
                headers=headers,
                params=params,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            logger.warning("request_failed", path=path, error=str(e))
            raise NetworkError(f"GET {path} failed: {e}") from e

        if resp.status_code != 200:
            logger.warning("request_bad_status", path=path, status=resp.status_code)
            raise NetworkError(
                f"GET {path} returned {resp.status_code}", status_code=resp.status_code
            )

        logger.debug("page_fetched", path=path, bytes=len(resp.content))
        return resp.text

    async def get_page(self, path: str, token: str, params: dict | None = None) -> str:
        return await asyncio.to_thread(self._get_sync, path, token, params)

    async def get_task_list(self, token: str) -> str:
        return await self.get_page(tasks.URL_PATH, token)

    async def get_survey_list(self, token: str) -> str:
        return await self.get_page(surveys.URL_PATH, token)

    async def get_timetable(self, token: str, year: int, term: str) -> str:
        return await self.get_page(
            timetable.URL_PATH, token, params={"year": year, "term": term}
        )

    async def get_news_list(self, token: str) -> str:
        return await self.get_page(news.URL_PATH, token)

    async def get_community_list(self, token: str) -> str:
        return await self.get_page(communities.URL_PATH, token)

    def close(self) -> None:
        self.session.close()
