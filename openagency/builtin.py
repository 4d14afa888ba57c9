"""
OpenAgency - Built-in capabilities.

Ready-made capabilities used by the example agents and available to agent
definitions by name through :func:`builtin_registry`.

Failures are returned as results, never raised, so the remote run can
react to them.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from .capabilities import Capability, CapabilityRegistry, Parameter
from .events import EventSink

logger = logging.getLogger("openagency.builtin")

WIKIPEDIA_SEARCH_URL = "https://en.wikipedia.org/w/api.php"
WIKIPEDIA_SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary/{title}"
DEFAULT_TIMEOUT = 10.0


class CurrentTimeCapability(Capability):
    """Returns the current time, optionally in a given time zone."""

    description = (
        "This tool returns the current system time as a JSON object with "
        "properties for hour, minute, and second. No parameters are required "
        "for its execution."
    )

    def __init__(self, events: Optional[EventSink] = None):
        super().__init__(
            "getTimeTool",
            parameters={
                "timezone": Parameter(
                    "timezone",
                    description=(
                        "Timezone to return the current time for. Uses IANA Time Zone "
                        'Database format (for example: "Asia/Tokyo", "Europe/London").'
                    ),
                ),
            },
            events=events,
        )

    def now(self, tz: Optional[ZoneInfo] = None) -> datetime:
        return datetime.now(tz)

    async def execute(self, params: dict[str, Any]) -> dict[str, Any]:
        timezone = params.get("timezone")
        if not timezone:
            now = self.now()
            return {"hour": now.hour, "minute": now.minute, "second": now.second}

        try:
            now = self.now(ZoneInfo(timezone))
        except (ZoneInfoNotFoundError, ValueError):
            return {"error": f"Unknown timezone: {timezone}"}

        return {
            "hour": now.hour,
            "minute": now.minute,
            "second": now.second,
            "timezone": timezone,
        }


class WikipediaSearchCapability(Capability):
    """Looks up the best matching Wikipedia page and returns its summary.

    Args:
        client: Shared ``httpx.AsyncClient``. A short-lived client is used
            per call when omitted.
    """

    description = (
        "This tool queries Wikipedia using the MediaWiki API to locate the most "
        "relevant page for a given search term. It returns a concise summary of "
        "that page. If necessary, this tool can be called repeatedly with refined "
        "parameters to ensure that all relevant details are captured."
    )

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        events: Optional[EventSink] = None,
    ):
        self._client = client
        super().__init__(
            "wikipediaSearchTool",
            parameters={
                "searchTerm": Parameter(
                    "searchTerm",
                    description="The term to search on Wikipedia.",
                    required=True,
                ),
                "resultsLimit": Parameter(
                    "resultsLimit",
                    description="Number of search results to consider.",
                    type="integer",
                    default=10,
                ),
            },
            events=events,
        )

    async def execute(self, params: dict[str, Any]) -> str:
        term = params["searchTerm"]
        try:
            if self._client is not None:
                return await self._lookup(self._client, term, params["resultsLimit"])
            async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT) as client:
                return await self._lookup(client, term, params["resultsLimit"])
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.warning("Wikipedia lookup for %r failed: %s", term, e)
            return f"Error fetching Wikipedia content: {e}"

    async def _lookup(self, client: httpx.AsyncClient, term: str, limit: Any) -> str:
        response = await client.get(
            WIKIPEDIA_SEARCH_URL,
            params={
                "action": "query",
                "list": "search",
                "srsearch": term,
                "srlimit": limit,
                "format": "json",
            },
        )
        response.raise_for_status()

        results = response.json()["query"]["search"]
        if not results:
            return f'No results found for "{term}"'

        title = results[0]["title"]
        response = await client.get(
            WIKIPEDIA_SUMMARY_URL.format(title=quote(title, safe=""))
        )
        response.raise_for_status()

        return response.json().get("extract") or f'No summary available for "{title}"'


def builtin_registry() -> CapabilityRegistry:
    """A fresh registry holding the built-in capabilities."""
    return CapabilityRegistry(
        {
            "getTimeTool": CurrentTimeCapability,
            "wikipediaSearchTool": WikipediaSearchCapability,
        }
    )
