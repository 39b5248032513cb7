"""
Search provider adapters.

Each adapter turns one provider's HTTP API into SourceResults. Adapters
raise on failure (missing key, HTTP error, timeout); the Source Client
converts those into per-source diagnostics.
"""

from typing import List, Optional, Protocol, Tuple

import httpx

from cognitive_loop.errors import SourceUnavailable
from cognitive_loop.models.source import SearchOptions, SourceResult

_SERPAPI_FRESHNESS = {"day": "qdr:d", "week": "qdr:w", "month": "qdr:m"}
_BRAVE_FRESHNESS = {"day": "pd", "week": "pw", "month": "pm"}
_BING_FRESHNESS = {"day": "Day", "week": "Week", "month": "Month"}


class SourceAdapter(Protocol):
    """Capability interface for one search provider."""

    name: str

    async def search(
        self,
        http: httpx.AsyncClient,
        query: str,
        options: SearchOptions,
    ) -> Tuple[List[SourceResult], dict]: ...


class SerpAPIAdapter:
    """Google results via SerpAPI."""

    name = "serpapi"
    endpoint = "https://serpapi.com/search"

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    async def search(
        self,
        http: httpx.AsyncClient,
        query: str,
        options: SearchOptions,
    ) -> Tuple[List[SourceResult], dict]:
        if not self.api_key:
            raise SourceUnavailable(self.name, "SERPAPI_KEY not configured")

        params = {
            "q": query,
            "api_key": self.api_key,
            "num": options.max_results,
            "safe": "active",
        }
        if options.freshness in _SERPAPI_FRESHNESS:
            params["tbs"] = _SERPAPI_FRESHNESS[options.freshness]

        response = await http.get(self.endpoint, params=params)
        response.raise_for_status()
        data = response.json()

        info = data.get("search_information") or {}
        metadata = {
            "total_results": info.get("total_results"),
            "time_taken": info.get("time_taken_displayed"),
        }
        return self.parse(data, query), metadata

    def parse(self, data: dict, query: str = "") -> List[SourceResult]:
        results = []
        for item in data.get("organic_results") or []:
            if not item.get("link"):
                continue
            position = item.get("position")
            results.append(SourceResult(
                url=item["link"],
                title=item.get("title") or "",
                snippet=item.get("snippet") or "",
                published_date=item.get("date"),
                relevance_score=1 / (position + 1) if position else 0.5,
                origin_source=self.name,
            ))

        # The answer box, when present, always ranks first
        answer = data.get("answer_box")
        if answer:
            params = data.get("search_parameters") or {}
            results.insert(0, SourceResult(
                url=answer.get("link") or params.get("q") or query,
                title="Answer Box",
                snippet=answer.get("answer") or answer.get("snippet") or "",
                relevance_score=1.0,
                origin_source=self.name,
                result_type="answer_box",
            ))
        return results


class BraveSearchAdapter:
    """Brave Search web API."""

    name = "brave"
    endpoint = "https://api.search.brave.com/res/v1/web/search"
    default_relevance = 0.8

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    async def search(
        self,
        http: httpx.AsyncClient,
        query: str,
        options: SearchOptions,
    ) -> Tuple[List[SourceResult], dict]:
        if not self.api_key:
            raise SourceUnavailable(self.name, "BRAVE_API_KEY not configured")

        params = {
            "q": query,
            "count": options.max_results,
            "safesearch": "strict",
        }
        if options.freshness in _BRAVE_FRESHNESS:
            params["freshness"] = _BRAVE_FRESHNESS[options.freshness]

        response = await http.get(
            self.endpoint,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.api_key,
            },
        )
        response.raise_for_status()
        data = response.json()

        web = data.get("web") or {}
        return self.parse(data), {"total_results": web.get("total", 0)}

    def parse(self, data: dict) -> List[SourceResult]:
        web = data.get("web") or {}
        return [
            SourceResult(
                url=item["url"],
                title=item.get("title") or "",
                snippet=item.get("description") or "",
                published_date=item.get("page_age"),
                relevance_score=self.default_relevance,
                origin_source=self.name,
            )
            for item in web.get("results") or []
            if item.get("url")
        ]


class BingSearchAdapter:
    """Bing Web Search v7."""

    name = "bing"
    endpoint = "https://api.bing.microsoft.com/v7.0/search"
    default_relevance = 0.7

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    async def search(
        self,
        http: httpx.AsyncClient,
        query: str,
        options: SearchOptions,
    ) -> Tuple[List[SourceResult], dict]:
        if not self.api_key:
            raise SourceUnavailable(self.name, "BING_API_KEY not configured")

        params = {
            "q": query,
            "count": options.max_results,
            "safeSearch": "Strict",
        }
        if options.freshness in _BING_FRESHNESS:
            params["freshness"] = _BING_FRESHNESS[options.freshness]

        response = await http.get(
            self.endpoint,
            params=params,
            headers={"Ocp-Apim-Subscription-Key": self.api_key},
        )
        response.raise_for_status()
        data = response.json()

        pages = data.get("webPages") or {}
        metadata = {"total_results": pages.get("totalEstimatedMatches", 0)}
        return self.parse(data), metadata

    def parse(self, data: dict) -> List[SourceResult]:
        pages = data.get("webPages") or {}
        return [
            SourceResult(
                url=item["url"],
                title=item.get("name") or "",
                snippet=item.get("snippet") or "",
                published_date=item.get("datePublished"),
                relevance_score=self.default_relevance,
                origin_source=self.name,
            )
            for item in pages.get("value") or []
            if item.get("url")
        ]
