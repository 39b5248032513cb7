"""
Rate-Limited Source Client — concurrent multi-provider search.

Behavioral Contract:
- One request per named source, issued concurrently, each throttled by a
  per-source sliding window
- A failing source contributes zero results and a diagnostic; it never
  aborts the others
- Results are deduplicated by URL (first seen wins) and sorted by relevance,
  then recency
- All sources failing yields an empty result list, not an exception
- scrape() fetches a single page through the same HTTP client under its own
  "scrape" rate-limit window; a failed fetch raises SourceUnavailable
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from cognitive_loop.config import ProviderSettings, get_provider_settings
from cognitive_loop.dates import parse_date
from cognitive_loop.errors import ConfigurationError, SourceUnavailable
from cognitive_loop.models.source import (
    ScrapedPage,
    SearchOptions,
    SearchResponse,
    SourceClientConfig,
    SourceDiagnostic,
    SourceResult,
)
from cognitive_loop.retrieval.adapters import (
    BingSearchAdapter,
    BraveSearchAdapter,
    SerpAPIAdapter,
    SourceAdapter,
)
from cognitive_loop.retrieval.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

_BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li"]
_MIN_BLOCK_LENGTH = 20


class SourceClient:
    """Fans a query out to registered search adapters and aggregates the results."""

    def __init__(
        self,
        config: Optional[SourceClientConfig] = None,
        settings: Optional[ProviderSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        register_defaults: bool = True,
    ):
        self.config = config or SourceClientConfig()
        if rate_limiter is None:
            rate_limiter = SlidingWindowRateLimiter(
                limit=self.config.rate_limit_requests,
                window_seconds=self.config.rate_limit_window_seconds,
                max_backoff_seconds=self.config.max_backoff_seconds,
            )
        self.rate_limiter = rate_limiter
        self._owns_http = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
            )
        self._http = http_client
        self._adapters: Dict[str, SourceAdapter] = {}
        if register_defaults:
            self._register_default_adapters(settings or get_provider_settings())

    def _register_default_adapters(self, settings: ProviderSettings) -> None:
        """Register the built-in providers with their credentials."""
        self.register_adapter(SerpAPIAdapter(settings.serpapi_key))
        self.register_adapter(BraveSearchAdapter(settings.brave_api_key))
        self.register_adapter(BingSearchAdapter(settings.bing_api_key))

    def register_adapter(self, adapter: SourceAdapter) -> None:
        """Register (or replace) the adapter for `adapter.name`."""
        self._adapters[adapter.name] = adapter

    @property
    def sources(self) -> List[str]:
        """Names of all registered sources."""
        return list(self._adapters)

    async def search(
        self, query: str, options: Optional[SearchOptions] = None
    ) -> SearchResponse:
        """Search every requested source concurrently and aggregate the results."""
        options = options or SearchOptions()
        if not options.sources:
            raise ConfigurationError("No search sources requested")
        unknown = [s for s in options.sources if s not in self._adapters]
        if unknown:
            raise ConfigurationError(
                f"No adapter registered for source(s): {', '.join(unknown)}"
            )

        tasks = [
            asyncio.ensure_future(self._search_single_source(name, query, options))
            for name in dict.fromkeys(options.sources)
        ]
        outcomes: List[Tuple[SourceDiagnostic, List[SourceResult]]] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                outcomes.append(await next_done)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        response = self.aggregate(outcomes)
        if not response.results and response.errors:
            logger.warning(
                "All %d search sources failed for query %r",
                len(response.errors), query,
            )
        return response

    async def _search_single_source(
        self, name: str, query: str, options: SearchOptions
    ) -> Tuple[SourceDiagnostic, List[SourceResult]]:
        """Query one source. Errors become a zero-result diagnostic."""
        adapter = self._adapters[name]
        try:
            await self.rate_limiter.acquire(name)
            results, metadata = await adapter.search(self._http, query, options)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = _describe_error(e)
            logger.warning("Search failed for %s: %s", name, reason)
            return SourceDiagnostic(source=name, error=reason), []

        results = results[: options.max_results]
        return (
            SourceDiagnostic(
                source=name, result_count=len(results), metadata=metadata or {}
            ),
            results,
        )

    def aggregate(
        self, outcomes: List[Tuple[SourceDiagnostic, List[SourceResult]]]
    ) -> SearchResponse:
        """
        Concatenate per-source results in the given order, keep the first
        occurrence of each URL, then sort by relevance and recency.
        """
        seen = set()
        merged: List[SourceResult] = []
        diagnostics: List[SourceDiagnostic] = []

        for diagnostic, results in outcomes:
            diagnostics.append(diagnostic)
            for result in results:
                if result.url in seen:
                    continue
                seen.add(result.url)
                merged.append(result)

        merged.sort(key=_ranking_key)
        return SearchResponse(results=merged, diagnostics=diagnostics)

    async def scrape(self, url: str) -> ScrapedPage:
        """Fetch one page and extract its readable text and head metadata."""
        try:
            await self.rate_limiter.acquire("scrape")
            response = await self._http.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            reason = _describe_error(e)
            logger.warning("Scrape failed for %s: %s", url, reason)
            raise SourceUnavailable("scrape", reason) from e

        page = extract_page(url, response.text)
        logger.debug("Scraped %s: %d chars", url, len(page.content))
        return page

    async def health_check(self, sources: Optional[List[str]] = None) -> dict:
        """Check the given (or all registered) sources with a one-result search."""
        options = SearchOptions(sources=sources or self.sources, max_results=1)
        try:
            response = await self.search("health check", options)
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "last_test": datetime.now(timezone.utc).isoformat(),
            }

        failed = response.errors
        if not failed:
            status = "healthy"
        elif len(failed) < len(options.sources):
            status = "degraded"
        else:
            status = "unhealthy"
        return {
            "status": status,
            "sources": options.sources,
            "errors": failed,
            "test_results": len(response.results),
            "last_test": datetime.now(timezone.utc).isoformat(),
        }

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()


def _ranking_key(result: SourceResult) -> Tuple[float, float]:
    published = parse_date(result.published_date)
    recency = published.timestamp() if published else 0.0
    return (-(result.relevance_score or 0.0), -recency)


def _describe_error(error: Exception) -> str:
    if isinstance(error, SourceUnavailable):
        return error.reason
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code} from {error.request.url.host}"
    if isinstance(error, httpx.TimeoutException):
        return "request timed out"
    return str(error) or type(error).__name__


def extract_page(url: str, html: str) -> ScrapedPage:
    """
    Title, description and canonical link from the page head; content is
    the text of every paragraph, heading and list item longer than
    _MIN_BLOCK_LENGTH characters, separated by blank lines.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = soup.find("title")
    description = soup.find("meta", attrs={"name": "description"})
    canonical = soup.find("link", rel="canonical")

    blocks = [tag.get_text(" ", strip=True) for tag in soup.find_all(_BLOCK_TAGS)]
    return ScrapedPage(
        url=url,
        title=title.get_text(strip=True) if title else "",
        content="\n\n".join(b for b in blocks if len(b) > _MIN_BLOCK_LENGTH),
        description=description.get("content") if description else None,
        canonical=canonical.get("href") if canonical else None,
        scraped_at=datetime.now(timezone.utc),
    )
