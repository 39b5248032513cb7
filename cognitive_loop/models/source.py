"""Source Model — queries and the results retrieved for them."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SearchOptions(BaseModel):
    """Per-call options for a multi-source search."""

    sources: List[str] = ["serpapi", "brave", "bing"]
    max_results: int = Field(ge=1, le=100, default=10)
    freshness: str = "any"                  # "any" | "day" | "week" | "month"
    include_images: bool = False


class QueryContext(BaseModel):
    """Context bag supplied by the caller alongside a query."""

    model_config = ConfigDict(frozen=True)

    search_options: SearchOptions = SearchOptions()
    known_facts: List[str] = []             # Used for consistency scoring


class Query(BaseModel):
    """An immutable query. Refinement produces a new Query."""

    model_config = ConfigDict(frozen=True)

    text: str
    context: QueryContext = QueryContext()

    def refine(self, terms: List[str]) -> "Query":
        """Append terms to this query, returning a new Query."""
        if not terms:
            return self
        return Query(text=f"{self.text} {' '.join(terms)}", context=self.context)


class SourceResult(BaseModel):
    """One externally retrieved candidate document. Unique by URL."""

    model_config = ConfigDict(frozen=True)

    url: str
    title: str = ""
    snippet: str = ""
    content: Optional[str] = None
    published_date: Optional[str] = None    # Raw provider value, parsed lazily
    relevance_score: Optional[float] = None
    origin_source: str
    result_type: str = "organic"            # "organic" | "answer_box"

    @property
    def text(self) -> str:
        """The best available body text for analysis."""
        return self.content or self.snippet or self.title or ""


class ScrapedPage(BaseModel):
    """Readable text and head metadata extracted from one fetched page."""

    url: str
    title: str = ""
    content: str = ""                       # Block texts joined by blank lines
    description: Optional[str] = None       # <meta name="description">
    canonical: Optional[str] = None         # <link rel="canonical">
    scraped_at: datetime


class SourceDiagnostic(BaseModel):
    """What one provider contributed to a search call."""

    source: str
    result_count: int = 0
    error: Optional[str] = None
    metadata: dict = {}


class SourceClientConfig(BaseModel):
    """Configuration for the Rate-Limited Source Client."""

    timeout_seconds: float = Field(gt=0, default=10.0)
    user_agent: str = "cognitive-loop/0.1"
    rate_limit_requests: int = Field(ge=1, default=100)
    rate_limit_window_seconds: float = Field(gt=0, default=60.0)
    max_backoff_seconds: float = Field(gt=0, default=60.0)


class SearchResponse(BaseModel):
    """Aggregated, deduplicated search results plus per-source diagnostics."""

    results: List[SourceResult] = []
    diagnostics: List[SourceDiagnostic] = []

    @property
    def errors(self) -> Dict[str, str]:
        """Map of source name to error for every failed provider."""
        return {d.source: d.error for d in self.diagnostics if d.error}
