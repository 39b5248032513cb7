"""
Validation Scorer — source credibility assessment and bias detection.

Behavioral Contract:
- Scores at most max_validation_requests sources per call
- Four sub-checks per source (credibility, bias, freshness, consistency)
  run concurrently; a failing check degrades to a neutral score and is
  recorded as an issue, it never aborts the record
- A record is `validated` only if its credibility check succeeded
- Records are cached by URL for cache_ttl_seconds

All scores are heuristic signals driven by ScoringPolicy, not verified facts.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from cognitive_loop.dates import find_date_in_text, parse_date
from cognitive_loop.errors import ValidationDegraded
from cognitive_loop.models.source import QueryContext, SourceResult
from cognitive_loop.models.validation import (
    ScoringPolicy,
    ValidationConfig,
    ValidationRecord,
    ValidationReport,
    ValidationSummary,
)
from cognitive_loop.validation.cache import ValidationCache

logger = logging.getLogger(__name__)

_CHECKS = ("credibility", "bias", "freshness", "consistency")
_WORD = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _clip(value: float) -> float:
    return max(0.0, min(1.0, value))


def overall_score(
    credibility: float,
    bias: float,
    freshness: float,
    consistency: float,
    weights: Optional[Dict[str, float]] = None,
) -> float:
    """Weighted combination of the four sub-scores, clipped to [0, 1]."""
    w = weights or ScoringPolicy().overall_weights
    return _clip(
        credibility * w["credibility"]
        + (1 - bias) * w["bias"]
        + freshness * w["freshness"]
        + consistency * w["consistency"]
    )


def credibility_level(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.6:
        return "medium"
    if score >= 0.4:
        return "low"
    return "very_low"


def bias_level(score: float) -> str:
    if score >= 0.7:
        return "high"
    if score >= 0.5:
        return "medium"
    if score >= 0.3:
        return "low"
    return "minimal"


class ValidationScorer:
    """Scores sources for trustworthiness, with a TTL cache keyed by URL."""

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        cache: Optional[ValidationCache] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or ValidationConfig()
        self.policy = self.config.policy
        self.cache = (
            cache if cache is not None
            else ValidationCache(ttl_seconds=self.config.cache_ttl_seconds)
        )
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def validate(
        self,
        sources: List[SourceResult],
        context: Optional[QueryContext] = None,
    ) -> ValidationReport:
        """Validate up to max_validation_requests sources."""
        context = context or QueryContext()
        batch = sources[: self.config.max_validation_requests]

        outcomes = await asyncio.gather(
            *(self.validate_source(source, context) for source in batch),
            return_exceptions=True,
        )

        records = []
        for source, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Validation failed for source %s: %s", source.url, outcome)
                outcome = self._failed_record(source, outcome)
            records.append(outcome)

        return ValidationReport(
            results=records,
            summary=self.summarize(records),
            recommendations=self.recommend(records),
        )

    async def validate_source(
        self, source: SourceResult, context: QueryContext
    ) -> ValidationRecord:
        """Score one source, serving a cached record when it is still fresh."""
        cached = self.cache.get(source.url)
        if cached is not None:
            return cached

        credibility, bias, freshness, consistency = await asyncio.gather(
            self.assess_credibility(source),
            self.analyze_bias(source),
            self.check_freshness(source),
            self.check_consistency(source, context.known_facts),
            return_exceptions=True,
        )
        outcomes = (credibility, bias, freshness, consistency)
        issues = []
        for name, outcome in zip(_CHECKS, outcomes):
            if isinstance(outcome, Exception):
                degraded = ValidationDegraded(name, str(outcome) or type(outcome).__name__)
                logger.warning("Validation check degraded for %s: %s", source.url, degraded)
                issues.append(str(degraded))
            elif isinstance(outcome, BaseException):
                raise outcome

        neutral = self.config.neutral_score
        credibility_ok = not isinstance(credibility, BaseException)
        bias_ok = not isinstance(bias, BaseException)

        cred_score, factors = credibility if credibility_ok else (neutral, {})
        bias_score, details = bias if bias_ok else (neutral, {})
        fresh_score = freshness if not isinstance(freshness, BaseException) else neutral
        cons_score = consistency if not isinstance(consistency, BaseException) else neutral

        record = ValidationRecord(
            url=source.url,
            title=source.title,
            credibility=cred_score,
            bias=bias_score,
            freshness=fresh_score,
            consistency=cons_score,
            overall_score=overall_score(
                cred_score, bias_score, fresh_score, cons_score,
                self.policy.overall_weights,
            ),
            issues=issues,
            bias_details=details,
            credibility_factors=factors,
            credibility_level=credibility_level(cred_score),
            bias_level=bias_level(bias_score),
            validated=credibility_ok,
            timestamp=self._now(),
        )
        self.cache.set(source.url, record)
        return record

    # --- Credibility ---

    async def assess_credibility(
        self, source: SourceResult
    ) -> Tuple[float, Dict[str, float]]:
        """Weighted credibility with its per-factor breakdown."""
        factors = {
            "domain_authority": await self.check_domain_authority(source.url),
            "content_quality": self.assess_content_quality(source),
            "citations": await self.check_citations(source.url),
            "author_expertise": self.assess_author_expertise(source),
            "fact_checking": await self.cross_reference_fact_checks(source),
        }
        weights = self.policy.credibility_weights
        score = sum(factors[name] * weights[name] for name in factors)
        return _clip(score), factors

    async def check_domain_authority(self, url: str) -> float:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return 0.5
        if any(_host_matches(host, d) for d in self.policy.reliable_domains):
            return 0.9
        if any(host.endswith("." + tld) for tld in self.policy.reliable_tlds):
            return 0.9
        if any(_host_matches(host, d) for d in self.policy.unreliable_domains):
            return 0.3
        return 0.6

    def assess_content_quality(self, source: SourceResult) -> float:
        text = source.content or source.snippet or ""
        score = 0.5

        if len(text) > 1000:
            score += 0.1
        if len(text) > 5000:
            score += 0.1
        if "\n\n" in text or len(text.split(".")) > 10:
            score += 0.1
        if re.search(r"\[.*?\]", text) or re.search(r"\(.*?\)", text):
            score += 0.1

        lowered = text.lower()
        words = self.policy.professional_words
        present = sum(1 for word in words if word in lowered)
        score += (present / len(words)) * 0.2 if words else 0.0
        return _clip(score)

    async def check_citations(self, url: str) -> float:
        lowered = url.lower()
        if any(host in lowered for host in self.policy.academic_hosts):
            return 0.8
        return 0.4

    def assess_author_expertise(self, source: SourceResult) -> float:
        text = (source.content or source.snippet or "").lower()
        count = sum(1 for word in self.policy.expertise_words if word in text)
        return min(1.0, count * 0.2 + 0.3)

    async def cross_reference_fact_checks(self, source: SourceResult) -> float:
        haystack = f"{source.url} {source.text}".lower()
        if any(site in haystack for site in self.policy.fact_check_sites):
            return 0.8
        return 0.5

    # --- Bias ---

    async def analyze_bias(self, source: SourceResult) -> Tuple[float, Dict[str, float]]:
        """Weighted bias score with its per-indicator breakdown."""
        text = source.text.lower()
        details = {
            "political": self.detect_political_bias(text),
            "sensationalism": self.detect_sensationalism(text),
            "emotional": self.detect_emotional_language(text),
            "one_sided": self.detect_one_sided_arguments(text),
        }
        weights = self.policy.bias_weights
        score = _clip(sum(details[name] * weights[name] for name in details))
        details["score"] = score
        return score, details

    def detect_political_bias(self, text: str) -> float:
        left = sum(1 for word in self.policy.left_words if word in text)
        right = sum(1 for word in self.policy.right_words if word in text)
        if left > right * 2 or right > left * 2:
            return 0.8
        return min(1.0, abs(left - right) * 0.1)

    def detect_sensationalism(self, text: str) -> float:
        count = sum(text.count(word) for word in self.policy.sensational_words)
        return min(1.0, count * 0.1)

    def detect_emotional_language(self, text: str) -> float:
        count = sum(text.count(word) for word in self.policy.emotional_words)
        return min(1.0, count * 0.05)

    def detect_one_sided_arguments(self, text: str) -> float:
        balance = sum(1 for phrase in self.policy.balance_phrases if phrase in text)
        return max(0.0, 1 - balance * 0.2)

    # --- Freshness ---

    async def check_freshness(self, source: SourceResult) -> float:
        published = parse_date(source.published_date) or find_date_in_text(
            source.content or source.snippet or ""
        )
        if published is None:
            return 0.5

        age_days = (self._now() - published).total_seconds() / 86400
        if age_days < 1:
            return 1.0
        if age_days < 7:
            return 0.9
        if age_days < 30:
            return 0.7
        if age_days < 365:
            return 0.5
        return 0.2

    # --- Consistency ---

    async def check_consistency(
        self, source: SourceResult, known_facts: List[str]
    ) -> float:
        """
        +1 per known fact the text contains, -0.5 per fact it appears to
        contradict, normalized around 0.5.
        """
        if not known_facts:
            return 0.5

        text = source.text.lower()
        score = 0.0
        for fact in known_facts:
            if fact.lower() in text:
                score += 1
            elif self.text_contradicts_fact(text, fact):
                score -= 0.5
        return _clip(score / len(known_facts) + 0.5)

    def text_contradicts_fact(self, text: str, fact: str) -> bool:
        """A sentence sharing most of the fact's words and carrying a negation."""
        fact_words = {w for w in _WORD.findall(fact.lower()) if len(w) > 3}
        if not fact_words:
            return False
        negations = set(self.policy.negation_words)
        for sentence in _SENTENCE_SPLIT.split(text):
            words = set(_WORD.findall(sentence))
            if not words & negations:
                continue
            if len(fact_words & words) * 2 >= len(fact_words):
                return True
        return False

    # --- Aggregation ---

    def summarize(self, records: List[ValidationRecord]) -> ValidationSummary:
        total = len(records)
        if total == 0:
            return ValidationSummary()
        return ValidationSummary(
            total_sources=total,
            valid_sources=sum(1 for r in records if r.validated),
            high_credibility_sources=sum(1 for r in records if r.credibility >= 0.8),
            low_bias_sources=sum(1 for r in records if r.bias <= 0.3),
            fresh_sources=sum(1 for r in records if r.freshness >= 0.7),
            average_credibility=sum(r.credibility for r in records) / total,
            average_bias=sum(r.bias for r in records) / total,
        )

    def recommend(self, records: List[ValidationRecord]) -> List[str]:
        if not records:
            return []
        total = len(records)
        recommendations = []

        if sum(r.credibility for r in records) / total < 0.6:
            recommendations.append("Consider seeking more credible sources")
        if sum(1 for r in records if r.bias > 0.7) > total * 0.5:
            recommendations.append("High bias detected - seek balanced perspectives")
        if sum(1 for r in records if r.freshness < 0.4) > total * 0.3:
            recommendations.append("Many sources are outdated - look for recent information")
        return recommendations

    def _failed_record(self, source: SourceResult, error: Exception) -> ValidationRecord:
        neutral = self.config.neutral_score
        return ValidationRecord(
            url=source.url,
            title=source.title,
            credibility=0.1,
            bias=0.9,
            freshness=neutral,
            consistency=neutral,
            overall_score=overall_score(
                0.1, 0.9, neutral, neutral, self.policy.overall_weights
            ),
            issues=[str(error) or type(error).__name__],
            credibility_level=credibility_level(0.1),
            bias_level=bias_level(0.9),
            validated=False,
            timestamp=self._now(),
        )

    async def health_check(self) -> dict:
        """Validate a sample source end to end."""
        sample = SourceResult(
            url="https://example.com/health-check",
            title="Health Check Article",
            content=(
                "This is a test article about machine learning and "
                "artificial intelligence research."
            ),
            origin_source="health_check",
        )
        try:
            report = await self.validate([sample])
        except Exception as e:
            return {
                "status": "unhealthy",
                "error": str(e),
                "last_test": self._now().isoformat(),
            }
        return {
            "status": "healthy",
            "sources_validated": len(report.results),
            "average_score": report.summary.average_credibility,
            "cache_size": len(self.cache),
            "last_test": self._now().isoformat(),
        }


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)
