"""Validation Model — per-source trust scores and the policy that produces them."""

from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel, Field


class ValidationRecord(BaseModel):
    """Scores for one source. Cached by URL."""

    url: str
    title: str = ""
    credibility: float = Field(ge=0, le=1)
    bias: float = Field(ge=0, le=1)
    freshness: float = Field(ge=0, le=1)
    consistency: float = Field(ge=0, le=1)
    overall_score: float = Field(ge=0, le=1)
    issues: List[str] = []                  # Degraded sub-checks, "check: reason"
    bias_details: Dict[str, float] = {}
    credibility_factors: Dict[str, float] = {}
    credibility_level: str = ""             # high | medium | low | very_low
    bias_level: str = ""                    # high | medium | low | minimal
    validated: bool = True
    timestamp: datetime


class ValidationSummary(BaseModel):
    """Batch-level aggregates over a set of ValidationRecords."""

    total_sources: int = 0
    valid_sources: int = 0
    high_credibility_sources: int = 0
    low_bias_sources: int = 0
    fresh_sources: int = 0
    average_credibility: float = 0.0
    average_bias: float = 0.0


class ValidationReport(BaseModel):
    """Output of one validate() call."""

    results: List[ValidationRecord]
    summary: ValidationSummary
    recommendations: List[str] = []


class ScoringPolicy(BaseModel):
    """
    Heuristic lexicons, domain lists and weights for source scoring.

    These are tunable defaults, not verified semantics.
    """

    reliable_domains: List[str] = [
        "wikipedia.org", "bbc.com", "reuters.com", "apnews.com",
        "nature.com", "science.org", "nih.gov", "who.int",
    ]
    reliable_tlds: List[str] = ["edu", "gov", "org"]
    unreliable_domains: List[str] = [
        "facebook.com", "twitter.com", "reddit.com",
        "buzzfeed.com", "dailymail.co.uk",
    ]
    academic_hosts: List[str] = ["scholar.google", "semanticscholar", "arxiv"]
    fact_check_sites: List[str] = ["snopes.com", "factcheck.org", "politifact.com"]

    professional_words: List[str] = [
        "according", "research", "study", "evidence", "analysis",
    ]
    expertise_words: List[str] = [
        "phd", "professor", "researcher", "expert", "scientist",
        "doctor", "specialist", "authority",
    ]
    left_words: List[str] = ["liberal", "progressive", "left-wing", "democrat"]
    right_words: List[str] = ["conservative", "right-wing", "republican", "traditional"]
    sensational_words: List[str] = [
        "shocking", "unbelievable", "incredible", "amazing", "outrageous",
        "scandal", "crisis", "disaster", "catastrophe", "breaking",
    ]
    emotional_words: List[str] = [
        "hate", "love", "fear", "anger", "joy", "sadness",
        "terrible", "wonderful", "awful", "amazing",
    ]
    balance_phrases: List[str] = [
        "however", "although", "on the other hand", "conversely",
    ]
    negation_words: List[str] = ["not", "false", "incorrect", "wrong", "never"]

    credibility_weights: Dict[str, float] = {
        "domain_authority": 0.3,
        "content_quality": 0.25,
        "citations": 0.2,
        "author_expertise": 0.15,
        "fact_checking": 0.1,
    }
    bias_weights: Dict[str, float] = {
        "political": 0.4,
        "sensationalism": 0.3,
        "emotional": 0.2,
        "one_sided": 0.1,
    }
    overall_weights: Dict[str, float] = {
        "credibility": 0.4,
        "bias": 0.3,                        # Applied to (1 - bias)
        "freshness": 0.2,
        "consistency": 0.1,
    }


class ValidationConfig(BaseModel):
    """Configuration for the Validation Scorer."""

    max_validation_requests: int = Field(ge=1, default=10)
    cache_ttl_seconds: float = Field(gt=0, default=3600.0)
    neutral_score: float = Field(ge=0, le=1, default=0.5)
    policy: ScoringPolicy = ScoringPolicy()
