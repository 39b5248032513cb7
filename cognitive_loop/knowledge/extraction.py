"""
Concept extraction: per-sentence TF-IDF terms unioned with simple entity patterns.
"""

import math
import re
from collections import Counter
from typing import Iterable, List, Sequence, Union

from cognitive_loop.models.knowledge import Concept, ConceptType
from cognitive_loop.models.source import SourceResult

STOPWORDS = frozenset("""
a about above after again against all also am an and any are aren as at be
because been before being below between both but by can cannot could did
didn do does doesn doing don down during each few for from further had hasn
has have haven having he her here hers herself him himself his how i if in
into is isn it its itself just let me more most my myself no nor not now of
off on once only or other ought our ours ourselves out over own same shan
she should shouldn so some such than that the their theirs them themselves
then there these they this those through to too under until up very was
wasn we were weren what when where which while who whom why will with won
would wouldn you your yours yourself yourselves s t
""".split())

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_TOKEN = re.compile(r"[a-z0-9_]+")
_ENTITY_PATTERNS = (
    re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"),     # Capitalized bigrams
    re.compile(r"\b\d{4}\b"),                       # Years
    re.compile(r"\b[A-Z]{2,}\b"),                   # Acronyms
)


def concatenate(raw_texts: Sequence[Union[str, SourceResult]]) -> str:
    """Join raw inputs; SourceResults contribute content, else snippet."""
    parts = []
    for item in raw_texts:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, SourceResult):
            parts.append(item.content or item.snippet or "")
        else:
            raise TypeError(
                f"Cannot compile input of type {type(item).__name__}; "
                "expected str or SourceResult"
            )
    return " ".join(parts)


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def tokenize(sentence: str) -> List[str]:
    return [t for t in _TOKEN.findall(sentence.lower()) if t not in STOPWORDS]


def tfidf_terms(sentences: List[str], threshold: float = 0.5) -> List[str]:
    """
    Terms whose TF-IDF exceeds `threshold` in at least one sentence, with
    each sentence treated as a document and idf = 1 + ln(N / (1 + df)).
    """
    documents = [tokenize(s) for s in sentences]
    n_docs = len(documents)
    doc_freq = Counter(term for doc in documents for term in set(doc))

    terms: List[str] = []
    seen = set()
    for doc in documents:
        counts = Counter(doc)
        scored = [
            (term, tf * (1 + math.log(n_docs / (1 + doc_freq[term]))))
            for term, tf in counts.items()
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        for term, score in scored:
            if score > threshold and term not in seen:
                seen.add(term)
                terms.append(term)
    return terms


def extract_entities(sentences: Iterable[str]) -> List[str]:
    """Capitalized bigrams, 4-digit years and acronyms, in order of appearance."""
    entities: List[str] = []
    seen = set()
    for sentence in sentences:
        for pattern in _ENTITY_PATTERNS:
            for match in pattern.findall(sentence):
                if match not in seen:
                    seen.add(match)
                    entities.append(match)
    return entities


def classify_concept(term: str) -> ConceptType:
    if re.match(r"^\d", term):
        return ConceptType.NUMBER
    if re.match(r"^[A-Z]{2,}$", term):
        return ConceptType.ACRONYM
    if re.match(r"^[A-Z]", term):
        return ConceptType.PROPER_NOUN
    return ConceptType.COMMON_NOUN


def term_frequency(term: str, sentences: List[str]) -> int:
    """Number of sentences mentioning the term, case-insensitively."""
    needle = term.lower()
    return sum(1 for s in sentences if needle in s.lower())


def extract_concepts(
    text: str,
    min_length: int = 3,
    max_concepts: int = 50,
    importance_threshold: float = 0.5,
) -> List[Concept]:
    sentences = split_sentences(text)
    if not sentences:
        return []

    candidates = list(dict.fromkeys(
        tfidf_terms(sentences, importance_threshold) + extract_entities(sentences)
    ))
    terms = [t for t in candidates if len(t) >= min_length][:max_concepts]

    concepts = []
    for term in terms:
        frequency = term_frequency(term, sentences)
        concepts.append(Concept(
            term=term,
            frequency=frequency,
            type=classify_concept(term),
            confidence=min(frequency / len(sentences) + len(term) / 50, 1.0),
        ))
    return concepts
