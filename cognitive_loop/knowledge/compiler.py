"""
Knowledge Compiler — turns validated source text into linked abstractions.

Pipeline:
  concepts → embeddings → relationships → abstractions → graph update

Behavioral Contract:
- Embeddings are a deterministic function of the concept term
- Relationships are kept only at or above similarity_threshold
- An abstraction needs at least min_abstraction_concepts distinct concepts;
  its id is a hash of the sorted concept set, so the same set always maps
  to the same id
- Any failure inside the pipeline raises CompilationFailure
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from cognitive_loop.errors import CompilationFailure
from cognitive_loop.knowledge.embeddings import cosine_similarity, embed_term
from cognitive_loop.knowledge.extraction import concatenate, extract_concepts
from cognitive_loop.knowledge.graph import KnowledgeGraph
from cognitive_loop.models.knowledge import (
    Abstraction,
    AbstractionLevel,
    CompilationMetadata,
    CompilationResult,
    CompilerConfig,
    Concept,
    ConceptType,
    Embedding,
    GraphHit,
    Relationship,
    RelationshipType,
)
from cognitive_loop.models.source import SourceResult

logger = logging.getLogger(__name__)

_HEALTH_CHECK_CORPUS = [
    "Machine learning is a subset of artificial intelligence.",
    "Neural networks are inspired by biological brains.",
    "Deep learning uses multiple layers of neural networks.",
]


def abstraction_id(concepts: Sequence[str]) -> str:
    """Content hash of a concept set; order-insensitive."""
    digest = hashlib.sha256("|".join(sorted(set(concepts))).encode("utf-8"))
    return f"abs_{digest.hexdigest()[:16]}"


def classify_relationship(a: Concept, b: Concept) -> RelationshipType:
    if a.type == ConceptType.PROPER_NOUN and b.type == ConceptType.PROPER_NOUN:
        return RelationshipType.ENTITY_RELATION
    if a.type == ConceptType.NUMBER or b.type == ConceptType.NUMBER:
        return RelationshipType.QUANTITATIVE
    return RelationshipType.SEMANTIC


def abstraction_level(concept_count: int) -> AbstractionLevel:
    if concept_count >= 10:
        return AbstractionLevel.HIGH
    if concept_count >= 5:
        return AbstractionLevel.MEDIUM
    return AbstractionLevel.LOW


class KnowledgeCompiler:
    """
    Compiles raw text into concepts and abstractions and maintains the
    shared KnowledgeGraph. The graph may be injected to share it between
    compilers.
    """

    def __init__(
        self,
        config: Optional[CompilerConfig] = None,
        graph: Optional[KnowledgeGraph] = None,
    ):
        self.config = config or CompilerConfig()
        self.knowledge_graph = graph if graph is not None else KnowledgeGraph(
            max_size=self.config.max_graph_size,
            keep_ratio=self.config.consolidation_keep_ratio,
        )

    def compile(
        self,
        raw_texts: Sequence[Union[str, SourceResult]],
        context: Optional[dict] = None,
        update_graph: bool = True,
    ) -> CompilationResult:
        """Run the full compilation pipeline over `raw_texts`."""
        try:
            concepts = self.extract_concepts(raw_texts)
            embeddings = self.generate_embeddings(concepts)
            relationships = self.build_relationships(embeddings, concepts)
            abstractions = self.create_abstractions(relationships, concepts)
            if update_graph:
                self.knowledge_graph.merge(abstractions)
        except CompilationFailure:
            raise
        except Exception as e:
            logger.error("Knowledge compilation failed: %s", e)
            raise CompilationFailure(f"Knowledge compilation error: {e}") from e

        return CompilationResult(
            concepts=concepts,
            embeddings=embeddings,
            relationships=relationships,
            abstractions=abstractions,
            metadata=CompilationMetadata(
                compiled_at=datetime.now(timezone.utc),
                source_count=len(raw_texts),
                concept_count=len(concepts),
                abstraction_count=len(abstractions),
            ),
        )

    # --- Pipeline steps ---

    def extract_concepts(
        self, raw_texts: Sequence[Union[str, SourceResult]]
    ) -> List[Concept]:
        return extract_concepts(
            concatenate(raw_texts),
            min_length=self.config.min_concept_length,
            max_concepts=self.config.max_concepts,
            importance_threshold=self.config.importance_threshold,
        )

    def embed(self, term: str) -> np.ndarray:
        return embed_term(term, self.config.embedding_dimensions)

    def generate_embeddings(self, concepts: List[Concept]) -> List[Embedding]:
        return [
            Embedding(
                concept=c.term,
                vector=self.embed(c.term).tolist(),
                dimensions=self.config.embedding_dimensions,
            )
            for c in concepts
        ]

    def build_relationships(
        self, embeddings: List[Embedding], concepts: List[Concept]
    ) -> List[Relationship]:
        """Link every concept pair whose cosine similarity meets the threshold."""
        vectors = [np.asarray(e.vector) for e in embeddings]
        relationships = []

        for i in range(len(embeddings)):
            for j in range(i + 1, len(embeddings)):
                similarity = cosine_similarity(vectors[i], vectors[j])
                if similarity < self.config.similarity_threshold:
                    continue
                relationships.append(Relationship(
                    source=embeddings[i].concept,
                    target=embeddings[j].concept,
                    type=classify_relationship(concepts[i], concepts[j]),
                    strength=min(similarity, 1.0),
                    confidence=min(concepts[i].confidence, concepts[j].confidence),
                ))

        relationships.sort(key=lambda r: r.strength, reverse=True)
        return relationships

    def group_related_concepts(
        self, relationships: List[Relationship]
    ) -> List[List[Relationship]]:
        """
        Greedy grouping: seed a group with the strongest unconsumed
        relationship, then sweep once, adding any relationship that touches
        the group and whose endpoints are not consumed by an earlier group.
        """
        groups = []
        consumed = set()

        for seed in relationships:
            if seed.source in consumed or seed.target in consumed:
                continue

            group = [seed]
            members = {seed.source, seed.target}
            for other in relationships:
                if other is seed:
                    continue
                if other.source in consumed or other.target in consumed:
                    continue
                if other.source in members or other.target in members:
                    group.append(other)
                    members.update((other.source, other.target))

            groups.append(group)
            consumed.update(members)

        return groups

    def create_abstractions(
        self, relationships: List[Relationship], concepts: List[Concept]
    ) -> List[Abstraction]:
        abstractions = []
        for group in self.group_related_concepts(relationships):
            terms = list(dict.fromkeys(t for r in group for t in (r.source, r.target)))
            if len(terms) < self.config.min_abstraction_concepts:
                continue
            abstractions.append(self.generate_abstraction(group, terms))
        return abstractions

    def generate_abstraction(
        self, group: List[Relationship], terms: List[str]
    ) -> Abstraction:
        central = self.find_central_concept(group)
        return Abstraction(
            id=abstraction_id(terms),
            title=f"{central} and Related Concepts",
            concepts=terms,
            central_concept=central,
            description=f"An abstraction encompassing: {', '.join(terms)}",
            level=abstraction_level(len(terms)),
            created_at=datetime.now(timezone.utc),
            confidence=sum(r.confidence for r in group) / len(group),
        )

    def find_central_concept(self, group: List[Relationship]) -> str:
        """The concept with the highest summed relationship strength."""
        scores: Dict[str, float] = {}
        for rel in group:
            scores[rel.source] = scores.get(rel.source, 0.0) + rel.strength
            scores[rel.target] = scores.get(rel.target, 0.0) + rel.strength
        return max(scores, key=scores.get)

    # --- Graph queries ---

    def query_knowledge(self, concept: str, depth: int = 2) -> List[GraphHit]:
        """Bounded breadth-first traversal from a concept. Read-only."""
        return self.knowledge_graph.traverse(concept, depth)

    def health_check(self) -> dict:
        """Compile a fixed corpus without writing to the graph."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            result = self.compile(_HEALTH_CHECK_CORPUS, update_graph=False)
        except CompilationFailure as e:
            return {"status": "unhealthy", "error": str(e), "last_test": now}
        return {
            "status": "healthy",
            "concepts_extracted": len(result.concepts),
            "abstractions_created": len(result.abstractions),
            "graph_size": len(self.knowledge_graph),
            "last_test": now,
        }
