"""Cognitive loop data models."""

from cognitive_loop.models.knowledge import (
    Abstraction,
    AbstractionLevel,
    CompilationMetadata,
    CompilationResult,
    CompilerConfig,
    Concept,
    ConceptNode,
    ConceptType,
    Embedding,
    GraphHit,
    Relationship,
    RelationshipType,
)
from cognitive_loop.models.loop import (
    CompilationCounts,
    ConceptFrequency,
    IntegratedKnowledge,
    IterationRecord,
    KnowledgeSummary,
    LoopConfig,
    LoopMetrics,
    LoopResult,
    LoopState,
    PerformanceMetrics,
    RetrievalCounts,
)
from cognitive_loop.models.source import (
    Query,
    QueryContext,
    ScrapedPage,
    SearchOptions,
    SearchResponse,
    SourceClientConfig,
    SourceDiagnostic,
    SourceResult,
)
from cognitive_loop.models.validation import (
    ScoringPolicy,
    ValidationConfig,
    ValidationRecord,
    ValidationReport,
    ValidationSummary,
)

__all__ = [
    "Abstraction",
    "AbstractionLevel",
    "CompilationCounts",
    "CompilationMetadata",
    "CompilationResult",
    "CompilerConfig",
    "Concept",
    "ConceptFrequency",
    "ConceptNode",
    "ConceptType",
    "Embedding",
    "GraphHit",
    "IntegratedKnowledge",
    "IterationRecord",
    "KnowledgeSummary",
    "LoopConfig",
    "LoopMetrics",
    "LoopResult",
    "LoopState",
    "PerformanceMetrics",
    "Query",
    "QueryContext",
    "Relationship",
    "RelationshipType",
    "RetrievalCounts",
    "ScoringPolicy",
    "ScrapedPage",
    "SearchOptions",
    "SearchResponse",
    "SourceClientConfig",
    "SourceDiagnostic",
    "SourceResult",
    "ValidationConfig",
    "ValidationRecord",
    "ValidationReport",
    "ValidationSummary",
]
