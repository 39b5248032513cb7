"""Loop Model — iteration snapshots and the terminal result of a cognitive loop."""

from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from cognitive_loop.models.knowledge import Abstraction, Concept
from cognitive_loop.models.validation import ValidationSummary


class LoopState(str, Enum):
    RETRIEVING = "retrieving"
    VALIDATING = "validating"
    FILTERING = "filtering"
    COMPILING = "compiling"
    ASSESSING_CONVERGENCE = "assessing_convergence"
    REFINING = "refining"
    INTEGRATING = "integrating"
    CANCELLED = "cancelled"
    DONE = "done"


class RetrievalCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    sources_found: int = 0
    sources_validated: int = 0              # Records with validated=True
    sources_accepted: int = 0               # Passed the credibility threshold
    source_errors: Dict[str, str] = {}


class CompilationCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    concepts: int = 0
    relationships: int = 0
    abstractions: int = 0


class IterationRecord(BaseModel):
    """Immutable snapshot of one loop iteration."""

    model_config = ConfigDict(frozen=True)

    iteration: int
    query: str
    retrieval: RetrievalCounts
    validation: ValidationSummary
    compilation: CompilationCounts
    concepts: List[Concept] = []
    abstractions: List[Abstraction] = []
    convergence_score: float = 0.0


class ConceptFrequency(BaseModel):
    term: str
    frequency: int                          # Iterations in which the term was extracted


class KnowledgeSummary(BaseModel):
    total_abstractions: int = 0
    total_concepts: int = 0
    average_confidence: float = 0.0


class IntegratedKnowledge(BaseModel):
    """Knowledge integrated across all iterations of one loop."""

    abstractions: List[Abstraction] = []
    concepts: List[ConceptFrequency] = []
    summary: KnowledgeSummary = KnowledgeSummary()


class PerformanceMetrics(BaseModel):
    """Exponential moving averages over completed loops."""

    retrieval_accuracy: float = 0.0
    compilation_efficiency: float = 0.0
    validation_quality: float = 0.0
    overall_learning: float = 0.0


class LoopMetrics(PerformanceMetrics):
    execution_time_ms: float = 0.0


class LoopResult(BaseModel):
    """Terminal object returned by CognitiveLoop.execute()."""

    loop_id: str
    query: str
    iterations: List[IterationRecord]
    converged: bool = False
    cancelled: bool = False
    knowledge: IntegratedKnowledge
    metrics: LoopMetrics
    timestamp: datetime


class LoopConfig(BaseModel):
    """Configuration for the Cognitive Loop Orchestrator."""

    max_iterations: int = Field(ge=1, default=5)
    convergence_threshold: float = Field(ge=0, le=1, default=0.8)
    credibility_threshold: float = Field(ge=0, le=1, default=0.7)
    learning_rate: float = Field(gt=0, le=1, default=0.1)
    refinement_terms: int = Field(ge=0, default=3)
    history_limit: int = Field(ge=1, default=100)
