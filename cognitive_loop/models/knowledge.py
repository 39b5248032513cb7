"""Knowledge Model — concepts, their embeddings and the abstractions built from them."""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class ConceptType(str, Enum):
    NUMBER = "number"
    ACRONYM = "acronym"
    PROPER_NOUN = "proper_noun"
    COMMON_NOUN = "common_noun"


class RelationshipType(str, Enum):
    ENTITY_RELATION = "entity_relation"     # Both endpoints are proper nouns
    QUANTITATIVE = "quantitative"           # Either endpoint is a number
    SEMANTIC = "semantic"


class AbstractionLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Concept(BaseModel):
    """An extracted term of interest."""

    term: str
    frequency: int = 0                      # Sentences containing the term
    type: ConceptType
    confidence: float = Field(ge=0, le=1)


class Embedding(BaseModel):
    """Pseudo-embedding of a concept term."""

    concept: str
    vector: List[float]
    dimensions: int


class Relationship(BaseModel):
    """A similarity link between two concepts."""

    source: str
    target: str
    type: RelationshipType
    strength: float = Field(ge=0, le=1)     # Cosine similarity
    confidence: float = Field(ge=0, le=1)


class Abstraction(BaseModel):
    """A higher-level knowledge unit over a connected group of concepts."""

    id: str                                 # Content hash of the sorted concept set
    title: str
    concepts: List[str]
    central_concept: str
    description: str
    level: AbstractionLevel
    created_at: datetime
    confidence: float = Field(ge=0, le=1, default=0.5)
    iterations_present: Optional[int] = None  # Set during loop integration


class CompilationMetadata(BaseModel):
    compiled_at: datetime
    source_count: int
    concept_count: int
    abstraction_count: int


class CompilationResult(BaseModel):
    """Everything one compile() call produced."""

    concepts: List[Concept]
    embeddings: List[Embedding]
    relationships: List[Relationship]
    abstractions: List[Abstraction]
    metadata: CompilationMetadata


class ConceptNode(BaseModel):
    """Graph entry for a concept: which abstractions reference it."""

    term: str
    abstractions: List[str] = []


class GraphHit(BaseModel):
    """One node reached by a knowledge graph traversal."""

    key: str
    kind: str                               # "concept" | "abstraction"
    depth: int
    node: Union[Abstraction, ConceptNode]


class CompilerConfig(BaseModel):
    """Configuration for the Knowledge Compiler."""

    min_concept_length: int = Field(ge=1, default=3)
    max_concepts: int = Field(ge=1, default=50)
    embedding_dimensions: int = Field(ge=1, default=384)
    similarity_threshold: float = Field(ge=0, le=1, default=0.7)
    importance_threshold: float = Field(ge=0, default=0.5)
    min_abstraction_concepts: int = Field(ge=2, default=3)
    max_graph_size: int = Field(ge=1, default=10_000)
    consolidation_keep_ratio: float = Field(gt=0, le=1, default=0.8)
