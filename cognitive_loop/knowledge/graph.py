"""
Knowledge Graph — the shared store of concepts and abstractions.

Written only by the Knowledge Compiler (merge/consolidate); read by
traversal queries. All access goes through one lock so concurrent loop
invocations cannot corrupt it.
"""

from collections import deque
from threading import RLock
from typing import Dict, List, Optional, Union

from cognitive_loop.models.knowledge import Abstraction, ConceptNode, GraphHit

GraphNode = Union[Abstraction, ConceptNode]


class KnowledgeGraph:
    """
    In-memory graph keyed by abstraction id or concept term.
    Grows until max_size, then keeps the most-referenced entries.
    """

    def __init__(self, max_size: int = 10_000, keep_ratio: float = 0.8):
        self.max_size = max_size
        self.keep_ratio = keep_ratio
        self._nodes: Dict[str, GraphNode] = {}
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    def get(self, key: str) -> Optional[GraphNode]:
        with self._lock:
            node = self._nodes.get(key)
            return node.model_copy(deep=True) if node is not None else None

    def find_concept_key(self, term: str) -> Optional[str]:
        """Resolve a concept term exactly, falling back to a case-insensitive match."""
        with self._lock:
            node = self._nodes.get(term)
            if isinstance(node, ConceptNode):
                return term
            lowered = term.lower()
            for key, candidate in self._nodes.items():
                if isinstance(candidate, ConceptNode) and key.lower() == lowered:
                    return key
        return None

    def merge(self, abstractions: List[Abstraction]) -> int:
        """
        Add abstractions and link their concepts to them.
        Consolidates when the graph exceeds max_size. Returns the new size.
        """
        with self._lock:
            for abstraction in abstractions:
                self._nodes[abstraction.id] = abstraction
                for term in abstraction.concepts:
                    node = self._nodes.get(term)
                    if isinstance(node, ConceptNode):
                        if abstraction.id not in node.abstractions:
                            node.abstractions.append(abstraction.id)
                    elif node is None:
                        self._nodes[term] = ConceptNode(
                            term=term, abstractions=[abstraction.id]
                        )

            if len(self._nodes) > self.max_size:
                self.consolidate()
            return len(self._nodes)

    def reference_count(self, key: str) -> int:
        """
        How many abstraction links an entry carries: a concept counts the
        abstractions referencing it, an abstraction counts its concepts.
        """
        with self._lock:
            node = self._nodes.get(key)
            if isinstance(node, ConceptNode):
                return len(node.abstractions)
            if isinstance(node, Abstraction):
                return len(node.concepts)
            return 0

    def consolidate(self) -> int:
        """
        Keep the most-referenced keep_ratio of entries and drop links to
        anything removed. Returns the number of entries removed.
        """
        with self._lock:
            ranked = sorted(self._nodes, key=self.reference_count, reverse=True)
            keep = int(len(ranked) * self.keep_ratio)
            kept = {key: self._nodes[key] for key in ranked[:keep]}

            for node in kept.values():
                if isinstance(node, ConceptNode):
                    node.abstractions = [a for a in node.abstractions if a in kept]

            removed = len(self._nodes) - len(kept)
            self._nodes = kept
            return removed

    def traverse(self, concept: str, depth: int = 2) -> List[GraphHit]:
        """
        Breadth-first walk from a concept through its abstractions to their
        concepts, stopping at `depth`. Each node is visited once.
        """
        with self._lock:
            start = self.find_concept_key(concept)
            if start is None:
                return []

            hits: List[GraphHit] = []
            visited = {start}
            frontier = deque([(start, 0)])

            while frontier:
                key, level = frontier.popleft()
                node = self._nodes.get(key)
                if node is None:
                    continue
                hits.append(GraphHit(
                    key=key,
                    kind="abstraction" if isinstance(node, Abstraction) else "concept",
                    depth=level,
                    node=node.model_copy(deep=True),
                ))
                if level >= depth:
                    continue

                neighbours = (
                    node.abstractions if isinstance(node, ConceptNode) else node.concepts
                )
                for neighbour in neighbours:
                    if neighbour not in visited and neighbour in self._nodes:
                        visited.add(neighbour)
                        frontier.append((neighbour, level + 1))
            return hits

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()
