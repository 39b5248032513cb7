"""
Cognitive Loop — iterative retrieval, validation and knowledge compilation.

States (per execute() call):
  RETRIEVING → VALIDATING → FILTERING → COMPILING → ASSESSING_CONVERGENCE
    → (REFINING → RETRIEVING | INTEGRATING) → DONE

A cancellation event or timeout moves the loop to CANCELLED from any
stage; the iterations completed so far are integrated and returned.

Error policy:
  - Source and validation-check failures are absorbed by their components
  - CompilationFailure and ConfigurationError propagate to the caller
"""

import asyncio
import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar, Union
from uuid import uuid4

from cognitive_loop.config import build_config
from cognitive_loop.errors import CognitiveLoopError
from cognitive_loop.knowledge.compiler import KnowledgeCompiler
from cognitive_loop.learning.engine import LearningEngine
from cognitive_loop.models.knowledge import Abstraction, AbstractionLevel, GraphHit
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
    RetrievalCounts,
)
from cognitive_loop.models.source import (
    Query,
    QueryContext,
    SearchResponse,
    SourceResult,
)
from cognitive_loop.models.validation import ValidationRecord, ValidationReport
from cognitive_loop.retrieval.client import SourceClient
from cognitive_loop.validation.scorer import ValidationScorer

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LEVEL_BONUS = {
    AbstractionLevel.LOW: 0.1,
    AbstractionLevel.MEDIUM: 0.2,
    AbstractionLevel.HIGH: 0.3,
}


class LoopCancelled(Exception):
    """Raised inside execute() when the cancellation signal fires."""
    pass


def convergence_score(
    previous: Optional[IterationRecord], latest: IterationRecord
) -> float:
    """
    0.4 if abstractions grew, 0.3 if mean credibility improved by more
    than 0.05, 0.3 if at least three abstractions exist. Without a
    previous iteration only the last term can apply.
    """
    score = 0.0
    if previous is not None:
        if latest.compilation.abstractions > previous.compilation.abstractions:
            score += 0.4
        improvement = (
            latest.validation.average_credibility
            - previous.validation.average_credibility
        )
        if improvement > 0.05:
            score += 0.3
    if latest.compilation.abstractions >= 3:
        score += 0.3
    return round(score, 10)


class CognitiveLoop:
    """
    Drives retrieval → validation → compilation iterations until the
    accumulated knowledge converges or max_iterations is reached.
    """

    def __init__(
        self,
        source_client: Optional[SourceClient] = None,
        validation_scorer: Optional[ValidationScorer] = None,
        knowledge_compiler: Optional[KnowledgeCompiler] = None,
        learning_engine: Optional[LearningEngine] = None,
        config: Union[LoopConfig, dict, None] = None,
    ):
        if not isinstance(config, LoopConfig):
            config = build_config(LoopConfig, config)
        self.config = config
        self.source_client = source_client if source_client is not None else SourceClient()
        self.validation_scorer = (
            validation_scorer if validation_scorer is not None else ValidationScorer()
        )
        self.knowledge_compiler = (
            knowledge_compiler if knowledge_compiler is not None else KnowledgeCompiler()
        )
        if learning_engine is None:
            learning_engine = LearningEngine(
                learning_rate=self.config.learning_rate,
                history_limit=self.config.history_limit,
            )
        self.learning = learning_engine

    async def execute(
        self,
        query: str,
        context: Optional[QueryContext] = None,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> LoopResult:
        """
        Run the full cognitive loop for a query.

        Returns a LoopResult. If `cancel_event` is set or `timeout` seconds
        elapse, no further calls are issued and a partial result with
        cancelled=True is returned.
        """
        loop_id = f"irl_{uuid4().hex[:12]}"
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None
        context = context or QueryContext()
        original = Query(text=query, context=context)
        current = original

        records: List[IterationRecord] = []
        converged = False
        cancelled = False
        state = LoopState.RETRIEVING

        logger.info("Starting cognitive loop %s for %r", loop_id, query)

        try:
            while len(records) < self.config.max_iterations:
                iteration = len(records) + 1
                logger.debug(
                    "Loop %s iteration %d/%d: %r",
                    loop_id, iteration, self.config.max_iterations, current.text,
                )

                # 1. Retrieve
                state = LoopState.RETRIEVING
                search = await self._run_stage(
                    cancel_event, deadline,
                    self.source_client.search, current.text, context.search_options,
                )

                # 2. Validate
                state = LoopState.VALIDATING
                validation = await self._run_stage(
                    cancel_event, deadline,
                    self.validation_scorer.validate, search.results, context,
                )

                # 3. Filter
                state = LoopState.FILTERING
                accepted = self.filter_validated_sources(search.results, validation.results)

                # 4. Compile (CPU-bound; runs off the event loop)
                state = LoopState.COMPILING
                compilation = await self._run_stage(
                    cancel_event, deadline,
                    asyncio.to_thread,
                    self.knowledge_compiler.compile,
                    accepted,
                    {"known_facts": list(context.known_facts)},
                )

                # 5. Assess convergence
                state = LoopState.ASSESSING_CONVERGENCE
                record = self._build_iteration_record(
                    iteration, current, search, validation, accepted, compilation,
                    previous=records[-1] if records else None,
                )
                records.append(record)

                if record.convergence_score >= self.config.convergence_threshold:
                    converged = True
                    break

                # 6. Refine for the next pass
                if len(records) < self.config.max_iterations:
                    state = LoopState.REFINING
                    current = self.refine_query(original, record)

        except LoopCancelled:
            cancelled = True
            logger.warning(
                "Cognitive loop %s cancelled during %s after %d iteration(s)",
                loop_id, state.value, len(records),
            )
        except CognitiveLoopError as e:
            logger.error("Cognitive loop %s failed during %s: %s", loop_id, state.value, e)
            raise
        except Exception as e:
            logger.error("Cognitive loop %s failed during %s: %s", loop_id, state.value, e)
            raise CognitiveLoopError(f"Cognitive loop {loop_id} failed: {e}") from e

        state = LoopState.INTEGRATING
        logger.debug(
            "Loop %s %s %d iteration(s)", loop_id, state.value, len(records)
        )
        knowledge = self.integrate_knowledge(records)
        if records:
            self.learning.update_from_iteration(records[-1])

        elapsed_ms = (time.monotonic() - started) * 1000
        result = LoopResult(
            loop_id=loop_id,
            query=query,
            iterations=records,
            converged=converged,
            cancelled=cancelled,
            knowledge=knowledge,
            metrics=LoopMetrics(
                execution_time_ms=elapsed_ms,
                **self.learning.metrics.model_dump(),
            ),
            timestamp=datetime.now(timezone.utc),
        )
        self.learning.record_loop(result)

        state = LoopState.CANCELLED if cancelled else LoopState.DONE
        logger.info(
            "Cognitive loop %s %s: %d iteration(s), converged=%s (%.0fms)",
            loop_id, state.value, len(records), converged, elapsed_ms,
        )
        return result

    async def _run_stage(
        self,
        cancel_event: Optional[asyncio.Event],
        deadline: Optional[float],
        func: Callable[..., Awaitable[T]],
        *args,
    ) -> T:
        """
        Await one stage, racing it against the cancellation event and the
        deadline. A losing stage task is cancelled and abandoned.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise LoopCancelled()
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LoopCancelled()

        task = asyncio.ensure_future(func(*args))
        waiters = {task}
        cancel_waiter = None
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        raise LoopCancelled()

    def filter_validated_sources(
        self,
        sources: List[SourceResult],
        records: List[ValidationRecord],
    ) -> List[SourceResult]:
        """Sources whose overall score meets the threshold, best first."""
        by_url: Dict[str, ValidationRecord] = {r.url: r for r in records}
        threshold = self.config.credibility_threshold
        accepted = [
            s for s in sources
            if s.url in by_url and by_url[s.url].overall_score >= threshold
        ]
        accepted.sort(key=lambda s: by_url[s.url].overall_score, reverse=True)
        return accepted

    def refine_query(self, original: Query, latest: IterationRecord) -> Query:
        """Original query plus the latest iteration's most frequent concept terms."""
        top = sorted(latest.concepts, key=lambda c: c.frequency, reverse=True)
        terms = [c.term for c in top[: self.config.refinement_terms]]
        return original.refine(terms)

    def _build_iteration_record(
        self,
        iteration: int,
        query: Query,
        search: SearchResponse,
        validation: ValidationReport,
        accepted: List[SourceResult],
        compilation,
        previous: Optional[IterationRecord],
    ) -> IterationRecord:
        record = IterationRecord(
            iteration=iteration,
            query=query.text,
            retrieval=RetrievalCounts(
                sources_found=len(search.results),
                sources_validated=validation.summary.valid_sources,
                sources_accepted=len(accepted),
                source_errors=search.errors,
            ),
            validation=validation.summary,
            compilation=CompilationCounts(
                concepts=len(compilation.concepts),
                relationships=len(compilation.relationships),
                abstractions=len(compilation.abstractions),
            ),
            concepts=compilation.concepts,
            abstractions=compilation.abstractions,
        )
        return record.model_copy(
            update={"convergence_score": convergence_score(previous, record)}
        )

    def integrate_knowledge(self, records: List[IterationRecord]) -> IntegratedKnowledge:
        """Merge abstractions and concepts from every iteration into one ranked set."""
        if not records:
            return IntegratedKnowledge()

        unique: List[Abstraction] = []
        seen = set()
        for record in records:
            for abstraction in record.abstractions:
                if abstraction.id in seen or abstraction.title in seen:
                    continue
                seen.update((abstraction.id, abstraction.title))
                unique.append(abstraction)

        ranked = []
        for abstraction in unique:
            present = self._count_iterations_with(abstraction, records)
            confidence = min(
                1.0,
                0.5 + _LEVEL_BONUS[abstraction.level] + 0.2 * present / len(records),
            )
            ranked.append(abstraction.model_copy(
                update={"confidence": confidence, "iterations_present": present}
            ))
        ranked.sort(key=lambda a: a.confidence, reverse=True)

        frequency: Counter = Counter()
        for record in records:
            frequency.update(dict.fromkeys((c.term for c in record.concepts), 1))
        concepts = [
            ConceptFrequency(term=term, frequency=count)
            for term, count in frequency.items()
        ]
        concepts.sort(key=lambda c: c.frequency, reverse=True)

        return IntegratedKnowledge(
            abstractions=ranked,
            concepts=concepts,
            summary=KnowledgeSummary(
                total_abstractions=len(ranked),
                total_concepts=len(concepts),
                average_confidence=(
                    sum(a.confidence for a in ranked) / len(ranked) if ranked else 0.0
                ),
            ),
        )

    def _count_iterations_with(
        self, abstraction: Abstraction, records: List[IterationRecord]
    ) -> int:
        return sum(
            1 for r in records
            if any(
                a.id == abstraction.id or a.title == abstraction.title
                for a in r.abstractions
            )
        )

    # --- Read-only queries ---

    def query_knowledge(
        self,
        concept: str,
        max_results: int = 10,
        min_confidence: float = 0.3,
        include_concepts: bool = True,
    ) -> dict:
        """Query accumulated knowledge. No network I/O, no writes."""
        hits = self.knowledge_compiler.query_knowledge(concept, depth=2)
        matching = [
            h for h in hits
            if isinstance(h.node, Abstraction) and h.node.confidence >= min_confidence
        ]
        matching.sort(key=lambda h: h.node.confidence, reverse=True)
        filtered = matching[:max_results]

        result = {
            "query": concept,
            "results": filtered,
            "total_found": len(hits),
            "filtered_count": len(filtered),
        }
        if include_concepts:
            result["related_concepts"] = self._related_concepts(concept, filtered)
        return result

    def _related_concepts(self, concept: str, hits: List[GraphHit]) -> List[str]:
        related: List[str] = []
        for hit in hits:
            for term in hit.node.concepts:
                if term.lower() != concept.lower() and term not in related:
                    related.append(term)
        return related[:10]

    def get_learning_stats(self) -> dict:
        return self.learning.get_stats(
            knowledge_graph_size=len(self.knowledge_compiler.knowledge_graph)
        )

    async def health_check(self) -> dict:
        """
        Check every component. Never writes to the knowledge graph; the
        validation cache may gain the health-check entry.
        """
        now = datetime.now(timezone.utc).isoformat()
        try:
            retrieval, validation = await asyncio.gather(
                self.source_client.health_check(),
                self.validation_scorer.health_check(),
            )
            compiler = await asyncio.to_thread(self.knowledge_compiler.health_check)
        except Exception as e:
            return {"status": "unhealthy", "error": str(e), "last_test": now}

        components = {
            "retrieval": retrieval,
            "compiler": compiler,
            "validation": validation,
        }
        statuses = {name: c["status"] for name, c in components.items()}
        if all(s == "healthy" for s in statuses.values()):
            status = "healthy"
        elif "unhealthy" in (statuses["compiler"], statuses["validation"]):
            status = "unhealthy"
        else:
            status = "degraded"

        return {
            "status": status,
            "components": components,
            "loop_stats": self.get_learning_stats(),
            "last_test": now,
        }

    def reset(self) -> None:
        """Clear history, metrics, the knowledge graph and the validation cache."""
        self.learning.reset()
        self.knowledge_compiler.knowledge_graph.clear()
        self.validation_scorer.cache.clear()

    async def aclose(self) -> None:
        await self.source_client.aclose()
