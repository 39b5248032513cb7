"""Tests for the Cognitive Loop orchestrator."""

import asyncio
import logging
import time
from datetime import datetime, timezone

import httpx
import pytest

from cognitive_loop.errors import CompilationFailure, ConfigurationError
from cognitive_loop.knowledge.compiler import KnowledgeCompiler, abstraction_id
from cognitive_loop.knowledge.graph import KnowledgeGraph
from cognitive_loop.models.knowledge import (
    Abstraction,
    AbstractionLevel,
    CompilerConfig,
    Concept,
    ConceptType,
)
from cognitive_loop.models.loop import (
    CompilationCounts,
    IterationRecord,
    LoopConfig,
    RetrievalCounts,
)
from cognitive_loop.models.source import Query, QueryContext, SearchOptions, SourceResult
from cognitive_loop.models.validation import ValidationRecord, ValidationSummary
from cognitive_loop.orchestrator.loop import CognitiveLoop, convergence_score
from cognitive_loop.retrieval.client import SourceClient

QUERY = "renewable energy storage"


class _FakeAdapter:
    def __init__(self, name, urls=(), error=None, delay=0.0):
        self.name = name
        self.urls = list(urls)
        self.error = error
        self.delay = delay
        self.queries = []

    async def search(self, http, query, options):
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        results = [
            SourceResult(
                url=url,
                title=f"Storage report {i}",
                content=(
                    f"Renewable energy storage uses lithium batteries and pumped hydro. "
                    f"Grid operators deploy Tesla Megapack systems in 2023. "
                    f"Research shows battery storage improves grid reliability. "
                    f"However, costs vary by region {i}."
                ),
                relevance_score=0.8,
                origin_source=self.name,
            )
            for i, url in enumerate(self.urls)
        ]
        return results, {}


class _FailingCompiler(KnowledgeCompiler):
    def compile(self, raw_texts, context=None, update_graph=True):
        raise CompilationFailure("Knowledge compilation error: boom")


def _make_adapters():
    return (
        _FakeAdapter("alpha", [f"https://alpha.example/{i}" for i in range(3)]),
        _FakeAdapter("beta", [f"https://beta.example/{i}" for i in range(3)]),
    )


def _make_loop(*adapters, config=None, compiler=None) -> CognitiveLoop:
    client = SourceClient(http_client=httpx.AsyncClient(), register_defaults=False)
    for adapter in adapters:
        client.register_adapter(adapter)
    return CognitiveLoop(
        source_client=client,
        knowledge_compiler=(
            compiler if compiler is not None
            else KnowledgeCompiler(CompilerConfig(similarity_threshold=0.2))
        ),
        config=config if config is not None else LoopConfig(credibility_threshold=0.0),
    )


def _make_context(*sources, known_facts=()) -> QueryContext:
    return QueryContext(
        search_options=SearchOptions(sources=list(sources)),
        known_facts=list(known_facts),
    )


def _make_abstraction(concepts, level=AbstractionLevel.LOW, confidence=0.5, title=None):
    return Abstraction(
        id=abstraction_id(concepts),
        title=title or f"{concepts[0]} and Related Concepts",
        concepts=list(concepts),
        central_concept=concepts[0],
        description="test",
        level=level,
        created_at=datetime.now(timezone.utc),
        confidence=confidence,
    )


def _make_record(
    abstractions: int = 0,
    credibility: float = 0.5,
    concepts=(),
    abstraction_list=(),
    iteration: int = 1,
) -> IterationRecord:
    return IterationRecord(
        iteration=iteration,
        query=QUERY,
        retrieval=RetrievalCounts(sources_found=6, sources_validated=6),
        validation=ValidationSummary(total_sources=6, average_credibility=credibility),
        compilation=CompilationCounts(abstractions=abstractions),
        concepts=[
            Concept(term=term, frequency=freq, type=ConceptType.COMMON_NOUN, confidence=0.5)
            for term, freq in concepts
        ],
        abstractions=list(abstraction_list),
    )


def _make_validation(url: str, overall: float) -> ValidationRecord:
    return ValidationRecord(
        url=url, credibility=overall, bias=0.2, freshness=0.5,
        consistency=0.5, overall_score=overall,
        timestamp=datetime.now(timezone.utc),
    )


class TestConvergenceScore:
    def test_first_iteration_counts_only_abstraction_volume(self):
        assert convergence_score(None, _make_record(abstractions=2)) == 0.0
        assert convergence_score(None, _make_record(abstractions=3)) == 0.3

    def test_all_signals(self):
        previous = _make_record(abstractions=2, credibility=0.5)
        latest = _make_record(abstractions=4, credibility=0.6)
        assert convergence_score(previous, latest) == pytest.approx(1.0)

    def test_small_credibility_gain_does_not_count(self):
        previous = _make_record(abstractions=3, credibility=0.5)
        latest = _make_record(abstractions=3, credibility=0.54)
        assert convergence_score(previous, latest) == pytest.approx(0.3)

    def test_monotonic_in_abstraction_count(self):
        previous = _make_record(abstractions=2, credibility=0.5)
        scores = [
            convergence_score(previous, _make_record(abstractions=n, credibility=0.5))
            for n in range(0, 8)
        ]
        assert scores == sorted(scores)

    def test_improvement_never_scores_below_no_improvement(self):
        previous = _make_record(abstractions=1, credibility=0.4)
        improved = _make_record(abstractions=2, credibility=0.5)
        unchanged = _make_record(abstractions=1, credibility=0.4)
        assert convergence_score(previous, improved) >= convergence_score(previous, unchanged)

    def test_score_in_unit_interval(self):
        for n in range(0, 6):
            for cred in (0.0, 0.5, 1.0):
                score = convergence_score(
                    _make_record(abstractions=1, credibility=0.2),
                    _make_record(abstractions=n, credibility=cred),
                )
                assert 0.0 <= score <= 1.0


class TestLoopSteps:
    def setup_method(self):
        self.loop = _make_loop(config=LoopConfig(credibility_threshold=0.7))

    def test_filter_keeps_threshold_and_sorts(self):
        sources = [
            SourceResult(url=f"https://s.example/{i}", origin_source="alpha")
            for i in range(4)
        ]
        records = [
            _make_validation("https://s.example/0", 0.9),
            _make_validation("https://s.example/1", 0.6),
            _make_validation("https://s.example/2", 0.75),
        ]

        accepted = self.loop.filter_validated_sources(sources, records)

        assert [s.url for s in accepted] == ["https://s.example/0", "https://s.example/2"]

    def test_refine_uses_most_frequent_concepts(self):
        record = _make_record(concepts=[
            ("battery", 5), ("grid", 3), ("lithium", 4), ("storage", 1),
        ])

        refined = self.loop.refine_query(Query(text=QUERY), record)

        assert refined.text == f"{QUERY} battery lithium grid"

    def test_refine_always_starts_from_original_query(self):
        original = Query(text=QUERY)
        record = _make_record(concepts=[("battery", 2)])

        first = self.loop.refine_query(original, record)
        second = self.loop.refine_query(original, record)

        assert first.text == second.text == f"{QUERY} battery"

    def test_integrate_knowledge(self):
        shared = _make_abstraction(["battery", "lithium", "cathode"], AbstractionLevel.LOW)
        later = _make_abstraction(
            [f"term{i}" for i in range(10)], AbstractionLevel.HIGH,
        )
        records = [
            _make_record(concepts=[("battery", 3), ("grid", 1)], abstraction_list=[shared]),
            _make_record(
                concepts=[("battery", 1), ("lithium", 2)],
                abstraction_list=[shared, later],
                iteration=2,
            ),
        ]

        knowledge = self.loop.integrate_knowledge(records)

        assert [a.id for a in knowledge.abstractions] == [later.id, shared.id]
        assert knowledge.abstractions[0].confidence == pytest.approx(0.9)
        assert knowledge.abstractions[1].confidence == pytest.approx(0.8)
        assert knowledge.abstractions[1].iterations_present == 2
        assert [(c.term, c.frequency) for c in knowledge.concepts] == [
            ("battery", 2), ("grid", 1), ("lithium", 1),
        ]
        assert knowledge.summary.total_abstractions == 2
        assert knowledge.summary.total_concepts == 3
        assert knowledge.summary.average_confidence == pytest.approx(0.85)

    def test_integrate_deduplicates_by_title(self):
        first = _make_abstraction(["a", "b", "c"], title="Batteries")
        second = _make_abstraction(["a", "b", "d"], title="Batteries")

        knowledge = self.loop.integrate_knowledge([
            _make_record(abstraction_list=[first, second]),
        ])

        assert [a.id for a in knowledge.abstractions] == [first.id]

    def test_integrate_nothing(self):
        knowledge = self.loop.integrate_knowledge([])
        assert knowledge.abstractions == []
        assert knowledge.summary.average_confidence == 0.0


class TestCognitiveLoopExecute:
    @pytest.mark.asyncio
    async def test_end_to_end_with_two_sources(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(alpha, beta)

        result = await loop.execute(QUERY, _make_context("alpha", "beta"))

        assert result.loop_id.startswith("irl_")
        assert 1 <= len(result.iterations) <= 5
        assert result.converged or len(result.iterations) == 5
        assert result.cancelled is False

        first = result.iterations[0]
        assert first.query == QUERY
        assert first.retrieval.sources_found == 6
        assert first.retrieval.sources_validated == 6
        assert first.retrieval.sources_accepted == 6
        assert first.validation.total_sources == 6
        assert first.compilation.concepts > 0
        assert [r.iteration for r in result.iterations] == list(
            range(1, len(result.iterations) + 1)
        )

        stats = loop.get_learning_stats()
        assert stats["total_loops"] == 1
        assert stats["performance_metrics"]["retrieval_accuracy"] > 0
        assert result.metrics.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_concepts_are_deterministic_across_runs(self):
        first = await _make_loop(*_make_adapters()).execute(QUERY, _make_context("alpha", "beta"))
        second = await _make_loop(*_make_adapters()).execute(QUERY, _make_context("alpha", "beta"))

        assert [c.term for c in first.iterations[0].concepts] == [
            c.term for c in second.iterations[0].concepts
        ]
        assert [a.id for a in first.knowledge.abstractions] == [
            a.id for a in second.knowledge.abstractions
        ]

    @pytest.mark.asyncio
    async def test_validation_scores_are_weighted(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(alpha, beta)

        await loop.execute(QUERY, _make_context("alpha", "beta"))

        record = loop.validation_scorer.cache.get("https://alpha.example/0")
        # Credibility: 0.3 * 0.6 + 0.25 * 0.54 + 0.2 * 0.4 + 0.15 * 0.3 + 0.1 * 0.5
        assert record.credibility == pytest.approx(0.49)
        # Only "however" offsets one-sidedness: 0.1 * 0.8
        assert record.bias == pytest.approx(0.08)
        assert record.freshness == 0.5
        assert record.consistency == 0.5
        # 0.4 * 0.49 + 0.3 * 0.92 + 0.2 * 0.5 + 0.1 * 0.5
        assert record.overall_score == pytest.approx(0.622)
        assert record.credibility_level == "low"
        assert record.bias_level == "minimal"

    @pytest.mark.asyncio
    async def test_concurrent_loops_share_one_graph(self):
        config = CompilerConfig(similarity_threshold=0.2)
        solo = _make_loop(*_make_adapters(), compiler=KnowledgeCompiler(config))
        await solo.execute(QUERY, _make_context("alpha", "beta"))
        solo_size = len(solo.knowledge_compiler.knowledge_graph)

        shared = KnowledgeGraph()
        first = _make_loop(*_make_adapters(), compiler=KnowledgeCompiler(config, graph=shared))
        second = _make_loop(*_make_adapters(), compiler=KnowledgeCompiler(config, graph=shared))

        results = await asyncio.gather(
            first.execute(QUERY, _make_context("alpha", "beta")),
            second.execute(QUERY, _make_context("alpha", "beta")),
        )

        assert len(shared) == solo_size
        for result in results:
            assert result.cancelled is False
            for abstraction in result.knowledge.abstractions:
                assert shared.get(abstraction.id) is not None
        assert first.get_learning_stats()["knowledge_graph_size"] == solo_size

    @pytest.mark.asyncio
    async def test_integration_stage_is_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="cognitive_loop.orchestrator.loop")
        loop = _make_loop(*_make_adapters())

        result = await loop.execute(QUERY, _make_context("alpha", "beta"))

        messages = [r.getMessage() for r in caplog.records]
        integrating = [m for m in messages if m.startswith(f"Loop {result.loop_id} integrating")]
        assert integrating == [
            f"Loop {result.loop_id} integrating {len(result.iterations)} iteration(s)"
        ]
        assert messages.index(integrating[0]) < len(messages) - 1
        assert messages[-1].startswith(f"Cognitive loop {result.loop_id} done")

    @pytest.mark.asyncio
    async def test_refined_queries_extend_original(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(alpha, beta, config=LoopConfig(
            credibility_threshold=0.0, max_iterations=3, convergence_threshold=1.0,
        ))

        result = await loop.execute(QUERY, _make_context("alpha", "beta"))

        assert len(result.iterations) == 3
        assert result.converged is False
        assert alpha.queries[0] == QUERY
        for query in alpha.queries[1:]:
            assert query.startswith(QUERY)

    @pytest.mark.asyncio
    async def test_converges_on_first_iteration_with_low_threshold(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(
            alpha, beta,
            config=LoopConfig(credibility_threshold=0.0, convergence_threshold=0.0),
        )

        result = await loop.execute(QUERY, _make_context("alpha", "beta"))

        assert result.converged is True
        assert len(result.iterations) == 1

    @pytest.mark.asyncio
    async def test_all_sources_failing_is_not_an_error(self):
        loop = _make_loop(
            _FakeAdapter("alpha", error=RuntimeError("down")),
            _FakeAdapter("beta", error=RuntimeError("down")),
            config=LoopConfig(max_iterations=2),
        )

        result = await loop.execute(QUERY, _make_context("alpha", "beta"))

        assert len(result.iterations) == 2
        assert result.iterations[0].retrieval.sources_found == 0
        assert result.iterations[0].retrieval.source_errors == {
            "alpha": "down", "beta": "down",
        }
        assert result.knowledge.abstractions == []

    @pytest.mark.asyncio
    async def test_compilation_failure_propagates(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(alpha, beta, compiler=_FailingCompiler())

        with pytest.raises(CompilationFailure):
            await loop.execute(QUERY, _make_context("alpha", "beta"))

    @pytest.mark.asyncio
    async def test_unknown_source_propagates_configuration_error(self):
        loop = _make_loop(*_make_adapters())
        with pytest.raises(ConfigurationError):
            await loop.execute(QUERY, _make_context("alpha", "missing"))


class TestCognitiveLoopCancellation:
    @pytest.mark.asyncio
    async def test_pre_set_event_returns_empty_partial_result(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(alpha, beta)
        cancel = asyncio.Event()
        cancel.set()

        result = await loop.execute(QUERY, _make_context("alpha", "beta"), cancel_event=cancel)

        assert result.cancelled is True
        assert result.converged is False
        assert result.iterations == []
        assert alpha.queries == []

    @pytest.mark.asyncio
    async def test_event_set_mid_retrieval_abandons_stage(self):
        slow = _FakeAdapter("alpha", ["https://alpha.example/0"], delay=10.0)
        loop = _make_loop(slow)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        started = time.monotonic()
        result = await loop.execute(QUERY, _make_context("alpha"), cancel_event=cancel)

        assert time.monotonic() - started < 5.0
        assert result.cancelled is True
        assert result.iterations == []

    @pytest.mark.asyncio
    async def test_timeout_cancels(self):
        slow = _FakeAdapter("alpha", ["https://alpha.example/0"], delay=10.0)
        loop = _make_loop(slow)

        started = time.monotonic()
        result = await loop.execute(QUERY, _make_context("alpha"), timeout=0.05)

        assert time.monotonic() - started < 5.0
        assert result.cancelled is True
        assert result.converged is False


class TestCognitiveLoopQueries:
    def test_query_knowledge_filters_by_confidence(self):
        loop = _make_loop()
        strong = _make_abstraction(["battery", "lithium", "cathode"], confidence=0.9)
        weak = _make_abstraction(["battery", "lead", "acid"], confidence=0.2)
        loop.knowledge_compiler.knowledge_graph.merge([strong, weak])

        result = loop.query_knowledge("battery")

        assert result["query"] == "battery"
        assert [h.key for h in result["results"]] == [strong.id]
        assert result["filtered_count"] == 1
        assert result["total_found"] > 1
        assert "battery" not in result["related_concepts"]
        assert result["related_concepts"] == ["lithium", "cathode"]

    def test_query_knowledge_without_concepts(self):
        loop = _make_loop()
        result = loop.query_knowledge("unknown", include_concepts=False)
        assert result["results"] == []
        assert "related_concepts" not in result

    @pytest.mark.asyncio
    async def test_health_check_healthy_without_graph_writes(self):
        loop = _make_loop(*_make_adapters())

        health = await loop.health_check()

        assert health["status"] == "healthy"
        assert set(health["components"]) == {"retrieval", "compiler", "validation"}
        assert len(loop.knowledge_compiler.knowledge_graph) == 0

    @pytest.mark.asyncio
    async def test_health_check_degraded_when_retrieval_fails(self):
        loop = _make_loop(_FakeAdapter("alpha", error=RuntimeError("down")))
        health = await loop.health_check()
        assert health["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_reset_clears_state(self):
        alpha, beta = _make_adapters()
        loop = _make_loop(alpha, beta)
        await loop.execute(QUERY, _make_context("alpha", "beta"))

        loop.reset()

        stats = loop.get_learning_stats()
        assert stats["total_loops"] == 0
        assert stats["knowledge_graph_size"] == 0
        assert len(loop.validation_scorer.cache) == 0
