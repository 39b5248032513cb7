"""Tests for the Learning Engine."""

from datetime import datetime, timezone

import pytest

from cognitive_loop.learning.engine import LearningEngine
from cognitive_loop.models.loop import (
    CompilationCounts,
    IntegratedKnowledge,
    IterationRecord,
    LoopMetrics,
    LoopResult,
    RetrievalCounts,
)
from cognitive_loop.models.validation import ValidationSummary


def _make_iteration(
    found: int = 10,
    validated: int = 8,
    abstractions: int = 2,
    credibility: float = 0.6,
) -> IterationRecord:
    return IterationRecord(
        iteration=1,
        query="renewable energy storage",
        retrieval=RetrievalCounts(sources_found=found, sources_validated=validated),
        validation=ValidationSummary(
            total_sources=found,
            valid_sources=validated,
            average_credibility=credibility,
        ),
        compilation=CompilationCounts(abstractions=abstractions),
    )


def _make_loop_result(iterations: int = 2, converged: bool = True) -> LoopResult:
    return LoopResult(
        loop_id="irl_test",
        query="renewable energy storage",
        iterations=[_make_iteration() for _ in range(iterations)],
        converged=converged,
        knowledge=IntegratedKnowledge(),
        metrics=LoopMetrics(),
        timestamp=datetime.now(timezone.utc),
    )


class TestLearningEngine:
    def test_moving_average_update(self):
        engine = LearningEngine(learning_rate=0.1)

        metrics = engine.update_from_iteration(_make_iteration())

        assert metrics.retrieval_accuracy == pytest.approx(0.08)
        assert metrics.compilation_efficiency == pytest.approx(0.025)
        assert metrics.validation_quality == pytest.approx(0.06)
        assert metrics.overall_learning == pytest.approx((0.08 + 0.025 + 0.06) / 3)

    def test_repeated_updates_approach_observed_value(self):
        engine = LearningEngine(learning_rate=0.5)
        for _ in range(20):
            engine.update_from_iteration(_make_iteration(found=10, validated=10))
        assert engine.metrics.retrieval_accuracy == pytest.approx(1.0, abs=1e-4)

    def test_no_sources_found_counts_as_zero_accuracy(self):
        engine = LearningEngine()
        metrics = engine.update_from_iteration(_make_iteration(found=0, validated=0))
        assert metrics.retrieval_accuracy == 0.0

    def test_metrics_are_returned_as_copies(self):
        engine = LearningEngine()
        engine.metrics.retrieval_accuracy = 0.99
        assert engine.metrics.retrieval_accuracy == 0.0

    def test_history_is_bounded(self):
        engine = LearningEngine(history_limit=2)
        for _ in range(3):
            engine.record_loop(_make_loop_result())
        assert len(engine.history) == 2

    def test_stats(self):
        engine = LearningEngine()
        engine.record_loop(_make_loop_result(iterations=2, converged=True))
        engine.record_loop(_make_loop_result(iterations=4, converged=False))

        stats = engine.get_stats(knowledge_graph_size=7)

        assert stats["total_loops"] == 2
        assert stats["average_iterations"] == 3.0
        assert stats["convergence_rate"] == 0.5
        assert stats["knowledge_graph_size"] == 7
        assert set(stats["performance_metrics"]) == {
            "retrieval_accuracy", "compilation_efficiency",
            "validation_quality", "overall_learning",
        }

    def test_empty_stats(self):
        stats = LearningEngine().get_stats()
        assert stats["total_loops"] == 0
        assert stats["average_iterations"] == 0.0
        assert stats["convergence_rate"] == 0.0

    def test_reset(self):
        engine = LearningEngine()
        engine.update_from_iteration(_make_iteration())
        engine.record_loop(_make_loop_result())

        engine.reset()

        assert engine.history == []
        assert engine.metrics.overall_learning == 0.0
