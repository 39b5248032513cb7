"""
Learning Engine — performance metrics and loop history.

Observational only: the metrics tracked here are exposed for monitoring
and never feed back into loop decisions.

Metrics (exponential moving average, rate = learning_rate):
- retrieval_accuracy:     validated / found sources
- compilation_efficiency: abstractions / validated sources
- validation_quality:     mean credibility
- overall_learning:       mean of the three
"""

from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from cognitive_loop.models.loop import IterationRecord, LoopResult, PerformanceMetrics


class LearningEngine:
    """Tracks performance metrics and a bounded history of completed loops."""

    def __init__(self, learning_rate: float = 0.1, history_limit: int = 100):
        self.learning_rate = learning_rate
        self._metrics = PerformanceMetrics()
        self._history: Deque[LoopResult] = deque(maxlen=history_limit)

    @property
    def metrics(self) -> PerformanceMetrics:
        return self._metrics.model_copy()

    @property
    def history(self) -> List[LoopResult]:
        return list(self._history)

    def record_loop(self, result: LoopResult) -> None:
        """Append a completed loop to the bounded history."""
        self._history.append(result)

    def update_from_iteration(self, latest: IterationRecord) -> PerformanceMetrics:
        """Fold the latest iteration of a loop into the moving averages."""
        alpha = self.learning_rate
        m = self._metrics

        found = latest.retrieval.sources_found
        validated = latest.retrieval.sources_validated
        accuracy = validated / found if found else 0.0
        efficiency = latest.compilation.abstractions / max(validated, 1)
        quality = latest.validation.average_credibility

        m.retrieval_accuracy = alpha * accuracy + (1 - alpha) * m.retrieval_accuracy
        m.compilation_efficiency = (
            alpha * efficiency + (1 - alpha) * m.compilation_efficiency
        )
        m.validation_quality = alpha * quality + (1 - alpha) * m.validation_quality
        m.overall_learning = (
            m.retrieval_accuracy + m.compilation_efficiency + m.validation_quality
        ) / 3
        return self.metrics

    def get_stats(self, knowledge_graph_size: Optional[int] = None) -> dict:
        total = len(self._history)
        average_iterations = (
            sum(len(r.iterations) for r in self._history) / total if total else 0.0
        )
        convergence_rate = (
            sum(1 for r in self._history if r.converged) / total if total else 0.0
        )
        return {
            "total_loops": total,
            "average_iterations": average_iterations,
            "convergence_rate": convergence_rate,
            "performance_metrics": self._metrics.model_dump(),
            "knowledge_graph_size": knowledge_graph_size,
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def reset(self) -> None:
        self._metrics = PerformanceMetrics()
        self._history.clear()
