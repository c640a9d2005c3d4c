"""
Performance instrumentation for generation calls.

PerformanceMonitor times each generation (an "operation") and records a
PerformanceMetrics snapshot when it ends. Between start_profiling() and
stop_profiling() the snapshots are also collected into a session that is
summarized as a PerformanceReport.

Usage:
    ```python
    llm = LLM.from_pretrained("models/qwen3-1.7b-q4.gguf")

    llm.monitor.start_profiling()
    llm.respond("Tell me a joke")
    llm.respond("Another one")
    report = llm.monitor.stop_profiling()

    print(f"{report.average_tokens_per_second:.1f} tok/s")
    print(report.best_metrics)
    ```
"""

import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Metrics for a single generation.

    Attributes:
        tokens_per_second: Generated tokens divided by inference time
        memory_usage: Resident memory of the process in bytes
        inference_time: Wall-clock seconds for the whole operation
        context_length: Tokens in the context at the end
        tokens_generated: Tokens decoded after the prompt
        average_time_per_token: Seconds per generated token
        peak_memory_usage: Highest resident memory seen, in bytes
        model_load_time: Seconds spent loading the model (if measured)
        context_prep_time: Seconds spent decoding the prompt (if measured)
    """
    tokens_per_second: float
    memory_usage: int
    inference_time: float
    context_length: int
    tokens_generated: int
    average_time_per_token: float
    peak_memory_usage: int
    model_load_time: Optional[float] = None
    context_prep_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PerformanceReport:
    """Aggregated metrics of a profiling session."""
    session_duration: float
    metrics: List[PerformanceMetrics] = field(default_factory=list)
    average_tokens_per_second: float = 0.0
    total_tokens_generated: int = 0
    peak_memory_usage: int = 0

    @property
    def best_metrics(self) -> Optional[PerformanceMetrics]:
        if not self.metrics:
            return None
        return max(self.metrics, key=lambda m: m.tokens_per_second)

    @property
    def worst_metrics(self) -> Optional[PerformanceMetrics]:
        if not self.metrics:
            return None
        return min(self.metrics, key=lambda m: m.tokens_per_second)

    @property
    def average_inference_time(self) -> float:
        if not self.metrics:
            return 0.0
        return sum(m.inference_time for m in self.metrics) / len(self.metrics)

    @property
    def average_memory_usage(self) -> int:
        if not self.metrics:
            return 0
        return sum(m.memory_usage for m in self.metrics) // len(self.metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_duration': self.session_duration,
            'metrics': [m.to_dict() for m in self.metrics],
            'average_tokens_per_second': self.average_tokens_per_second,
            'total_tokens_generated': self.total_tokens_generated,
            'peak_memory_usage': self.peak_memory_usage,
        }


def current_memory_usage() -> int:
    """Resident set size of this process in bytes."""
    return psutil.Process().memory_info().rss


class PerformanceMonitor:
    """
    Times generation calls and collects their metrics.

    Attributes:
        current_metrics: Metrics of the last finished operation
        is_profiling: Whether a profiling session is active
    """

    def __init__(self):
        self.current_metrics: Optional[PerformanceMetrics] = None
        self.is_profiling = False

        self._session_start: Optional[float] = None
        self._session_metrics: List[PerformanceMetrics] = []
        self._peak_memory = 0

        self._operation_start: Optional[float] = None
        self._context_prep_time: Optional[float] = None
        self._tokens_in_operation = 0

        self._model_load_start: Optional[float] = None
        self._model_load_time: Optional[float] = None

    def start_profiling(self) -> None:
        self.is_profiling = True
        self._session_start = time.perf_counter()
        self._session_metrics = []
        self._peak_memory = 0
        logger.debug("Profiling started")

    def stop_profiling(self) -> PerformanceReport:
        self.is_profiling = False

        metrics = self._session_metrics
        duration = time.perf_counter() - self._session_start if self._session_start is not None else 0.0

        report = PerformanceReport(
            session_duration=duration,
            metrics=list(metrics),
            average_tokens_per_second=sum(m.tokens_per_second for m in metrics) / max(len(metrics), 1),
            total_tokens_generated=sum(m.tokens_generated for m in metrics),
            peak_memory_usage=self._peak_memory
        )

        self._session_metrics = []
        self._session_start = None
        logger.debug(f"Profiling stopped after {duration:.2f}s ({len(metrics)} operations)")
        return report

    def record_metrics(self, metrics: PerformanceMetrics) -> None:
        if self.is_profiling:
            self._session_metrics.append(metrics)
            self._peak_memory = max(self._peak_memory, metrics.peak_memory_usage)
        self.current_metrics = metrics

    def start_operation(self) -> None:
        self._operation_start = time.perf_counter()
        self._context_prep_time = None
        self._tokens_in_operation = 0

    def mark_context_prepared(self) -> None:
        """Record how long prompt decoding took in the current operation."""
        if self._operation_start is not None:
            self._context_prep_time = time.perf_counter() - self._operation_start

    def end_operation(self, tokens_generated: int, context_length: int) -> PerformanceMetrics:
        if self._operation_start is None:
            metrics = PerformanceMetrics(
                tokens_per_second=0.0,
                memory_usage=0,
                inference_time=0.0,
                context_length=context_length,
                tokens_generated=tokens_generated,
                average_time_per_token=0.0,
                peak_memory_usage=0
            )
            self.record_metrics(metrics)
            return metrics

        inference_time = time.perf_counter() - self._operation_start
        memory = current_memory_usage()
        self._peak_memory = max(self._peak_memory, memory)

        metrics = PerformanceMetrics(
            tokens_per_second=tokens_generated / inference_time if inference_time > 0 else 0.0,
            memory_usage=memory,
            inference_time=inference_time,
            context_length=context_length,
            tokens_generated=tokens_generated,
            average_time_per_token=inference_time / tokens_generated if tokens_generated > 0 else 0.0,
            peak_memory_usage=self._peak_memory,
            model_load_time=self._model_load_time,
            context_prep_time=self._context_prep_time
        )

        self.record_metrics(metrics)
        self.reset_operation()

        logger.debug(
            f"Operation finished: {tokens_generated} tokens in {inference_time:.2f}s "
            f"({metrics.tokens_per_second:.1f} tok/s)"
        )
        return metrics

    def start_model_load(self) -> None:
        self._model_load_start = time.perf_counter()

    def record_model_load_time(self) -> Optional[float]:
        if self._model_load_start is None:
            return None

        self._model_load_time = time.perf_counter() - self._model_load_start
        self._model_load_start = None

        if self.current_metrics is not None:
            self.record_metrics(replace(self.current_metrics, model_load_time=self._model_load_time))

        logger.info(f"Model loaded in {self._model_load_time:.2f}s")
        return self._model_load_time

    def increment_tokens_generated(self, count: int = 1) -> None:
        self._tokens_in_operation += count

    @property
    def tokens_in_operation(self) -> int:
        return self._tokens_in_operation

    @property
    def is_operation_active(self) -> bool:
        return self._operation_start is not None

    def reset_operation(self) -> None:
        self._operation_start = None
        self._tokens_in_operation = 0
