"""
Unit tests for performance metrics.
"""

import pytest

from pyllm.metrics import PerformanceMetrics, PerformanceMonitor, PerformanceReport, current_memory_usage


def metrics(tps, tokens=10, memory=100, time=1.0):
    return PerformanceMetrics(
        tokens_per_second=tps,
        memory_usage=memory,
        inference_time=time,
        context_length=50,
        tokens_generated=tokens,
        average_time_per_token=time / tokens,
        peak_memory_usage=memory
    )


class TestPerformanceMonitor:
    """Test operation timing and profiling sessions."""

    def test_operation(self):
        """Test that an operation produces a snapshot."""
        monitor = PerformanceMonitor()

        monitor.start_operation()
        monitor.mark_context_prepared()
        result = monitor.end_operation(tokens_generated=5, context_length=20)

        assert monitor.current_metrics is result
        assert result.tokens_generated == 5
        assert result.context_length == 20
        assert result.inference_time >= 0.0
        assert result.context_prep_time is not None
        assert result.memory_usage > 0
        assert not monitor.is_operation_active

    def test_end_without_start(self):
        """Test that ending an unstarted operation gives an empty snapshot."""
        result = PerformanceMonitor().end_operation(tokens_generated=3, context_length=7)

        assert result.tokens_per_second == 0.0
        assert result.tokens_generated == 3

    def test_profiling_session(self):
        """Test that snapshots are collected only while profiling."""
        monitor = PerformanceMonitor()
        monitor.record_metrics(metrics(1.0))

        monitor.start_profiling()
        monitor.record_metrics(metrics(10.0, tokens=4))
        monitor.record_metrics(metrics(30.0, tokens=6, memory=500))
        report = monitor.stop_profiling()

        assert not monitor.is_profiling
        assert len(report.metrics) == 2
        assert report.average_tokens_per_second == pytest.approx(20.0)
        assert report.total_tokens_generated == 10
        assert report.peak_memory_usage == 500
        assert report.best_metrics.tokens_per_second == 30.0
        assert report.worst_metrics.tokens_per_second == 10.0

    def test_empty_report(self):
        """Test a profiling session without operations."""
        monitor = PerformanceMonitor()
        monitor.start_profiling()

        report = monitor.stop_profiling()

        assert report.metrics == []
        assert report.best_metrics is None
        assert report.average_inference_time == 0.0
        assert report.average_memory_usage == 0

    def test_model_load_time(self):
        """Test that the load time is attached to later snapshots."""
        monitor = PerformanceMonitor()
        monitor.start_model_load()
        load_time = monitor.record_model_load_time()

        monitor.start_operation()
        result = monitor.end_operation(1, 1)

        assert load_time is not None
        assert result.model_load_time == load_time

    def test_model_load_without_start(self):
        """Test recording a load time that was never started."""
        assert PerformanceMonitor().record_model_load_time() is None

    def test_token_counter(self):
        """Test the per-operation token counter."""
        monitor = PerformanceMonitor()
        monitor.start_operation()
        monitor.increment_tokens_generated()
        monitor.increment_tokens_generated(2)

        assert monitor.tokens_in_operation == 3

        monitor.reset_operation()
        assert monitor.tokens_in_operation == 0


class TestPerformanceReport:
    """Test report aggregation."""

    def test_averages(self):
        """Test average inference time and memory."""
        report = PerformanceReport(
            session_duration=2.0,
            metrics=[metrics(1.0, memory=100, time=1.0), metrics(2.0, memory=301, time=3.0)]
        )

        assert report.average_inference_time == pytest.approx(2.0)
        assert report.average_memory_usage == 200

    def test_to_dict(self):
        """Test serialization."""
        report = PerformanceReport(session_duration=1.0, metrics=[metrics(5.0)])

        data = report.to_dict()

        assert data['session_duration'] == 1.0
        assert data['metrics'][0]['tokens_per_second'] == 5.0
        assert data['metrics'][0]['model_load_time'] is None


def test_current_memory_usage():
    """Test that the process memory is reported in bytes."""
    assert current_memory_usage() > 0
