"""
Performance metrics module.

Components:
    - PerformanceMetrics: snapshot of one generation
    - PerformanceMonitor: times operations and model loading
    - PerformanceReport: summary of a profiling session
"""

from pyllm.metrics.performance import (
    PerformanceMetrics,
    PerformanceMonitor,
    PerformanceReport,
    current_memory_usage,
)

__all__ = [
    "PerformanceMetrics",
    "PerformanceMonitor",
    "PerformanceReport",
    "current_memory_usage",
]
