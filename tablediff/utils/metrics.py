"""
Per-comparison operation metrics.
Single responsibility: time fetch, match and report steps of one comparison.
"""

import os
import time
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Optional, List

import psutil

from .logger import get_logger


logger = get_logger()


@dataclass
class OperationMetrics:
    """Metrics for a single operation."""

    name: str
    start_time: float
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
    rows_processed: int = 0
    memory_mb_start: float = 0
    memory_mb_end: float = 0
    success: bool = True
    error: Optional[str] = None


@dataclass
class ComparisonMetrics:
    """Metrics for one comparison call."""

    operations: List[OperationMetrics] = field(default_factory=list)
    memory_mb_peak: float = 0
    total_rows_processed: int = 0
    errors_encountered: int = 0


class OperationHandle:
    """Mutable handle yielded by MetricsCollector.track."""

    def __init__(self):
        self.rows = 0

    def record_rows(self, rows: int):
        self.rows = rows


class MetricsCollector:
    """
    Collect operation metrics for a single comparison.

    Each comparison owns its own collector; the lock only guards the
    concurrent fetch path where source and target finish on different
    threads.
    """

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = ComparisonMetrics()
        self.current_operations: Dict[str, OperationMetrics] = {}
        self.process = psutil.Process(os.getpid())
        self._lock = threading.Lock()

    def start_operation(self, name: str) -> None:
        """
        Start tracking an operation.

        Args:
            name: Operation name
        """
        memory_mb = self._get_memory_usage()

        operation = OperationMetrics(
            name=name,
            start_time=time.perf_counter(),
            memory_mb_start=memory_mb
        )

        with self._lock:
            self.current_operations[name] = operation

        logger.debug("metrics.operation.start",
                    operation=name,
                    memory_mb=round(memory_mb, 2))

    def end_operation(self, name: str, rows_processed: int = 0,
                     success: bool = True, error: Optional[str] = None) -> None:
        """
        End tracking an operation.

        Args:
            name: Operation name
            rows_processed: Number of rows processed
            success: Whether operation succeeded
            error: Error message if failed
        """
        with self._lock:
            operation = self.current_operations.pop(name, None)

        if operation is None:
            logger.warning("metrics.operation.not_found", operation=name)
            return

        operation.end_time = time.perf_counter()
        operation.duration_seconds = operation.end_time - operation.start_time
        operation.rows_processed = rows_processed
        operation.memory_mb_end = self._get_memory_usage()
        operation.success = success
        operation.error = error

        with self._lock:
            self.metrics.operations.append(operation)
            self.metrics.total_rows_processed += rows_processed
            self.metrics.memory_mb_peak = max(
                self.metrics.memory_mb_peak,
                operation.memory_mb_start,
                operation.memory_mb_end
            )
            if not success:
                self.metrics.errors_encountered += 1

        logger.debug("metrics.operation.end",
                    operation=name,
                    duration=round(operation.duration_seconds, 3),
                    rows=rows_processed,
                    success=success)

    @contextmanager
    def track(self, name: str):
        """
        Context manager that starts and ends an operation.

        Example:
            with metrics.track("fetch.source") as op:
                result = fetcher.fetch(descriptor)
                op.record_rows(result.row_count)
        """
        handle = OperationHandle()
        self.start_operation(name)
        try:
            yield handle
        except Exception as e:
            self.end_operation(name, handle.rows, success=False, error=str(e))
            raise
        self.end_operation(name, handle.rows)

    def timings(self) -> Dict[str, float]:
        """Durations in seconds keyed by operation name."""
        return {
            op.name: round(op.duration_seconds or 0, 3)
            for op in self.metrics.operations
        }

    def _get_memory_usage(self) -> float:
        """
        Get current memory usage in MB.

        Returns:
            Memory usage in MB
        """
        return self.process.memory_info().rss / (1024 * 1024)

