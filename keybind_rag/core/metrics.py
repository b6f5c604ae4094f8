"""
In-process query metrics for the health/metrics endpoints.
"""

import threading
from typing import Any, Dict, Optional


class MetricsCollector:
    """Counts queries and tracks response-time statistics."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        self.query_count = 0
        self.success_count = 0
        self.failure_count = 0
        self.total_response_ms = 0.0
        self.min_response_ms: Optional[float] = None
        self.max_response_ms: Optional[float] = None

    def record_query(self, duration_ms: float, success: bool) -> None:
        with self._lock:
            self.query_count += 1
            if success:
                self.success_count += 1
            else:
                self.failure_count += 1

            self.total_response_ms += duration_ms
            if self.min_response_ms is None or duration_ms < self.min_response_ms:
                self.min_response_ms = duration_ms
            if self.max_response_ms is None or duration_ms > self.max_response_ms:
                self.max_response_ms = duration_ms

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            average = self.total_response_ms / self.query_count if self.query_count else 0.0
            return {
                "query_count": self.query_count,
                "success_count": self.success_count,
                "failure_count": self.failure_count,
                "avg_response_ms": round(average, 2),
                "min_response_ms": self.min_response_ms or 0.0,
                "max_response_ms": self.max_response_ms or 0.0,
            }
