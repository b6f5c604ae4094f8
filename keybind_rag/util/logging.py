"""
Structured operation logging for sync, query and inference activity.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for index sync, retrieval queries and backend calls."""

    def __init__(self, name: str = "keybind_rag"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("degraded", "skipped"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_vector_operation(self, operation: str, record_ids: List[str], details: Dict[str, Any] = None, status: str = "success"):
        """Log an index write/delete covering one or more records."""
        log_details = {"count": len(record_ids)}
        if record_ids:
            log_details["first_id"] = record_ids[0]
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_sync(self, mode: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log a sync cycle (incremental, full or hash rebuild)."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Sync '{mode}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Sync '{mode}' failed after {duration_ms}ms"

        self.log_operation(f"sync.{mode}", status, log_details)

    def log_query(self, query: str, result_count: int, duration_ms: float, status: str = "success", details: Dict[str, Any] = None):
        """Log a retrieval query. Long queries are truncated."""
        log_details = {
            "query": query[:50] + "..." if len(query) > 50 else query,
            "results": result_count,
            "duration_ms": round(duration_ms, 2)
        }
        if details:
            log_details.update(details)

        self.log_operation("query", status, log_details)

    def log_inference_call(self, call: str, model: str, status: str = "success", details: Dict[str, Any] = None):
        """Log an embedding or generation call to the inference service."""
        log_details = {"model": model}
        if details:
            log_details.update(details)

        self.log_operation(f"inference.{call}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
