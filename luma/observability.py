"""Luma Observability Module.

Provides structured logging and per-operation metrics for the settings core.

Usage:
    from luma.observability import metrics, logger

    # Log operations
    logger.info("Settings merged", user_id="u1", fields=["theme_mode"])

    # Record metrics
    with metrics.measure("upsert_settings"):
        service.upsert_settings("u1", {"theme_mode": "Dark"})

    # Get stats
    print(metrics.get_summary())
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================================
# Structured Logger
# ============================================================================

class StructuredLogger:
    """JSON-structured logger for luma operations."""

    def __init__(self, name: str = "luma", level: int = logging.INFO):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        self._context: Dict[str, Any] = {}

        # Add JSON handler if not already configured
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredFormatter())
            self._logger.addHandler(handler)

    def with_context(self, **kwargs) -> "StructuredLogger":
        """Create a new logger with additional context."""
        new_logger = StructuredLogger.__new__(StructuredLogger)
        new_logger._logger = self._logger
        new_logger._context = {**self._context, **kwargs}
        return new_logger

    def _log(self, level: int, message: str, **kwargs):
        extra = {
            "structured_data": {
                **self._context,
                **kwargs,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        }
        self._logger.log(level, message, extra=extra)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)


class StructuredFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if hasattr(record, "structured_data"):
            log_data.update(record.structured_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


# ============================================================================
# Metrics Collector
# ============================================================================

@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    total_latency_ms: float = 0.0
    min_latency_ms: float = float("inf")
    max_latency_ms: float = 0.0
    errors: int = 0
    last_operation: Optional[str] = None

    def record(self, latency_ms: float, error: bool = False):
        self.count += 1
        self.total_latency_ms += latency_ms
        self.min_latency_ms = min(self.min_latency_ms, latency_ms)
        self.max_latency_ms = max(self.max_latency_ms, latency_ms)
        if error:
            self.errors += 1
        self.last_operation = datetime.now(timezone.utc).isoformat()

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.count if self.count > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
            "min_latency_ms": round(self.min_latency_ms, 2) if self.count > 0 else 0,
            "max_latency_ms": round(self.max_latency_ms, 2),
            "errors": self.errors,
            "error_rate": round(self.errors / self.count, 4) if self.count > 0 else 0,
            "last_operation": self.last_operation,
        }


@dataclass
class StoreMetrics:
    """Settings/history counters."""
    settings_merged: int = 0
    history_appended: int = 0
    history_cleared: int = 0
    snapshots_exported: int = 0
    snapshots_imported: int = 0
    import_items_skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settings_merged": self.settings_merged,
            "history_appended": self.history_appended,
            "history_cleared": self.history_cleared,
            "snapshots_exported": self.snapshots_exported,
            "snapshots_imported": self.snapshots_imported,
            "import_items_skipped": self.import_items_skipped,
        }


class MetricsCollector:
    """Collects and exposes luma metrics."""

    def __init__(self):
        self._lock = threading.Lock()
        self._operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._store = StoreMetrics()
        self._start_time = datetime.now(timezone.utc)

    def record_operation(self, operation: str, latency_ms: float, error: bool = False):
        with self._lock:
            self._operations[operation].record(latency_ms, error)

    def incr(self, counter: str, count: int = 1):
        """Bump one of the :class:`StoreMetrics` counters."""
        with self._lock:
            current = getattr(self._store, counter)
            setattr(self._store, counter, current + max(0, int(count)))

    def reset(self):
        with self._lock:
            self._operations.clear()
            self._store = StoreMetrics()
            self._start_time = datetime.now(timezone.utc)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
            return {
                "uptime_seconds": round(uptime, 2),
                "operations": {
                    op: data.to_dict()
                    for op, data in self._operations.items()
                },
                "store": self._store.to_dict(),
            }

    def get_prometheus_metrics(self) -> str:
        """Export metrics in Prometheus format."""
        lines = []
        summary = self.get_summary()

        for op, data in summary["operations"].items():
            lines.append(f'luma_operation_count{{operation="{op}"}} {data["count"]}')
            lines.append(f'luma_operation_latency_avg_ms{{operation="{op}"}} {data["avg_latency_ms"]}')
            lines.append(f'luma_operation_errors{{operation="{op}"}} {data["errors"]}')

        for name, value in summary["store"].items():
            lines.append(f"luma_{name}_total {value}")

        lines.append(f'luma_uptime_seconds {summary["uptime_seconds"]}')
        return "\n".join(lines)

    @contextmanager
    def measure(self, operation: str):
        """Context manager to measure operation latency.

        Usage:
            with metrics.measure("export_data"):
                snapshot = service.export_data("u1")
        """
        start = time.perf_counter()
        error = False
        try:
            yield
        except Exception:
            error = True
            raise
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            self.record_operation(operation, latency_ms, error=error)


# ============================================================================
# Global Instances
# ============================================================================

logger = StructuredLogger("luma")

metrics = MetricsCollector()


# ============================================================================
# API Endpoints (for FastAPI integration)
# ============================================================================

def add_metrics_routes(app):
    """Add metrics endpoints to a FastAPI app.

    Usage:
        from luma.observability import add_metrics_routes
        add_metrics_routes(app)
    """
    from fastapi import Response

    @app.get("/metrics")
    async def prometheus_metrics():
        """Prometheus-compatible metrics endpoint."""
        return Response(
            content=metrics.get_prometheus_metrics(),
            media_type="text/plain"
        )

    @app.get("/metrics/json")
    async def json_metrics():
        """JSON metrics endpoint."""
        return metrics.get_summary()
