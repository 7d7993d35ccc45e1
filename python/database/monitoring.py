"""
Datastore timing and health checks for the Shelter Matching Service

Every matching-core operation runs its datastore work inside query_timer,
which keeps per-operation counters (exposed at /api/v1/metrics/queries)
and logs operations slower than the configured thresholds.

Usage:
    from database.monitoring import query_timer

    with query_timer("search_by_name"):
        with provider.session_scope() as session:
            ...
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config_manager import MonitoringConfig

logger = logging.getLogger(__name__)


_config = MonitoringConfig()


def configure_monitoring(config: Optional[MonitoringConfig] = None) -> None:
    """Set slow-query thresholds; defaults are restored when config is omitted."""
    global _config
    _config = config or MonitoringConfig()


@dataclass
class OperationStats:
    """Running totals for one named operation."""
    operation: str
    count: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    errors: int = 0
    slow: int = 0
    last_executed: Optional[datetime] = None

    def record(self, duration_ms: float, error: bool, slow: bool) -> None:
        self.count += 1
        self.total_time_ms += duration_ms
        self.max_time_ms = max(self.max_time_ms, duration_ms)
        self.last_executed = datetime.now()
        self.errors += int(error)
        self.slow += int(slow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'avg_time_ms': round(self.total_time_ms / self.count, 2) if self.count else 0.0,
            'max_time_ms': round(self.max_time_ms, 2),
            'errors': self.errors,
            'slow_queries': self.slow,
            'last_executed': self.last_executed.isoformat() if self.last_executed else None
        }


class _StatsRegistry:
    """Per-operation statistics shared by request threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, OperationStats] = {}
        self._since = datetime.now()

    def record(self, operation: str, duration_ms: float, error: bool, slow: bool) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats(operation))
            stats.record(duration_ms, error, slow)

    def snapshot(self, operation: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            if operation:
                stats = self._stats.get(operation)
                return stats.to_dict() if stats else {}
            return {
                'uptime_seconds': (datetime.now() - self._since).total_seconds(),
                'operations': {name: s.to_dict() for name, s in self._stats.items()}
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._since = datetime.now()


_registry = _StatsRegistry()


def get_db_metrics(operation: Optional[str] = None) -> Dict[str, Any]:
    """Statistics for one operation, or all of them with the collection uptime."""
    return _registry.snapshot(operation)


def reset_metrics() -> None:
    _registry.reset()


@contextmanager
def query_timer(operation: str):
    """
    Time the enclosed datastore work under the given operation name.

    Exceptions are counted as errors and re-raised unchanged.
    """
    start = time.perf_counter()
    failed = False
    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        slow = duration_ms > _config.slow_query_threshold_ms
        _registry.record(operation, duration_ms, error=failed, slow=slow)

        if slow:
            logger.warning(
                "SLOW QUERY: %s took %.2fms (threshold: %sms)",
                operation, duration_ms, _config.slow_query_threshold_ms
            )
        elif duration_ms > _config.warning_threshold_ms and not failed:
            logger.info("Query %s took %.2fms", operation, duration_ms)


@dataclass
class DatastoreHealth:
    """Outcome of a datastore health check."""
    healthy: bool
    latency_ms: float
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'error': self.error,
            'timestamp': self.timestamp.isoformat()
        }


def check_health(db_provider) -> DatastoreHealth:
    """Run SELECT 1 through the provider and time it. Never raises SQLAlchemyError."""
    start = time.perf_counter()
    try:
        with db_provider.session_scope() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", type(e).__name__)
        return DatastoreHealth(
            healthy=False,
            latency_ms=(time.perf_counter() - start) * 1000,
            error=type(e).__name__
        )
    return DatastoreHealth(healthy=True, latency_ms=(time.perf_counter() - start) * 1000)
