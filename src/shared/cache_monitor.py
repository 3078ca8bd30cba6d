"""
Cache monitoring for the offline cache sync layer.

Components report observations through a single injected ``CacheMonitor``.
Reporting is synchronous and must never change the outcome of the
operation being observed, so callers go through ``safe_emit``.
"""
import uuid
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Any, Optional, Callable

import structlog

logger = structlog.get_logger(__name__)


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class Alert:
    """A raised alert."""
    title: str
    message: str
    severity: AlertSeverity
    source: str
    details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['severity'] = self.severity.value
        data['created_at'] = self.created_at.isoformat()
        return data


class CacheMonitor:
    """Observer interface. The base implementation ignores everything."""

    def record_hit(self, key: str, latency_ms: float, size: int) -> None:
        pass

    def record_miss(self, key: str, latency_ms: float, reason: str = "absent", size: int = 0) -> None:
        pass

    def record_corruption(self, key: str, latency_ms: float, issues: List[str], size: int = 0) -> None:
        pass

    def record_write(self, key: str, size: int, success: bool, error: Optional[str] = None) -> None:
        pass

    def record_circuit_transition(self, operation_name: str, old_state: str, new_state: str) -> None:
        pass

    def record_sync(self, success: bool, synced_resources: List[str], errors: List[str], total_records: int) -> None:
        pass

    def alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        source: str = "cache",
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        pass


class MetricsCacheMonitor(CacheMonitor):
    """Monitor that keeps counters and recent alerts and logs every observation."""

    def __init__(self, max_alerts: int = 100, max_transitions: int = 1000):
        self.hits = 0
        self.misses = 0
        self.corruptions = 0
        self.writes = 0
        self.write_failures = 0
        self.total_response_time_ms = 0.0
        self.data_volume_bytes = 0
        self.evicted_bytes = 0
        self.syncs = 0
        self.failed_syncs = 0
        self.miss_reasons: Dict[str, int] = {}
        self.circuit_transitions: deque = deque(maxlen=max_transitions)
        self.alerts: deque = deque(maxlen=max_alerts)
        self.alert_handlers: List[Callable[[Alert], None]] = []

    @property
    def total_reads(self) -> int:
        return self.hits + self.misses + self.corruptions

    def record_hit(self, key: str, latency_ms: float, size: int) -> None:
        self.hits += 1
        self.total_response_time_ms += latency_ms
        self.data_volume_bytes += size
        logger.debug("Cache hit", key=key, latency_ms=round(latency_ms, 3), size=size)

    def record_miss(self, key: str, latency_ms: float, reason: str = "absent", size: int = 0) -> None:
        self.misses += 1
        self.total_response_time_ms += latency_ms
        self.evicted_bytes += size
        self.miss_reasons[reason] = self.miss_reasons.get(reason, 0) + 1
        logger.debug("Cache miss", key=key, latency_ms=round(latency_ms, 3), reason=reason, size=size)

    def record_corruption(self, key: str, latency_ms: float, issues: List[str], size: int = 0) -> None:
        self.corruptions += 1
        self.total_response_time_ms += latency_ms
        self.evicted_bytes += size
        logger.warning("Cache corruption detected", key=key, issues=issues, size=size)

    def record_write(self, key: str, size: int, success: bool, error: Optional[str] = None) -> None:
        if success:
            self.writes += 1
            self.data_volume_bytes += size
        else:
            self.write_failures += 1
            logger.error("Cache write failed", key=key, error=error)

    def record_circuit_transition(self, operation_name: str, old_state: str, new_state: str) -> None:
        self.circuit_transitions.append({
            'operation_name': operation_name,
            'from': old_state,
            'to': new_state,
            'at': datetime.now(timezone.utc).isoformat(),
        })
        logger.info("Circuit state changed", operation_name=operation_name, old_state=old_state, new_state=new_state)

    def record_sync(self, success: bool, synced_resources: List[str], errors: List[str], total_records: int) -> None:
        self.syncs += 1
        if not success:
            self.failed_syncs += 1
        logger.info(
            "Sync completed",
            success=success,
            synced_resources=len(synced_resources),
            errors=len(errors),
            total_records=total_records
        )

    def alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        source: str = "cache",
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        alert = Alert(title=title, message=message, severity=severity, source=source, details=details or {})
        self.alerts.append(alert)
        logger.warning("Alert raised", title=title, severity=severity.value, source=source, message=message)

        for handler in self.alert_handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error("Alert handler failed", error=str(e))

    def add_alert_handler(self, handler: Callable[[Alert], None]) -> None:
        """Add a callback invoked for every alert."""
        self.alert_handlers.append(handler)

    def get_metrics(self) -> Dict[str, Any]:
        """Get aggregated cache metrics."""
        total = self.total_reads
        return {
            'cache_hits': self.hits,
            'cache_misses': self.misses,
            'corruptions': self.corruptions,
            'hit_rate': (self.hits / total * 100) if total else 0.0,
            'average_response_time_ms': (self.total_response_time_ms / total) if total else 0.0,
            'data_volume_bytes': self.data_volume_bytes,
            'evicted_bytes': self.evicted_bytes,
            'writes': self.writes,
            'write_failures': self.write_failures,
            'miss_reasons': dict(self.miss_reasons),
            'syncs': self.syncs,
            'failed_syncs': self.failed_syncs,
            'circuit_transitions': len(self.circuit_transitions),
            'active_alerts': len(self.alerts),
        }

    def get_recent_alerts(self, limit: int = 10) -> List[Alert]:
        return list(self.alerts)[-limit:]


def safe_emit(monitor: Optional[CacheMonitor], method: str, *args, **kwargs) -> None:
    """Call a monitor method, logging and discarding any failure."""
    if monitor is None:
        return
    try:
        getattr(monitor, method)(*args, **kwargs)
    except Exception as e:
        logger.warning("Monitor callback failed", method=method, error=str(e))
