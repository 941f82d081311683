from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from .logging import get_logger

log = get_logger(__name__)


@dataclass(slots=True)
class OperationStats:
    calls: int = 0
    failures: int = 0
    alerts: int = 0
    total_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    total_request_charge: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        avg = self.total_latency_ms / self.calls if self.calls else 0.0
        return {
            "calls": self.calls,
            "failures": self.failures,
            "alerts": self.alerts,
            "avgLatencyMs": round(avg, 3),
            "maxLatencyMs": round(self.max_latency_ms, 3),
            "requestCharge": round(self.total_request_charge, 3),
        }


@dataclass(slots=True)
class OperationSample:
    operation: str
    collection: str | None
    request_charge: float = 0.0
    outcome: str = "ok"
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class OperationRecorder:
    """
    Records latency, request charge and outcome for every document-store call.

    Calls slower than `latency_alert_ms`, and failed calls, are logged as
    `store.performance_alert`. Counters are kept per `collection:operation`.
    """

    def __init__(self, *, latency_alert_ms: float = 1000.0):
        self.latency_alert_ms = float(latency_alert_ms)
        self._lock = threading.Lock()
        self._stats: dict[str, OperationStats] = {}

    @contextmanager
    def track(self, operation: str, *, collection: str | None = None, **extra: Any) -> Iterator[OperationSample]:
        sample = OperationSample(operation=operation, collection=collection, extra=dict(extra))
        started = time.perf_counter()
        try:
            yield sample
        except Exception as e:
            sample.outcome = "error"
            sample.error = type(e).__name__
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self._record(sample, elapsed_ms)

    def _record(self, sample: OperationSample, elapsed_ms: float) -> None:
        key = f"{sample.collection or '-'}:{sample.operation}"
        failed = sample.outcome != "ok"
        slow = elapsed_ms > self.latency_alert_ms
        with self._lock:
            st = self._stats.setdefault(key, OperationStats())
            st.calls += 1
            st.total_latency_ms += elapsed_ms
            st.max_latency_ms = max(st.max_latency_ms, elapsed_ms)
            st.total_request_charge += float(sample.request_charge or 0.0)
            if failed:
                st.failures += 1
            if failed or slow:
                st.alerts += 1

        if failed or slow:
            log.warning(
                "store.performance_alert",
                operation=sample.operation,
                collection=sample.collection,
                latency_ms=round(elapsed_ms, 3),
                request_charge=sample.request_charge,
                outcome=sample.outcome,
                error=sample.error,
                slow=slow,
                **sample.extra,
            )

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {k: v.as_dict() for k, v in sorted(self._stats.items())}

    def stats_for(self, operation: str, *, collection: str | None = None) -> OperationStats:
        key = f"{collection or '-'}:{operation}"
        with self._lock:
            st = self._stats.get(key) or OperationStats()
            return OperationStats(
                calls=st.calls,
                failures=st.failures,
                alerts=st.alerts,
                total_latency_ms=st.total_latency_ms,
                max_latency_ms=st.max_latency_ms,
                total_request_charge=st.total_request_charge,
            )
