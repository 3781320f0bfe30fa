"""Prometheus-compatible metrics for application monitoring."""

import re
import time
import logging
from collections import defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")

# Domain counters exposed even before their first increment
DOMAIN_COUNTERS = {
    "bookings_reserved_total": "Slots successfully reserved",
    "booking_slot_conflicts_total": "Reservation attempts rejected because the slot was taken",
    "booking_holds_released_total": "Expired holds released",
    "promotions_applied_total": "Promotions applied on paid attendance",
    "promotion_failures_total": "Promotion evaluations that failed without blocking attendance",
    "shifts_closed_total": "Shifts closed and settled",
    "rating_recalc_errors_total": "Entities that failed during rating recalculation",
    "notifications_failed_total": "Best-effort notifications that could not be delivered",
}


class MetricsCollector:
    """Collects HTTP request metrics and domain counters in Prometheus format.

    Values are per process; a scraper aggregates across instances.
    """

    def __init__(self):
        self.request_count: Dict[str, int] = defaultdict(int)
        self.request_duration: Dict[str, List[float]] = defaultdict(list)
        self.error_count: Dict[int, int] = defaultdict(int)
        self.counters: Dict[str, int] = {name: 0 for name in DOMAIN_COUNTERS}
        self.active_requests: int = 0

    def inc(self, name: str, amount: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + amount

    def record_request(self, method: str, path: str, status: int, duration: float):
        key = f"{method} {self._normalize_path(path)}"
        self.request_count[key] += 1
        durations = self.request_duration[key]
        durations.append(duration)
        if len(durations) > 1000:
            self.request_duration[key] = durations[-1000:]
        if status >= 400:
            self.error_count[status] += 1

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Replace UUID and numeric ids with :id to limit cardinality."""
        parts = path.split("/")
        return "/".join(":id" if p.isdigit() or _UUID_RE.match(p) else p for p in parts)

    def reset(self) -> None:
        self.__init__()

    def get_prometheus_metrics(self) -> str:
        lines: List[str] = []
        lines.append("# HELP http_requests_total Total HTTP requests")
        lines.append("# TYPE http_requests_total counter")
        for key, count in sorted(self.request_count.items()):
            method, path = key.split(" ", 1)
            lines.append(f'http_requests_total{{method="{method}",path="{path}"}} {count}')

        lines.append("# HELP http_errors_total Total HTTP errors by status code")
        lines.append("# TYPE http_errors_total counter")
        for code, count in sorted(self.error_count.items()):
            lines.append(f'http_errors_total{{status="{code}"}} {count}')

        lines.append("# HELP http_active_requests Current active requests")
        lines.append("# TYPE http_active_requests gauge")
        lines.append(f"http_active_requests {self.active_requests}")

        lines.append("# HELP http_request_duration_seconds Request duration summary")
        lines.append("# TYPE http_request_duration_seconds summary")
        for key, durations in sorted(self.request_duration.items()):
            if durations:
                method, path = key.split(" ", 1)
                ordered = sorted(durations)
                p50 = ordered[len(ordered) // 2]
                p99 = ordered[min(len(ordered) - 1, int(len(ordered) * 0.99))]
                lines.append(f'http_request_duration_seconds{{method="{method}",path="{path}",quantile="0.5"}} {p50:.4f}')
                lines.append(f'http_request_duration_seconds{{method="{method}",path="{path}",quantile="0.99"}} {p99:.4f}')

        for name, value in sorted(self.counters.items()):
            help_text = DOMAIN_COUNTERS.get(name, name)
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} counter")
            lines.append(f"{name} {value}")

        return "\n".join(lines) + "\n"


metrics = MetricsCollector()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        metrics.active_requests += 1
        start = time.perf_counter()
        try:
            response = await call_next(request)
            metrics.record_request(request.method, request.url.path, response.status_code, time.perf_counter() - start)
            return response
        except Exception:
            metrics.record_request(request.method, request.url.path, 500, time.perf_counter() - start)
            raise
        finally:
            metrics.active_requests -= 1
