from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict


@dataclass
class RouteMetrics:
    request_count: int = 0
    error_count: int = 0
    total_latency_ms: float = 0.0
    max_latency_ms: float = 0.0


@dataclass
class Metrics:
    total_requests: int = 0
    total_errors: int = 0
    logins_started: int = 0
    logins_completed: int = 0
    forgery_rejections: int = 0
    authorization_denied: int = 0
    token_validation_failures: int = 0
    token_exchange_failures: int = 0
    token_refreshes: int = 0
    token_refresh_failures: int = 0
    tenants_disconnected: int = 0
    full_disconnects: int = 0
    revocations: int = 0
    remote_api_errors: int = 0
    dashboard_views: int = 0
    route_metrics: Dict[str, RouteMetrics] = field(default_factory=dict)

    def record_route(self, path: str, latency_ms: float, error: bool) -> None:
        """Track per-route counts and latency."""
        route = self.route_metrics.setdefault(path, RouteMetrics())
        route.request_count += 1
        route.total_latency_ms += latency_ms
        if latency_ms > route.max_latency_ms:
            route.max_latency_ms = latency_ms
        if error:
            route.error_count += 1
            self.total_errors += 1

    def snapshot(self) -> Dict[str, Any]:
        return asdict(self)

    def reset(self) -> None:
        fresh = Metrics()
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(fresh, name))


metrics = Metrics()
