"""Prometheus text-format metrics for the Slidev backend."""

from __future__ import annotations

import math
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


DURATION_BUCKETS: Tuple[float, ...] = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf"))
REQUEST_BUCKETS: Tuple[float, ...] = (0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, float("inf"))

Sample = Tuple[str, Dict[str, str], float]
LabelKey = Tuple[Tuple[str, str], ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_labels(labels: Dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in sorted(labels.items())) + "}"


def _format_value(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return str(value)


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, help_text: str, label_names: Sequence[str] = ()) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()
        self._series: Dict[LabelKey, Any] = {}

    def _key(self, labels: Dict[str, str]) -> LabelKey:
        if set(labels) != set(self.label_names):
            raise ValueError(f"{self.name} expects labels {self.label_names}, got {tuple(labels)}")
        return tuple(sorted((k, str(v)) for k, v in labels.items()))

    def _new_series(self) -> Any:
        raise NotImplementedError

    def _series_for(self, labels: Dict[str, str]) -> Any:
        key = self._key(labels)
        with self._lock:
            if key not in self._series:
                self._series[key] = self._new_series()
            return self._series[key]

    def _samples(self, labels: Dict[str, str], series: Any) -> List[Sample]:
        raise NotImplementedError

    def collect(self) -> List[Sample]:
        with self._lock:
            items = list(self._series.items())
        if not items and not self.label_names:
            items = [((), self._series_for({}))]
        samples: List[Sample] = []
        for key, series in items:
            samples.extend(self._samples(dict(key), series))
        return samples


class _Value:
    __slots__ = ("value",)

    def __init__(self) -> None:
        self.value = 0.0


class _SingleValue(_Metric):
    def _new_series(self) -> _Value:
        return _Value()

    def value(self, **labels: str) -> float:
        return self._series_for(labels).value

    def _samples(self, labels: Dict[str, str], series: _Value) -> List[Sample]:
        return [(self.name, labels, series.value)]


class Counter(_SingleValue):
    kind = "counter"

    def inc(self, amount: float = 1, **labels: str) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        series = self._series_for(labels)
        with self._lock:
            series.value += amount


class Gauge(_SingleValue):
    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        series = self._series_for(labels)
        with self._lock:
            series.value = value


class _Buckets:
    __slots__ = ("counts", "total", "count")

    def __init__(self, size: int) -> None:
        self.counts = [0] * size
        self.total = 0.0
        self.count = 0


class Histogram(_Metric):
    kind = "histogram"

    def __init__(
        self,
        name: str,
        help_text: str,
        label_names: Sequence[str] = (),
        buckets: Tuple[float, ...] = DURATION_BUCKETS,
    ) -> None:
        super().__init__(name, help_text, label_names)
        self.buckets = buckets if buckets[-1] == float("inf") else (*buckets, float("inf"))

    def _new_series(self) -> _Buckets:
        return _Buckets(len(self.buckets))

    def observe(self, value: float, **labels: str) -> None:
        series = self._series_for(labels)
        with self._lock:
            series.total += value
            series.count += 1
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    series.counts[i] += 1
                    break

    def _samples(self, labels: Dict[str, str], series: _Buckets) -> List[Sample]:
        samples: List[Sample] = []
        cumulative = 0
        for bound, count in zip(self.buckets, series.counts):
            cumulative += count
            le = "+Inf" if math.isinf(bound) else str(bound)
            samples.append((self.name + "_bucket", {**labels, "le": le}, float(cumulative)))
        samples.append((self.name + "_count", labels, float(series.count)))
        samples.append((self.name + "_sum", labels, series.total))
        return samples


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: List[_Metric] = []
        self._lock = threading.Lock()

    def register(self, metric: _Metric) -> Any:
        with self._lock:
            self._metrics.append(metric)
        return metric

    def render(self) -> str:
        with self._lock:
            metrics = list(self._metrics)
        lines: List[str] = []
        for metric in metrics:
            lines.append(f"# HELP {metric.name} {metric.help_text}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for sample_name, labels, value in metric.collect():
                lines.append(f"{sample_name}{_format_labels(labels)} {_format_value(value)}")
        lines.append("")
        return "\n".join(lines)


registry = MetricsRegistry()

preview_started_total: Counter = registry.register(
    Counter("preview_started_total", "Preview processes spawned"),
)

preview_spawn_failures_total: Counter = registry.register(
    Counter("preview_spawn_failures_total", "Preview processes that failed to become ready"),
)

preview_active: Gauge = registry.register(
    Gauge("preview_active", "Preview processes currently registered"),
)

build_runs_total: Counter = registry.register(
    Counter("build_runs_total", "slidev build runs", label_names=("status",)),
)

build_duration_seconds: Histogram = registry.register(
    Histogram("build_duration_seconds", "slidev build duration in seconds"),
)

export_runs_total: Counter = registry.register(
    Counter("export_runs_total", "slidev export runs", label_names=("format", "status")),
)

http_requests_total: Counter = registry.register(
    Counter("http_requests_total", "HTTP requests served", label_names=("method", "path", "status")),
)

http_request_duration_seconds: Histogram = registry.register(
    Histogram(
        "http_request_duration_seconds",
        "HTTP request duration in seconds",
        label_names=("method", "path"),
        buckets=REQUEST_BUCKETS,
    ),
)


class MetricsMiddleware:
    """ASGI middleware recording per-request counts and latency."""

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: Dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http" or scope.get("path") == "/metrics":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        start = time.monotonic()
        status_code = 500

        async def send_wrapper(message: Dict[str, Any]) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # label by route template so per-slide paths don't explode cardinality
            route = scope.get("route")
            path = getattr(route, "path", None) or "unmatched"
            http_requests_total.inc(method=method, path=path, status=str(status_code))
            http_request_duration_seconds.observe(time.monotonic() - start, method=method, path=path)


def create_metrics_endpoint(app: Any, refresh: Optional[Callable[[], None]] = None) -> None:
    """Add GET /metrics; `refresh` runs before each scrape to update point-in-time gauges."""
    from fastapi import Response

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint() -> Response:
        if refresh is not None:
            refresh()
        return Response(
            content=registry.render(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )
