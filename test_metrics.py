"""Tests for slidev_runtime.metrics."""

import pytest

from slidev_runtime.metrics import Counter, Gauge, Histogram, MetricsRegistry


@pytest.fixture
def metrics():
    return MetricsRegistry()


class TestMetrics:
    """Test metric collection and text rendering."""

    def test_counter_with_labels(self, metrics):
        runs = metrics.register(Counter("runs_total", "Runs", label_names=("status",)))
        runs.inc(status="success")
        runs.inc(2, status="failure")

        text = metrics.render()

        assert "# TYPE runs_total counter" in text
        assert 'runs_total{status="success"} 1' in text
        assert 'runs_total{status="failure"} 2' in text

    def test_counter_rejects_decrease(self, metrics):
        counter = metrics.register(Counter("c_total", "C"))
        with pytest.raises(ValueError):
            counter.inc(-1)

    def test_wrong_labels_rejected(self, metrics):
        counter = metrics.register(Counter("c_total", "C", label_names=("format",)))
        with pytest.raises(ValueError):
            counter.inc(status="x")

    def test_unlabelled_metrics_render_zero(self, metrics):
        metrics.register(Gauge("active", "Active"))

        assert "active 0" in metrics.render()

    def test_gauge_set(self, metrics):
        gauge = metrics.register(Gauge("active", "Active"))
        gauge.set(3)

        assert gauge.value() == 3
        assert "active 3" in metrics.render()

    def test_histogram_buckets_are_cumulative(self, metrics):
        hist = metrics.register(Histogram("d_seconds", "D", buckets=(1.0, 5.0)))
        hist.observe(0.5)
        hist.observe(2.0)
        hist.observe(10.0)

        text = metrics.render()

        assert 'd_seconds_bucket{le="1.0"} 1' in text
        assert 'd_seconds_bucket{le="5.0"} 2' in text
        assert 'd_seconds_bucket{le="+Inf"} 3' in text
        assert "d_seconds_count 3" in text
        assert "d_seconds_sum 12.5" in text

    def test_label_values_are_escaped(self, metrics):
        counter = metrics.register(Counter("p_total", "P", label_names=("path",)))
        counter.inc(path='a"b')

        assert 'p_total{path="a\\"b"} 1' in metrics.render()
