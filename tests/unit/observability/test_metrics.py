"""Tests for the process-wide Prometheus metrics."""

from prometheus_client import REGISTRY

from tripnotes.observability.metrics import (
    get_metrics,
    record_assembly,
    record_cache_hit,
    record_kv_error,
    record_store_operation,
    record_trip_load,
)


def _sample(name: str, **labels: str) -> float:
    get_metrics()
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestRecorders:
    """Each recorder increments its labelled series."""

    def test_cache_hit(self) -> None:
        before = _sample("tripnotes_cache_hits_total", kind="item")
        record_cache_hit("item")
        assert _sample("tripnotes_cache_hits_total", kind="item") == before + 1

    def test_trip_load_source(self) -> None:
        before = _sample("tripnotes_trip_loads_total", source="assembled")
        record_trip_load("assembled")
        assert _sample("tripnotes_trip_loads_total", source="assembled") == before + 1

    def test_assembly_outcome(self) -> None:
        before = _sample("tripnotes_assemblies_total", outcome="partial")
        record_assembly("partial")
        assert _sample("tripnotes_assemblies_total", outcome="partial") == before + 1

    def test_kv_error(self) -> None:
        before = _sample("tripnotes_kv_errors_total", operation="get")
        record_kv_error("get")
        assert _sample("tripnotes_kv_errors_total", operation="get") == before + 1

    def test_store_latency(self) -> None:
        name = "tripnotes_store_operation_duration_seconds_count"
        before = _sample(name, operation="fetch_tree")
        record_store_operation("fetch_tree", 0.02)
        assert _sample(name, operation="fetch_tree") == before + 1


class TestRegistry:
    def test_initialized_once(self) -> None:
        assert get_metrics() is get_metrics()

    def test_exposition(self) -> None:
        record_cache_hit("metadata")
        assert b"tripnotes_cache_hits_total" in get_metrics().generate_latest()
