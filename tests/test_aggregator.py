import pytest

from measurement_client.aggregator import DiagnosticAggregator, deduplicate, rank, split_budget
from measurement_client.processors import parse_globalping_dns, parse_globalping_ping
from measurement_client.exceptions import (
    DiagnosticError, InvalidDomainError, ProviderError, ValidationError,
)
from helpers import FakeProvider, make_result


@pytest.mark.parametrize("limit,expected", [(1, 1), (2, 1), (5, 3), (50, 25), (1000, 500)])
def test_split_budget_rounds_up(limit, expected):
    assert split_budget(limit) == expected


def test_deduplicate_by_asn_and_ip_keeps_first_seen_order():
    results = [
        make_result("globalping", 1, ip="1.1.1.1", asn="AS1", latency_ms=10.0),
        make_result("ripe_atlas", 2, ip="2.2.2.2", asn="AS2", latency_ms=20.0),
        make_result("ripe_atlas", 3, ip="1.1.1.1", asn="AS1", latency_ms=30.0),
        make_result("globalping", 4, ip="1.1.1.1", asn="AS9", latency_ms=40.0),
    ]

    unique = deduplicate(results)

    assert [r["probe_id"] for r in unique] == [1, 2, 4]


def test_deduplicate_prefers_measured_latency_between_equal_statuses():
    results = [
        make_result("ripe_atlas", 1, "dns", ip="1.1.1.1", asn="AS1", latency_ms=None),
        make_result("ripe_atlas", 2, "dns", ip="1.1.1.1", asn="AS1", latency_ms=15.0),
    ]

    unique = deduplicate(results)

    assert len(unique) == 1
    assert unique[0]["probe_id"] == 2


def test_deduplicate_prefers_ping_over_dns_for_same_probe():
    results = [
        make_result("globalping", 1, "dns", ip="1.1.1.1", asn="AS1", latency_ms=12.0),
        make_result("globalping", 101, "ping", ip="1.1.1.1", asn="AS1", latency_ms=8.0),
    ]

    unique = deduplicate(results)

    assert [r["probe_id"] for r in unique] == [101]


def test_deduplicate_keeps_worse_status_on_same_network():
    results = [
        make_result("globalping", 1, "ping", ip="1.1.1.1", asn="AS1", latency_ms=10.0),
        make_result("ripe_atlas", 2, "ping", ip="1.1.1.1", asn="AS1", latency_ms=None, status="ERROR"),
        make_result("globalping", 3, "ping", ip="1.1.1.1", asn="AS1", latency_ms=250.0, status="WARNING"),
    ]

    unique = deduplicate(results)

    assert [(r["probe_id"], r["status"]) for r in unique] == [(2, "ERROR")]


def test_deduplicate_does_not_collapse_unknown_networks():
    results = [
        make_result("ripe_atlas", 1, ip="N/A", asn="N/A"),
        make_result("ripe_atlas", 2, ip="N/A", asn="N/A"),
        make_result("ripe_atlas", 2, ip="N/A", asn="N/A"),
        make_result("globalping", 3, ip="0.0.0.0", asn="AS1"),
    ]

    unique = deduplicate(results)

    assert [r["probe_id"] for r in unique] == [1, 2, 3]


def test_rank_orders_by_severity_then_latency():
    results = [
        make_result(probe_id=1, latency_ms=50.0),
        make_result(probe_id=2, latency_ms=None),
        make_result(probe_id=3, latency_ms=5.0),
        make_result(probe_id=4, latency_ms=300.0, status="WARNING"),
        make_result(probe_id=5, latency_ms=None, status="ERROR"),
    ]

    assert [r["probe_id"] for r in rank(results)] == [5, 4, 3, 1, 2]


def test_run_merges_both_providers(aggregator, globalping_provider, ripe_provider, store):
    diagnostic = aggregator.run("Example.com", "br", 10)

    assert globalping_provider.calls == [("example.com", "BR", 5)]
    assert ripe_provider.calls == [("example.com", "BR", 5)]

    assert diagnostic["id"] == 1
    assert diagnostic["domain"] == "example.com"
    assert diagnostic["scope"] == "BR"
    assert diagnostic["total_probes"] == 3
    assert [(r["source"], r["probe_id"]) for r in diagnostic["results"]] == [
        ("ripe_atlas", 5002),
        ("globalping", 100),
        ("ripe_atlas", 5001),
    ]
    assert diagnostic["summary"] == (
        "Hybrid: 3 unique probes found. | CRITICAL BR: critical failure detected (Claro)"
    )
    assert diagnostic["providers"]["globalping"]["state"] == "ok"
    assert diagnostic["providers"]["ripe_atlas"]["count"] == 2
    assert diagnostic["regions"]["BR"]["error"] == 1
    assert diagnostic["regions"]["BR"]["warning"] == 0
    assert store.get(1)["summary"] == diagnostic["summary"]


def test_run_caps_results_to_limit(aggregator):
    diagnostic = aggregator.run("example.com", "GLOBAL", 2)

    assert diagnostic["total_probes"] == 2
    assert len(diagnostic["results"]) == 2


def test_run_degrades_when_one_provider_fails(globalping_provider, store, config):
    failing = FakeProvider(error=ProviderError("ripe_atlas", "timeout"))
    aggregator = DiagnosticAggregator(globalping_provider, failing, store, config)

    diagnostic = aggregator.run("example.com", "GLOBAL", 50)

    assert diagnostic["total_probes"] == 2
    assert diagnostic["providers"]["ripe_atlas"]["state"] == "failed"
    assert "timeout" in diagnostic["providers"]["ripe_atlas"]["error"]
    assert diagnostic["summary"].endswith("RIPE Atlas unavailable")


def test_run_with_empty_provider_is_not_a_failure(ripe_provider, store, config):
    empty = FakeProvider(results=[])
    aggregator = DiagnosticAggregator(empty, ripe_provider, store, config)

    diagnostic = aggregator.run("example.com", "GLOBAL", 50)

    assert diagnostic["providers"]["globalping"]["state"] == "empty"
    assert "unavailable" not in diagnostic["summary"]


def test_run_fails_when_every_provider_fails(store, config):
    aggregator = DiagnosticAggregator(
        FakeProvider(error=RuntimeError("down")),
        FakeProvider(error=ProviderError("ripe_atlas", "down")),
        store, config
    )

    with pytest.raises(DiagnosticError) as excinfo:
        aggregator.run("example.com", "GLOBAL", 10)

    assert set(excinfo.value.details) == {"globalping", "ripe_atlas"}
    assert len(store) == 0


@pytest.mark.parametrize("domain,limit,error", [
    ("not a domain", 10, InvalidDomainError),
    ("example.com", 0, ValidationError),
    ("example.com", 1001, ValidationError),
    ("example.com", "many", ValidationError),
    ("example.com", True, ValidationError),
    ("example.com", 2.9, ValidationError),
])
def test_run_validates_input(aggregator, globalping_provider, domain, limit, error):
    with pytest.raises(error):
        aggregator.run(domain, "GLOBAL", limit)

    assert globalping_provider.calls == []


def test_run_surfaces_failed_ping_behind_healthy_dns_lookup(store, config, thresholds):
    probe = {"country": "BR", "asn": 28573, "network": "Claro"}
    dns = parse_globalping_dns({"results": [{
        "probe": probe,
        "result": {"answers": [{"type": "A", "value": "93.184.216.34"}], "timings": {"total": 12}},
    }]}, "BR", 0)
    ping = parse_globalping_ping({"results": [{
        "probe": probe,
        "result": {"resolvedAddress": "93.184.216.34",
                   "stats": {"min": 600, "avg": 650, "max": 700, "loss": 50}},
    }]}, "BR", 100, thresholds)
    assert [r["status"] for r in dns + ping] == ["OK", "ERROR"]

    aggregator = DiagnosticAggregator(FakeProvider(results=dns + ping), FakeProvider(results=[]), store, config)
    diagnostic = aggregator.run("example.com", "BR", 10)

    assert [(r["measurement"], r["status"]) for r in diagnostic["results"]] == [("ping", "ERROR")]
    assert "CRITICAL BR: critical failure detected (Claro)" in diagnostic["summary"]


def test_run_keeps_ripe_error_over_globalping_warning(store, config):
    globalping = FakeProvider(results=[
        make_result("globalping", 110, "ping", "BR", ip="93.184.216.34", asn="AS28573", isp="Claro",
                    latency_ms=250.0, status="WARNING", accessibility="Instability detected"),
    ])
    ripe = FakeProvider(results=[
        make_result("ripe_atlas", 5002, "ping", "BR", ip="93.184.216.34", asn="AS28573", isp="Claro",
                    latency_ms=None, status="ERROR", accessibility="Unreachable"),
    ])

    diagnostic = DiagnosticAggregator(globalping, ripe, store, config).run("example.com", "BR", 10)

    assert [(r["source"], r["status"]) for r in diagnostic["results"]] == [("ripe_atlas", "ERROR")]
    assert diagnostic["summary"] == "Hybrid: 1 unique probes found. | CRITICAL BR: critical failure detected (Claro)"


def test_run_accepts_integral_float_limit(aggregator, globalping_provider):
    aggregator.run("example.com", "GLOBAL", 4.0)

    assert globalping_provider.calls == [("example.com", "GLOBAL", 2)]
