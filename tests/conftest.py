import sys
import copy
import pathlib

import pytest

# Ensure project root is on sys.path so the top-level packages import when
# pytest runs from a different working directory.
_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from measurement_client.config import DEFAULT_CONFIG
from measurement_client.aggregator import DiagnosticAggregator
from web.app import create_app
from web.storage import MemStorage

from helpers import FakeProvider, make_result


@pytest.fixture
def config():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["globalping"].update({"poll_interval": 0, "poll_attempts": 3})
    cfg["ripe_atlas"].update({"poll_interval": 0, "max_wait": 5, "enrichment_workers": 2})
    cfg["credentials"] = {"ripe_atlas_api_key": "", "globalping_api_token": ""}
    return cfg


@pytest.fixture
def thresholds(config):
    return config["classification"]


@pytest.fixture
def store():
    return MemStorage()


@pytest.fixture
def globalping_provider():
    return FakeProvider(results=[
        make_result("globalping", 0, "dns", "US", ip="93.184.216.34", asn="AS15133", isp="Edgecast",
                    latency="12ms", latency_ms=12.0),
        make_result("globalping", 100, "ping", "US", ip="93.184.216.34", asn="AS15133", isp="Edgecast",
                    latency="8ms", latency_ms=8.0, speed="Fast"),
        make_result("globalping", 110, "ping", "BR", ip="93.184.216.34", asn="AS28573", isp="Claro",
                    latency="250ms", latency_ms=250.0, status="WARNING", accessibility="Instability detected"),
    ])


@pytest.fixture
def ripe_provider():
    return FakeProvider(results=[
        make_result("ripe_atlas", 5001, "ping", "DE", ip="93.184.216.34", asn="AS3320", isp="Deutsche Telekom",
                    latency="20.50ms", latency_ms=20.5),
        make_result("ripe_atlas", 5002, "ping", "BR", ip="93.184.216.34", asn="AS28573", isp="Claro",
                    latency="N/A", latency_ms=None, status="ERROR", accessibility="Unreachable"),
    ])


@pytest.fixture
def aggregator(globalping_provider, ripe_provider, store, config):
    return DiagnosticAggregator(globalping_provider, ripe_provider, store, config)


@pytest.fixture
def client(aggregator, store, config):
    app = create_app(config=config, aggregator=aggregator, store=store)
    app.testing = True
    return app.test_client()
