"""Pytest configuration and shared fixtures."""

import pytest
from pathlib import Path
from tempfile import TemporaryDirectory

from tilecache.config import Config, FetchConfig
from tilecache.data.persistence import MemoryBackend
from tilecache.data.store import CacheStore
from tilecache.fetching.gated import DataFetcher
from tilecache.transforms.base import MapperRegistry, ParserRegistry


class FakeClock:
    """Controllable epoch-millisecond clock."""

    def __init__(self, start: int = 1_750_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture
def temp_data_dir():
    """Create a temporary data directory for tests."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store driven by the fake clock."""
    return CacheStore(MemoryBackend(), clock=clock)


@pytest.fixture
def fast_fetch_config():
    """Fetch config without real backoff delays."""
    return FetchConfig(retry_backoff=[0, 0, 0, 0], background_refresh_delay=0, timeout=1.0)


@pytest.fixture
def fetcher(store, fast_fetch_config):
    return DataFetcher(store, MapperRegistry(), ParserRegistry(), fast_fetch_config)


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def sample_uranium_html():
    """Sample commodity page HTML for testing."""
    return '''
    <html>
    <body>
        <div class="quote">
            <h1>Uranium</h1>
            <span id="spot-price">85.50</span>
            <span id="price-change">-1.25</span>
            <span id="price-change-percent">-1.44%</span>
        </div>
        <table id="price-history">
            <tr><th>Date</th><th>Price</th></tr>
            <tr><td>2025-06-01</td><td>86.75</td></tr>
            <tr><td>2025-06-02</td><td>85.50</td></tr>
        </table>
    </body>
    </html>
    '''


@pytest.fixture
def sample_earthquake_feed():
    """Sample USGS GeoJSON feed."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "id": "us7000abcd",
                "properties": {"place": "10 km S of Hualien, Taiwan", "mag": 5.1, "time": 1750000000000},
                "geometry": {"coordinates": [121.6, 23.9, 15.0]},
            },
            {
                "id": "us7000efgh",
                "properties": {"place": "Off the coast of Chile", "mag": 4.4, "time": 1750000100000},
                "geometry": {"coordinates": [-72.1, -35.2, 30.0]},
            },
        ],
    }
