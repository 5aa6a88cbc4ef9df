"""
Shared fixtures: in-memory stores, a fake image fetcher and an API client.
No test touches the network, Redis or an on-disk database.
"""
import io
import threading
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from database import make_engine
from main import create_app
from services.errors import ImageResolutionError
from services.record_store import SqlRecordStore
from services.staging_store import InMemoryStagingStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFetcher:
    """Stands in for the HTTP image download: url -> bytes, or an error message."""

    def __init__(self, delay: float = 0.0):
        self.responses = {}
        self.calls = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def __call__(self, url: str, timeout: float) -> bytes:
        with self._lock:
            self.calls.append(url)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            result = self.responses.get(url, "HTTP 404")
            if isinstance(result, str):
                raise ImageResolutionError(result)
            return result
        finally:
            with self._lock:
                self.in_flight -= 1


def make_image_bytes(width: int = 64, height: int = 48, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    color = (200, 40, 40, 128) if mode == "RGBA" else (200, 40, 40)
    img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_csv_bytes(n_rows: int, header: str = "id,name") -> bytes:
    lines = [header] + [f"{i},name-{i}" for i in range(n_rows)]
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def staging_store():
    return InMemoryStagingStore()


@pytest.fixture
def record_store():
    store = SqlRecordStore(make_engine("sqlite://"))
    store.create_schema()
    return store


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def app(staging_store, record_store, fetcher):
    return create_app(
        staging_store=staging_store,
        record_store=record_store,
        image_fetcher=fetcher,
        sweep_interval=0,
    )


@pytest.fixture
def client(app):
    return TestClient(app)
