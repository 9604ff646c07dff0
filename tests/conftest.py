"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import okx_relay without installing it.
"""

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from okx_relay.config.config import Settings  # noqa: E402


class FakeSocket:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self) -> None:
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(text)

    def feed(self, frame) -> None:
        self._inbox.put_nowait(frame)

    def feed_json(self, obj) -> None:
        self.feed(json.dumps(obj))

    def drop(self, code: int = 1006, reason: str = "abnormal closure") -> None:
        """Server-side close."""
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(None)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.drop(code, reason)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._inbox.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    def messages(self):
        return [json.loads(s) for s in self.sent if s != "ping"]

    def ops(self):
        return [m["op"] for m in self.messages()]


class FakeConnector:
    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self.urls = []
        self.sockets = []

    async def __call__(self, url: str) -> FakeSocket:
        self.calls += 1
        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise OSError("connection refused")
        sock = FakeSocket()
        self.sockets.append(sock)
        return sock

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


class RecordingSink:
    def __init__(self, result: bool = True, delay: float = 0.0, exc: Exception = None) -> None:
        self.result = result
        self.delay = delay
        self.exc = exc
        self.calls = []

    async def send_order_notification(self, time, instrument, side_label, size_text, state_label):
        self.calls.append((time, instrument, side_label, size_text, state_label))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.result

    async def close(self) -> None:
        pass


async def _wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def make_connector():
    return FakeConnector


@pytest.fixture
def make_sink():
    return RecordingSink


BASE_SETTINGS = Settings(
    api_key="test-key",
    secret_key="test-secret",
    passphrase="test-pass",
    simulated=True,
    ws_url_override=None,
    heartbeat_sec=25.0,
    reconnect_delay_sec=5.0,
    connect_timeout_sec=10.0,
    liveness_timeout_sec=0.0,
    notify_type="wechat",
    notify_timeout_sec=10.0,
    wechat_api_url="https://push.example.com/api/send",
    wechat_openid="openid-1",
    wechat_template_id="tpl-1",
    webhook_url=None,
    http_port=0,
    http_token=None,
    log_file=None,
    log_level="INFO",
)


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        return replace(BASE_SETTINGS, **overrides)
    return _make
