"""Shared fixtures: a scripted in-memory socket and connector."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

_project_root = str(Path(__file__).resolve().parents[1])
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from turntracker.config import ClientConfig  # noqa: E402


class FakeSocket:
    """Stands in for a websockets ClientConnection.

    feed() queues an inbound frame, drop() ends the receive loop as if the
    server went away.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, raw: str) -> None:
        self.sent.append(raw)

    def sent_json(self) -> list[dict]:
        return [json.loads(raw) for raw in self.sent]

    def feed(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def drop(self) -> None:
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str:
        raw = await self._incoming.get()
        if raw is None:
            raise StopAsyncIteration
        return raw


class FakeConnector:
    """Connector returning FakeSockets; set fail=True to refuse connections."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self.fail = False
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str, **kwargs) -> FakeSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise OSError("connection refused")
        ws = FakeSocket()
        self.sockets.append(ws)
        return ws

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll until predicate() is truthy, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        ws_url="ws://test.invalid/ws",
        reconnect_delay=0.01,
        max_reconnect_attempts=3,
        request_timeout=0.5,
        open_timeout=1.0,
        room_id_length=6,
        send_request_ids=False,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
