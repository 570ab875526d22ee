"""Unit tests for the client-side connection manager."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, List, Optional

import pytest
from websockets.exceptions import ConnectionClosedError

from client.connection_manager import GIVE_UP_MESSAGE, ConnectionManager, ReconnectPolicy
from models.chat_models import ChatMessage

HANG = object()


class _FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, fail_after: Optional[int] = None) -> None:
        self.sent: List[dict] = []
        self.closed = False
        self.fail_after = fail_after
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed or (self.fail_after is not None and len(self.sent) >= self.fail_after):
            self._shutdown()
            raise ConnectionClosedError(None, None)
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self._shutdown()

    def push(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def contents(self) -> List[str]:
        return [frame["content"] for frame in self.sent if "content" in frame]

    def _shutdown(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class _FakeOpener:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0
        self.sockets: List[_FakeSocket] = []

    async def __call__(self, url: str) -> _FakeSocket:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is HANG:
            await asyncio.sleep(10)
        if isinstance(outcome, BaseException):
            raise outcome
        socket = outcome if isinstance(outcome, _FakeSocket) else _FakeSocket()
        self.sockets.append(socket)
        return socket


class _RecordingManager(ConnectionManager):
    """Records every wait the manager schedules before reconnecting."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.waits: List[float] = []

    async def _reconnect_after(self, delay: float) -> None:
        self.waits.append(delay)
        await super()._reconnect_after(delay)


def _manager(
    opener: _FakeOpener,
    *,
    base_delay: float = 0.01,
    max_delay: float = 0.05,
    max_attempts: int = 5,
    open_timeout: float = 1.0,
) -> _RecordingManager:
    policy = ReconnectPolicy(base_delay=base_delay, factor=2.0, max_delay=max_delay, max_attempts=max_attempts)
    return _RecordingManager(
        "ws://relay.test/ws",
        opener=opener,
        policy=policy,
        settle_delay=0,
        drain_delay=0,
        open_timeout=open_timeout,
    )


async def _until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


def _chat_frame(content: str, role: str = "assistant") -> str:
    return json.dumps(ChatMessage.create(role, content).to_wire())


def test_blank_send_is_ignored() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        await manager.send("   ")
        await manager.send("")
        await asyncio.sleep(0.02)
        assert opener.calls == 0
        assert manager.pending == []
        await manager.close()

    asyncio.run(_run())


def test_messages_sent_while_disconnected_flush_in_order() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        for text in ["first", "second", "third"]:
            await manager.send(text)
        await _until(lambda: opener.sockets and len(opener.sockets[0].sent) == 3)
        assert opener.calls == 1
        assert opener.sockets[0].contents() == ["first", "second", "third"]
        assert manager.pending == []
        assert all(isinstance(frame["timestamp"], int) for frame in opener.sockets[0].sent)
        await manager.close()

    asyncio.run(_run())


def test_concurrent_connect_opens_exactly_one_socket() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        await asyncio.gather(*(manager.connect() for _ in range(5)))
        assert opener.calls == 1
        assert manager.ready
        await manager.close()

    asyncio.run(_run())


def test_send_when_ready_goes_out_immediately() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        await manager.connect()
        await manager.send("Tell me about Tokyo")
        assert opener.sockets[0].contents() == ["Tell me about Tokyo"]
        await manager.close()

    asyncio.run(_run())


def test_drop_mid_drain_keeps_remaining_messages_in_order() -> None:
    async def _run() -> None:
        flaky, healthy = _FakeSocket(fail_after=1), _FakeSocket()
        opener = _FakeOpener(flaky, healthy)
        manager = _manager(opener, base_delay=0.2)
        for text in ["one", "two", "three"]:
            await manager.send(text)

        await _until(lambda: flaky.closed and not manager.ready)
        assert flaky.contents() == ["one"]
        assert manager.pending == ["two", "three"]

        await _until(lambda: len(healthy.sent) == 2)
        assert healthy.contents() == ["two", "three"]
        assert manager.reconnect_attempts == 0
        await manager.close()

    asyncio.run(_run())


def test_inbound_frames_reach_subscribers_and_bad_frames_are_dropped() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        first: List[ChatMessage] = []
        second: List[ChatMessage] = []
        manager.subscribe(first.append)
        unsubscribe_second = manager.subscribe(second.append)
        await manager.connect()
        socket = opener.sockets[0]

        socket.push("{not json")
        socket.push(json.dumps({"unexpected": True}))
        socket.push(_chat_frame("Tokyo is..."))
        socket.push(json.dumps({"type": "ping", "timestamp": 1}))
        await _until(lambda: len(first) == 1)
        await asyncio.sleep(0.02)
        assert len(first) == 1
        assert socket.sent == []

        unsubscribe_second()
        socket.push(_chat_frame(" a vibrant city."))
        await _until(lambda: len(first) == 2)

        assert [m.content for m in first] == ["Tokyo is...", " a vibrant city."]
        assert [m.content for m in second] == ["Tokyo is..."]
        assert manager.ready
        await manager.close()

    asyncio.run(_run())


def test_failing_subscriber_does_not_stop_dispatch() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        received: List[str] = []

        def broken(message: ChatMessage) -> None:
            raise RuntimeError("render failed")

        manager.subscribe(broken)
        manager.subscribe(lambda message: received.append(message.content))
        await manager.connect()
        opener.sockets[0].push(_chat_frame("hello"))
        await _until(lambda: received == ["hello"])
        await manager.close()

    asyncio.run(_run())


def test_reconnect_waits_grow_cap_and_reset_after_open() -> None:
    async def _run() -> None:
        opener = _FakeOpener(*[OSError("refused")] * 5)
        manager = _manager(opener, base_delay=0.01, max_delay=0.04, max_attempts=10)

        await manager.connect()
        await _until(lambda: manager.ready)
        waits = list(manager.waits)
        assert waits == pytest.approx([0.01, 0.02, 0.04, 0.04, 0.04])
        assert all(a <= b for a, b in zip(waits, waits[1:]))
        assert max(waits) == pytest.approx(0.04)
        assert manager.reconnect_attempts == 0
        assert manager.current_delay == manager.policy.base_delay

        await opener.sockets[0].close()
        await _until(lambda: len(opener.sockets) == 2 and manager.ready)
        assert manager.waits[5:] == pytest.approx([0.01])
        await manager.close()

    asyncio.run(_run())


def test_manager_gives_up_after_max_attempts() -> None:
    async def _run() -> None:
        opener = _FakeOpener(*[OSError("refused")] * 10)
        manager = _manager(opener, max_attempts=3)
        notices: List[ChatMessage] = []
        manager.subscribe(notices.append)

        await manager.connect()
        await _until(lambda: manager.gave_up)
        assert opener.calls == 4
        assert [(m.role, m.content) for m in notices] == [("system", GIVE_UP_MESSAGE)]

        await manager.send("still there?")
        await asyncio.sleep(0.05)
        assert opener.calls == 4
        assert manager.pending == ["still there?"]
        await manager.close()

    asyncio.run(_run())


def test_attempt_counter_and_delay_reset_after_successful_open() -> None:
    async def _run() -> None:
        opener = _FakeOpener(OSError("refused"), OSError("refused"))
        manager = _manager(opener)
        await manager.connect()
        assert manager.reconnect_attempts == 1
        await _until(lambda: manager.ready)
        assert opener.calls == 3
        assert manager.reconnect_attempts == 0
        assert manager.current_delay == manager.policy.base_delay
        await manager.close()

    asyncio.run(_run())


def test_open_timeout_falls_back_to_reconnect() -> None:
    async def _run() -> None:
        opener = _FakeOpener(HANG)
        manager = _manager(opener, open_timeout=0.05)
        await manager.connect()
        assert not manager.ready
        await _until(lambda: manager.ready)
        assert opener.calls == 2
        await manager.close()

    asyncio.run(_run())


def test_server_close_triggers_reconnect_and_close_stops_it() -> None:
    async def _run() -> None:
        opener = _FakeOpener()
        manager = _manager(opener)
        await manager.connect()
        await opener.sockets[0].close()
        await _until(lambda: opener.calls == 2 and manager.ready)

        await manager.close()
        assert not manager.ready
        await asyncio.sleep(0.05)
        assert opener.calls == 2

    asyncio.run(_run())
