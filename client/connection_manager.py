"""Client-side websocket connection manager.

One manager owns one logical connection for the whole front end. It keeps a
FIFO of texts typed while the socket is down, reconnects with capped
exponential backoff and hands every inbound chat frame to its subscribers
in arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, List, Optional, Set

from pydantic import ValidationError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from models.chat_models import ChatMessage, now_millis

LOGGER = logging.getLogger(__name__)

Handler = Callable[[ChatMessage], None]
Opener = Callable[[str], Awaitable[Any]]

GIVE_UP_MESSAGE = "Connection to the travel guide was lost. Please check your network and reload."


@dataclass(frozen=True)
class ReconnectPolicy:
	"""Exponential backoff between reconnect attempts."""

	base_delay: float = 1.0
	factor: float = 1.5
	max_delay: float = 30.0
	max_attempts: int = 10

	def next_delay(self, delay: float) -> float:
		return min(delay * self.factor, self.max_delay)


async def _open_websocket(url: str) -> Any:
	# The manager enforces its own establishment timeout.
	return await ws_connect(url, open_timeout=None)


class ConnectionManager:
	"""Present a stable send/subscribe contract over an unreliable socket."""

	def __init__(
		self,
		url: str,
		*,
		policy: Optional[ReconnectPolicy] = None,
		opener: Optional[Opener] = None,
		settle_delay: float = 0.1,
		drain_delay: float = 0.1,
		open_timeout: float = 5.0,
	) -> None:
		self.url = url
		self.policy = policy or ReconnectPolicy()
		self.settle_delay = settle_delay
		self.drain_delay = drain_delay
		self.open_timeout = open_timeout
		self._opener = opener or _open_websocket

		self._socket: Any = None
		self._handlers: List[Handler] = []
		self._pending: Deque[str] = deque()
		self.connecting = False
		self.ready = False
		self.gave_up = False
		self.reconnect_attempts = 0
		self.current_delay = self.policy.base_delay

		self._closed = False
		self._reader: Optional[asyncio.Task] = None
		self._reconnect_task: Optional[asyncio.Task] = None
		self._background: Set[asyncio.Task] = set()

	@property
	def pending(self) -> List[str]:
		"""Texts waiting for a connection, oldest first."""
		return list(self._pending)

	def subscribe(self, handler: Handler) -> Callable[[], None]:
		"""Register ``handler`` for inbound messages and return its unsubscribe function."""
		self._handlers.append(handler)

		def unsubscribe() -> None:
			with contextlib.suppress(ValueError):
				self._handlers.remove(handler)

		return unsubscribe

	async def connect(self) -> None:
		"""Open a fresh socket unless an attempt is already in flight."""
		if self.connecting or self._closed:
			return
		self.connecting = True
		self.ready = False
		await self._close_socket()
		await asyncio.sleep(self.settle_delay)
		try:
			socket = await asyncio.wait_for(self._opener(self.url), timeout=self.open_timeout)
		except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
			LOGGER.warning("Could not connect to %s: %s", self.url, exc or type(exc).__name__)
			self.connecting = False
			self._schedule_reconnect()
			return
		if self._closed:
			self.connecting = False
			with contextlib.suppress(Exception):
				await socket.close()
			return

		self._socket = socket
		self.connecting = False
		self.ready = True
		self.gave_up = False
		self.reconnect_attempts = 0
		self.current_delay = self.policy.base_delay
		LOGGER.info("Connected to %s", self.url)
		self._reader = asyncio.create_task(self._read(socket))
		await self._drain(socket)

	async def send(self, text: str) -> None:
		"""Send ``text`` now, or queue it until the connection is ready."""
		if not text or not text.strip():
			return
		socket = self._socket
		if self.ready and socket is not None and not self._pending:
			try:
				await self._transmit(socket, text)
				return
			except ConnectionClosed as exc:
				LOGGER.warning("Send failed, queueing message: %s", exc)
				self._pending.append(text)
				self._lost(socket)
				return
		self._pending.append(text)
		if not self.ready and not self.connecting and not self.gave_up:
			self._spawn(self.connect())

	async def close(self) -> None:
		"""Tear the manager down for good."""
		self._closed = True
		self.ready = False
		tasks = [task for task in (self._reader, self._reconnect_task) if task is not None]
		tasks.extend(self._background)
		for task in tasks:
			task.cancel()
		await self._close_socket()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)

	async def _drain(self, socket: Any) -> None:
		while self._pending and self.ready and self._socket is socket:
			text = self._pending[0]
			try:
				await self._transmit(socket, text)
			except ConnectionClosed as exc:
				LOGGER.warning("Connection dropped while draining queue: %s", exc)
				self._lost(socket)
				return
			self._pending.popleft()
			if self._pending:
				await asyncio.sleep(self.drain_delay)

	@staticmethod
	async def _transmit(socket: Any, text: str) -> None:
		await socket.send(json.dumps({"content": text, "timestamp": now_millis()}))

	async def _read(self, socket: Any) -> None:
		try:
			async for raw in socket:
				self._dispatch(raw)
		except ConnectionClosed as exc:
			LOGGER.info("Connection closed: %s", exc)
		finally:
			self._lost(socket)

	def _dispatch(self, raw: Any) -> None:
		try:
			payload = json.loads(raw)
		except (TypeError, ValueError) as exc:
			LOGGER.warning("Dropping unparseable frame: %s", exc)
			return
		try:
			message = ChatMessage.model_validate(payload)
		except ValidationError as exc:
			LOGGER.warning("Dropping frame that is not a chat message: %s", exc.errors())
			return
		self._notify(message)

	def _notify(self, message: ChatMessage) -> None:
		for handler in list(self._handlers):
			try:
				handler(message)
			except Exception:  # pylint: disable=broad-exception-caught
				LOGGER.exception("Message subscriber failed")

	def _lost(self, socket: Any) -> None:
		"""Handle the loss of ``socket``; stale sockets are ignored."""
		if socket is not self._socket:
			return
		self._socket = None
		self.ready = False
		self.connecting = False
		self._schedule_reconnect()

	def _schedule_reconnect(self) -> None:
		if self._closed:
			return
		if self._reconnect_task is not None and not self._reconnect_task.done():
			return
		if self.reconnect_attempts >= self.policy.max_attempts:
			if not self.gave_up:
				self.gave_up = True
				LOGGER.error("Giving up on %s after %s attempts", self.url, self.reconnect_attempts)
				self._notify(ChatMessage.create("system", GIVE_UP_MESSAGE))
			return
		delay = self.current_delay
		self.reconnect_attempts += 1
		self.current_delay = self.policy.next_delay(delay)
		LOGGER.info("Reconnecting in %.2fs (attempt %s)", delay, self.reconnect_attempts)
		self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

	async def _reconnect_after(self, delay: float) -> None:
		await asyncio.sleep(delay)
		self._reconnect_task = None
		if self.ready or self.connecting or self._closed:
			return
		await self.connect()

	async def _close_socket(self) -> None:
		socket, self._socket = self._socket, None
		if socket is None:
			return
		with contextlib.suppress(ConnectionClosed, OSError):
			await socket.close()

	def _spawn(self, coro: Awaitable[None]) -> None:
		task = asyncio.ensure_future(coro)
		self._background.add(task)
		task.add_done_callback(self._background.discard)
