"""Liveness sweep over open chat connections."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Dict, List, Optional, Protocol

from starlette.websockets import WebSocketState

from services.chat.session_store import SessionStore

LOGGER = logging.getLogger(__name__)

GOING_AWAY = 1001


class TrackedSocket(Protocol):
	client_state: WebSocketState
	application_state: WebSocketState

	async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


def _is_open(websocket: TrackedSocket) -> bool:
	return (
		websocket.client_state == WebSocketState.CONNECTED
		and websocket.application_state == WebSocketState.CONNECTED
	)


class ConnectionRegistry:
	"""Track live sockets and reap the ones that stopped answering.

	Protocol-level ping/pong runs inside the ASGI server (uvicorn
	``ws_ping_interval``/``ws_ping_timeout``); a peer that misses a pong is
	closed there. Each sweep marks a session pending unless its socket is
	still open, and inbound frames mark it alive again. A session still
	pending at the next sweep is terminated and removed. The sweep works on
	a copy of the registry, so entries may vanish while it runs.
	"""

	def __init__(self, store: SessionStore, interval: float = 30.0) -> None:
		self.store = store
		self.interval = interval
		self._connections: Dict[str, TrackedSocket] = {}
		self._task: Optional[asyncio.Task] = None

	def register(self, connection_id: str, websocket: TrackedSocket) -> None:
		self.store.get(connection_id).is_alive = True
		self._connections[connection_id] = websocket

	def unregister(self, connection_id: str) -> None:
		self._connections.pop(connection_id, None)

	def mark_alive(self, connection_id: str) -> None:
		with contextlib.suppress(KeyError):
			self.store.get(connection_id).is_alive = True

	def __len__(self) -> int:
		return len(self._connections)

	async def sweep(self) -> List[str]:
		"""Run one heartbeat pass and return the ids of terminated connections."""
		terminated: List[str] = []
		for connection_id, websocket in list(self._connections.items()):
			try:
				session = self.store.get(connection_id)
			except KeyError:
				self.unregister(connection_id)
				continue
			if not session.is_alive:
				LOGGER.info("Terminating unresponsive connection %s", connection_id)
				self.unregister(connection_id)
				self.store.release(connection_id)
				terminated.append(connection_id)
				with contextlib.suppress(Exception):
					await websocket.close(code=GOING_AWAY, reason="heartbeat timeout")
				continue
			session.is_alive = _is_open(websocket)
		return terminated

	def start(self) -> asyncio.Task:
		"""Start the periodic sweep (idempotent)."""
		if self._task is None:
			self._task = asyncio.create_task(self._run())
		return self._task

	async def stop(self) -> None:
		if self._task is None:
			return
		self._task.cancel()
		with contextlib.suppress(asyncio.CancelledError):
			await self._task
		self._task = None

	async def _run(self) -> None:
		while True:
			await asyncio.sleep(self.interval)
			await self.sweep()
