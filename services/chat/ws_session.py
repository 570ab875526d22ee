"""Dispatch inbound chat frames for one websocket connection."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket
from pydantic import ValidationError

from models.chat_models import ChatMessage, InboundFrame
from models.session_models import ConversationSession
from services.chat.heartbeat import ConnectionRegistry
from services.chat.relay import ChatRelay

LOGGER = logging.getLogger(__name__)

MALFORMED_MESSAGE = "An error occurred while processing your message. Please try again."


class ChatSessionHandler:
	"""Route websocket frames for a single chat connection to the relay."""

	def __init__(
		self,
		websocket: WebSocket,
		session: ConversationSession,
		relay: ChatRelay,
		registry: ConnectionRegistry,
	) -> None:
		self.websocket = websocket
		self.session = session
		self.relay = relay
		self.registry = registry
		self._tasks: Set[asyncio.Task] = set()

	async def handle_raw(self, raw: str) -> None:
		"""Process one text frame received from the peer."""
		self.registry.mark_alive(self.session.connection_id)
		try:
			payload = json.loads(raw)
		except json.JSONDecodeError:
			LOGGER.warning("Dropping non-JSON frame on %s", self.session.connection_id)
			await self._reject()
			return
		await self.handle(payload)

	async def handle(self, payload: Any) -> None:
		try:
			frame = InboundFrame.model_validate(payload)
		except ValidationError as exc:
			LOGGER.warning("Rejecting malformed frame on %s: %s", self.session.connection_id, exc.errors())
			await self._reject()
			return

		await self.send(ChatMessage.create("user", frame.content))
		task = asyncio.create_task(self._relay(frame.content))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _relay(self, text: str) -> None:
		try:
			await self.relay.relay(self.session, text, self.send)
		except asyncio.CancelledError:
			raise
		except Exception as exc:  # pylint: disable=broad-exception-caught
			LOGGER.error("Relay aborted for %s: %s", self.session.connection_id, exc)

	async def cancel(self) -> None:
		"""Cancel outstanding relay calls when the connection goes away."""
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._tasks.clear()

	async def send(self, message: ChatMessage) -> None:
		await self._send(message.to_wire())

	async def _reject(self) -> None:
		await self.send(ChatMessage.create("assistant", MALFORMED_MESSAGE))

	async def _send(self, payload: Dict[str, Any]) -> None:
		await self.websocket.send_text(json.dumps(payload))
