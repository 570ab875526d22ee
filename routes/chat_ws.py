"""WebSocket endpoint relaying chat messages to the travel guide."""

from __future__ import annotations

import contextlib
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect

from models.chat_models import ChatMessage
from services.chat.heartbeat import ConnectionRegistry
from services.chat.relay import ChatRelay
from services.chat.session_store import SessionStore
from services.chat.ws_session import ChatSessionHandler
from services.dify.prompts import welcome_message

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def _require_relay(websocket: WebSocket) -> ChatRelay:
	relay = getattr(websocket.app.state, "relay", None)
	if relay is None:
		raise HTTPException(status_code=500, detail="Chat relay unavailable")
	return relay


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, relay: ChatRelay = Depends(_require_relay)):
	"""Accept a chat connection and relay each inbound message upstream."""
	store: SessionStore = websocket.app.state.session_store
	registry: ConnectionRegistry = websocket.app.state.registry

	await websocket.accept()
	session = store.create()
	registry.register(session.connection_id, websocket)
	handler = ChatSessionHandler(websocket, session, relay, registry)
	LOGGER.info("Chat connection %s opened", session.connection_id)

	try:
		if websocket.app.state.settings.send_welcome:
			await handler.send(ChatMessage.create("system", welcome_message()))
		while True:
			message = await websocket.receive()
			if message["type"] == "websocket.disconnect":
				raise WebSocketDisconnect(message.get("code", 1000))
			raw = message.get("text")
			if raw is None:
				raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
			await handler.handle_raw(raw)
	except WebSocketDisconnect as exc:
		LOGGER.info("Chat connection %s closed (code=%s)", session.connection_id, exc.code)
	except Exception as exc:  # pylint: disable=broad-exception-caught
		LOGGER.error("Chat connection %s failed: %s", session.connection_id, exc)
	finally:
		await handler.cancel()
		registry.unregister(session.connection_id)
		store.release(session.connection_id)
		with contextlib.suppress(Exception):
			await websocket.close()
