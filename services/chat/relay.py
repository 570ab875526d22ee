"""Relay one user utterance to the upstream chat API and stream the reply back."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from contextlib import aclosing
from typing import Awaitable, Callable, Optional

import httpx

from models.chat_models import ChatMessage, now_millis
from models.session_models import ConversationSession
from services.dify.chat_client import DifyChatClient
from services.dify.errors import UpstreamError
from services.dify.stream_decoder import ErrorEvent, MessageEndEvent, MessageEvent

LOGGER = logging.getLogger(__name__)

Emit = Callable[[ChatMessage], Awaitable[None]]


class RelayState(enum.Enum):
	IDLE = "idle"
	REQUEST_SENT = "request_sent"
	STREAMING = "streaming"
	COMPLETED = "completed"
	FAILED = "failed"


TERMINAL_STATES = {RelayState.COMPLETED, RelayState.FAILED}

_ALLOWED = {
	RelayState.IDLE: {RelayState.REQUEST_SENT},
	RelayState.REQUEST_SENT: {RelayState.STREAMING, RelayState.FAILED},
	RelayState.STREAMING: {RelayState.COMPLETED, RelayState.FAILED},
	RelayState.COMPLETED: set(),
	RelayState.FAILED: set(),
}


class RelayStateError(RuntimeError):
	"""Raised on a transition the relay state machine does not allow."""


class RelayInvocation:
	"""Track the lifecycle of a single relay call."""

	def __init__(self) -> None:
		self.state = RelayState.IDLE

	def advance(self, target: RelayState) -> None:
		if target not in _ALLOWED[self.state]:
			raise RelayStateError(f"Cannot move relay from {self.state.value} to {target.value}")
		self.state = target

	@property
	def finished(self) -> bool:
		return self.state in TERMINAL_STATES


class ChatRelay:
	"""Drive one streaming upstream call per user message.

	Every invocation ends with exactly one terminal frame: either the
	latency-bearing frame after ``message_end`` or a single mapped error.
	Invocations on the same session run one at a time, and each one is
	bounded by ``timeout`` seconds overall, however often upstream pings.
	"""

	def __init__(self, client: DifyChatClient, timeout: Optional[float] = None) -> None:
		if client is None:
			raise ValueError("DifyChatClient is required.")
		self.client = client
		self.timeout = timeout

	async def relay(self, session: ConversationSession, text: str, emit: Emit) -> RelayState:
		"""Relay ``text`` for ``session`` and return the terminal state reached."""
		async with session.relay_lock:
			invocation = RelayInvocation()
			try:
				await asyncio.wait_for(self._run(invocation, session, text, emit), self.timeout)
			except UpstreamError as exc:
				await self._fail(invocation, emit, exc)
			except asyncio.TimeoutError:
				LOGGER.error("Relay for %s exceeded %ss", session.connection_id, self.timeout)
				await self._fail(invocation, emit, UpstreamError.timeout(f"no reply within {self.timeout}s"))
			except httpx.TimeoutException as exc:
				LOGGER.error("Upstream request timed out for %s: %s", session.connection_id, exc)
				await self._fail(invocation, emit, UpstreamError.timeout(str(exc)))
			except httpx.HTTPError as exc:
				LOGGER.error("Upstream request failed for %s: %s", session.connection_id, exc)
				await self._fail(invocation, emit, UpstreamError(502, "network_error", str(exc)))
			return invocation.state

	async def _run(
		self,
		invocation: RelayInvocation,
		session: ConversationSession,
		text: str,
		emit: Emit,
	) -> None:
		session.start_turn()
		started = time.monotonic()
		invocation.advance(RelayState.REQUEST_SENT)
		events = self.client.stream_chat(text, session.conversation_id)
		async with aclosing(events):
			async for event in events:
				if invocation.state is RelayState.REQUEST_SENT:
					invocation.advance(RelayState.STREAMING)
				if isinstance(event, MessageEvent):
					session.append_fragment(event.answer)
					await emit(self._fragment(event))
				elif isinstance(event, MessageEndEvent):
					session.remember_conversation(event.conversation_id)
					invocation.advance(RelayState.COMPLETED)
					await emit(self._terminal(event, started))
					return
				elif isinstance(event, ErrorEvent):
					raise UpstreamError(event.status, event.code, event.message)
				# ping and unrecognized tags keep the loop going
		raise UpstreamError.incomplete()

	async def _fail(self, invocation: RelayInvocation, emit: Emit, exc: UpstreamError) -> None:
		if invocation.finished:
			LOGGER.warning("Ignoring upstream error after relay finished: %s", exc)
			return
		LOGGER.error("Relay failed: status=%s code=%s message=%s", exc.status, exc.code, exc.message)
		invocation.advance(RelayState.FAILED)
		await emit(ChatMessage.create("assistant", exc.user_message()))

	@staticmethod
	def _fragment(event: MessageEvent) -> ChatMessage:
		timestamp = int(event.created_at * 1000) if event.created_at is not None else now_millis()
		return ChatMessage.create(
			"assistant",
			event.answer,
			message_id=event.message_id or None,
			timestamp=timestamp,
		)

	@staticmethod
	def _terminal(event: MessageEndEvent, started: float) -> ChatMessage:
		if event.latency is not None:
			response_time = round(event.latency * 1000)
		else:
			response_time = round((time.monotonic() - started) * 1000)
		return ChatMessage.create("system", "", response_time=max(response_time, 0))
