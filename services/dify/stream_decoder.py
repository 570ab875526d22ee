"""Incremental decoder for the Dify streaming (SSE) response body.

The body arrives in arbitrary chunks. Each complete line that starts with
``data:`` carries one JSON object whose ``event`` key selects the variant.
A trailing fragment without a newline is held back until the next chunk so
an event is never built from half a line.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data:"


@dataclass(frozen=True)
class MessageEvent:
	answer: str
	message_id: str
	conversation_id: str
	created_at: Optional[float]


@dataclass(frozen=True)
class MessageEndEvent:
	conversation_id: str
	latency: Optional[float]


@dataclass(frozen=True)
class ErrorEvent:
	status: int
	code: str
	message: str


@dataclass(frozen=True)
class PingEvent:
	pass


@dataclass(frozen=True)
class UnknownEvent:
	"""An event tag this client does not understand; safe to ignore."""

	tag: str


StreamEvent = Union[MessageEvent, MessageEndEvent, ErrorEvent, PingEvent, UnknownEvent]


def _latency(payload: Dict[str, Any]) -> Optional[float]:
	metadata = payload.get("metadata") or {}
	usage = metadata.get("usage") or payload.get("usage") or {}
	value = usage.get("latency")
	if value is None:
		return None
	try:
		return float(value)
	except (TypeError, ValueError):
		return None


def _status(value: Any) -> int:
	try:
		return int(value)
	except (TypeError, ValueError):
		return 500


def parse_event(payload: Dict[str, Any]) -> StreamEvent:
	"""Map one decoded JSON object onto its event variant."""
	tag = payload.get("event") or ""
	if tag == "message":
		return MessageEvent(
			answer=payload.get("answer") or "",
			message_id=payload.get("message_id") or payload.get("id") or "",
			conversation_id=payload.get("conversation_id") or "",
			created_at=payload.get("created_at"),
		)
	if tag == "message_end":
		return MessageEndEvent(
			conversation_id=payload.get("conversation_id") or "",
			latency=_latency(payload),
		)
	if tag == "error":
		return ErrorEvent(
			status=_status(payload.get("status")),
			code=str(payload.get("code") or ""),
			message=str(payload.get("message") or ""),
		)
	if tag == "ping":
		return PingEvent()
	return UnknownEvent(tag=str(tag))


class StreamDecoder:
	"""Turn raw body chunks into stream events, one complete line at a time."""

	def __init__(self, prefix: str = DATA_PREFIX) -> None:
		self.prefix = prefix
		self._buffer = ""
		self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

	def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
		"""Consume a chunk and return the events completed by it."""
		if isinstance(chunk, bytes):
			chunk = self._utf8.decode(chunk)
		self._buffer += chunk
		lines = self._buffer.split("\n")
		self._buffer = lines.pop()
		return [event for event in (self._parse_line(line) for line in lines) if event is not None]

	def flush(self) -> List[StreamEvent]:
		"""Process whatever is left once the body has ended."""
		self._buffer += self._utf8.decode(b"", final=True)
		remainder, self._buffer = self._buffer, ""
		event = self._parse_line(remainder)
		return [event] if event is not None else []

	def _parse_line(self, line: str) -> Optional[StreamEvent]:
		line = line.rstrip("\r")
		if not line.startswith(self.prefix):
			return None
		data = line[len(self.prefix):].strip()
		if not data:
			return None
		try:
			payload = json.loads(data)
		except json.JSONDecodeError as exc:
			LOGGER.warning("Skipping undecodable stream line: %s", exc)
			return None
		if not isinstance(payload, dict):
			LOGGER.warning("Skipping non-object stream payload: %r", payload)
			return None
		return parse_event(payload)
