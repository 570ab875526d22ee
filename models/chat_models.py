"""Wire models for chat frames exchanged over the websocket."""

from __future__ import annotations

import time
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant", "system"]


def now_millis() -> int:
	return int(time.time() * 1000)


class ChatMessage(BaseModel):
	"""A single chat message as rendered by the UI.

	Instances are frozen; each side builds its own copies and only the
	serialized form crosses the wire.
	"""

	model_config = ConfigDict(frozen=True, populate_by_name=True)

	id: str
	content: str
	role: Role
	timestamp: int
	response_time: Optional[int] = Field(default=None, alias="responseTime", ge=0)

	@classmethod
	def create(
		cls,
		role: Role,
		content: str,
		*,
		message_id: Optional[str] = None,
		timestamp: Optional[int] = None,
		response_time: Optional[int] = None,
	) -> "ChatMessage":
		"""Build a message, filling in a random id and the current time."""
		return cls(
			id=message_id or str(uuid4()),
			content=content,
			role=role,
			timestamp=timestamp if timestamp is not None else now_millis(),
			response_time=response_time,
		)

	def to_wire(self) -> dict:
		return self.model_dump(by_alias=True, exclude_none=True)


class InboundFrame(BaseModel):
	"""Chat input sent by a client."""

	content: str
	timestamp: Optional[float] = None

	@field_validator("content")
	@classmethod
	def _require_text(cls, value: str) -> str:
		if not value.strip():
			raise ValueError("content must not be blank")
		return value
