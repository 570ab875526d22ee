"""Session domain models for relayed chat connections."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ConversationSession:
	"""In-memory state for one accepted websocket connection."""

	connection_id: str
	is_alive: bool = True
	conversation_id: Optional[str] = None
	partial_answer: str = ""
	relay_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

	def remember_conversation(self, conversation_id: Optional[str]) -> None:
		"""Store a conversation id from upstream; empty values never replace a known id."""
		if conversation_id:
			self.conversation_id = conversation_id

	def start_turn(self) -> None:
		self.partial_answer = ""

	def append_fragment(self, fragment: str) -> None:
		self.partial_answer += fragment
