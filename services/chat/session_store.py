"""Simple in-memory store for relayed chat sessions."""

from __future__ import annotations

from typing import Dict
from uuid import uuid4

from models.session_models import ConversationSession


class SessionStore:
	"""Manage one conversation session per accepted websocket connection."""

	def __init__(self) -> None:
		self._sessions: Dict[str, ConversationSession] = {}

	def create(self) -> ConversationSession:
		"""Create a live session with a fresh connection id."""
		connection_id = uuid4().hex
		session = ConversationSession(connection_id=connection_id)
		self._sessions[connection_id] = session
		return session

	def get(self, connection_id: str) -> ConversationSession:
		"""Return a session or raise KeyError if missing."""
		session = self._sessions.get(connection_id)
		if session is None:
			raise KeyError(f"Session {connection_id} not found")
		return session

	def release(self, connection_id: str) -> None:
		"""Forget a session; releasing twice is harmless."""
		self._sessions.pop(connection_id, None)

	def __len__(self) -> int:
		return len(self._sessions)
