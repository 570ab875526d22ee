"""Streaming client for the Dify chat-messages endpoint."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from services.dify.errors import UpstreamError
from services.dify.prompts import tourism_system_prompt
from services.dify.stream_decoder import StreamDecoder, StreamEvent

LOGGER = logging.getLogger(__name__)


class DifyChatClient:
	"""Issue one streaming chat request and yield decoded events."""

	def __init__(
		self,
		http: httpx.AsyncClient,
		*,
		api_key: str,
		base_url: str = "https://api.dify.ai/v1",
		user: str = "tourist",
		inputs: Optional[Dict[str, Any]] = None,
	) -> None:
		if http is None:
			raise ValueError("httpx.AsyncClient is required.")
		if not api_key:
			raise ValueError("Dify API key is required.")
		self.http = http
		self.api_key = api_key
		self.base_url = base_url.rstrip("/")
		self.user = user
		self.inputs = inputs if inputs is not None else {"system_prompt": tourism_system_prompt()}

	def build_payload(self, query: str, conversation_id: Optional[str]) -> Dict[str, Any]:
		return {
			"query": query,
			"response_mode": "streaming",
			"conversation_id": conversation_id or "",
			"user": self.user,
			"inputs": self.inputs,
		}

	async def stream_chat(self, query: str, conversation_id: Optional[str] = None) -> AsyncIterator[StreamEvent]:
		"""Yield events for one user query.

		Raises:
			UpstreamError: the endpoint answered with a non-2xx status.
			httpx.HTTPError: the request failed at the network level.
		"""
		headers = {
			"Authorization": f"Bearer {self.api_key}",
			"Content-Type": "application/json",
			"Accept": "text/event-stream",
		}
		payload = self.build_payload(query, conversation_id)
		async with self.http.stream(
			"POST", f"{self.base_url}/chat-messages", json=payload, headers=headers
		) as response:
			if not response.is_success:
				await response.aread()
				LOGGER.error("Dify API error %s: %s", response.status_code, response.text)
				raise UpstreamError.from_response(response)
			decoder = StreamDecoder()
			async for chunk in response.aiter_bytes():
				for event in decoder.feed(chunk):
					yield event
			for event in decoder.flush():
				yield event
