"""Upstream failures and the user-facing messages they map to."""

from __future__ import annotations

import json
from typing import Dict, Optional

import httpx

GENERIC_MESSAGE = "Sorry, I encountered an error while processing your request. Please try again."

NOT_FOUND_MESSAGE = "This conversation could not be found. Please start a new chat."

TIMEOUT_MESSAGE = "The travel guide took too long to respond. Please try again in a moment."

BAD_REQUEST_MESSAGES: Dict[str, str] = {
	"invalid_param": "Your message could not be processed. Please rephrase it and try again.",
	"app_unavailable": "The travel guide is currently unavailable. Please try again later.",
	"provider_not_initialize": "The AI provider has not been configured yet. Please contact the site administrator.",
	"provider_quota_exceeded": "The AI service has reached its usage quota. Please try again later.",
	"model_currently_not_support": "The AI model is currently unavailable. Please try again later.",
	"completion_request_error": "The AI could not complete your request. Please try again.",
}


class UpstreamError(Exception):
	"""A failure reported by, or while talking to, the upstream chat API."""

	def __init__(self, status: int, code: str = "", message: str = "") -> None:
		super().__init__(f"{status} {code}: {message}".strip())
		self.status = status
		self.code = code
		self.message = message

	@classmethod
	def from_response(cls, response: httpx.Response) -> "UpstreamError":
		"""Build an error from a non-success response whose body has been read."""
		code = ""
		message = response.reason_phrase or ""
		try:
			body = json.loads(response.text or "{}")
		except json.JSONDecodeError:
			body = None
		if isinstance(body, dict):
			code = str(body.get("code") or "")
			message = str(body.get("message") or message)
		return cls(response.status_code, code, message)

	@classmethod
	def timeout(cls, detail: str = "") -> "UpstreamError":
		return cls(504, "timeout", detail)

	@classmethod
	def incomplete(cls) -> "UpstreamError":
		return cls(502, "incomplete_stream", "Stream ended before message_end.")

	def user_message(self) -> str:
		return user_message_for(self.status, self.code)


def user_message_for(status: Optional[int], code: Optional[str]) -> str:
	"""Return a user-safe message for an upstream status and error code."""
	if code == "timeout":
		return TIMEOUT_MESSAGE
	if status == 404:
		return NOT_FOUND_MESSAGE
	if status == 400 and code in BAD_REQUEST_MESSAGES:
		return BAD_REQUEST_MESSAGES[code]
	return GENERIC_MESSAGE
