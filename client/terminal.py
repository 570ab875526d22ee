"""Terminal chat front end: the composition root for the client side."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, TextIO
from urllib.parse import urlsplit, urlunsplit

import httpx

from client.connection_manager import ConnectionManager
from models.chat_models import ChatMessage

LOGGER = logging.getLogger(__name__)

_HTTP_TO_WS = {"http": "ws", "https": "wss"}


async def resolve_socket_url(base_url: str, http: Optional[httpx.AsyncClient] = None) -> str:
	"""Ask the server which port it bound and build the websocket URL from it.

	Falls back to the port in ``base_url`` when the lookup fails.
	"""
	parts = urlsplit(base_url)
	scheme = _HTTP_TO_WS.get(parts.scheme, parts.scheme or "ws")
	host = parts.hostname or "localhost"
	port = parts.port

	owns_client = http is None
	http = http or httpx.AsyncClient(timeout=5.0)
	try:
		response = await http.get(f"{base_url.rstrip('/')}/api/port")
		response.raise_for_status()
		port = int(response.json()["port"])
	except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
		LOGGER.warning("Port lookup failed, using %s: %s", base_url, exc)
	finally:
		if owns_client:
			await http.aclose()

	netloc = f"{host}:{port}" if port else host
	return urlunsplit((scheme, netloc, "/ws", "", ""))


class TerminalView:
	"""Print chat frames as they arrive."""

	def __init__(self, out: TextIO = sys.stdout) -> None:
		self.out = out
		self._mid_answer = False

	def render(self, message: ChatMessage) -> None:
		if message.role == "assistant":
			if not self._mid_answer:
				self.out.write("guide> ")
				self._mid_answer = True
			self.out.write(message.content)
		elif message.response_time is not None:
			self._end_answer()
			self.out.write(f"  (answered in {message.response_time / 1000:.1f}s)\n")
		else:
			self._end_answer()
			label = "you" if message.role == "user" else "*"
			self.out.write(f"{label}> {message.content}\n")
		self.out.flush()

	def _end_answer(self) -> None:
		if self._mid_answer:
			self.out.write("\n")
			self._mid_answer = False


async def chat(connection: ConnectionManager, view: TerminalView, lines: TextIO = sys.stdin) -> None:
	"""Forward typed lines to ``connection`` until EOF or ``/quit``."""
	unsubscribe = connection.subscribe(view.render)
	try:
		await connection.connect()
		while True:
			line = await asyncio.to_thread(lines.readline)
			if not line or line.strip() == "/quit":
				break
			await connection.send(line.rstrip("\n"))
	finally:
		unsubscribe()
		await connection.close()


async def _main(base_url: str) -> None:
	url = await resolve_socket_url(base_url)
	await chat(ConnectionManager(url), TerminalView())


def main() -> None:
	parser = argparse.ArgumentParser(description="Chat with the AI Tourism Guide from a terminal.")
	parser.add_argument("--url", default="http://localhost:5000", help="Base HTTP URL of the relay server")
	parser.add_argument("--verbose", action="store_true", help="Log connection activity")
	args = parser.parse_args()
	logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
	try:
		asyncio.run(_main(args.url))
	except KeyboardInterrupt:
		pass


if __name__ == "__main__":
	main()
