from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import socketio

from livecomp.scheduling import create_task

logger = logging.getLogger(__name__)

Message = dict[str, Any]


@dataclass(slots=True)
class ActionResult:
	status_code: int
	html: str | None = None
	redirect: str | None = None
	data: dict[str, Any] | None = None

	@property
	def ok(self) -> bool:
		return 200 <= self.status_code < 300


class ActionClient:
	"""Posts action and pull requests with a node's signed token."""

	def __init__(self, client: httpx.AsyncClient | None = None, *, base_url: str = "") -> None:
		self.client = client or httpx.AsyncClient(base_url=base_url)

	async def perform(
		self, url: str, token: str, name: str, params: Mapping[str, Any]
	) -> ActionResult:
		response = await self.client.post(
			url, json={"token": token, "action_name": name, "params": dict(params)}
		)
		result = ActionResult(response.status_code)
		if not result.ok:
			logger.warning("Action %s failed with status %s", name, response.status_code)
			return result
		content_type = response.headers.get("content-type", "")
		if content_type.startswith("text/html"):
			result.html = response.text
		elif content_type.startswith("application/json"):
			payload = response.json()
			if payload.get("redirect"):
				result.redirect = payload["redirect"]
			elif isinstance(payload.get("data"), dict):
				result.data = payload["data"]
		return result

	async def pull(self, url: str, token: str) -> dict[str, Any] | None:
		response = await self.client.post(url, json={"token": token})
		if response.status_code != 200:
			logger.warning("Pull from %s failed with status %s", url, response.status_code)
			return None
		data = response.json().get("data")
		return data if isinstance(data, dict) else None

	async def aclose(self) -> None:
		await self.client.aclose()


class SocketIOClientTransport:
	"""Stream subscriptions over a ``socketio.AsyncClient``.

	Subscriptions made before the connection is up are sent on connect, and
	all of them are replayed after a reconnect.
	"""

	def __init__(self, sio: socketio.AsyncClient | None = None) -> None:
		self.sio = sio or socketio.AsyncClient()
		self._callbacks: dict[str, Callable[[Message], None]] = {}
		self.rejected: list[str | None] = []
		self.sio.on("connect", self._on_connect)
		self.sio.on("message", self._on_message)
		self.sio.on("rejected", self._on_rejected)

	async def connect(self, url: str, **kwargs: Any) -> None:
		await self.sio.connect(url, **kwargs)

	async def disconnect(self) -> None:
		await self.sio.disconnect()

	def subscribe(self, identity: str, on_message: Callable[[Message], None]) -> None:
		self._callbacks[identity] = on_message
		if self.sio.connected:
			create_task(self.sio.emit("subscribe", {"stream": identity}), name="livecomp.subscribe")

	def unsubscribe(self, identity: str) -> None:
		if self._callbacks.pop(identity, None) is None:
			return
		if self.sio.connected:
			create_task(
				self.sio.emit("unsubscribe", {"stream": identity}), name="livecomp.unsubscribe"
			)

	async def _on_connect(self) -> None:
		for identity in list(self._callbacks):
			await self.sio.emit("subscribe", {"stream": identity})

	def _on_message(self, payload: Any) -> None:
		if not isinstance(payload, dict):
			return
		callback = self._callbacks.get(payload.get("stream"))  # pyright: ignore[reportArgumentType]
		if callback is not None:
			callback(payload.get("message") or {})

	def _on_rejected(self, payload: Any) -> None:
		stream = payload.get("stream") if isinstance(payload, dict) else None
		logger.warning("Subscription rejected for %s", stream)
		self.rejected.append(stream)


__all__ = ["ActionClient", "ActionResult", "SocketIOClientTransport"]
