"""Socket.IO channel.

Clients join rooms by signed stream identity. The room is the verified
stream name, so every identity for the same logical topic lands in the same
room. Invalid identities get a generic ``rejected`` event.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import socketio

from livecomp.errors import BadSignature, report_error

if TYPE_CHECKING:
	from livecomp.signing import Signers

logger = logging.getLogger(__name__)


class LiveChannel:
	def __init__(self, sio: socketio.AsyncServer, signers: Signers) -> None:
		self.sio = sio
		self.signers = signers
		# sid -> joined stream names
		self.subscriptions: dict[str, set[str]] = {}
		sio.on("subscribe", self.subscribe)
		sio.on("unsubscribe", self.unsubscribe)
		sio.on("disconnect", self.disconnect)

	def _identity(self, data: Any) -> str | None:
		if isinstance(data, dict):
			stream = data.get("stream")
			if isinstance(stream, str):
				return stream
		return None

	async def subscribe(self, sid: str, data: Any) -> None:
		identity = self._identity(data)
		try:
			if identity is None:
				raise BadSignature("missing stream identity")
			name = self.signers.verify_stream(identity)
		except BadSignature:
			logger.warning("Rejected subscription from %s", sid)
			await self.sio.emit("rejected", {"stream": identity}, to=sid)
			return
		try:
			await self.sio.enter_room(sid, name)
		except Exception as exc:
			report_error(exc, code="channel", details={"sid": sid, "stream": name})
			return
		self.subscriptions.setdefault(sid, set()).add(name)
		logger.debug("%s subscribed to %s", sid, name)

	async def unsubscribe(self, sid: str, data: Any) -> None:
		identity = self._identity(data)
		if identity is None:
			return
		name = self.signers.streams.unsign(identity)
		if not isinstance(name, str):
			return
		joined = self.subscriptions.get(sid)
		if joined is None or name not in joined:
			return
		joined.discard(name)
		await self.sio.leave_room(sid, name)
		logger.debug("%s unsubscribed from %s", sid, name)

	def disconnect(self, sid: str, *args: Any) -> None:
		self.subscriptions.pop(sid, None)


class SocketIOTransport:
	"""Publishes to the Socket.IO room named after the stream."""

	def __init__(self, sio: socketio.AsyncServer) -> None:
		self.sio = sio

	async def publish(self, stream: str, identity: str, message: dict[str, Any]) -> None:
		await self.sio.emit("message", {"stream": identity, "message": message}, room=stream)


__all__ = ["LiveChannel", "SocketIOTransport"]
