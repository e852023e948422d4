"""Broadcast dispatch.

Models opt into live updates with ``Broadcaster.broadcasts``. The
persistence layer calls the ``after_*`` hooks after a commit; each hook
builds one message per registered config and hands it to the transport.
Dispatch never raises into the caller.
"""

from __future__ import annotations

import base64
import gzip
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

from livecomp.component import LiveComponent, stream_name
from livecomp.data.evaluator import DataEvaluator
from livecomp.data.serializer import DataSerializer
from livecomp.env import env
from livecomp.errors import report_error
from livecomp.scheduling import create_task

if TYPE_CHECKING:
	from livecomp.compiler.service import Compiler
	from livecomp.render import Renderer
	from livecomp.signing import Signers

logger = logging.getLogger(__name__)

MessageAction = Literal["create", "update", "render", "destroy", "remove"]
Message = dict[str, Any]
Via = Literal["compiled", "schema"]
StreamSpec = Any | Callable[[Any], Any]


class Transport(Protocol):
	"""Publishes one message to every subscriber of a stream."""

	def publish(
		self, stream: str, identity: str, message: Message
	) -> Awaitable[None] | None: ...


def encode_message(message: Message, *, compress: bool) -> Message:
	"""Wrap as ``{"z": base64(gzip(json))}`` when compression is on."""
	if not compress:
		return message
	raw = json.dumps(message, separators=(",", ":")).encode("utf-8")
	return {"z": base64.b64encode(gzip.compress(raw)).decode("ascii")}


def decode_message(payload: Message) -> Message:
	if set(payload) == {"z"} and isinstance(payload["z"], str):
		raw = gzip.decompress(base64.b64decode(payload["z"]))
		return json.loads(raw.decode("utf-8"))
	return payload


@dataclass(slots=True)
class BroadcastConfig:
	model_cls: type
	component_cls: type[LiveComponent]
	stream: StreamSpec
	prepend_target: str | None = None
	via: Via = "compiled"
	serializer: DataSerializer | None = None

	def streamables(self, model: Any) -> tuple[Any, ...] | None:
		stream = self.stream(model) if callable(self.stream) else self.stream
		if stream is None:
			return None
		if isinstance(stream, (list, tuple)):
			return tuple(stream)
		return (stream,)


class Broadcaster:
	def __init__(
		self,
		transport: Transport,
		signers: Signers,
		compiler: Compiler,
		*,
		renderer: Renderer | None = None,
		compress: bool | None = None,
	) -> None:
		self.transport = transport
		self.signers = signers
		self.compiler = compiler
		self.renderer = renderer
		self.compress = env.compress if compress is None else compress
		self.configs: list[BroadcastConfig] = []
		if renderer is not None:
			renderer.broadcaster = self

	def broadcasts(
		self,
		model_cls: type,
		component_cls: type[LiveComponent],
		*,
		stream: StreamSpec = None,
		prepend_target: str | None = None,
		via: Via = "compiled",
		helpers: Any = None,
	) -> BroadcastConfig:
		"""Associate a model type with a component bound to a stream."""
		if stream is None:
			stream = component_cls.stream
		if stream is None:
			raise ValueError(
				f"No stream given for {model_cls.__name__} and component '{component_cls.id}' "
				+ "declares none"
			)
		serializer = DataSerializer(component_cls, helpers=helpers) if via == "schema" else None
		config = BroadcastConfig(
			model_cls=model_cls,
			component_cls=component_cls,
			stream=stream,
			prepend_target=prepend_target,
			via=via,
			serializer=serializer,
		)
		self.configs.append(config)
		return config

	def configs_for(self, model: Any) -> list[BroadcastConfig]:
		return [c for c in self.configs if isinstance(model, c.model_cls)]

	def config_for(
		self, model: Any, component_cls: type[LiveComponent]
	) -> BroadcastConfig | None:
		for config in self.configs_for(model):
			if config.component_cls is component_cls:
				return config
		return None

	# --- Commit hooks --------------------------------------------------------

	def after_create(self, model: Any) -> None:
		self._dispatch("create", model)

	def after_update(self, model: Any, changed: Iterable[str] | None = None) -> None:
		self._dispatch("update", model, changed)

	def after_destroy(self, model: Any) -> None:
		self._dispatch("destroy", model)

	# --- Messages ------------------------------------------------------------

	def stream_for(self, config: BroadcastConfig, model: Any) -> tuple[str, str] | None:
		"""(stream name, signed identity) or None when the model has no stream."""
		streamables = config.streamables(model)
		if not streamables:
			return None
		name = stream_name(streamables)
		return name, self.signers.sign_stream(name)

	def data_for(self, config: BroadcastConfig, model: Any) -> dict[str, Any]:
		if config.serializer is not None:
			return config.serializer.serialize(model)
		render = self.renderer.render if self.renderer is not None else None
		evaluator = DataEvaluator(
			config.component_cls, model, compiler=self.compiler, render=render
		)
		return evaluator.build()

	def build_message(
		self,
		action: Literal["create", "update", "destroy"],
		config: BroadcastConfig,
		model: Any,
		changed: Iterable[str] | None = None,
	) -> Message | None:
		"""The message for one config, or None when there is nothing to send."""
		component_cls = config.component_cls
		dom_id = component_cls.dom_id_for(model)

		if action == "destroy":
			return {"action": "destroy", "dom_id": dom_id}

		if action == "update":
			if component_cls.update_strategy == "notify":
				return {"action": "render", "dom_id": dom_id}
			if config.serializer is not None:
				delta = config.serializer.serialize_changes(model, changed)
				if delta is None:
					return None
				return {"action": "update", "dom_id": dom_id, "data": delta}
			return {"action": "update", "dom_id": dom_id, "data": self.data_for(config, model)}

		message: Message = {"action": "create", "dom_id": dom_id, "data": self.data_for(config, model)}
		if config.prepend_target:
			message["target"] = config.prepend_target
		if self.renderer is not None:
			message["html"] = str(self.renderer.render_component(component_cls, model))
		return message

	def _dispatch(
		self,
		action: Literal["create", "update", "destroy"],
		model: Any,
		changed: Iterable[str] | None = None,
	) -> None:
		if changed is not None:
			changed = list(changed)
		for config in self.configs_for(model):
			try:
				stream = self.stream_for(config, model)
				if stream is None:
					logger.debug("No stream for %r, skipping %s", model, action)
					continue
				message = self.build_message(action, config, model, changed)
				if message is None:
					logger.debug(
						"Nothing to %s for '%s' on %s", action, config.component_cls.id, stream[0]
					)
					continue
				self.publish(stream[0], stream[1], message)
			except Exception as exc:
				report_error(
					exc,
					code="broadcast",
					details={"action": action, "component": config.component_cls.id},
				)

	def publish(self, stream: str, identity: str, message: Message) -> None:
		payload = encode_message(message, compress=self.compress)
		result = self.transport.publish(stream, identity, payload)
		if inspect.isawaitable(result):
			create_task(_guarded_send(result, stream), name=f"livecomp.publish:{stream}")


async def _guarded_send(send: Awaitable[None], stream: str) -> None:
	try:
		await send
	except Exception as exc:
		report_error(exc, code="broadcast", details={"stream": stream})


class MemoryBus:
	"""In-process transport: server-side ``publish`` plus client-side ``subscribe``.

	Deliveries are synchronous; used by tests and single-process setups.
	"""

	def __init__(self) -> None:
		self.published: list[tuple[str, str, Message]] = []
		self._subscribers: dict[str, list[Callable[[Message], None]]] = {}

	def publish(self, stream: str, identity: str, message: Message) -> None:
		self.published.append((stream, identity, message))
		for callback in list(self._subscribers.get(identity, ())):
			callback(message)

	def subscribe(self, identity: str, on_message: Callable[[Message], None]) -> None:
		self._subscribers.setdefault(identity, []).append(on_message)

	def unsubscribe(self, identity: str) -> None:
		self._subscribers.pop(identity, None)

	def subscriber_count(self, identity: str) -> int:
		return len(self._subscribers.get(identity, ()))


__all__ = [
	"BroadcastConfig",
	"Broadcaster",
	"MemoryBus",
	"Message",
	"Transport",
	"decode_message",
	"encode_message",
]
