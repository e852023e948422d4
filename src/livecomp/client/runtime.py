"""Client runtime state machine.

The same behaviour the browser runtime implements, for Python clients: a
node binds a render function to a stream, merges transient client state over
server data, and reacts to stream messages.

Node lifecycle::

	connecting -> subscribed -> idle <-> updating
	                              \\-> destroyed
"""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal, Protocol

from livecomp.broadcast import decode_message
from livecomp.env import env
from livecomp.scheduling import Scheduler, TimerHandleLike, call_later, create_task

if TYPE_CHECKING:
	from livecomp.client.transport import ActionClient, ActionResult

logger = logging.getLogger(__name__)

Message = dict[str, Any]
RenderFn = Callable[[dict[str, Any]], str]


def merge(server_data: Mapping[str, Any] | None, client_state: Mapping[str, Any] | None) -> dict[str, Any]:
	"""``{**server_data, **client_state}``: client keys always win."""
	merged = dict(server_data or {})
	merged.update(client_state or {})
	return merged


class Debouncer:
	"""Cancel-and-restart timer: one call per quiet window, timed from the last signal."""

	def __init__(
		self,
		delay_ms: float,
		fn: Callable[[], None],
		scheduler: Scheduler | None = None,
	) -> None:
		self.delay_ms = delay_ms
		self.fn = fn
		self.scheduler = scheduler or call_later
		self._handle: TimerHandleLike | None = None

	@property
	def pending(self) -> bool:
		return self._handle is not None

	def signal(self) -> None:
		if self._handle is not None:
			self._handle.cancel()
		self._handle = self.scheduler(self.delay_ms / 1000, self._fire)

	def cancel(self) -> None:
		if self._handle is not None:
			self._handle.cancel()
			self._handle = None

	def _fire(self) -> None:
		self._handle = None
		self.fn()


# =============================================================================
# Subscriptions
# =============================================================================


class ClientTransport(Protocol):
	def subscribe(self, identity: str, on_message: Callable[[Message], None]) -> None: ...

	def unsubscribe(self, identity: str) -> None: ...


class MessageHandler(Protocol):
	@property
	def dom_id(self) -> str: ...

	def handle(self, message: Message) -> None: ...


class SubscriptionHub:
	"""One transport subscription per stream identity, shared by reference count.

	``join`` and ``leave`` are synchronous, so a last leave and a new join can
	never interleave.
	"""

	def __init__(
		self,
		transport: ClientTransport,
		*,
		on_create: Callable[[Message], None] | None = None,
	) -> None:
		self.transport = transport
		self.on_create = on_create
		self._streams: dict[str, list[MessageHandler]] = {}

	def join(self, identity: str, handler: MessageHandler) -> None:
		handlers = self._streams.get(identity)
		if handlers is None:
			handlers = self._streams[identity] = []
			self.transport.subscribe(identity, functools.partial(self.receive, identity))
			logger.debug("Subscribed to %s", identity)
		if handler not in handlers:
			handlers.append(handler)

	def leave(self, identity: str, handler: MessageHandler) -> None:
		handlers = self._streams.get(identity)
		if handlers is None or handler not in handlers:
			return
		handlers.remove(handler)
		if not handlers:
			del self._streams[identity]
			self.transport.unsubscribe(identity)
			logger.debug("Unsubscribed from %s", identity)

	def refcount(self, identity: str) -> int:
		return len(self._streams.get(identity, ()))

	def receive(self, identity: str, payload: Message) -> None:
		handlers = self._streams.get(identity)
		if not handlers:
			return
		message = decode_message(payload)
		matched = False
		for handler in list(handlers):
			if handler.dom_id == message.get("dom_id"):
				matched = True
				handler.handle(message)
		if not matched and message.get("action") == "create" and self.on_create is not None:
			self.on_create(message)


# =============================================================================
# Nodes
# =============================================================================


class NodeStatus(StrEnum):
	CONNECTING = "connecting"
	SUBSCRIBED = "subscribed"
	IDLE = "idle"
	UPDATING = "updating"
	DESTROYED = "destroyed"


class TemplateResolver(Protocol):
	"""Turns an inline body or a shared template id into a render function."""

	def resolve(self, *, inline: str | None, template_id: str | None) -> RenderFn | None: ...


class NodeGroup:
	"""Sibling live nodes under one container."""

	def __init__(self) -> None:
		self.nodes: list[LiveNode] = []

	def add(self, node: LiveNode) -> None:
		if node not in self.nodes:
			self.nodes.append(node)

	def remove(self, node: LiveNode) -> None:
		if node in self.nodes:
			self.nodes.remove(node)

	def clear_siblings(self, node: LiveNode, keys: list[str]) -> None:
		for other in self.nodes:
			if other is node or other.status is NodeStatus.DESTROYED:
				continue
			changed = False
			for key in keys:
				if other.client_state.get(key):
					other.client_state[key] = False
					changed = True
			if changed:
				other.render()


@dataclass(slots=True)
class NodeConfig:
	"""The ``data-live-*`` attributes of one node."""

	dom_id: str
	component_id: str | None = None
	template: str | None = None
	template_id: str | None = None
	stream: str | None = None
	action_url: str | None = None
	action_token: str | None = None
	pull_url: str | None = None
	strategy: Literal["push", "notify"] = "push"
	state: dict[str, Any] | None = None
	data: dict[str, Any] | None = None

	@classmethod
	def from_attrs(cls, attrs: Mapping[str, str]) -> NodeConfig:
		strategy = attrs.get("data-live-strategy", "push")
		return cls(
			dom_id=attrs["id"],
			component_id=attrs.get("data-live-component"),
			template=attrs.get("data-live-template"),
			template_id=attrs.get("data-live-template-id"),
			stream=attrs.get("data-live-stream"),
			action_url=attrs.get("data-live-action-url"),
			action_token=attrs.get("data-live-action-token"),
			pull_url=attrs.get("data-live-pull-url"),
			strategy="notify" if strategy == "notify" else "push",
			state=json.loads(attrs["data-live-state"]) if attrs.get("data-live-state") else None,
			data=json.loads(attrs["data-live-data"]) if attrs.get("data-live-data") else None,
		)


class LiveNode:
	status: NodeStatus
	html: str | None
	client_state: dict[str, Any]
	server_data: dict[str, Any] | None

	def __init__(
		self,
		config: NodeConfig,
		*,
		hub: SubscriptionHub,
		resolver: TemplateResolver,
		actions: ActionClient | None = None,
		group: NodeGroup | None = None,
		scheduler: Scheduler | None = None,
		debounce_ms: float | None = None,
		on_navigate: Callable[[str], None] | None = None,
		on_remove: Callable[[LiveNode], None] | None = None,
	) -> None:
		self.config = config
		self.hub = hub
		self.resolver = resolver
		self.actions = actions
		self.group = group
		self.on_navigate = on_navigate
		self.on_remove = on_remove
		self.status = NodeStatus.CONNECTING
		self.html = None
		self.render_fn: RenderFn | None = None
		self.client_state = {}
		self.server_data = None
		self.debouncer: Debouncer | None = None
		if config.strategy == "notify":
			delay = env.debounce_ms if debounce_ms is None else debounce_ms
			self.debouncer = Debouncer(delay, self._schedule_pull, scheduler)

	@property
	def dom_id(self) -> str:
		return self.config.dom_id

	# --- Lifecycle -----------------------------------------------------------

	def mount(self) -> None:
		self.status = NodeStatus.CONNECTING
		try:
			self.render_fn = self.resolver.resolve(
				inline=self.config.template, template_id=self.config.template_id
			)
		except Exception:
			logger.exception("Cannot resolve render function for node %s", self.dom_id)
			self.render_fn = None
		self.client_state = dict(self.config.state or {})
		self.server_data = dict(self.config.data) if self.config.data is not None else None
		if self.group is not None:
			self.group.add(self)
		if self.config.stream:
			self.hub.join(self.config.stream, self)
			self.status = NodeStatus.SUBSCRIBED
		self.status = NodeStatus.IDLE

	def unmount(self) -> None:
		if self.status is NodeStatus.DESTROYED:
			return
		if self.debouncer is not None:
			self.debouncer.cancel()
		if self.config.stream:
			self.hub.leave(self.config.stream, self)
		if self.group is not None:
			self.group.remove(self)
		self.status = NodeStatus.DESTROYED

	def destroy(self) -> None:
		was_live = self.status is not NodeStatus.DESTROYED
		self.unmount()
		if was_live and self.on_remove is not None:
			self.on_remove(self)

	# --- Messages ------------------------------------------------------------

	def handle(self, message: Message) -> None:
		if self.status is NodeStatus.DESTROYED:
			return
		action = message.get("action")
		if action in ("update", "create"):
			self.apply_data(message.get("data") or {})
		elif action == "render":
			self.notify()
		elif action in ("destroy", "remove"):
			self.destroy()
		else:
			logger.debug("Ignoring message %r for node %s", action, self.dom_id)

	def apply_data(self, data: Mapping[str, Any]) -> None:
		"""Merge a server payload (full bag or delta) and re-render."""
		self.server_data = {**(self.server_data or {}), **data}
		self.render()

	def notify(self) -> None:
		if self.debouncer is not None:
			self.debouncer.signal()
		else:
			self._schedule_pull()

	def _schedule_pull(self) -> None:
		create_task(self.pull(), name=f"livecomp.pull:{self.dom_id}")

	async def pull(self) -> None:
		if self.status is NodeStatus.DESTROYED:
			return
		if self.actions is None or not self.config.pull_url or not self.config.action_token:
			return
		data = await self.actions.pull(self.config.pull_url, self.config.action_token)
		if data is not None and self.status is not NodeStatus.DESTROYED:
			self.server_data = dict(data)
			self.render()

	# --- Rendering -----------------------------------------------------------

	def render(self) -> None:
		if self.render_fn is None or self.server_data is None:
			return
		if self.status is NodeStatus.DESTROYED:
			return
		self.status = NodeStatus.UPDATING
		try:
			self.html = self.render_fn(merge(self.server_data, self.client_state))
		except Exception:
			logger.exception("Render failed for node %s", self.dom_id)
		finally:
			if self.status is NodeStatus.UPDATING:
				self.status = NodeStatus.IDLE

	def set_state(self, updates: Mapping[str, Any], *, exclusive: bool = False) -> None:
		if exclusive and self.group is not None:
			self.group.clear_siblings(self, list(updates))
		self.client_state.update(updates)
		self.render()

	# --- Actions -------------------------------------------------------------

	async def perform_action(
		self, name: str, params: Mapping[str, Any] | None = None
	) -> ActionResult | None:
		if self.actions is None or not self.config.action_url or not self.config.action_token:
			return None
		result = await self.actions.perform(
			self.config.action_url, self.config.action_token, name, dict(params or {})
		)
		if result.redirect is not None:
			if self.on_navigate is not None:
				self.on_navigate(result.redirect)
		elif result.html is not None:
			self.html = result.html
		elif result.data is not None:
			self.apply_data(result.data)
		return result


__all__ = [
	"ClientTransport",
	"Debouncer",
	"LiveNode",
	"NodeConfig",
	"NodeGroup",
	"NodeStatus",
	"SubscriptionHub",
	"TemplateResolver",
	"merge",
]
