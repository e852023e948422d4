import asyncio
import html
import json
import re
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from livecomp.broadcast import MemoryBus, encode_message
from livecomp.client import (
	ActionClient,
	Debouncer,
	LiveNode,
	NodeConfig,
	NodeGroup,
	NodeStatus,
	SocketIOClientTransport,
	SubscriptionHub,
	merge,
)
from livecomp.render import Renderer

from conftest import Message, MessageCounter, MessageRow

STREAM = "signed-inbox"


class FakeHandle:
	def __init__(self, delay: float, callback: Callable[[], None]) -> None:
		self.delay = delay
		self.callback = callback
		self.cancelled = False

	def cancel(self) -> None:
		self.cancelled = True


class FakeScheduler:
	def __init__(self) -> None:
		self.handles: list[FakeHandle] = []

	def __call__(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
		handle = FakeHandle(delay, callback)
		self.handles.append(handle)
		return handle

	def fire_pending(self) -> None:
		for handle in list(self.handles):
			if not handle.cancelled:
				handle.cancelled = True
				handle.callback()


class DictResolver:
	def __init__(self, fns: dict[str, Callable[[dict[str, Any]], str]]) -> None:
		self.fns = fns

	def resolve(self, *, inline: str | None, template_id: str | None):
		return self.fns.get(template_id or inline or "")


def render_row(data: dict[str, Any]) -> str:
	return f"{data['v1']}|{'open' if data.get('expanded') else 'closed'}"


@pytest.fixture
def bus() -> MemoryBus:
	return MemoryBus()


@pytest.fixture
def hub(bus: MemoryBus) -> SubscriptionHub:
	return SubscriptionHub(bus)


@pytest.fixture
def resolver() -> DictResolver:
	return DictResolver({"row": render_row})


def make_node(
	hub: SubscriptionHub, resolver: DictResolver, dom_id: str = "message_1", **kwargs: Any
) -> LiveNode:
	config = NodeConfig(
		dom_id=dom_id,
		template_id="row",
		stream=STREAM,
		state={"expanded": False},
		data={"id": 1, "v1": "Hello"},
	)
	node = LiveNode(config, hub=hub, resolver=resolver, **kwargs)
	node.mount()
	return node


# =============================================================================
# Merge and debounce
# =============================================================================


def test_merge_client_keys_win():
	assert merge({"a": 1, "open": False}, {"open": True}) == {"a": 1, "open": True}
	assert merge(None, None) == {}


def test_debouncer_restarts_on_every_signal():
	scheduler = FakeScheduler()
	calls: list[int] = []
	debouncer = Debouncer(150, lambda: calls.append(1), scheduler)

	debouncer.signal()
	debouncer.signal()
	debouncer.signal()

	assert [h.cancelled for h in scheduler.handles] == [True, True, False]
	assert scheduler.handles[-1].delay == 0.15
	assert debouncer.pending

	scheduler.fire_pending()

	assert calls == [1]
	assert not debouncer.pending


def test_debouncer_cancel():
	scheduler = FakeScheduler()
	debouncer = Debouncer(10, lambda: None, scheduler)
	debouncer.signal()
	debouncer.cancel()
	assert scheduler.handles[0].cancelled
	assert not debouncer.pending


# =============================================================================
# Subscriptions
# =============================================================================


class TestSubscriptionHub:
	def test_one_subscription_per_stream(self, hub: SubscriptionHub, bus: MemoryBus, resolver: DictResolver):
		first = make_node(hub, resolver, "message_1")
		second = make_node(hub, resolver, "message_2")

		assert hub.refcount(STREAM) == 2
		assert bus.subscriber_count(STREAM) == 1

		first.unmount()
		assert bus.subscriber_count(STREAM) == 1

		second.unmount()
		assert hub.refcount(STREAM) == 0
		assert bus.subscriber_count(STREAM) == 0

	def test_rejoin_after_last_leave(self, hub: SubscriptionHub, bus: MemoryBus, resolver: DictResolver):
		make_node(hub, resolver).unmount()
		make_node(hub, resolver)
		assert bus.subscriber_count(STREAM) == 1

	def test_messages_fan_out_by_dom_id(self, hub: SubscriptionHub, bus: MemoryBus, resolver: DictResolver):
		first = make_node(hub, resolver, "message_1")
		second = make_node(hub, resolver, "message_2")

		bus.publish("inbox", STREAM, {"action": "update", "dom_id": "message_1", "data": {"v1": "Bye"}})

		assert first.html == "Bye|closed"
		assert second.html is None

	def test_compressed_messages_are_decoded(self, hub: SubscriptionHub, bus: MemoryBus, resolver: DictResolver):
		node = make_node(hub, resolver)
		message = {"action": "update", "dom_id": "message_1", "data": {"v1": "Zipped"}}

		bus.publish("inbox", STREAM, encode_message(message, compress=True))

		assert node.html == "Zipped|closed"

	def test_unmatched_create_goes_to_on_create(self, bus: MemoryBus, resolver: DictResolver):
		created: list[dict[str, Any]] = []
		hub = SubscriptionHub(bus, on_create=created.append)
		make_node(hub, resolver)

		bus.publish("inbox", STREAM, {"action": "create", "dom_id": "message_9", "data": {}})
		bus.publish("inbox", STREAM, {"action": "update", "dom_id": "message_9", "data": {}})

		assert [m["dom_id"] for m in created] == ["message_9"]


# =============================================================================
# Nodes
# =============================================================================


class TestLiveNode:
	def test_mount_reaches_idle(self, hub: SubscriptionHub, resolver: DictResolver):
		node = make_node(hub, resolver)
		assert node.status is NodeStatus.IDLE
		assert node.client_state == {"expanded": False}

	def test_update_merges_the_delta(self, hub: SubscriptionHub, resolver: DictResolver):
		node = make_node(hub, resolver)
		node.handle({"action": "update", "dom_id": "message_1", "data": {"v0": "starred"}})
		assert node.server_data == {"id": 1, "v1": "Hello", "v0": "starred"}
		assert node.html == "Hello|closed"

	def test_client_state_survives_server_updates(self, hub: SubscriptionHub, resolver: DictResolver):
		node = make_node(hub, resolver)
		node.set_state({"expanded": True})
		assert node.html == "Hello|open"

		node.handle({"action": "update", "dom_id": "message_1", "data": {"v1": "Bye", "expanded": False}})

		assert node.html == "Bye|open"

	def test_exclusive_state_clears_siblings(self, hub: SubscriptionHub, resolver: DictResolver):
		group = NodeGroup()
		first = make_node(hub, resolver, "message_1", group=group)
		second = make_node(hub, resolver, "message_2", group=group)
		first.set_state({"expanded": True})

		second.set_state({"expanded": True}, exclusive=True)

		assert first.client_state["expanded"] is False
		assert first.html == "Hello|closed"
		assert second.html == "Hello|open"

	def test_destroy_message(self, hub: SubscriptionHub, bus: MemoryBus, resolver: DictResolver):
		removed: list[LiveNode] = []
		node = make_node(hub, resolver, on_remove=removed.append)

		bus.publish("inbox", STREAM, {"action": "destroy", "dom_id": "message_1"})

		assert node.status is NodeStatus.DESTROYED
		assert removed == [node]
		assert bus.subscriber_count(STREAM) == 0
		node.handle({"action": "update", "dom_id": "message_1", "data": {"v1": "late"}})
		assert node.html is None

	def test_render_errors_keep_the_last_html(self, hub: SubscriptionHub):
		def fragile(data: dict[str, Any]) -> str:
			return data["v1"].upper()

		node = make_node(hub, DictResolver({"row": fragile}))
		node.apply_data({"v1": "ok"})
		node.apply_data({"v1": None})

		assert node.html == "OK"
		assert node.status is NodeStatus.IDLE

	def test_config_from_rendered_attributes(self, renderer: Renderer, message: Message):
		markup = str(renderer.render_component(MessageRow, message))
		opening = markup[: markup.index(">")]
		attrs = {k: html.unescape(v) for k, v in re.findall(r'([\w-]+)="([^"]*)"', opening)}

		config = NodeConfig.from_attrs(attrs)

		assert config.dom_id == "message_1"
		assert config.component_id == "message_row"
		assert config.state == {"expanded": False}
		assert config.data is not None and config.data["v1"] == "Hello"
		assert config.stream == renderer.signers.sign_stream("inbox")
		assert config.action_url == "/_live/actions"
		assert config.strategy == "push"


# =============================================================================
# Notify and actions
# =============================================================================


def mock_actions(handler: Callable[[httpx.Request], httpx.Response]) -> ActionClient:
	client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
	return ActionClient(client)


def notify_node(hub: SubscriptionHub, resolver: DictResolver, **kwargs: Any) -> LiveNode:
	config = NodeConfig(
		dom_id="message_1",
		template_id="row",
		stream=STREAM,
		strategy="notify",
		pull_url="/_live/pull",
		action_url="/_live/actions",
		action_token="token-1",
		data={"id": 1, "v1": "Hello"},
	)
	node = LiveNode(config, hub=hub, resolver=resolver, **kwargs)
	node.mount()
	return node


@pytest.mark.asyncio
async def test_render_signals_are_debounced_into_one_pull(hub: SubscriptionHub, bus: MemoryBus, resolver: DictResolver):
	requests: list[dict[str, Any]] = []

	def handler(request: httpx.Request) -> httpx.Response:
		requests.append(json.loads(request.content))
		return httpx.Response(200, json={"data": {"id": 1, "v1": "Pulled"}})

	scheduler = FakeScheduler()
	node = notify_node(hub, resolver, actions=mock_actions(handler), scheduler=scheduler)

	for _ in range(3):
		bus.publish("inbox", STREAM, {"action": "render", "dom_id": "message_1"})
	scheduler.fire_pending()
	await asyncio.sleep(0.05)

	assert requests == [{"token": "token-1"}]
	assert node.html == "Pulled|closed"


@pytest.mark.asyncio
async def test_failed_pull_keeps_the_node(hub: SubscriptionHub, resolver: DictResolver):
	node = notify_node(hub, resolver, actions=mock_actions(lambda r: httpx.Response(404)))
	await node.pull()
	assert node.server_data == {"id": 1, "v1": "Hello"}


class TestPerformAction:
	@pytest.mark.asyncio
	async def test_data_response_updates_the_node(self, hub: SubscriptionHub, resolver: DictResolver):
		seen: list[dict[str, Any]] = []

		def handler(request: httpx.Request) -> httpx.Response:
			seen.append(json.loads(request.content))
			return httpx.Response(200, json={"data": {"v1": "Starred"}})

		node = notify_node(hub, resolver, actions=mock_actions(handler))
		result = await node.perform_action("star", {"value": "on"})

		assert result is not None and result.ok
		assert seen == [{"token": "token-1", "action_name": "star", "params": {"value": "on"}}]
		assert node.html == "Starred|closed"

	@pytest.mark.asyncio
	async def test_html_response_replaces_the_content(self, hub: SubscriptionHub, resolver: DictResolver):
		node = notify_node(
			hub, resolver, actions=mock_actions(lambda r: httpx.Response(200, html="<p>done</p>"))
		)
		await node.perform_action("star")
		assert node.html == "<p>done</p>"

	@pytest.mark.asyncio
	async def test_redirect_navigates(self, hub: SubscriptionHub, resolver: DictResolver):
		visited: list[str] = []
		node = notify_node(
			hub,
			resolver,
			actions=mock_actions(lambda r: httpx.Response(200, json={"redirect": "/inbox"})),
			on_navigate=visited.append,
		)
		await node.perform_action("archive")
		assert visited == ["/inbox"]

	@pytest.mark.asyncio
	async def test_failure_status(self, hub: SubscriptionHub, resolver: DictResolver):
		node = notify_node(hub, resolver, actions=mock_actions(lambda r: httpx.Response(404)))
		result = await node.perform_action("star")
		assert result is not None and not result.ok
		assert node.html is None

	@pytest.mark.asyncio
	async def test_node_without_token_does_nothing(self, hub: SubscriptionHub, resolver: DictResolver):
		node = make_node(hub, resolver, actions=mock_actions(lambda r: httpx.Response(500)))
		assert await node.perform_action("star") is None


# =============================================================================
# Socket.IO transport
# =============================================================================


class FakeSio:
	def __init__(self) -> None:
		self.handlers: dict[str, Callable[..., Any]] = {}
		self.connected = False
		self.emitted: list[tuple[str, Any]] = []

	def on(self, event: str, handler: Callable[..., Any]) -> None:
		self.handlers[event] = handler

	async def emit(self, event: str, data: Any) -> None:
		self.emitted.append((event, data))


class TestSocketIOClientTransport:
	@pytest.mark.asyncio
	async def test_subscriptions_are_sent_on_connect(self):
		sio = FakeSio()
		transport = SocketIOClientTransport(sio)  # pyright: ignore[reportArgumentType]
		transport.subscribe("a", lambda m: None)
		assert sio.emitted == []

		sio.connected = True
		await sio.handlers["connect"]()

		assert sio.emitted == [("subscribe", {"stream": "a"})]

	@pytest.mark.asyncio
	async def test_subscribe_while_connected_emits(self):
		sio = FakeSio()
		sio.connected = True
		transport = SocketIOClientTransport(sio)  # pyright: ignore[reportArgumentType]

		transport.subscribe("a", lambda m: None)
		transport.unsubscribe("a")
		await asyncio.sleep(0.01)

		assert sio.emitted == [("subscribe", {"stream": "a"}), ("unsubscribe", {"stream": "a"})]

	def test_messages_dispatch_by_stream(self):
		sio = FakeSio()
		transport = SocketIOClientTransport(sio)  # pyright: ignore[reportArgumentType]
		received: list[dict[str, Any]] = []
		transport.subscribe("a", received.append)

		sio.handlers["message"]({"stream": "a", "message": {"action": "render"}})
		sio.handlers["message"]({"stream": "b", "message": {"action": "render"}})
		sio.handlers["message"]("garbage")

		assert received == [{"action": "render"}]

	def test_rejections_are_recorded(self):
		sio = FakeSio()
		transport = SocketIOClientTransport(sio)  # pyright: ignore[reportArgumentType]
		sio.handlers["rejected"]({"stream": "forged"})
		assert transport.rejected == ["forged"]


def test_counter_is_a_notify_node(renderer: Renderer, message: Message):
	markup = str(renderer.render_component(MessageCounter, message))
	assert 'data-live-strategy="notify"' in markup
	assert 'data-live-pull-url="/_live/pull"' in markup
