"""Application wiring.

``LiveApp`` owns one of each collaborator: signers, compiler, renderer,
broadcaster, the Socket.IO channel and the HTTP endpoints. It is itself an
ASGI application (FastAPI wrapped by ``socketio.ASGIApp``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

import socketio
import uvicorn
from fastapi import FastAPI
from markupsafe import Markup

from livecomp.actions import LiveEndpoints, ModelLocator
from livecomp.broadcast import BroadcastConfig, Broadcaster, StreamSpec, Via
from livecomp.channel import LiveChannel, SocketIOTransport
from livecomp.compiler.service import Compiler
from livecomp.component import ComponentRegistry, LiveComponent
from livecomp.env import env, resolve_secret
from livecomp.hot_reload import TemplateWatcher, watch_roots
from livecomp.render import Renderer
from livecomp.signing import Signers

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=type[LiveComponent])


def _missing_locator(model_type: str, model_id: str) -> None:
	logger.warning("No model locator configured; cannot load %s %s", model_type, model_id)
	return None


class LiveApp:
	registry: ComponentRegistry
	signers: Signers
	compiler: Compiler
	renderer: Renderer
	broadcaster: Broadcaster
	fastapi: FastAPI
	sio: socketio.AsyncServer
	asgi: socketio.ASGIApp
	watcher: TemplateWatcher | None

	def __init__(
		self,
		registry: ComponentRegistry | None = None,
		*,
		locator: ModelLocator | None = None,
		secret: str | None = None,
		compress: bool | None = None,
		api_prefix: str | None = None,
		hot_reload: bool | None = None,
		shared_templates: bool = False,
		app_path: Path | None = None,
	) -> None:
		self.registry = registry if registry is not None else ComponentRegistry()
		self.signers = Signers(secret or resolve_secret(app_path))
		self.compiler = Compiler(self.registry)
		self.renderer = Renderer(
			self.compiler,
			self.signers,
			api_prefix=api_prefix,
			shared_templates=shared_templates,
		)
		self.hot_reload = env.hot_reload if hot_reload is None else hot_reload
		self.watcher = None

		self.fastapi = FastAPI(title="livecomp", lifespan=self.fastapi_lifespan)
		self.sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
		self.asgi = socketio.ASGIApp(self.sio, self.fastapi)

		self.channel = LiveChannel(self.sio, self.signers)
		self.broadcaster = Broadcaster(
			SocketIOTransport(self.sio),
			self.signers,
			self.compiler,
			renderer=self.renderer,
			compress=compress,
		)
		self.endpoints = LiveEndpoints(
			self.registry, self.signers, self.renderer, locator or _missing_locator
		)
		self.fastapi.include_router(self.endpoints.router(self.renderer.api_prefix))

	@asynccontextmanager
	async def fastapi_lifespan(self, _: FastAPI):
		if self.hot_reload:
			self.watcher = TemplateWatcher(self.compiler, watch_roots(self.registry))
			self.watcher.start()
		try:
			yield
		finally:
			if self.watcher is not None:
				self.watcher.stop()
				self.watcher = None

	# --- Registration --------------------------------------------------------

	def component(self, cls: C) -> C:
		"""Class decorator registering a component with this app."""
		return self.registry.register(cls)

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
		return self.broadcaster.broadcasts(
			model_cls,
			component_cls,
			stream=stream,
			prepend_target=prepend_target,
			via=via,
			helpers=helpers,
		)

	# --- Rendering -----------------------------------------------------------

	def render(self, component_id: str, /, **props: Any) -> Markup:
		return self.renderer.render(component_id, **props)

	def template_tags(self, component_ids: list[str] | None = None) -> Markup:
		return self.renderer.template_tags(component_ids)

	def script_tag(self) -> Markup:
		return Markup('<script src="{}/runtime.js" defer></script>').format(
			self.renderer.api_prefix
		)

	# --- Persistence hooks ---------------------------------------------------

	def after_create(self, model: Any) -> None:
		self.broadcaster.after_create(model)

	def after_update(self, model: Any, changed: Any = None) -> None:
		self.broadcaster.after_update(model, changed)

	def after_destroy(self, model: Any) -> None:
		self.broadcaster.after_destroy(model)

	# --- Serving -------------------------------------------------------------

	def run(self, host: str = "127.0.0.1", port: int = 8000, **kwargs: Any) -> None:
		uvicorn.run(self.asgi, host=host, port=port, **kwargs)

	async def __call__(self, scope: Any, receive: Callable[..., Any], send: Callable[..., Any]) -> None:
		await self.asgi(scope, receive, send)


__all__ = ["LiveApp"]
