"""HTTP endpoints of the live runtime.

``POST <prefix>/actions`` runs a component action authorized by a signed
token, ``POST <prefix>/pull`` returns the authoritative data bag for a node,
and ``GET <prefix>/runtime.js`` serves the browser runtime. Every rejection
answers the same 404 so that callers learn nothing about why.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from fastapi import APIRouter, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from markupsafe import Markup

from livecomp.errors import BadSignature, ComponentNotFound, report_error
from livecomp.runtime_js import runtime_js

if TYPE_CHECKING:
	from livecomp.component import ComponentRegistry, LiveComponent
	from livecomp.render import Renderer
	from livecomp.signing import Signers

logger = logging.getLogger(__name__)


class ModelLocator(Protocol):
	"""Loads a record by type name and id; may be sync or async."""

	def __call__(self, model_type: str, model_id: str) -> Any: ...


@dataclass(frozen=True, slots=True)
class Redirect:
	url: str


@dataclass(slots=True)
class ResolvedToken:
	component_cls: type[LiveComponent]
	model: Any


def not_found() -> PlainTextResponse:
	return PlainTextResponse("Not found", status_code=404)


async def read_payload(request: Request) -> Mapping[str, Any]:
	content_type = request.headers.get("content-type", "")
	if content_type.startswith("application/json"):
		try:
			body = await request.json()
		except ValueError:
			return {}
		return body if isinstance(body, dict) else {}
	form = await request.form()
	payload: dict[str, Any] = {}
	params: dict[str, Any] = {}
	for key, value in form.multi_items():
		if key.startswith("params[") and key.endswith("]"):
			params[key[len("params[") : -1]] = value
		else:
			payload[key] = value
	payload.setdefault("params", params)
	return payload


def action_response(result: Any) -> Response:
	if result is None:
		return Response(status_code=204)
	if isinstance(result, Redirect):
		return JSONResponse({"redirect": result.url})
	if isinstance(result, Response):
		return result
	if isinstance(result, (Markup, str)):
		return HTMLResponse(str(result))
	if isinstance(result, Mapping):
		return JSONResponse({"data": dict(result)})
	raise TypeError(f"Unsupported action result {type(result).__name__}")


class LiveEndpoints:
	def __init__(
		self,
		registry: ComponentRegistry,
		signers: Signers,
		renderer: Renderer,
		locator: ModelLocator,
	) -> None:
		self.registry = registry
		self.signers = signers
		self.renderer = renderer
		self.locator = locator

	async def resolve(self, token: Any) -> ResolvedToken:
		if not isinstance(token, str):
			raise ComponentNotFound()
		try:
			claims = self.signers.verify_action(token)
		except BadSignature as exc:
			logger.warning("Rejected action token: %s", exc)
			raise ComponentNotFound() from exc
		component_cls = self.registry.get(claims.component_id)
		if component_cls is None:
			raise ComponentNotFound()
		model = self.locator(claims.model_type, claims.model_id)
		if inspect.isawaitable(model):
			model = await model
		if model is None or type(model).__name__ != claims.model_type:
			raise ComponentNotFound()
		return ResolvedToken(component_cls, model)

	async def perform(self, request: Request) -> Response:
		payload = await read_payload(request)
		try:
			resolved = await self.resolve(payload.get("token"))
		except ComponentNotFound:
			return not_found()
		component_cls = resolved.component_cls
		spec = component_cls.__actions__.get(str(payload.get("action_name", "")))
		if spec is None:
			return not_found()

		raw_params = payload.get("params")
		params = raw_params if isinstance(raw_params, Mapping) else {}
		kwargs = {name: params[name] for name in spec.params if name in params}
		model = resolved.model
		delegate = component_cls.delegate(**{component_cls.model_attr(model): model})
		try:
			result = getattr(delegate, spec.attr)(**kwargs)
			if inspect.isawaitable(result):
				result = await result
		except Exception as exc:
			report_error(
				exc,
				code="action",
				details={"component": component_cls.id, "action": spec.name},
			)
			raise
		return action_response(result)

	async def pull(self, request: Request) -> Response:
		payload = await read_payload(request)
		try:
			resolved = await self.resolve(payload.get("token"))
		except ComponentNotFound:
			return not_found()
		component_cls = resolved.component_cls
		data = self.renderer.data_for(component_cls, resolved.model)
		return JSONResponse(
			{"dom_id": component_cls.dom_id_for(resolved.model), "data": data}
		)

	def runtime(self) -> Response:
		return Response(
			runtime_js(api_prefix=self.renderer.api_prefix),
			media_type="application/javascript",
		)

	def router(self, prefix: str) -> APIRouter:
		router = APIRouter(prefix=prefix)
		router.add_api_route("/actions", self.perform, methods=["POST"])
		router.add_api_route("/pull", self.pull, methods=["POST"])
		router.add_api_route("/runtime.js", self.runtime, methods=["GET"])
		return router


__all__ = [
	"LiveEndpoints",
	"ModelLocator",
	"Redirect",
	"action_response",
	"not_found",
	"read_payload",
]
