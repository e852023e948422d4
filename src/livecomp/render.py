"""Server rendering and the live node wrapper.

A live component renders as ``<div id=dom_id data-live-...>inner</div>``.
The ``data-live-*`` attributes carry everything the client runtime needs:
the compiled render body (inline, or the id of a shared template element),
the signed stream identity, the action token and the initial data bag.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from markupsafe import Markup, escape

from livecomp.component import LiveComponent, model_id, stream_name
from livecomp.data.evaluator import DataBag, DataEvaluator, split_props
from livecomp.env import env
from livecomp.errors import LiveComponentError, report_error
from livecomp.signing import ActionClaims

if TYPE_CHECKING:
	from livecomp.broadcast import Broadcaster
	from livecomp.compiler.service import Compiler
	from livecomp.signing import Signers

logger = logging.getLogger(__name__)

TEMPLATE_MIME = "text/x-live-template"


def template_element_id(component_id: str) -> str:
	return f"live-template-{component_id}"


def format_attrs(attrs: Mapping[str, Any]) -> Markup:
	return Markup(" ").join(
		Markup('{}="{}"').format(Markup(name), value) for name, value in attrs.items()
	)


def _json(value: Any) -> str:
	return json.dumps(value, separators=(",", ":"))


class Renderer:
	def __init__(
		self,
		compiler: Compiler,
		signers: Signers,
		*,
		api_prefix: str | None = None,
		shared_templates: bool = False,
	) -> None:
		self.compiler = compiler
		self.signers = signers
		self.api_prefix = env.api_prefix if api_prefix is None else "/" + api_prefix.strip("/")
		self.shared_templates = shared_templates
		# Set by the Broadcaster that publishes for these nodes
		self.broadcaster: Broadcaster | None = None

	@property
	def registry(self):
		return self.compiler.registry

	def evaluator(
		self, component_cls: type[LiveComponent], model: Any = None, **props: Any
	) -> DataEvaluator:
		return DataEvaluator(
			component_cls, model, compiler=self.compiler, extra=props, render=self.render
		)

	# --- Rendering -----------------------------------------------------------

	def render(self, component_id: str, /, **props: Any) -> Markup:
		"""Render a registered component by id; the record travels in ``props``."""
		component_cls = self.registry[component_id]
		model, rest = split_props(component_cls, props)
		return self.render_component(component_cls, model, **rest)

	def render_component(
		self, component_cls: type[LiveComponent], model: Any = None, **props: Any
	) -> Markup:
		evaluator = self.evaluator(component_cls, model, **props)
		try:
			inner = evaluator.render_html()
		except LiveComponentError:
			raise
		except Exception as exc:
			report_error(exc, code="render", details={"component": component_cls.id})
			inner = Markup("")
		if model is None or not (
			self.needs_wrapper(component_cls) or self.streamables_for(component_cls, model)
		):
			return inner
		return self.wrap(component_cls, model, inner, evaluator)

	@staticmethod
	def needs_wrapper(component_cls: type[LiveComponent]) -> bool:
		return bool(component_cls.is_live() or component_cls.__actions__ or component_cls.state)

	def streamables_for(self, component_cls: type[LiveComponent], model: Any) -> Sequence[Any] | None:
		"""The stream a node subscribes to, matching what the broadcaster publishes on."""
		if self.broadcaster is not None:
			config = self.broadcaster.config_for(model, component_cls)
			if config is not None:
				return config.streamables(model)
		return component_cls.streamables_for(model)

	def action_token(self, component_cls: type[LiveComponent], model: Any) -> str:
		claims = ActionClaims(
			component_id=component_cls.id,
			model_type=type(model).__name__,
			model_id=str(model_id(model)),
		)
		return self.signers.sign_action(claims)

	def live_attrs(
		self,
		component_cls: type[LiveComponent],
		model: Any,
		data: DataBag,
	) -> dict[str, str]:
		artifact = self.compiler.compile(component_cls.id)
		attrs: dict[str, str] = {
			"id": component_cls.dom_id_for(model),
			"data-live-component": component_cls.id,
		}
		if self.shared_templates:
			attrs["data-live-template-id"] = template_element_id(component_cls.id)
		else:
			attrs["data-live-template"] = artifact.render_fn_body
		streamables = self.streamables_for(component_cls, model)
		if streamables:
			attrs["data-live-stream"] = self.signers.sign_stream(stream_name(streamables))
		token: str | None = None
		if component_cls.__actions__:
			token = self.action_token(component_cls, model)
			attrs["data-live-action-url"] = f"{self.api_prefix}/actions"
		if component_cls.state:
			attrs["data-live-state"] = _json(dict(component_cls.state))
		attrs["data-live-data"] = _json(data)
		attrs["data-live-strategy"] = component_cls.update_strategy
		if component_cls.update_strategy == "notify":
			token = token or self.action_token(component_cls, model)
			attrs["data-live-pull-url"] = f"{self.api_prefix}/pull"
		if token is not None:
			attrs["data-live-action-token"] = token
		return attrs

	def wrap(
		self,
		component_cls: type[LiveComponent],
		model: Any,
		inner: Markup,
		evaluator: DataEvaluator | None = None,
	) -> Markup:
		evaluator = evaluator or self.evaluator(component_cls, model)
		data = evaluator.build(self.compiler.compile(component_cls.id))
		attrs = self.live_attrs(component_cls, model, data)
		return Markup("<div {}>{}</div>").format(format_attrs(attrs), inner)

	def data_for(self, component_cls: type[LiveComponent], model: Any, **props: Any) -> DataBag:
		return self.evaluator(component_cls, model, **props).build()

	def template_tag(self, component_id: str) -> Markup:
		"""Shared ``<script>`` element holding one component's render body."""
		body = self.compiler.compile(component_id).render_fn_body
		# Literal text is emitted inside JS strings with "</" escaped, so the
		# body cannot close the script element.
		return Markup('<script type="{}" id="{}">{}</script>').format(
			TEMPLATE_MIME, template_element_id(component_id), Markup(body)
		)

	def template_tags(self, component_ids: list[str] | None = None) -> Markup:
		ids = component_ids if component_ids is not None else self.registry.ids()
		return Markup("\n").join(self.template_tag(cid) for cid in ids)


__all__ = ["Renderer", "TEMPLATE_MIME", "format_attrs", "template_element_id"]
