"""Server-side evaluation of compiled expression records.

The evaluator owns one namespace per (component, model) pair and evaluates
each recorded source string against it. Errors never escape: a failing
expression is logged and its key is ``None``.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from types import CodeType
from typing import TYPE_CHECKING, Any

from markupsafe import Markup

from livecomp.component import model_id
from livecomp.compiler.server_template import render_server_template
from livecomp.data.formatting import item_value, json_safe
from livecomp.errors import report_error

if TYPE_CHECKING:
	from livecomp.compiler.artifact import CollectionContext, CompiledArtifact
	from livecomp.compiler.service import Compiler
	from livecomp.component import LiveComponent

logger = logging.getLogger(__name__)

DataBag = dict[str, Any]
RenderFn = Callable[..., Markup]


@functools.lru_cache(maxsize=4096)
def _compile(source: str) -> CodeType:
	return compile(source, "<livecomp expression>", "eval")


def split_props(
	component_cls: type[LiveComponent], props: Mapping[str, Any]
) -> tuple[Any, dict[str, Any]]:
	"""Separate the bound record from the other props of a nested render."""
	rest = dict(props)
	if component_cls.model is not None and component_cls.model in rest:
		return rest.pop(component_cls.model), rest
	return None, rest


class DataEvaluator:
	def __init__(
		self,
		component_cls: type[LiveComponent],
		model: Any = None,
		*,
		compiler: Compiler,
		extra: Mapping[str, Any] | None = None,
		render: RenderFn | None = None,
	) -> None:
		self.component_cls = component_cls
		self.model = model
		self.compiler = compiler
		self.extra = dict(extra or {})
		self._render_fn = render
		self.model_attr = component_cls.model_attr(model) if model is not None else None
		self.namespace = self._build_namespace()

	# --- Namespace -----------------------------------------------------------

	def _props(self) -> dict[str, Any]:
		props = dict(self.extra)
		if self.model_attr is not None:
			props[self.model_attr] = self.model
		return props

	def _delegate(self) -> Any:
		cls = self.component_cls
		try:
			return cls.delegate(**self._props())
		except Exception:
			logger.debug("Falling back to a bare delegate for '%s'", cls.id, exc_info=True)
			return cls.__new__(cls)

	def _build_namespace(self) -> dict[str, Any]:
		cls = self.component_cls
		ns: dict[str, Any] = cls.module_globals()
		ns.update(cls.state)
		ns.update(self._props())
		delegate = self._delegate()
		for name, attr in cls.__helpers__.items():
			ns[name] = getattr(delegate, attr)
		ns["render"] = self.render
		ns["raw"] = Markup
		return ns

	# --- Evaluation ----------------------------------------------------------

	def evaluate(self, source: str) -> Any:
		try:
			return eval(_compile(source), self.namespace)
		except Exception as exc:
			report_error(
				exc,
				code="evaluate",
				details={"component": self.component_cls.id, "source": source},
				message=f"Error evaluating {source!r}: {exc}",
			)
			return None

	def _item_fn(self, item_var: str, source: str) -> Callable[[Any], Any] | None:
		try:
			return eval(_compile(f"lambda {item_var}: ({source})"), self.namespace)
		except Exception as exc:
			report_error(
				exc,
				code="evaluate.collection",
				details={"component": self.component_cls.id, "source": source},
			)
			return None

	def _item_error(self, exc: Exception, source: str) -> None:
		report_error(
			exc,
			code="evaluate.collection",
			details={"component": self.component_cls.id, "source": source},
			message=f"Error evaluating {source!r} for a collection item: {exc}",
		)

	def evaluate_collection(self, source: str, context: CollectionContext) -> list[DataBag]:
		"""One flat dict per element, holding exactly the context's per-item keys."""
		collection = self.evaluate(source)
		if collection is None:
			return []
		item_var = context.item_var
		fns = {
			key: (record.source, self._item_fn(item_var, record.source))
			for key, record in context.per_item.items()
		}
		nested = {
			key: (
				ref,
				{name: (src, self._item_fn(item_var, src)) for name, src in ref.kwargs.items()},
			)
			for key, ref in context.nested.items()
		}

		rows: list[DataBag] = []
		try:
			items = list(collection)
		except TypeError as exc:
			self._item_error(exc, source)
			return []
		for item in items:
			row: DataBag = {}
			for key, (src, fn) in fns.items():
				if fn is None:
					row[key] = None
					continue
				try:
					row[key] = item_value(fn(item))
				except Exception as exc:
					self._item_error(exc, src)
					row[key] = None
			for key, (ref, kwarg_fns) in nested.items():
				kwargs: dict[str, Any] = {}
				for name, (src, fn) in kwarg_fns.items():
					try:
						kwargs[name] = fn(item) if fn is not None else None
					except Exception as exc:
						self._item_error(exc, src)
						kwargs[name] = None
				row[key] = self.nested_bag(ref.target, kwargs)
			rows.append(row)
		return rows

	def nested_bag(self, target: str, kwargs: Mapping[str, Any]) -> DataBag | None:
		target_cls = self.compiler.registry.get(target)
		if target_cls is None:
			logger.error("Nested component '%s' is not registered", target)
			return None
		artifact = self.compiler.compile(target)
		model, props = split_props(target_cls, kwargs)
		return DataEvaluator(
			target_cls, model, compiler=self.compiler, extra=props, render=self._render_fn
		).build(artifact)

	def identity(self) -> Any:
		return json_safe(model_id(self.model)) if self.model is not None else None

	def build(self, artifact: CompiledArtifact | None = None) -> DataBag:
		if artifact is None:
			artifact = self.compiler.compile(self.component_cls.id)
		bag: DataBag = {"id": self.identity()}
		for record in artifact.expressions:
			bag[record.key] = json_safe(self.evaluate(record.source))
		for context in artifact.collections:
			bag[context.collection_key] = self.evaluate_collection(context.source, context)
		for key, ref in artifact.nested.items():
			kwargs = {name: self.evaluate(src) for name, src in ref.kwargs.items()}
			bag[key] = self.nested_bag(ref.target, kwargs)
		for name, default in self.component_cls.state.items():
			bag.setdefault(name, json_safe(default))
		return bag

	# --- Server rendering ----------------------------------------------------

	def render(self, target: str, /, **kwargs: Any) -> Markup:
		"""The ``render`` helper templates call for nested components."""
		if self._render_fn is not None:
			return self._render_fn(target, **kwargs)
		target_cls = self.compiler.registry[target]
		model, props = split_props(target_cls, kwargs)
		return DataEvaluator(
			target_cls, model, compiler=self.compiler, extra=props
		).render_html()

	def render_html(self) -> Markup:
		template = self.compiler.server_template(self.component_cls.id)
		return render_server_template(template, self.namespace)


__all__ = ["DataBag", "DataEvaluator", "split_props"]
