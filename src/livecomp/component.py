"""Component declarations.

A component is a class: its template, the client-renderable state it owns,
its statically declared helpers and actions, and how it maps to a live
stream. Nothing here is evaluated at compile time except the declared names.
"""

from __future__ import annotations

import inspect
import re
import sys
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Literal, TypeVar, overload

UpdateStrategy = Literal["push", "notify"]

F = TypeVar("F", bound=Callable[..., Any])
C = TypeVar("C", bound=type["LiveComponent"])

_CAMEL_1 = re.compile(r"(.)([A-Z][a-z]+)")
_CAMEL_2 = re.compile(r"([a-z0-9])([A-Z])")


def snake_case(name: str) -> str:
	return _CAMEL_2.sub(r"\1_\2", _CAMEL_1.sub(r"\1_\2", name)).lower()


def model_name(model: Any) -> str:
	return snake_case(type(model).__name__)


def model_id(model: Any) -> Any:
	return getattr(model, "id", None)


def model_key(model: Any) -> str:
	"""Global identity of a record, e.g. ``Contact:12``."""
	return f"{type(model).__name__}:{model_id(model)}"


def dom_id(model: Any, prefix: str | None = None) -> str:
	"""``message_12``, ``labels_message_12``, or ``new_message`` when unsaved."""
	ident = model_id(model)
	base = f"new_{model_name(model)}" if ident is None else f"{model_name(model)}_{ident}"
	return f"{prefix}_{base}" if prefix else base


def _is_record(value: Any) -> bool:
	return not isinstance(value, (str, bytes, int, float, bool)) and hasattr(
		value, "id"
	)


def stream_name(streamables: Iterable[Any] | Any) -> str:
	"""Colon-joined logical topic name. Records become ``Type:id``."""
	if isinstance(streamables, (str, bytes)) or not isinstance(streamables, Iterable):
		streamables = [streamables]
	parts: list[str] = []
	for item in streamables:
		if isinstance(item, (list, tuple)):
			parts.append(stream_name(item))
		elif _is_record(item):
			parts.append(model_key(item))
		else:
			parts.append(str(item))
	return ":".join(parts)


# =============================================================================
# Decorators
# =============================================================================


@dataclass(frozen=True, slots=True)
class ActionSpec:
	name: str
	attr: str
	params: tuple[str, ...]


def helper(fn: F) -> F:
	"""Expose a method to templates as a server-side helper function."""
	fn.__livecomp_helper__ = True  # pyright: ignore[reportFunctionMemberAccess]
	return fn


@overload
def action(fn: F, /) -> F: ...
@overload
def action(*, name: str | None = None, params: Sequence[str] = ()) -> Callable[[F], F]: ...
def action(
	fn: F | None = None,
	/,
	*,
	name: str | None = None,
	params: Sequence[str] = (),
) -> F | Callable[[F], F]:
	"""Mark a method as invokable through a signed action token.

	Only the declared ``params`` are forwarded from the request.
	"""

	def decorator(f: F) -> F:
		f.__livecomp_action__ = (name or f.__name__, tuple(params))  # pyright: ignore[reportFunctionMemberAccess]
		return f

	if fn is not None:
		return decorator(fn)
	return decorator


# =============================================================================
# Component base
# =============================================================================


class LiveComponent:
	id: ClassVar[str]
	template: ClassVar[str | None] = None
	template_path: ClassVar[str | Path | None] = None
	# Name the bound record takes in templates. Defaults to its snake-cased type.
	model: ClassVar[str | None] = None
	state: ClassVar[Mapping[str, Any]] = {}
	dom_id_prefix: ClassVar[str | None] = None
	stream: ClassVar[Any] = None
	update_strategy: ClassVar[UpdateStrategy] = "push"

	data_fields: ClassVar[Sequence[str]] = ()
	data_predicates: ClassVar[Sequence[str]] = ()
	data_helpers: ClassVar[Sequence[str]] = ()
	data_iterations: ClassVar[Mapping[str, Sequence[str]]] = {}
	data_derived: ClassVar[Sequence[str]] = ()
	data_depends: ClassVar[Mapping[str, Sequence[str]]] = {}

	__helpers__: ClassVar[dict[str, str]] = {}
	__actions__: ClassVar[dict[str, ActionSpec]] = {}

	def __init_subclass__(cls, **kwargs: Any) -> None:
		super().__init_subclass__(**kwargs)
		if "id" not in cls.__dict__:
			name = cls.__name__
			if name.endswith("Component") and name != "Component":
				name = name[: -len("Component")]
			cls.id = snake_case(name)
		helpers: dict[str, str] = {}
		actions: dict[str, ActionSpec] = {}
		for klass in reversed(cls.__mro__):
			for attr, value in klass.__dict__.items():
				fn = value.__func__ if isinstance(value, (staticmethod, classmethod)) else value
				if getattr(fn, "__livecomp_helper__", False):
					helpers[attr] = attr
				spec = getattr(fn, "__livecomp_action__", None)
				if spec is not None:
					actions[spec[0]] = ActionSpec(name=spec[0], attr=attr, params=spec[1])
		cls.__helpers__ = helpers
		cls.__actions__ = actions

	def __init__(self, **props: Any) -> None:
		self.props = props
		for key, value in props.items():
			setattr(self, key, value)

	@classmethod
	def delegate(cls, **props: Any) -> LiveComponent:
		"""Instance used to bind helpers and run actions, without calling __init__."""
		inst = cls.__new__(cls)
		inst.props = props
		for key, value in props.items():
			setattr(inst, key, value)
		return inst

	@classmethod
	def model_attr(cls, model: Any) -> str:
		return cls.model or model_name(model)

	@classmethod
	def dom_id_for(cls, model: Any) -> str:
		return dom_id(model, cls.dom_id_prefix)

	@classmethod
	def streamables_for(cls, model: Any) -> Sequence[Any] | None:
		stream = cls.stream
		if stream is None:
			return None
		if callable(stream):
			stream = stream(model)
		if stream is None:
			return None
		if isinstance(stream, (list, tuple)):
			return tuple(stream)
		return (stream,)

	@classmethod
	def is_live(cls) -> bool:
		return cls.stream is not None

	@classmethod
	def module_globals(cls) -> dict[str, Any]:
		module = sys.modules.get(cls.__module__)
		if module is None:
			return {}
		return {k: v for k, v in vars(module).items() if not k.startswith("__")}

	@classmethod
	def default_template_path(cls) -> Path | None:
		if cls.template_path is not None:
			path = Path(cls.template_path)
			if not path.is_absolute():
				source = inspect.getsourcefile(cls)
				if source is not None:
					path = Path(source).parent / path
			return path
		try:
			source = inspect.getsourcefile(cls)
		except TypeError:
			return None
		if source is None:
			return None
		return Path(source).parent / f"{cls.id}.mako"


class ComponentRegistry:
	"""Components by id. Nested ``render("id")`` calls resolve here."""

	def __init__(self, components: Iterable[type[LiveComponent]] = ()) -> None:
		self._components: dict[str, type[LiveComponent]] = {}
		for comp in components:
			self.register(comp)

	def register(self, cls: C) -> C:
		existing = self._components.get(cls.id)
		if existing is not None and existing is not cls:
			raise ValueError(
				f"Component id '{cls.id}' already registered by {existing.__qualname__}"
			)
		self._components[cls.id] = cls
		return cls

	def get(self, component_id: str) -> type[LiveComponent] | None:
		return self._components.get(component_id)

	def __getitem__(self, component_id: str) -> type[LiveComponent]:
		return self._components[component_id]

	def __contains__(self, component_id: object) -> bool:
		return component_id in self._components

	def __iter__(self):
		return iter(self._components.values())

	def ids(self) -> list[str]:
		return sorted(self._components)


__all__ = [
	"ActionSpec",
	"ComponentRegistry",
	"LiveComponent",
	"UpdateStrategy",
	"action",
	"dom_id",
	"helper",
	"model_id",
	"model_key",
	"model_name",
	"snake_case",
	"stream_name",
]
