"""Expression classification.

Every expression in a template is decided by the names it reads:

- client locals (client loop variables, comprehension and lambda params)
- state (the component's client-renderable state, overridable in the browser)
- item variables (variables of loops over server collections)
- builtins the JS emitter understands (neutral)
- everything else is server-side: the bound record, other props, helpers,
  module globals.

Nodes with no server or item names run in the browser. Access nodes
(attribute, subscript, call, comprehension) that touch server data are
hoisted whole. Operator nodes that mix state or client locals with server
data are split: the operator runs in the browser, its server operands are
hoisted.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

from livecomp.compiler.artifact import ExpressionRecord, NestedComponentRef
from livecomp.errors import TemplateCompileError
from livecomp.transpiler.builtins import BUILTINS

RENDER_HELPER = "render"

OPERATOR_NODES: tuple[type[ast.expr], ...] = (
	ast.BoolOp,
	ast.BinOp,
	ast.UnaryOp,
	ast.Compare,
	ast.IfExp,
	ast.JoinedStr,
	ast.FormattedValue,
	ast.List,
	ast.Tuple,
	ast.Dict,
	ast.Constant,
)


class Kind(StrEnum):
	SERVER_ONLY = "server_only"
	CLIENT_RENDERABLE = "client_renderable"
	COLLECTION_ROOT = "collection_root"
	PER_ITEM = "per_item"
	NESTED_COMPONENT = "nested_component"
	# Operator whose operands classify differently; recurse into it.
	SPLIT = "split"


class NameKind(StrEnum):
	LOCAL = "local"
	STATE = "state"
	ITEM = "item"
	BUILTIN = "builtin"
	SERVER = "server"


@dataclass(slots=True, eq=False)
class LoopFrame:
	kind: Literal["client", "server"]
	names: tuple[str, ...]
	line: int | None = None
	# server loops only
	collection_key: str = ""
	source: str = ""
	item_js: str = ""
	per_item: dict[str, ExpressionRecord] = field(default_factory=dict)
	nested: dict[str, NestedComponentRef] = field(default_factory=dict)
	dedup: dict[tuple[str, bool], str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Classification:
	kind: Kind
	frame: LoopFrame | None = None


class Scope:
	"""Names visible at one point of the template walk."""

	def __init__(self, state: frozenset[str]) -> None:
		self.state = state
		self.frames: list[LoopFrame] = []

	def push(self, frame: LoopFrame) -> None:
		self.frames.append(frame)

	def pop(self) -> LoopFrame:
		return self.frames.pop()

	def server_depth(self) -> int:
		return sum(1 for f in self.frames if f.kind == "server")

	def lookup(
		self, name: str, bound: frozenset[str] | set[str] = frozenset()
	) -> tuple[NameKind, LoopFrame | None]:
		if name in bound:
			return NameKind.LOCAL, None
		for frame in reversed(self.frames):
			if name in frame.names:
				if frame.kind == "client":
					return NameKind.LOCAL, frame
				return NameKind.ITEM, frame
		if name in self.state:
			return NameKind.STATE, None
		if name in BUILTINS:
			return NameKind.BUILTIN, None
		return NameKind.SERVER, None


def bound_names(node: ast.AST) -> set[str]:
	"""Names bound inside ``node`` by comprehensions and lambdas."""
	bound: set[str] = set()
	for sub in ast.walk(node):
		if isinstance(sub, ast.comprehension):
			for target in ast.walk(sub.target):
				if isinstance(target, ast.Name):
					bound.add(target.id)
		elif isinstance(sub, ast.Lambda):
			args = sub.args
			for arg in (*args.posonlyargs, *args.args, *args.kwonlyargs):
				bound.add(arg.arg)
			if args.vararg is not None:
				bound.add(args.vararg.arg)
			if args.kwarg is not None:
				bound.add(args.kwarg.arg)
	return bound


def free_names(node: ast.AST) -> list[str]:
	"""Names read by ``node`` that it does not bind itself, in walk order."""
	bound = bound_names(node)
	seen: dict[str, None] = {}
	for sub in ast.walk(node):
		if isinstance(sub, ast.Name) and isinstance(sub.ctx, ast.Load) and sub.id not in bound:
			seen.setdefault(sub.id, None)
	return list(seen)


def is_render_call(node: ast.AST) -> bool:
	return (
		isinstance(node, ast.Call)
		and isinstance(node.func, ast.Name)
		and node.func.id == RENDER_HELPER
	)


def contains_render_call(node: ast.AST) -> bool:
	return any(is_render_call(sub) for sub in ast.walk(node))


@dataclass(slots=True)
class NameSummary:
	local: bool = False
	state: bool = False
	server: bool = False
	frames: list[LoopFrame] = field(default_factory=list)


def summarize(
	node: ast.expr, scope: Scope, bound: frozenset[str] | set[str] = frozenset()
) -> NameSummary:
	summary = NameSummary()
	for name in free_names(node):
		kind, frame = scope.lookup(name, bound)
		if kind is NameKind.LOCAL:
			summary.local = True
		elif kind is NameKind.STATE:
			summary.state = True
		elif kind is NameKind.ITEM:
			assert frame is not None
			if frame not in summary.frames:
				summary.frames.append(frame)
		elif kind is NameKind.SERVER:
			summary.server = True
	return summary


def classify(
	node: ast.expr,
	scope: Scope,
	bound: frozenset[str] | set[str] = frozenset(),
	*,
	line: int | None = None,
) -> Classification:
	"""Decide where one expression node is evaluated."""
	if is_render_call(node):
		return Classification(Kind.NESTED_COMPONENT)

	summary = summarize(node, scope, bound)
	if not summary.frames and not summary.server:
		return Classification(Kind.CLIENT_RENDERABLE)

	operator = isinstance(node, OPERATOR_NODES)
	if summary.local or summary.state:
		if operator:
			return Classification(Kind.SPLIT)
		if summary.local:
			raise TemplateCompileError(
				f"Expression '{ast.unparse(node)}' mixes client-side loop variables "
				+ "with server data"
				+ (f" (line {line})" if line is not None else "")
			)

	if summary.frames:
		if len(summary.frames) > 1:
			raise TemplateCompileError(
				f"Expression '{ast.unparse(node)}' reads items of more than one server loop"
				+ (f" (line {line})" if line is not None else "")
			)
		return Classification(Kind.PER_ITEM, summary.frames[0])
	return Classification(Kind.SERVER_ONLY)


def classify_collection(
	node: ast.expr, scope: Scope, *, line: int | None = None
) -> Classification:
	"""Decide how a loop iterable is evaluated."""
	if contains_render_call(node):
		raise TemplateCompileError("render() cannot be used as a loop iterable")
	summary = summarize(node, scope)
	if not summary.frames and not summary.server:
		return Classification(Kind.CLIENT_RENDERABLE)
	where = f" (line {line})" if line is not None else ""
	if summary.frames:
		raise TemplateCompileError(
			f"Loop over '{ast.unparse(node)}' iterates a per-item value{where}; "
			+ "render the item through a nested component instead"
		)
	if summary.local or (summary.state and isinstance(node, OPERATOR_NODES)):
		raise TemplateCompileError(
			f"Loop iterable '{ast.unparse(node)}' mixes client and server values{where}"
		)
	return Classification(Kind.COLLECTION_ROOT)


__all__ = [
	"Classification",
	"Kind",
	"LoopFrame",
	"NameKind",
	"Scope",
	"classify",
	"classify_collection",
	"contains_render_call",
	"free_names",
	"is_render_call",
]
