"""JavaScript AST for compiled render functions.

Nodes append their source to an output buffer. Expression nodes carry a
precedence so that parentheses are only emitted where JS needs them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from inspect import isfunction
from typing import TYPE_CHECKING, Any, TypeAlias, TypeVar, cast, overload

from typing_extensions import override
from typing import Literal as Lit

if TYPE_CHECKING:
	from livecomp.transpiler.emitter import ExpressionEmitter

TransformerFn: TypeAlias = Callable[..., "ExprNode"]
_F = TypeVar("_F", bound="Callable[..., Any]")


# =============================================================================
# Base classes
# =============================================================================
class Node(ABC):
	__slots__: tuple[str, ...] = ()

	@abstractmethod
	def emit(self, out: list[str]) -> None:
		"""Append this node's JavaScript source to ``out``."""


class ExprNode(Node, ABC):
	"""Expression node.

	The ``emit_*`` hooks let a node decide what calling, reading an attribute
	from, or subscripting it means. They receive raw Python AST arguments and
	the active emitter.
	"""

	__slots__: tuple[str, ...] = ()

	def precedence(self) -> int:
		return 20

	def emit_call(
		self,
		args: list[Any],
		kwargs: dict[str, Any],
		ctx: ExpressionEmitter,
	) -> ExprNode:
		raise NotImplementedError(f"{type(self).__name__} is not callable")

	def emit_getattr(self, attr: str, ctx: ExpressionEmitter) -> ExprNode:
		return Member(self, attr)

	def emit_subscript(self, key: Any, ctx: ExpressionEmitter) -> ExprNode:
		return Subscript(self, ctx.emit_expr(key))


class StmtNode(Node, ABC):
	__slots__: tuple[str, ...] = ()


# =============================================================================
# Expression Nodes
# =============================================================================


@dataclass(slots=True)
class Identifier(ExprNode):
	name: str

	@override
	def emit(self, out: list[str]) -> None:
		out.append(self.name)


@dataclass(slots=True)
class Literal(ExprNode):
	"""JS literal: 42, "hello", true, null"""

	value: int | float | str | bool | None

	@override
	def emit(self, out: list[str]) -> None:
		if self.value is None:
			out.append("null")
		elif isinstance(self.value, bool):
			out.append("true" if self.value else "false")
		elif isinstance(self.value, str):
			out.append('"')
			out.append(escape_string(self.value))
			out.append('"')
		else:
			out.append(repr(self.value))


@dataclass(slots=True)
class Array(ExprNode):
	elements: Sequence[ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("[")
		_emit_list(self.elements, out)
		out.append("]")


@dataclass(slots=True)
class Object(ExprNode):
	props: Sequence[tuple[str, ExprNode]]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("{")
		for i, (k, v) in enumerate(self.props):
			if i > 0:
				out.append(", ")
			out.append('"')
			out.append(escape_string(k))
			out.append('": ')
			v.emit(out)
		out.append("}")


@dataclass(slots=True)
class Member(ExprNode):
	obj: ExprNode
	prop: str

	@override
	def emit(self, out: list[str]) -> None:
		_emit_primary(self.obj, out)
		out.append(".")
		out.append(self.prop)


@dataclass(slots=True)
class Subscript(ExprNode):
	obj: ExprNode
	key: ExprNode

	@override
	def emit(self, out: list[str]) -> None:
		_emit_primary(self.obj, out)
		out.append("[")
		self.key.emit(out)
		out.append("]")


@dataclass(slots=True)
class Call(ExprNode):
	callee: ExprNode
	args: Sequence[ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		_emit_primary(self.callee, out)
		out.append("(")
		_emit_list(self.args, out)
		out.append(")")


@dataclass(slots=True)
class Unary(ExprNode):
	"""-x, !x, typeof x"""

	op: str
	operand: ExprNode

	@override
	def precedence(self) -> int:
		tag = {"+": "+u", "-": "-u"}.get(self.op, self.op)
		return _PRECEDENCE.get(tag, 17)

	@override
	def emit(self, out: list[str]) -> None:
		out.append(self.op)
		if self.op == "typeof":
			out.append(" ")
		if isinstance(self.operand, Unary) and self.operand.op in ("+", "-"):
			out.append("(")
			self.operand.emit(out)
			out.append(")")
			return
		_emit_paren(self.operand, self.op, "unary", out)


@dataclass(slots=True)
class Binary(ExprNode):
	left: ExprNode
	op: str
	right: ExprNode

	@override
	def precedence(self) -> int:
		return _PRECEDENCE.get(self.op, 0)

	@override
	def emit(self, out: list[str]) -> None:
		# JS rejects -x ** y without parentheses
		if self.op == "**" and isinstance(self.left, Unary):
			out.append("(")
			self.left.emit(out)
			out.append(")")
		else:
			_emit_paren(self.left, self.op, "left", out)
		out.append(" ")
		out.append(self.op)
		out.append(" ")
		_emit_paren(self.right, self.op, "right", out)


@dataclass(slots=True)
class Ternary(ExprNode):
	cond: ExprNode
	then: ExprNode
	else_: ExprNode

	@override
	def precedence(self) -> int:
		return _PRECEDENCE["?:"]

	@override
	def emit(self, out: list[str]) -> None:
		_emit_paren(self.cond, "?:", "left", out)
		out.append(" ? ")
		self.then.emit(out)
		out.append(" : ")
		self.else_.emit(out)


@dataclass(slots=True)
class Arrow(ExprNode):
	"""(x) => expr"""

	params: Sequence[str]
	body: ExprNode

	@override
	def precedence(self) -> int:
		return 2

	@override
	def emit(self, out: list[str]) -> None:
		out.append("(")
		out.append(", ".join(self.params))
		out.append(") => ")
		if isinstance(self.body, Object):
			out.append("(")
			self.body.emit(out)
			out.append(")")
		else:
			self.body.emit(out)


@dataclass(slots=True)
class Template(ExprNode):
	"""Template literal. ``parts`` alternates between text and expressions."""

	parts: Sequence[str | ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("`")
		for p in self.parts:
			if isinstance(p, str):
				out.append(escape_template(p))
			else:
				out.append("${")
				p.emit(out)
				out.append("}")
		out.append("`")


@dataclass(slots=True)
class Spread(ExprNode):
	expr: ExprNode

	@override
	def emit(self, out: list[str]) -> None:
		out.append("...")
		_emit_primary(self.expr, out)


@dataclass(slots=True)
class New(ExprNode):
	ctor: ExprNode
	args: Sequence[ExprNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("new ")
		self.ctor.emit(out)
		out.append("(")
		_emit_list(self.args, out)
		out.append(")")


@dataclass(slots=True)
class Transformer(ExprNode):
	"""A name whose call is rewritten, e.g. ``len(x)`` to ``x.length``."""

	fn: TransformerFn
	name: str = ""

	@override
	def emit(self, out: list[str]) -> None:
		raise TypeError(f"{self.name or 'Transformer'} cannot be emitted without a call")

	@override
	def emit_call(
		self,
		args: list[Any],
		kwargs: dict[str, Any],
		ctx: ExpressionEmitter,
	) -> ExprNode:
		return self.fn(*args, ctx=ctx, **kwargs)

	@override
	def emit_getattr(self, attr: str, ctx: ExpressionEmitter) -> ExprNode:
		raise TypeError(f"{self.name or 'Transformer'} cannot have attributes")

	@override
	def emit_subscript(self, key: Any, ctx: ExpressionEmitter) -> ExprNode:
		raise TypeError(f"{self.name or 'Transformer'} cannot be subscripted")


@overload
def transformer(arg: str) -> Callable[[_F], _F]: ...


@overload
def transformer(arg: _F) -> _F: ...


def transformer(arg: str | _F) -> Callable[[_F], _F] | _F:
	"""Wrap a rewrite function as a Transformer (decorator or direct call)."""
	if isinstance(arg, str):

		def decorator(fn: _F) -> _F:
			return cast(_F, Transformer(fn, name=arg))

		return decorator
	if isfunction(arg):
		name = "" if arg.__name__ == "<lambda>" else arg.__name__
		return cast(_F, Transformer(arg, name=name))
	raise TypeError("transformer expects a function or a name")


# =============================================================================
# Statement Nodes
# =============================================================================


@dataclass(slots=True)
class Return(StmtNode):
	value: ExprNode | None = None

	@override
	def emit(self, out: list[str]) -> None:
		out.append("return")
		if self.value is not None:
			out.append(" ")
			self.value.emit(out)
		out.append(";")


@dataclass(slots=True)
class If(StmtNode):
	"""if (cond) { ... } else { ... }; an else holding a single If chains."""

	cond: ExprNode
	then: Sequence[StmtNode]
	else_: Sequence[StmtNode] = ()

	@override
	def emit(self, out: list[str]) -> None:
		out.append("if (")
		self.cond.emit(out)
		out.append(") {\n")
		_emit_body(self.then, out)
		out.append("}")
		if len(self.else_) == 1 and isinstance(self.else_[0], If):
			out.append(" else ")
			self.else_[0].emit(out)
		elif self.else_:
			out.append(" else {\n")
			_emit_body(self.else_, out)
			out.append("}")


@dataclass(slots=True)
class ForOf(StmtNode):
	"""for (const x of iter) { ... }; ``target`` may be an array pattern."""

	target: str
	iter: ExprNode
	body: Sequence[StmtNode]

	@override
	def emit(self, out: list[str]) -> None:
		out.append("for (const ")
		out.append(self.target)
		out.append(" of ")
		self.iter.emit(out)
		out.append(") {\n")
		_emit_body(self.body, out)
		out.append("}")


@dataclass(slots=True)
class Assign(StmtNode):
	"""``let x = v;``, ``x = v;`` or ``x += v;``. ``target`` may be a pattern."""

	target: str
	value: ExprNode
	declare: Lit["let", "const"] | None = None
	op: str | None = None

	@override
	def emit(self, out: list[str]) -> None:
		if self.declare:
			out.append(self.declare)
			out.append(" ")
		out.append(self.target)
		out.append(f" {self.op}= " if self.op else " = ")
		self.value.emit(out)
		out.append(";")


# =============================================================================
# Emit logic
# =============================================================================


def emit(node: Node) -> str:
	out: list[str] = []
	node.emit(out)
	return "".join(out)


def emit_statements(stmts: Sequence[StmtNode]) -> str:
	out: list[str] = []
	_emit_body(stmts, out)
	return "".join(out)


# Higher binds tighter
_PRECEDENCE: dict[str, int] = {
	".": 20,
	"[]": 20,
	"()": 20,
	"!": 17,
	"+u": 17,
	"-u": 17,
	"typeof": 17,
	"**": 16,
	"*": 15,
	"/": 15,
	"%": 15,
	"+": 14,
	"-": 14,
	"<": 12,
	"<=": 12,
	">": 12,
	">=": 12,
	"instanceof": 12,
	"in": 12,
	"==": 11,
	"!=": 11,
	"===": 11,
	"!==": 11,
	"&&": 7,
	"||": 6,
	"??": 6,
	"?:": 4,
}

_RIGHT_ASSOC = {"**"}


def escape_string(s: str) -> str:
	"""Escape for double-quoted JS string literals."""
	return (
		s.replace("\\", "\\\\")
		.replace('"', '\\"')
		.replace("\n", "\\n")
		.replace("\r", "\\r")
		.replace("\t", "\\t")
		.replace("\x00", "\\x00")
		.replace("\u2028", "\\u2028")
		.replace("\u2029", "\\u2029")
		.replace("</", "<\\/")
	)


def escape_template(s: str) -> str:
	return (
		s.replace("\\", "\\\\")
		.replace("`", "\\`")
		.replace("${", "\\${")
		.replace("\r", "\\r")
		.replace("\x00", "\\x00")
		.replace("\u2028", "\\u2028")
		.replace("\u2029", "\\u2029")
	)


def _emit_list(items: Sequence[ExprNode], out: list[str]) -> None:
	for i, item in enumerate(items):
		if i > 0:
			out.append(", ")
		item.emit(out)


def _emit_body(stmts: Sequence[StmtNode], out: list[str]) -> None:
	for stmt in stmts:
		stmt.emit(out)
		out.append("\n")


def _emit_paren(node: ExprNode, parent_op: str, side: str, out: list[str]) -> None:
	child_prec = node.precedence()
	parent_prec = _PRECEDENCE.get(parent_op, 0)
	needs_parens = isinstance(node, Ternary) or child_prec < parent_prec
	if not needs_parens and child_prec == parent_prec and isinstance(node, Binary):
		if parent_op in _RIGHT_ASSOC:
			needs_parens = side == "left"
		else:
			needs_parens = side == "right"
	# ?? cannot mix with && or || unparenthesized
	if isinstance(node, Binary) and {node.op, parent_op} & {"??"} and {
		node.op,
		parent_op,
	} & {"&&", "||"}:
		needs_parens = True
	if needs_parens:
		out.append("(")
		node.emit(out)
		out.append(")")
	else:
		node.emit(out)


def _emit_primary(node: ExprNode, out: list[str]) -> None:
	if node.precedence() < 20:
		out.append("(")
		node.emit(out)
		out.append(")")
	else:
		node.emit(out)


__all__ = [
	"Array",
	"Arrow",
	"Assign",
	"Binary",
	"Call",
	"ExprNode",
	"ForOf",
	"Identifier",
	"If",
	"Literal",
	"Member",
	"New",
	"Node",
	"Object",
	"Return",
	"Spread",
	"StmtNode",
	"Subscript",
	"Template",
	"Ternary",
	"Transformer",
	"Unary",
	"emit",
	"emit_statements",
	"escape_string",
	"transformer",
]
