"""Python builtins and methods that client-side template code may use.

Template expressions run on plain JSON values in the browser, so only the
builtins that make sense on strings, numbers, arrays and objects exist here.
Methods whose receiver type is unknown dispatch on a runtime type check.
"""

from __future__ import annotations

import builtins
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from typing_extensions import override

from livecomp.transpiler.nodes import (
	Array,
	Arrow,
	Binary,
	Call,
	ExprNode,
	Identifier,
	Literal,
	Member,
	New,
	Template,
	Ternary,
	Transformer,
	Unary,
	transformer,
)

if TYPE_CHECKING:
	from livecomp.transpiler.emitter import ExpressionEmitter


def _math(name: str, args: list[ExprNode]) -> ExprNode:
	return Call(Member(Identifier("Math"), name), args)


# =============================================================================
# Builtin Function Transpilers
# =============================================================================


@transformer("len")
def emit_len(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	"""len(x) -> x.length ?? Object.keys(x).length"""
	x = ctx.emit_expr(x)
	keys = Member(Call(Member(Identifier("Object"), "keys"), [x]), "length")
	return Binary(Member(x, "length"), "??", keys)


@transformer("str")
def emit_str(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Identifier("_str"), [ctx.emit_expr(x)])


@transformer("int")
def emit_int(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Member(Identifier("Math"), "trunc"), [Call(Identifier("Number"), [ctx.emit_expr(x)])])


@transformer("float")
def emit_float(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Identifier("parseFloat"), [ctx.emit_expr(x)])


@transformer("bool")
def emit_bool(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Identifier("_truthy"), [ctx.emit_expr(x)])


@transformer("list")
def emit_list(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Member(Identifier("Array"), "from"), [ctx.emit_expr(x)])


@transformer("min")
def emit_min(*args: Any, ctx: ExpressionEmitter) -> ExprNode:
	return _math("min", [ctx.emit_expr(a) for a in args])


@transformer("max")
def emit_max(*args: Any, ctx: ExpressionEmitter) -> ExprNode:
	return _math("max", [ctx.emit_expr(a) for a in args])


@transformer("abs")
def emit_abs(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return _math("abs", [ctx.emit_expr(x)])


@transformer("round")
def emit_round(number: Any, ndigits: Any = None, *, ctx: ExpressionEmitter) -> ExprNode:
	"""round(x) -> Math.round(x); round(x, n) -> Number(x.toFixed(n))"""
	value = ctx.emit_expr(number)
	if ndigits is None:
		return _math("round", [value])
	fixed = Call(Member(Call(Identifier("Number"), [value]), "toFixed"), [ctx.emit_expr(ndigits)])
	return Call(Identifier("Number"), [fixed])


@transformer("reversed")
def emit_reversed(iterable: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Member(Call(Member(ctx.emit_expr(iterable), "slice"), []), "reverse"), [])


@transformer("enumerate")
def emit_enumerate(iterable: Any, start: Any = None, *, ctx: ExpressionEmitter) -> ExprNode:
	"""enumerate(xs, start) -> xs.map((v, i) => [i + start, v])"""
	base = Literal(0) if start is None else ctx.emit_expr(start)
	pair = Array([Binary(Identifier("i"), "+", base), Identifier("v")])
	return Call(Member(ctx.emit_expr(iterable), "map"), [Arrow(["v", "i"], pair)])


@transformer("range")
def emit_range(*args: Any, ctx: ExpressionEmitter) -> ExprNode:
	from livecomp.transpiler.emitter import TranspileError

	if not (1 <= builtins.len(args) <= 3):
		raise TranspileError("range() expects 1 to 3 arguments")
	if builtins.len(args) == 1:
		start: ExprNode = Literal(0)
		stop = ctx.emit_expr(args[0])
	else:
		start = ctx.emit_expr(args[0])
		stop = ctx.emit_expr(args[1])
	step = ctx.emit_expr(args[2]) if builtins.len(args) == 3 else Literal(1)
	count = _math("max", [Literal(0), _math("ceil", [Binary(Binary(stop, "-", start), "/", step)])])
	return Call(
		Member(Identifier("Array"), "from"),
		[
			Call(Member(New(Identifier("Array"), [count]), "keys"), []),
			Arrow(["i"], Binary(start, "+", Binary(Identifier("i"), "*", step))),
		],
	)


@transformer("sorted")
def emit_sorted(iterable: Any, *, key: Any = None, reverse: Any = None, ctx: ExpressionEmitter) -> ExprNode:
	a: ExprNode = Identifier("a")
	b: ExprNode = Identifier("b")
	if key is not None:
		key_fn = ctx.emit_expr(key)
		a, b = Call(key_fn, [a]), Call(key_fn, [b])
	cmp = Binary(Binary(a, ">", b), "-", Binary(a, "<", b))
	result = Call(
		Member(Call(Member(ctx.emit_expr(iterable), "slice"), []), "sort"),
		[Arrow(["a", "b"], cmp)],
	)
	if reverse is None:
		return result
	return Ternary(ctx.emit_expr(reverse), Call(Member(result, "reverse"), []), result)


@transformer("any")
def emit_any(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Member(ctx.emit_expr(x), "some"), [Identifier("_truthy")])


@transformer("all")
def emit_all(x: Any, *, ctx: ExpressionEmitter) -> ExprNode:
	return Call(Member(ctx.emit_expr(x), "every"), [Identifier("_truthy")])


@transformer("sum")
def emit_sum(x: Any, start: Any = None, *, ctx: ExpressionEmitter) -> ExprNode:
	base = Literal(0) if start is None else ctx.emit_expr(start)
	reducer = Arrow(["a", "b"], Binary(Identifier("a"), "+", Identifier("b")))
	return Call(Member(ctx.emit_expr(x), "reduce"), [reducer, base])


BUILTINS: builtins.dict[builtins.str, Transformer] = builtins.dict(
	len=emit_len,
	str=emit_str,
	int=emit_int,
	float=emit_float,
	bool=emit_bool,
	list=emit_list,
	min=emit_min,
	max=emit_max,
	abs=emit_abs,
	round=emit_round,
	reversed=emit_reversed,
	enumerate=emit_enumerate,
	range=emit_range,
	sorted=emit_sorted,
	any=emit_any,
	all=emit_all,
	sum=emit_sum,
)  # pyright: ignore[reportAssignmentType]


# =============================================================================
# Builtin Method Transpilation
# =============================================================================
#
# Methods return None to fall through to a plain JS method call.


class BuiltinMethods(ABC):
	def __init__(self, obj: ExprNode) -> None:
		self.this: ExprNode = obj

	@classmethod
	@abstractmethod
	def __runtime_check__(cls, expr: ExprNode) -> ExprNode: ...

	@classmethod
	def __methods__(cls) -> builtins.set[str]:
		return {k for k in cls.__dict__ if not k.startswith("_")}


class StringMethods(BuiltinMethods):
	@classmethod
	@override
	def __runtime_check__(cls, expr: ExprNode) -> ExprNode:
		return Binary(Unary("typeof", expr), "===", Literal("string"))

	def lower(self) -> ExprNode:
		return Call(Member(self.this, "toLowerCase"), [])

	def upper(self) -> ExprNode:
		return Call(Member(self.this, "toUpperCase"), [])

	def strip(self) -> ExprNode:
		return Call(Member(self.this, "trim"), [])

	def lstrip(self) -> ExprNode:
		return Call(Member(self.this, "trimStart"), [])

	def rstrip(self) -> ExprNode:
		return Call(Member(self.this, "trimEnd"), [])

	def startswith(self, prefix: ExprNode) -> ExprNode:
		return Call(Member(self.this, "startsWith"), [prefix])

	def endswith(self, suffix: ExprNode) -> ExprNode:
		return Call(Member(self.this, "endsWith"), [suffix])

	def replace(self, old: ExprNode, new: ExprNode) -> ExprNode:
		return Call(Member(self.this, "replaceAll"), [old, new])

	def capitalize(self) -> ExprNode:
		first = Call(Member(Call(Member(self.this, "charAt"), [Literal(0)]), "toUpperCase"), [])
		rest = Call(Member(Call(Member(self.this, "slice"), [Literal(1)]), "toLowerCase"), [])
		return Binary(first, "+", rest)

	def join(self, iterable: ExprNode) -> ExprNode:
		return Call(Member(iterable, "join"), [self.this])

	def find(self, sub: ExprNode) -> ExprNode:
		return Call(Member(self.this, "indexOf"), [sub])

	def split(self, sep: ExprNode | None = None) -> ExprNode:
		if sep is None:
			trimmed = Call(Member(self.this, "trim"), [])
			return Call(Member(trimmed, "split"), [Identifier("/\\s+/")])
		return Call(Member(self.this, "split"), [sep])


class ListMethods(BuiltinMethods):
	@classmethod
	@override
	def __runtime_check__(cls, expr: ExprNode) -> ExprNode:
		return Call(Member(Identifier("Array"), "isArray"), [expr])

	def index(self, value: ExprNode) -> ExprNode:
		return Call(Member(self.this, "indexOf"), [value])

	def count(self, value: ExprNode) -> ExprNode:
		matches = Call(
			Member(self.this, "filter"),
			[Arrow(["v"], Binary(Identifier("v"), "===", value))],
		)
		return Member(matches, "length")


class DictMethods(BuiltinMethods):
	@classmethod
	@override
	def __runtime_check__(cls, expr: ExprNode) -> ExprNode:
		return Binary(
			Binary(expr, "!=", Literal(None)),
			"&&",
			Binary(Unary("typeof", expr), "===", Literal("object")),
		)

	def get(self, key: ExprNode, default: ExprNode | None = None) -> ExprNode:
		value = Call(Identifier("_get"), [self.this, key])
		if default is None:
			return value
		return Binary(value, "??", default)

	def keys(self) -> ExprNode:
		return Call(Member(Identifier("Object"), "keys"), [self.this])

	def values(self) -> ExprNode:
		return Call(Member(Identifier("Object"), "values"), [self.this])

	def items(self) -> ExprNode:
		return Call(Member(Identifier("Object"), "entries"), [self.this])


# Lowest priority first; later classes end up outermost in the runtime check.
METHOD_CLASSES: builtins.list[builtins.type[BuiltinMethods]] = [
	DictMethods,
	ListMethods,
	StringMethods,
]

ALL_METHODS: builtins.set[str] = builtins.set().union(
	*(cls.__methods__() for cls in METHOD_CLASSES)
)


def _dispatch(
	cls: builtins.type[BuiltinMethods], obj: ExprNode, method: str, args: list[ExprNode]
) -> ExprNode | None:
	if method not in cls.__methods__():
		return None
	try:
		return builtins.getattr(cls(obj), method)(*args)
	except TypeError:
		return None


def emit_method(obj: ExprNode, method: str, args: list[ExprNode]) -> ExprNode | None:
	"""Rewrite ``obj.method(*args)``; None means emit a plain method call."""
	if method not in ALL_METHODS:
		return None

	if builtins.isinstance(obj, Template) or (
		builtins.isinstance(obj, Literal) and builtins.isinstance(obj.value, str)
	):
		return _dispatch(StringMethods, obj, method, args)
	if builtins.isinstance(obj, Array):
		return _dispatch(ListMethods, obj, method, args)

	default: ExprNode = Call(Member(obj, method), args)
	expr = default
	for cls in METHOD_CLASSES:
		rewritten = _dispatch(cls, obj, method, args)
		if rewritten is not None:
			expr = Ternary(cls.__runtime_check__(obj), rewritten, expr)
	return None if expr is default else expr


__all__ = ["BUILTINS", "emit_method"]
