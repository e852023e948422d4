"""Python expression -> JavaScript expression.

Translates the expression subset that template code may run in the browser.
Names resolve through the emitter's locals first, then through a caller
supplied resolver, then through the builtin table. A ``before`` hook may
replace any sub-expression before it is translated; the compiler uses it to
hoist server-evaluated parts into data-bag lookups.
"""

from __future__ import annotations

import ast
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from livecomp.transpiler.builtins import BUILTINS, emit_method
from livecomp.transpiler.nodes import (
	Array,
	Arrow,
	Binary,
	Call,
	ExprNode,
	Identifier,
	Literal,
	Member,
	Object,
	Spread,
	Subscript,
	Template,
	Ternary,
	Unary,
)

ALLOWED_BINOPS: dict[type[ast.operator], str] = {
	ast.Add: "+",
	ast.Sub: "-",
	ast.Mult: "*",
	ast.Div: "/",
	ast.Mod: "%",
	ast.Pow: "**",
}

ALLOWED_UNOPS: dict[type[ast.unaryop], str] = {
	ast.UAdd: "+",
	ast.USub: "-",
}

ALLOWED_CMPOPS: dict[type[ast.cmpop], str] = {
	ast.Lt: "<",
	ast.LtE: "<=",
	ast.Gt: ">",
	ast.GtE: ">=",
}

# Names that cannot be bound as JS identifiers.
JS_RESERVED = frozenset(
	{
		"arguments",
		"await",
		"case",
		"catch",
		"const",
		"data",
		"debugger",
		"default",
		"delete",
		"do",
		"enum",
		"eval",
		"export",
		"extends",
		"function",
		"instanceof",
		"let",
		"new",
		"null",
		"switch",
		"this",
		"throw",
		"typeof",
		"var",
		"void",
	}
)

NameResolver = Callable[[str], ExprNode | None]
BeforeHook = Callable[[ast.expr, "ExpressionEmitter"], ExprNode | None]


class TranspileError(Exception):
	"""Expression cannot run in the browser."""


class ExpressionEmitter:
	locals: set[str]

	def __init__(
		self,
		*,
		resolve: NameResolver | None = None,
		before: BeforeHook | None = None,
		locals: set[str] | None = None,
	) -> None:
		self.resolve = resolve
		self.before = before
		self.locals = set(locals or ())

	@contextmanager
	def bind(self, names: list[str]) -> Iterator[None]:
		"""Temporarily bind client-local names (comprehension/lambda params)."""
		for name in names:
			check_identifier(name)
		saved = set(self.locals)
		self.locals.update(names)
		try:
			yield
		finally:
			self.locals = saved

	# --- Expressions ---------------------------------------------------------

	def emit_expr(self, node: ast.expr | None) -> ExprNode:
		if node is None:
			return Literal(None)

		if self.before is not None:
			replaced = self.before(node, self)
			if replaced is not None:
				return replaced

		if isinstance(node, ast.Constant):
			return self._emit_constant(node)

		if isinstance(node, ast.Name):
			return self._emit_name(node)

		if isinstance(node, (ast.List, ast.Tuple)):
			return Array([self._emit_element(e) for e in node.elts])

		if isinstance(node, ast.Dict):
			return self._emit_dict(node)

		if isinstance(node, ast.BinOp):
			op = type(node.op)
			if op not in ALLOWED_BINOPS:
				raise TranspileError(f"Unsupported binary operator: {op.__name__}")
			return Binary(self.emit_expr(node.left), ALLOWED_BINOPS[op], self.emit_expr(node.right))

		if isinstance(node, ast.UnaryOp):
			if isinstance(node.op, ast.Not):
				return Unary("!", Call(Identifier("_truthy"), [self.emit_expr(node.operand)]))
			op = type(node.op)
			if op not in ALLOWED_UNOPS:
				raise TranspileError(f"Unsupported unary operator: {op.__name__}")
			return Unary(ALLOWED_UNOPS[op], self.emit_expr(node.operand))

		if isinstance(node, ast.BoolOp):
			return self._emit_boolop(node)

		if isinstance(node, ast.Compare):
			return self._emit_compare(node)

		if isinstance(node, ast.IfExp):
			return Ternary(
				Call(Identifier("_truthy"), [self.emit_expr(node.test)]),
				self.emit_expr(node.body),
				self.emit_expr(node.orelse),
			)

		if isinstance(node, ast.Call):
			return self._emit_call(node)

		if isinstance(node, ast.Attribute):
			return self.emit_expr(node.value).emit_getattr(node.attr, self)

		if isinstance(node, ast.Subscript):
			return self._emit_subscript(node)

		if isinstance(node, ast.JoinedStr):
			return self._emit_fstring(node)

		if isinstance(node, (ast.ListComp, ast.GeneratorExp)):
			return self._emit_comprehension(node.generators, lambda: self.emit_expr(node.elt))

		if isinstance(node, ast.Lambda):
			params = [arg.arg for arg in node.args.args]
			with self.bind(params):
				return Arrow(params, self.emit_expr(node.body))

		raise TranspileError(f"Unsupported expression: {type(node).__name__}")

	def _emit_element(self, node: ast.expr) -> ExprNode:
		if isinstance(node, ast.Starred):
			return Spread(self.emit_expr(node.value))
		return self.emit_expr(node)

	def _emit_constant(self, node: ast.Constant) -> ExprNode:
		v = node.value
		if v is None or isinstance(v, (bool, int, float, str)):
			return Literal(v)
		raise TranspileError(f"Unsupported constant type: {type(v).__name__}")

	def _emit_name(self, node: ast.Name) -> ExprNode:
		name = node.id
		if name in self.locals:
			return Identifier(name)
		if self.resolve is not None:
			resolved = self.resolve(name)
			if resolved is not None:
				return resolved
		if name in BUILTINS:
			return BUILTINS[name]
		if name in ("True", "False", "None"):
			return Literal({"True": True, "False": False, "None": None}[name])
		raise TranspileError(f"Unbound name referenced: {name}")

	def _emit_dict(self, node: ast.Dict) -> ExprNode:
		props: list[tuple[str, ExprNode]] = []
		for k, v in zip(node.keys, node.values, strict=True):
			if not (isinstance(k, ast.Constant) and isinstance(k.value, str)):
				raise TranspileError("Only string-keyed dict literals are supported")
			props.append((k.value, self.emit_expr(v)))
		return Object(props)

	def _emit_boolop(self, node: ast.BoolOp) -> ExprNode:
		# Python and/or return operands; JS &&/|| short-circuit on JS truthiness,
		# so test each operand through _truthy and keep the operand value.
		values = [self.emit_expr(v) for v in node.values]
		result = values[-1]
		for value in reversed(values[:-1]):
			test = Call(Identifier("_truthy"), [value])
			if isinstance(node.op, ast.And):
				result = Ternary(test, result, value)
			else:
				result = Ternary(test, value, result)
		return result

	def _emit_compare(self, node: ast.Compare) -> ExprNode:
		operands: list[ast.expr] = [node.left, *node.comparators]
		exprs = [self.emit_expr(e) for e in operands]
		parts: list[ExprNode] = []
		for i, op in enumerate(node.ops):
			parts.append(self._comparison(exprs[i], operands[i], op, exprs[i + 1], operands[i + 1]))
		result = parts[0]
		for part in parts[1:]:
			result = Binary(result, "&&", part)
		return result

	def _comparison(
		self,
		left: ExprNode,
		left_node: ast.expr,
		op: ast.cmpop,
		right: ExprNode,
		right_node: ast.expr,
	) -> ExprNode:
		if isinstance(op, (ast.Is, ast.IsNot)):
			is_not = isinstance(op, ast.IsNot)
			if isinstance(right_node, ast.Constant) and right_node.value is None:
				return Binary(left, "!=" if is_not else "==", Literal(None))
			if isinstance(left_node, ast.Constant) and left_node.value is None:
				return Binary(right, "!=" if is_not else "==", Literal(None))
			return Binary(left, "!==" if is_not else "===", right)
		if isinstance(op, (ast.In, ast.NotIn)):
			test = Call(Identifier("_contains"), [right, left])
			return Unary("!", test) if isinstance(op, ast.NotIn) else test
		if isinstance(op, (ast.Eq, ast.NotEq)):
			# Per-item values arrive as strings
			test = Call(Identifier("_eq"), [left, right])
			return Unary("!", test) if isinstance(op, ast.NotEq) else test
		op_type = type(op)
		if op_type not in ALLOWED_CMPOPS:
			raise TranspileError(f"Unsupported comparison operator: {op_type.__name__}")
		return Binary(left, ALLOWED_CMPOPS[op_type], right)

	def _emit_call(self, node: ast.Call) -> ExprNode:
		kwargs_raw: dict[str, Any] = {}
		for kw in node.keywords:
			if kw.arg is None:
				raise TranspileError("**kwargs are not supported in client expressions")
			kwargs_raw[kw.arg] = kw.value

		if isinstance(node.func, ast.Attribute):
			obj = self.emit_expr(node.func.value)
			if kwargs_raw:
				raise TranspileError(f"Keyword arguments not supported for method '{node.func.attr}'")
			args = [self._emit_element(a) for a in node.args]
			rewritten = emit_method(obj, node.func.attr, args)
			if rewritten is not None:
				return rewritten
			return Call(obj.emit_getattr(node.func.attr, self), args)

		callee = self.emit_expr(node.func)
		try:
			return callee.emit_call(list(node.args), kwargs_raw, self)
		except NotImplementedError:
			pass
		if kwargs_raw:
			raise TranspileError("Keyword arguments are not supported in client calls")
		return Call(callee, [self._emit_element(a) for a in node.args])

	def _emit_subscript(self, node: ast.Subscript) -> ExprNode:
		value = self.emit_expr(node.value)
		sl = node.slice
		if isinstance(sl, ast.Slice):
			if sl.step is not None:
				raise TranspileError("Slice steps are not supported")
			args: list[ExprNode] = []
			if sl.lower is not None or sl.upper is not None:
				args.append(Literal(0) if sl.lower is None else self.emit_expr(sl.lower))
			if sl.upper is not None:
				args.append(self.emit_expr(sl.upper))
			return Call(Member(value, "slice"), args)
		if isinstance(sl, ast.UnaryOp) and isinstance(sl.op, ast.USub):
			return Call(Member(value, "at"), [Unary("-", self.emit_expr(sl.operand))])
		if isinstance(sl, ast.Tuple):
			raise TranspileError("Multiple indices not supported in subscript")
		return value.emit_subscript(sl, self)

	def _emit_fstring(self, node: ast.JoinedStr) -> ExprNode:
		parts: list[str | ExprNode] = []
		for part in node.values:
			if isinstance(part, ast.Constant) and isinstance(part.value, str):
				parts.append(part.value)
			elif isinstance(part, ast.FormattedValue):
				if part.format_spec is not None:
					raise TranspileError("Format specs are not supported in client expressions")
				expr = self.emit_expr(part.value)
				if part.conversion in (ord("r"), ord("a")):
					expr = Call(Member(Identifier("JSON"), "stringify"), [expr])
				else:
					expr = Call(Identifier("_str"), [expr])
				parts.append(expr)
			else:
				raise TranspileError(f"Unsupported f-string component: {type(part).__name__}")
		return Template(parts)

	def _emit_comprehension(
		self,
		generators: list[ast.comprehension],
		build_last: Callable[[], ExprNode],
	) -> ExprNode:
		"""[elt for x in xs if c] -> xs.filter((x) => c).map((x) => elt)"""

		def build(index: int) -> ExprNode:
			gen = generators[index]
			if gen.is_async:
				raise TranspileError("Async comprehensions are not supported")
			iter_expr = self.emit_expr(gen.iter)
			names = target_names(gen.target)
			params = [names[0] if isinstance(gen.target, ast.Name) else f"[{', '.join(names)}]"]
			with self.bind(names):
				base = iter_expr
				if gen.ifs:
					cond: ExprNode = Call(Identifier("_truthy"), [self.emit_expr(gen.ifs[0])])
					for test in gen.ifs[1:]:
						cond = Binary(cond, "&&", Call(Identifier("_truthy"), [self.emit_expr(test)]))
					base = Call(Member(base, "filter"), [Arrow(params, cond)])
				if index == len(generators) - 1:
					return Call(Member(base, "map"), [Arrow(params, build_last())])
				return Call(Member(base, "flatMap"), [Arrow(params, build(index + 1))])

		return build(0)


def target_names(target: ast.expr) -> list[str]:
	"""Names bound by a loop or comprehension target (name or flat tuple)."""
	if isinstance(target, ast.Name):
		return [target.id]
	if isinstance(target, (ast.Tuple, ast.List)) and all(
		isinstance(e, ast.Name) for e in target.elts
	):
		return [e.id for e in target.elts if isinstance(e, ast.Name)]
	raise TranspileError("Only name or flat tuple targets are supported")


def check_identifier(name: str) -> None:
	if name in JS_RESERVED or name.startswith("$"):
		raise TranspileError(f"'{name}' cannot be used as a client-side name")


__all__ = [
	"ExpressionEmitter",
	"JS_RESERVED",
	"TranspileError",
	"check_identifier",
	"target_names",
]
