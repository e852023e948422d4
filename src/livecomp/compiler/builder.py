"""Template AST -> CompiledArtifact.

One builder runs per compile. It walks the template depth-first, classifies
every expression against the active loop stack, records the server-side
parts under generated keys and emits the JS statements of the render body.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, assert_never

from livecomp.compiler.artifact import (
	CollectionContext,
	CompiledArtifact,
	ExpressionRecord,
	NestedComponentRef,
)
from livecomp.compiler.classifier import (
	Kind,
	LoopFrame,
	NameKind,
	Scope,
	classify,
	classify_collection,
	contains_render_call,
	is_render_call,
	summarize,
)
from livecomp.compiler.codegen import (
	RUNTIME_NAMES,
	append_html,
	append_text,
	escape,
	main_body,
	nested_function,
	raw,
	render_fn_body,
	truthy,
)
from livecomp.errors import TemplateCompileError, UnresolvableComponentError
from livecomp.template.nodes import Branch, Loop, Output, TemplateNode, Text, canonical_source
from livecomp.transpiler.emitter import (
	ExpressionEmitter,
	TranspileError,
	check_identifier,
	target_names,
)
from livecomp.transpiler.nodes import (
	Call,
	ExprNode,
	ForOf,
	Identifier,
	If,
	Literal,
	StmtNode,
	Subscript,
)

if TYPE_CHECKING:
	from livecomp.component import ComponentRegistry, LiveComponent

NestedResolver = Callable[[str], CompiledArtifact]

_NON_IDENT = re.compile(r"\W")


def _where(line: int | None) -> str:
	return f" (line {line})" if line is not None else ""


def nested_function_name(component_id: str) -> str:
	return "_render_" + _NON_IDENT.sub("_", component_id)


def template_names(nodes: Sequence[TemplateNode]) -> set[str]:
	"""Every identifier the template mentions, bound or free."""
	names: set[str] = set()

	def visit(expr: ast.AST) -> None:
		for sub in ast.walk(expr):
			if isinstance(sub, ast.Name):
				names.add(sub.id)
			elif isinstance(sub, ast.arg):
				names.add(sub.arg)

	def walk(children: Sequence[TemplateNode]) -> None:
		for node in children:
			if isinstance(node, Output):
				visit(node.expr)
			elif isinstance(node, Loop):
				visit(node.target)
				visit(node.iter)
				walk(node.body)
			elif isinstance(node, Branch):
				for cond, _, body in node.arms:
					if cond is not None:
						visit(cond)
					walk(body)

	walk(nodes)
	return names


class ArtifactBuilder:
	def __init__(
		self,
		component_cls: type[LiveComponent],
		nodes: Sequence[TemplateNode],
		*,
		registry: ComponentRegistry,
		resolve_nested: NestedResolver,
	) -> None:
		self.component_cls = component_cls
		self.component_id = component_cls.id
		self.nodes = nodes
		self.registry = registry
		self.resolve_nested = resolve_nested

		state = frozenset(component_cls.state)
		for name in state:
			self._check_client_name(name, what="State name")
		self.scope = Scope(state)
		self._used = template_names(nodes) | set(state)
		self._counters: dict[str, int] = {}

		self._fields: dict[str, None] = {}
		self._expressions: list[ExpressionRecord] = []
		self._dedup: dict[tuple[str, bool], str] = {}
		self._server_frames: list[LoopFrame] = []
		self._nested: dict[str, NestedComponentRef] = {}
		self._nested_dedup: dict[str, str] = {}
		self._functions: dict[str, str] = {}
		self._raw_keys: set[str] = set()
		self._state_fields: dict[str, None] = {}

	# --- Public --------------------------------------------------------------

	def build(self) -> CompiledArtifact:
		statements = self._walk(self.nodes)
		fields = tuple(self._fields)
		body = main_body(fields, statements)
		collections = tuple(
			CollectionContext(
				collection_key=frame.collection_key,
				source=frame.source,
				item_var=frame.names[0],
				per_item=dict(frame.per_item),
				nested=dict(frame.nested),
			)
			for frame in self._server_frames
		)
		return CompiledArtifact(
			component_id=self.component_id,
			render_fn_body=render_fn_body(self._functions, body),
			top_level_fields=fields,
			expressions=tuple(self._expressions),
			collections=collections,
			nested=dict(self._nested),
			raw_field_keys=frozenset(self._raw_keys),
			state_fields=tuple(self._state_fields),
			functions=dict(self._functions),
			main_body=body,
		)

	# --- Keys ----------------------------------------------------------------

	def _next_key(self, prefix: str) -> str:
		n = self._counters.get(prefix, 0)
		while f"{prefix}{n}" in self._used:
			n += 1
		key = f"{prefix}{n}"
		self._counters[prefix] = n + 1
		self._used.add(key)
		return key

	def _record(self, source: str, *, raw: bool, frame: LoopFrame | None) -> str:
		dedup = frame.dedup if frame is not None else self._dedup
		found = dedup.get((source, raw))
		if found is not None:
			return found
		key = self._next_key("v")
		dedup[(source, raw)] = key
		record = ExpressionRecord(key=key, source=source, raw=raw)
		if frame is not None:
			frame.per_item[key] = record
		else:
			self._expressions.append(record)
			self._fields.setdefault(key)
		if raw:
			self._raw_keys.add(key)
		return key

	@staticmethod
	def _lookup(key: str, frame: LoopFrame | None) -> ExprNode:
		if frame is None:
			return Identifier(key)
		return Subscript(Identifier(frame.item_js), Literal(key))

	def _check_client_name(self, name: str, *, what: str, line: int | None = None) -> None:
		try:
			check_identifier(name)
		except TranspileError as exc:
			raise TemplateCompileError(f"{what}: {exc}{_where(line)}") from exc
		if name in RUNTIME_NAMES:
			raise TemplateCompileError(
				f"{what}: '{name}' is reserved by the render runtime{_where(line)}"
			)

	# --- Expressions ---------------------------------------------------------

	def _resolve_name(self, name: str) -> ExprNode | None:
		kind, _ = self.scope.lookup(name)
		if kind is NameKind.LOCAL:
			return Identifier(name)
		if kind is NameKind.STATE:
			self._state_fields.setdefault(name)
			self._fields.setdefault(name)
			return Identifier(name)
		return None

	def _expression(
		self,
		expr: ast.expr,
		*,
		raw: bool = False,
		condition: bool = False,
		line: int | None = None,
	) -> ExprNode:
		root = expr

		def before(node: ast.expr, emitter: ExpressionEmitter) -> ExprNode | None:
			if node is not root and is_render_call(node):
				raise TemplateCompileError(
					f"render() must be the whole output expression{_where(line)}"
				)
			result = classify(node, self.scope, emitter.locals, line=line)
			if result.kind in (Kind.CLIENT_RENDERABLE, Kind.SPLIT):
				return None
			if result.kind is Kind.NESTED_COMPONENT:
				raise TemplateCompileError(
					f"render() must be the whole output expression{_where(line)}"
				)
			is_root = node is root
			source = canonical_source(node)
			if is_root and condition:
				source = f"bool({source})"
			key = self._record(source, raw=raw and is_root, frame=result.frame)
			return self._lookup(key, result.frame)

		emitter = ExpressionEmitter(resolve=self._resolve_name, before=before)
		try:
			return emitter.emit_expr(expr)
		except TranspileError as exc:
			raise TemplateCompileError(
				f"Cannot compile '{canonical_source(expr)}' for the browser: {exc}{_where(line)}"
			) from exc

	# --- Template walk -------------------------------------------------------

	def _walk(self, nodes: Sequence[TemplateNode]) -> list[StmtNode]:
		stmts: list[StmtNode] = []
		for node in nodes:
			if isinstance(node, Text):
				stmts.append(append_text(node.content))
			elif isinstance(node, Output):
				stmts.append(self._output(node))
			elif isinstance(node, Loop):
				stmts.append(self._loop(node))
			elif isinstance(node, Branch):
				stmts.append(self._branch(node))
			else:
				assert_never(node)
		return stmts

	def _output(self, node: Output) -> StmtNode:
		if is_render_call(node.expr):
			return self._render_call(node)
		if contains_render_call(node.expr):
			raise TemplateCompileError(
				f"render() must be the whole output expression{_where(node.line)}"
			)
		value = self._expression(node.expr, raw=node.raw, line=node.line)
		return append_html(raw(value) if node.raw else escape(value))

	def _branch(self, node: Branch) -> StmtNode:
		compiled: list[tuple[ExprNode | None, list[StmtNode]]] = []
		for cond, _, body in node.arms:
			test = None
			if cond is not None:
				test = truthy(self._expression(cond, condition=True, line=node.line))
			compiled.append((test, self._walk(body)))

		else_: Sequence[StmtNode] = ()
		chain: If | None = None
		for test, stmts in reversed(compiled):
			if test is None:
				else_ = stmts
				continue
			chain = If(test, stmts, else_)
			else_ = [chain]
		assert chain is not None
		return chain

	def _loop(self, node: Loop) -> StmtNode:
		line = node.line
		result = classify_collection(node.iter, self.scope, line=line)

		if result.kind is Kind.CLIENT_RENDERABLE:
			try:
				names = target_names(node.target)
			except TranspileError as exc:
				raise TemplateCompileError(f"{exc}{_where(line)}") from exc
			for name in names:
				self._check_client_name(name, what="Loop variable", line=line)
			iter_js = self._expression(node.iter, line=line)
			self.scope.push(LoopFrame("client", tuple(names), line))
			try:
				body = self._walk(node.body)
			finally:
				self.scope.pop()
			target = names[0] if isinstance(node.target, ast.Name) else f"[{', '.join(names)}]"
			return ForOf(target, iter_js, body)

		if not isinstance(node.target, ast.Name):
			raise TemplateCompileError(
				f"Loops over server collections take a single loop variable{_where(line)}"
			)
		key = self._next_key("v")
		self._fields.setdefault(key)
		frame = LoopFrame(
			"server",
			(node.target.id,),
			line,
			collection_key=key,
			source=node.iter_source,
			item_js=f"$item{self.scope.server_depth()}",
		)
		self._server_frames.append(frame)
		self.scope.push(frame)
		try:
			body = self._walk(node.body)
		finally:
			self.scope.pop()
		return ForOf(frame.item_js, Identifier(key), body)

	# --- Nested components ---------------------------------------------------

	def _render_call(self, node: Output) -> StmtNode:
		call = node.expr
		assert isinstance(call, ast.Call)
		line = node.line
		if (
			len(call.args) != 1
			or not isinstance(call.args[0], ast.Constant)
			or not isinstance(call.args[0].value, str)
		):
			raise TemplateCompileError(
				f"render() takes a component id string and keyword arguments{_where(line)}"
			)
		target: str = call.args[0].value
		kwargs: dict[str, ast.expr] = {}
		for kw in call.keywords:
			if kw.arg is None:
				raise TemplateCompileError(f"render() does not accept **kwargs{_where(line)}")
			kwargs[kw.arg] = kw.value

		target_cls = self.registry.get(target)
		if target_cls is None:
			raise UnresolvableComponentError(target, referenced_by=self.component_id)

		frames: list[LoopFrame] = []
		for value in kwargs.values():
			summary = summarize(value, self.scope)
			if summary.local:
				raise TemplateCompileError(
					f"render() arguments cannot use client-side loop variables{_where(line)}"
				)
			for frame in summary.frames:
				if frame not in frames:
					frames.append(frame)
		if len(frames) > 1:
			raise TemplateCompileError(
				f"render() arguments read items of more than one server loop{_where(line)}"
			)
		item_frame = frames[0] if frames else None
		source = canonical_source(call)

		if target_cls.is_live():
			# Live targets keep their own stream wrapper; they are rendered on the server.
			key = self._record(source, raw=True, frame=item_frame)
			return append_html(raw(self._lookup(key, item_frame)))

		nested = self.resolve_nested(target)
		fn_name = nested_function_name(target)
		for name, fn in nested.functions.items():
			self._functions.setdefault(name, fn)
		self._functions.setdefault(fn_name, nested_function(fn_name, nested.main_body))

		ref = NestedComponentRef(
			target=target,
			kwargs={name: canonical_source(value) for name, value in kwargs.items()},
			source=source,
		)
		if item_frame is None:
			key = self._nested_dedup.get(source)
			if key is None:
				key = self._next_key("_nc")
				self._nested_dedup[source] = key
				self._nested[key] = ref
				self._fields.setdefault(key)
		else:
			key = item_frame.dedup.get((source, True))
			if key is None:
				key = self._next_key("v")
				item_frame.dedup[(source, True)] = key
				item_frame.nested[key] = ref
		return append_html(Call(Identifier(fn_name), [self._lookup(key, item_frame)]))


__all__ = ["ArtifactBuilder", "nested_function_name", "template_names"]
