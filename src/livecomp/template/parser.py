"""Mako front end.

Mako's lexer does the tokenizing; this module folds its flat node list into
the template AST and rejects the parts of mako that cannot be split between
server and client (code blocks, defs, includes, while/try control lines).
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from typing import Literal

from mako import exceptions as mako_exceptions
from mako import parsetree
from mako.lexer import Lexer

from livecomp.errors import TemplateSyntaxError
from livecomp.template.nodes import (
	Branch,
	Loop,
	Output,
	TemplateNode,
	Text,
	canonical_source,
)

ALLOWED_FILTERS = {"n", "h"}
RAW_HELPER = "raw"


@dataclass(slots=True)
class _Frame:
	kind: Literal["root", "loop", "branch"]
	line: int | None = None
	children: list[TemplateNode] = field(default_factory=list)
	# loop
	target: ast.expr | None = None
	iter: ast.expr | None = None
	# branch: completed arms plus the condition of the arm being filled
	arms: list[tuple[ast.expr | None, str | None, tuple[TemplateNode, ...]]] = field(
		default_factory=list
	)
	cond: ast.expr | None = None
	has_else: bool = False


def _append(children: list[TemplateNode], node: TemplateNode) -> None:
	if isinstance(node, Text):
		if not node.content:
			return
		if children and isinstance(children[-1], Text):
			children[-1] = Text(children[-1].content + node.content)
			return
	children.append(node)


def parse_expression(text: str, *, line: int | None = None) -> ast.expr:
	try:
		return ast.parse(text.strip(), mode="eval").body
	except SyntaxError as exc:
		raise TemplateSyntaxError(
			f"Invalid expression {text.strip()!r}: {exc.msg}", line=line
		) from exc


def _control_stmt(text: str, line: int | None) -> ast.stmt:
	src = text.strip()
	if src.startswith("elif"):
		src = src[2:]
	if not src.endswith(":"):
		src += ":"
	try:
		module = ast.parse(src + "\n\tpass\n")
	except SyntaxError as exc:
		raise TemplateSyntaxError(
			f"Invalid control line {text.strip()!r}: {exc.msg}", line=line
		) from exc
	return module.body[0]


def _output(node: parsetree.Expression) -> Output:
	line = node.lineno
	filters = [f.strip() for f in (node.escapes or "").split(",") if f.strip()]
	for name in filters:
		if name not in ALLOWED_FILTERS:
			raise TemplateSyntaxError(
				f"Unsupported filter '{name}' (only 'n' and 'h' are allowed)", line=line
			)
	raw = "n" in filters and "h" not in filters
	expr = parse_expression(node.text, line=line)
	if (
		isinstance(expr, ast.Call)
		and isinstance(expr.func, ast.Name)
		and expr.func.id == RAW_HELPER
	):
		if len(expr.args) != 1 or expr.keywords:
			raise TemplateSyntaxError("raw() takes exactly one argument", line=line)
		expr = expr.args[0]
		raw = True
	return Output(expr=expr, source=canonical_source(expr), raw=raw, line=line)


def _close(frame: _Frame) -> TemplateNode:
	if frame.kind == "loop":
		assert frame.target is not None and frame.iter is not None
		return Loop(
			target=frame.target,
			target_source=canonical_source(frame.target),
			iter=frame.iter,
			iter_source=canonical_source(frame.iter),
			body=tuple(frame.children),
			line=frame.line,
		)
	arms = [
		*frame.arms,
		(
			frame.cond,
			canonical_source(frame.cond) if frame.cond is not None else None,
			tuple(frame.children),
		),
	]
	return Branch(arms=tuple(arms), line=frame.line)


def _control_line(node: parsetree.ControlLine, stack: list[_Frame]) -> None:
	keyword = node.keyword
	line = node.lineno
	top = stack[-1]

	if node.isend:
		expected = {"for": "loop", "if": "branch"}.get(keyword)
		if expected is None or top.kind != expected:
			raise TemplateSyntaxError(f"Unexpected 'end{keyword}'", line=line)
		stack.pop()
		_append(stack[-1].children, _close(top))
		return

	if keyword == "for":
		stmt = _control_stmt(node.text, line)
		if not isinstance(stmt, ast.For):
			raise TemplateSyntaxError("Malformed for loop", line=line)
		stack.append(_Frame("loop", line=line, target=stmt.target, iter=stmt.iter))
		return

	if keyword == "if":
		stmt = _control_stmt(node.text, line)
		if not isinstance(stmt, ast.If):
			raise TemplateSyntaxError("Malformed if statement", line=line)
		stack.append(_Frame("branch", line=line, cond=stmt.test))
		return

	if keyword in ("elif", "else"):
		if top.kind == "loop":
			raise TemplateSyntaxError(f"'{keyword}' on a for loop is not supported", line=line)
		if top.kind != "branch" or top.has_else:
			raise TemplateSyntaxError(f"Unexpected '{keyword}'", line=line)
		top.arms.append(
			(
				top.cond,
				canonical_source(top.cond) if top.cond is not None else None,
				tuple(top.children),
			)
		)
		top.children = []
		if keyword == "elif":
			stmt = _control_stmt(node.text, line)
			assert isinstance(stmt, ast.If)
			top.cond = stmt.test
		else:
			top.cond = None
			top.has_else = True
		return

	raise TemplateSyntaxError(f"Unsupported control line '% {keyword}'", line=line)


def parse_template(text: str, *, filename: str | None = None) -> tuple[TemplateNode, ...]:
	"""Parse mako template text into the template AST."""
	try:
		document = Lexer(text, filename=filename).parse()
	except mako_exceptions.MakoException as exc:
		raise TemplateSyntaxError(str(exc)) from exc

	stack: list[_Frame] = [_Frame("root")]
	for node in document.nodes:
		if isinstance(node, parsetree.Text):
			_append(stack[-1].children, Text(node.content))
		elif isinstance(node, parsetree.Expression):
			_append(stack[-1].children, _output(node))
		elif isinstance(node, parsetree.Comment):
			continue
		elif isinstance(node, parsetree.ControlLine):
			_control_line(node, stack)
		elif isinstance(node, parsetree.Code):
			raise TemplateSyntaxError("Python code blocks are not supported", line=node.lineno)
		elif isinstance(node, parsetree.Tag):
			raise TemplateSyntaxError(
				f"Tag '<%{node.keyword}>' is not supported", line=node.lineno
			)
		else:
			raise TemplateSyntaxError(
				f"Unsupported template construct {type(node).__name__}",
				line=getattr(node, "lineno", None),
			)

	if len(stack) != 1:
		frame = stack[-1]
		raise TemplateSyntaxError(
			f"Unclosed '% {'for' if frame.kind == 'loop' else 'if'}'", line=frame.line
		)
	return tuple(stack[0].children)


__all__ = ["parse_expression", "parse_template"]
