"""Template AST back to canonical mako text.

``parse_template(unparse_template(nodes))`` is structurally equal to
``nodes``; the compiler relies on this to re-emit the same template for
server-side rendering.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import Literal, assert_never

from livecomp.template.nodes import Branch, Loop, Output, TemplateNode, Text

_LINE_START_PERCENT = re.compile(r"(^|\n)([ \t]*)%")

OutputFormatter = Callable[[Output], str]
# (role, canonical source) -> expression text placed on the control line
ControlFormatter = Callable[[Literal["if", "for"], str], str]


def escape_text(content: str, *, at_line_start: bool) -> str:
	"""Escape literal text so mako reads it back unchanged."""

	def repl(m: re.Match[str]) -> str:
		if m.start() == 0 and m.group(1) == "" and not at_line_start:
			return m.group(0)
		return f"{m.group(1)}{m.group(2)}%%"

	return _LINE_START_PERCENT.sub(repl, content)


def _expr_text(source: str) -> str:
	# mako splits filters on a top-level '|'
	if "|" in source:
		return f"({source})"
	return source


def format_control(role: Literal["if", "for"], source: str) -> str:
	return source


def format_output(node: Output) -> str:
	if node.raw:
		return "${" + _expr_text(node.source) + " | n}"
	return "${" + _expr_text(node.source) + "}"


class _Writer:
	def __init__(self, format_output: OutputFormatter, format_control: ControlFormatter) -> None:
		self.out: list[str] = []
		self.at_line_start = True
		self.format_output = format_output
		self.format_control = format_control

	def write(self, s: str) -> None:
		if not s:
			return
		self.out.append(s)
		self.at_line_start = s.endswith("\n")

	def control(self, line: str) -> None:
		if not self.at_line_start:
			self.write("\n")
		self.write(f"% {line}\n")

	def nodes(self, nodes: Sequence[TemplateNode]) -> None:
		for node in nodes:
			if isinstance(node, Text):
				self.write(escape_text(node.content, at_line_start=self.at_line_start))
			elif isinstance(node, Output):
				self.write(self.format_output(node))
			elif isinstance(node, Loop):
				iter_text = self.format_control("for", node.iter_source)
				self.control(f"for {node.target_source} in {iter_text}:")
				self.nodes(node.body)
				self.control("endfor")
			elif isinstance(node, Branch):
				for i, (_, source, body) in enumerate(node.arms):
					if i == 0:
						self.control(f"if {self.format_control('if', source)}:")
					elif source is None:
						self.control("else:")
					else:
						self.control(f"elif {self.format_control('if', source)}:")
					self.nodes(body)
				self.control("endif")
			else:
				assert_never(node)


def unparse_template(
	nodes: Sequence[TemplateNode],
	*,
	output: OutputFormatter = format_output,
	control: ControlFormatter = format_control,
) -> str:
	writer = _Writer(output, control)
	writer.nodes(nodes)
	return "".join(writer.out)


__all__ = ["escape_text", "format_control", "format_output", "unparse_template"]
