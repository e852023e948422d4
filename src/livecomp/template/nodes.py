"""Template AST.

A parsed template is a sequence of four node kinds. Expressions are kept as
Python ``ast.expr`` trees; ``source`` holds their canonical text.
"""

from __future__ import annotations

import ast
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeAlias


@dataclass(frozen=True, slots=True)
class Text:
	content: str


@dataclass(frozen=True, slots=True)
class Output:
	"""``${expr}``; ``raw`` skips HTML escaping."""

	expr: ast.expr
	source: str
	raw: bool = False
	line: int | None = None


@dataclass(frozen=True, slots=True)
class Loop:
	target: ast.expr
	target_source: str
	iter: ast.expr
	iter_source: str
	body: tuple[TemplateNode, ...]
	line: int | None = None


@dataclass(frozen=True, slots=True)
class Branch:
	"""if/elif/else chain. A ``None`` condition marks the else arm."""

	arms: tuple[tuple[ast.expr | None, str | None, tuple[TemplateNode, ...]], ...]
	line: int | None = None


TemplateNode: TypeAlias = Text | Output | Loop | Branch


def canonical_source(expr: ast.expr) -> str:
	return ast.unparse(expr)


def structure(nodes: Sequence[TemplateNode]) -> tuple[object, ...]:
	"""Position-free comparable form of a node sequence."""
	out: list[object] = []
	for node in nodes:
		if isinstance(node, Text):
			out.append(("text", node.content))
		elif isinstance(node, Output):
			out.append(("output", node.source, node.raw))
		elif isinstance(node, Loop):
			out.append(("loop", node.target_source, node.iter_source, structure(node.body)))
		else:
			out.append(
				(
					"branch",
					tuple((src, structure(body)) for _, src, body in node.arms),
				)
			)
	return tuple(out)


__all__ = ["Branch", "Loop", "Output", "TemplateNode", "Text", "canonical_source", "structure"]
