"""Server-side rendering template.

The parsed template is unparsed back into mako with every expression wrapped
in a guard, so one failing expression renders as empty output instead of
failing the whole component.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Literal

from mako.template import Template
from markupsafe import Markup, escape

from livecomp.template.nodes import Output, TemplateNode
from livecomp.template.unparse import unparse_template

logger = logging.getLogger(__name__)

GUARD_IMPORT = (
	"from livecomp.compiler.server_template import "
	+ "escape_output, raw_output, live_guard as _live_guard, live_iter as _live_iter"
)

# mako refuses render() keywords that clash with its own context names
MAKO_RESERVED = frozenset({"context", "loop", "UNDEFINED", "STOP_RENDERING"})


def escape_output(value: Any) -> Markup:
	if value is None:
		return Markup("")
	return escape(value)


def raw_output(value: Any) -> str:
	if value is None:
		return ""
	return str(value)


def live_guard(fn: Callable[[], Any], source: str = "") -> Any:
	try:
		return fn()
	except Exception:
		logger.exception("Error evaluating template expression %r", source)
		return None


def live_iter(fn: Callable[[], Iterable[Any] | None], source: str = "") -> Iterable[Any]:
	try:
		items = fn()
		return list(items) if items is not None else []
	except Exception:
		logger.exception("Error evaluating template collection %r", source)
		return []


def _guarded(source: str, helper: str = "_live_guard") -> str:
	return f"{helper}(lambda: ({source}), {source!r})"


def _format_output(node: Output) -> str:
	if node.raw:
		return "${" + _guarded(node.source) + " | n, raw_output}"
	return "${" + _guarded(node.source) + "}"


def _format_control(role: Literal["if", "for"], source: str) -> str:
	return _guarded(source, "_live_iter" if role == "for" else "_live_guard")


def server_template_text(nodes: Sequence[TemplateNode]) -> str:
	return unparse_template(nodes, output=_format_output, control=_format_control)


def build_server_template(
	nodes: Sequence[TemplateNode], *, uri: str | None = None
) -> Template:
	return Template(
		server_template_text(nodes),
		uri=uri,
		default_filters=["escape_output"],
		imports=[GUARD_IMPORT],
		enable_loop=False,
	)


def render_server_template(template: Template, namespace: dict[str, Any]) -> Markup:
	kwargs = {
		k: v for k, v in namespace.items() if k not in MAKO_RESERVED and not k.startswith("__")
	}
	return Markup(template.render(**kwargs))


__all__ = [
	"build_server_template",
	"escape_output",
	"live_guard",
	"live_iter",
	"raw_output",
	"render_server_template",
	"server_template_text",
]
