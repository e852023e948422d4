"""Assembly of the render function body.

Layout of a body::

	<runtime helpers>
	function _render_<nested>(data) { ... }
	let { <fields> } = data;
	let $html = "";
	<statements>
	return $html;
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from livecomp.transpiler.nodes import (
	Assign,
	Call,
	ExprNode,
	Identifier,
	Literal,
	Return,
	StmtNode,
	emit_statements,
)

HTML_VAR = "$html"

RUNTIME_HELPERS = """\
const _ESC = {"&": "&amp;", "<": "&lt;", ">": "&gt;", '"': "&#34;", "'": "&#39;"};
function _str(v) {
if (v === null || v === undefined) return "None";
if (v === true) return "True";
if (v === false) return "False";
return String(v);
}
function _raw(v) {
return v === null || v === undefined ? "" : _str(v);
}
function _escape(v) {
return _raw(v).replace(/[&<>"']/g, (c) => _ESC[c]);
}
function _truthy(v) {
if (v === null || v === undefined) return false;
if (typeof v === "string" || Array.isArray(v)) return v.length > 0;
if (v instanceof Map || v instanceof Set) return v.size > 0;
if (typeof v === "object") return Object.keys(v).length > 0;
return Boolean(v);
}
function _eq(a, b) {
if (a === b) return true;
if (a === null || a === undefined || b === null || b === undefined) return a == b;
if (typeof a === "number" && typeof b === "string") return b.trim() !== "" && Number(b) === a;
if (typeof a === "string" && typeof b === "number") return a.trim() !== "" && Number(a) === b;
if (Array.isArray(a) && Array.isArray(b)) return a.length === b.length && a.every((v, i) => _eq(v, b[i]));
return false;
}
function _contains(container, item) {
if (container === null || container === undefined) return false;
if (typeof container === "string" || Array.isArray(container)) return container.includes(item);
if (container instanceof Map || container instanceof Set) return container.has(item);
return Object.prototype.hasOwnProperty.call(container, item);
}
function _get(obj, key) {
return obj !== null && obj !== undefined && Object.prototype.hasOwnProperty.call(obj, key) ? obj[key] : null;
}
"""

RUNTIME_NAMES = frozenset(
	{"_ESC", "_str", "_raw", "_escape", "_truthy", "_eq", "_contains", "_get", HTML_VAR}
)


def append_html(value: ExprNode) -> StmtNode:
	return Assign(HTML_VAR, value, op="+")


def append_text(text: str) -> StmtNode:
	return append_html(Literal(text))


def escape(value: ExprNode) -> ExprNode:
	return Call(Identifier("_escape"), [value])


def raw(value: ExprNode) -> ExprNode:
	return Call(Identifier("_raw"), [value])


def truthy(value: ExprNode) -> ExprNode:
	return Call(Identifier("_truthy"), [value])


def main_body(fields: Sequence[str], statements: Sequence[StmtNode]) -> str:
	stmts: list[StmtNode] = []
	if fields:
		stmts.append(Assign("{ " + ", ".join(fields) + " }", Identifier("data"), declare="let"))
	stmts.append(Assign(HTML_VAR, Literal(""), declare="let"))
	stmts.extend(statements)
	stmts.append(Return(Identifier(HTML_VAR)))
	return emit_statements(stmts)


def nested_function(name: str, body: str) -> str:
	return f"function {name}(data) {{\n{body}}}\n"


def render_fn_body(functions: Mapping[str, str], body: str) -> str:
	parts = [RUNTIME_HELPERS]
	parts.extend(functions.values())
	parts.append(body)
	return "".join(parts)


__all__ = [
	"HTML_VAR",
	"RUNTIME_HELPERS",
	"RUNTIME_NAMES",
	"append_html",
	"append_text",
	"escape",
	"main_body",
	"nested_function",
	"raw",
	"render_fn_body",
	"truthy",
]
