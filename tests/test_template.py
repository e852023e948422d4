import pytest
from livecomp.errors import TemplateSyntaxError
from livecomp.template import parse_template, structure, unparse_template
from livecomp.template.nodes import Branch, Loop, Output, Text


def test_parse_text_outputs_and_control_lines():
	nodes = parse_template("<p>${x}</p>\n% if a:\nyes\n% endif\n")

	assert structure(nodes) == (
		("text", "<p>"),
		("output", "x", False),
		("text", "</p>\n"),
		("branch", (("a", (("text", "yes\n"),)),)),
	)


def test_if_elif_else_chain():
	nodes = parse_template("% if a:\nA\n% elif b:\nB\n% else:\nC\n% endif\n")

	(branch,) = nodes
	assert isinstance(branch, Branch)
	assert [src for _, src, _ in branch.arms] == ["a", "b", None]


def test_loop_node_keeps_target_and_iterable():
	nodes = parse_template("% for m in messages:\n${m.subject}\n% endfor\n")

	(loop,) = nodes
	assert isinstance(loop, Loop)
	assert loop.target_source == "m"
	assert loop.iter_source == "messages"
	assert isinstance(loop.body[0], Output)


def test_expression_sources_are_canonical():
	(out,) = parse_template("${ a+b }")

	assert isinstance(out, Output)
	assert out.source == "a + b"


class TestRawOutput:
	def test_n_filter_is_raw(self):
		(out,) = parse_template("${x | n}")
		assert isinstance(out, Output)
		assert out.raw

	def test_h_filter_is_escaped(self):
		(out,) = parse_template("${x | h}")
		assert isinstance(out, Output)
		assert not out.raw

	def test_raw_helper_is_unwrapped(self):
		(out,) = parse_template("${raw(body)}")
		assert isinstance(out, Output)
		assert out.raw
		assert out.source == "body"

	def test_unknown_filter_rejected(self):
		with pytest.raises(TemplateSyntaxError, match="Unsupported filter"):
			parse_template("${x | u}")


class TestRejectedConstructs:
	def test_code_block(self):
		with pytest.raises(TemplateSyntaxError):
			parse_template("<% x = 1 %>${x}")

	def test_def_tag(self):
		with pytest.raises(TemplateSyntaxError):
			parse_template('<%def name="f()">x</%def>')

	def test_while_loop(self):
		with pytest.raises(TemplateSyntaxError):
			parse_template("% while x:\ny\n% endwhile\n")

	def test_for_else(self):
		with pytest.raises(TemplateSyntaxError):
			parse_template("% for x in xs:\n${x}\n% else:\nnone\n% endfor\n")

	def test_unclosed_if(self):
		with pytest.raises(TemplateSyntaxError):
			parse_template("% if a:\nyes\n")

	def test_invalid_expression(self):
		with pytest.raises(TemplateSyntaxError):
			parse_template("${1 +}")


# =============================================================================
# Unparse
# =============================================================================


@pytest.mark.parametrize(
	"text",
	[
		"<p>${x}</p>",
		"% for m in messages:\n<li>${m.subject | n}</li>\n% endfor\n",
		"% if a:\nA\n% elif b and c:\nB\n% else:\nC\n% endif\n",
		"a\n%% literal percent\n",
		"${(a | b)} and ${raw(html)}",
		"<p>${x}</p>\n% if y:\nY\n% endif\n",
	],
)
def test_unparse_round_trip(text: str):
	nodes = parse_template(text)
	assert structure(parse_template(unparse_template(nodes))) == structure(nodes)


def test_unparse_escapes_line_start_percent():
	nodes = (Text("50\n% off\n"),)
	assert unparse_template(nodes) == "50\n%% off\n"


def test_unparse_control_hook_rewrites_conditions_and_iterables():
	nodes = parse_template("% for m in messages:\n% if m.unread:\n*\n% endif\n% endfor\n")

	text = unparse_template(nodes, control=lambda role, source: f"{role}_({source})")

	assert "% for m in for_(messages):" in text
	assert "% if if_(m.unread):" in text
