import logging
import os
from pathlib import Path
from typing import Any

import pytest
from livecomp.compiler import CompiledArtifact, Compiler
from livecomp.compiler.builder import nested_function_name
from livecomp.compiler.codegen import RUNTIME_HELPERS
from livecomp.component import ComponentRegistry, LiveComponent
from livecomp.errors import (
	TemplateCompileError,
	TemplateNotFoundError,
	TemplateSyntaxError,
	UnresolvableComponentError,
)

from conftest import ALL_COMPONENTS


def probe(template: str, **attrs: Any) -> type[LiveComponent]:
	attrs.setdefault("model", "message")
	return type("Probe", (LiveComponent,), {"template": template, **attrs})


def compile_probe(template: str, *extra: type[LiveComponent], **attrs: Any) -> CompiledArtifact:
	cls = probe(template, **attrs)
	registry = ComponentRegistry([cls, *ALL_COMPONENTS, *extra])
	return Compiler(registry, check_mtime=False).compile(cls.id)


# =============================================================================
# Artifacts
# =============================================================================


class TestMessageRowArtifact:
	def test_expression_records(self, compiler: Compiler):
		artifact = compiler.compile("message_row")

		assert [(r.key, r.source, r.raw) for r in artifact.expressions] == [
			("v0", "'starred' if message.starred else ''", False),
			("v1", "message.subject", False),
			("v2", "message.sender", False),
		]
		assert artifact.top_level_fields == ("v0", "v1", "expanded", "v2", "v3")
		assert artifact.state_fields == ("expanded",)
		assert artifact.raw_field_keys == frozenset()

	def test_collection_with_inlined_nested_component(self, compiler: Compiler):
		artifact = compiler.compile("message_row")

		(context,) = artifact.collections
		assert context.collection_key == "v3"
		assert context.source == "message.labels"
		assert context.item_var == "l"
		assert context.per_item == {}
		ref = context.nested["v4"]
		assert ref.target == "label_badge"
		assert dict(ref.kwargs) == {"label": "l"}

	def test_render_function_body(self, compiler: Compiler):
		body = compiler.compile("message_row").render_fn_body

		assert body.startswith(RUNTIME_HELPERS)
		assert "function _render_label_badge(data) {" in body
		assert "let { v0, v1, expanded, v2, v3 } = data;" in body
		assert "if (_truthy(expanded)) {" in body
		assert "for (const $item0 of v3) {" in body
		assert '$html += _render_label_badge($item0["v4"]);' in body
		assert body.rstrip().endswith("return $html;")

	def test_render_function_never_reads_the_record(self, compiler: Compiler):
		artifact = compiler.compile("message_row")
		assert "message." not in artifact.render_fn_body
		assert "label." not in artifact.render_fn_body

	def test_literal_text_cannot_close_a_script_element(self, compiler: Compiler):
		body = compiler.compile("label_badge").main_body
		assert "</span>" not in body
		assert "<\\/span>" in body


def test_duplicate_sources_share_a_key_and_raw_is_distinct():
	artifact = compile_probe("${message.subject} ${message.subject} ${message.subject | n}")

	assert [(r.key, r.raw) for r in artifact.expressions] == [("v0", False), ("v1", True)]
	assert artifact.raw_field_keys == frozenset({"v1"})
	assert "$html += _escape(v0);" in artifact.main_body
	assert "$html += _raw(v1);" in artifact.main_body


def test_server_condition_is_hoisted_as_bool():
	artifact = compile_probe("% if message.starred:\n*\n% endif\n")

	assert [r.source for r in artifact.expressions] == ["bool(message.starred)"]
	assert "if (_truthy(v0)) {" in artifact.main_body


def test_split_operator_keeps_state_in_the_browser():
	artifact = compile_probe("${'open' if expanded else message.subject}", state={"expanded": True})

	assert [r.source for r in artifact.expressions] == ["message.subject"]
	assert "_truthy(expanded) ? \"open\" : v0" in artifact.main_body


def test_generated_keys_skip_template_names():
	artifact = compile_probe("${v0}${message.subject}", state={"v0": 1})
	assert [r.key for r in artifact.expressions] == ["v1"]


def test_client_loop_over_state():
	artifact = compile_probe(
		"% for tab in tabs:\n<a>${tab.upper()}</a>\n% endfor\n", state={"tabs": ["a", "b"]}
	)

	assert artifact.expressions == ()
	assert artifact.collections == ()
	assert "for (const tab of tabs) {" in artifact.main_body


def test_per_item_values_live_on_the_item():
	artifact = compile_probe("% for m in messages:\n<li>${m.subject}</li>\n% endfor\n")

	(context,) = artifact.collections
	assert context.collection_key == "v0"
	assert {k: r.source for k, r in context.per_item.items()} == {"v1": "m.subject"}
	assert '$html += _escape($item0["v1"]);' in artifact.main_body


def test_nested_server_loops_use_distinct_item_variables():
	artifact = compile_probe(
		"% for m in messages:\n% for g in groups:\n${g.name}\n% endfor\n% endfor\n"
	)

	assert [c.source for c in artifact.collections] == ["messages", "groups"]
	assert "for (const $item1 of v1) {" in artifact.main_body


def test_identical_loops_are_distinct_collections():
	artifact = compile_probe(
		"% for l in message.labels:\n${l.name}\n% endfor\n% for l in message.labels:\n${l.name}\n% endfor\n"
	)

	first, second = artifact.collections
	assert first.source == second.source == "message.labels"
	assert first.collection_key != second.collection_key


def test_per_item_dedup_is_scoped_to_its_loop():
	artifact = compile_probe(
		"% for l in message.labels:\n${l.name}${l.name}\n% endfor\n"
		"% for l in message.labels:\n${l.name}\n% endfor\n"
	)

	first, second = artifact.collections
	(first_key,) = first.per_item
	(second_key,) = second.per_item
	assert first_key != second_key
	assert artifact.main_body.count(f'["{first_key}"]') == 2
	assert artifact.main_body.count(f'["{second_key}"]') == 1


def test_equality_compares_numbers_with_per_item_strings():
	artifact = compile_probe(
		"% for l in message.labels:\n${'on' if sel == l.id else 'off'}${'x' if sel != l.id else ''}\n% endfor\n",
		state={"sel": 2},
	)

	assert "===" not in artifact.main_body
	assert "_eq(sel, $item0[" in artifact.main_body
	assert "!_eq(sel, $item0[" in artifact.main_body
	assert "function _eq(a, b) {" in artifact.render_fn_body


def test_live_nested_component_is_rendered_on_the_server():
	artifact = compile_probe('${render("message_row", message=message)}')

	(record,) = artifact.expressions
	assert record.source == "render('message_row', message=message)"
	assert record.raw
	assert "$html += _raw(v0);" in artifact.main_body
	assert artifact.nested == {}


def test_non_live_nested_component_is_inlined():
	artifact = compile_probe('${render("label_badge", label=message.labels[0])}')

	ref = artifact.nested["_nc0"]
	assert ref.target == "label_badge"
	assert dict(ref.kwargs) == {"label": "message.labels[0]"}
	assert nested_function_name("label_badge") in artifact.functions
	assert "$html += _render_label_badge(_nc0);" in artifact.main_body


def test_nested_function_names_are_identifiers():
	assert nested_function_name("admin/label-badge") == "_render_admin_label_badge"


class TestCompileErrors:
	def test_loop_over_per_item_value(self):
		with pytest.raises(TemplateCompileError, match="per-item value"):
			compile_probe("% for m in messages:\n% for l in m.labels:\n${l}\n% endfor\n% endfor\n")

	def test_render_target_must_be_a_constant(self):
		with pytest.raises(TemplateCompileError, match="component id string"):
			compile_probe("${render(name)}")

	def test_render_must_be_the_whole_output(self):
		with pytest.raises(TemplateCompileError, match="whole output expression"):
			compile_probe("${'<hr>' + render('label_badge')}")

	def test_render_arguments_cannot_use_client_locals(self):
		with pytest.raises(TemplateCompileError, match="client-side loop variables"):
			compile_probe("% for i in range(2):\n${render('label_badge', label=i)}\n% endfor\n")

	def test_unknown_component(self):
		with pytest.raises(UnresolvableComponentError, match="nope"):
			compile_probe("${render('nope')}")

	def test_untranslatable_client_expression(self):
		with pytest.raises(TemplateCompileError, match="for the browser"):
			compile_probe("${count // 2}", state={"count": 4})

	def test_reserved_state_name(self):
		with pytest.raises(TemplateCompileError, match="State name"):
			compile_probe("${data}", state={"data": 1})

	def test_runtime_helper_name_is_reserved(self):
		with pytest.raises(TemplateCompileError, match="reserved"):
			compile_probe("${_escape}", state={"_escape": 1})

	def test_recursive_nesting_names_the_chain(self):
		a = type("Ping", (LiveComponent,), {"template": "${render('pong')}"})
		b = type("Pong", (LiveComponent,), {"template": "${render('ping')}"})
		compiler = Compiler(ComponentRegistry([a, b]), check_mtime=False)

		with pytest.raises(TemplateCompileError, match="ping -> pong -> ping"):
			compiler.compile("ping")


# =============================================================================
# Compiler service
# =============================================================================


def test_compile_is_memoized(compiler: Compiler):
	first = compiler.compile("message_row")
	assert compiler.compile("message_row") is first
	assert compiler.is_cached("message_row")


def test_failures_are_cached(caplog: pytest.LogCaptureFixture):
	broken = type("Broken", (LiveComponent,), {"template": "% if a:\nunclosed\n"})
	compiler = Compiler(ComponentRegistry([broken]), check_mtime=False)

	with caplog.at_level(logging.ERROR):
		with pytest.raises(TemplateSyntaxError) as first:
			compiler.compile("broken")
		with pytest.raises(TemplateSyntaxError) as second:
			compiler.compile("broken")

	assert first.value is second.value
	assert sum("code=compile" in r.getMessage() for r in caplog.records) == 1


def test_unknown_component_id(compiler: Compiler):
	with pytest.raises(UnresolvableComponentError):
		compiler.compile("missing")


def test_invalidate_cascades_to_dependents(compiler: Compiler):
	compiler.compile("message_row")

	dropped = compiler.invalidate("label_badge")

	assert set(dropped) == {"label_badge", "message_row"}
	assert not compiler.is_cached("message_row")


def test_invalidate_everything(compiler: Compiler):
	compiler.compile("message_row")
	assert set(compiler.invalidate()) == {"message_row", "label_badge"}


class TestFileTemplates:
	@pytest.fixture
	def card(self, tmp_path: Path) -> type[LiveComponent]:
		return type(
			"Card", (LiveComponent,), {"model": "card", "template_path": tmp_path / "card.mako"}
		)

	def test_missing_template_file(self, card: type[LiveComponent], tmp_path: Path):
		compiler = Compiler(ComponentRegistry([card]), check_mtime=False)
		with pytest.raises(TemplateNotFoundError) as info:
			compiler.compile("card")
		assert info.value.searched == str(tmp_path / "card.mako")

	def test_creating_the_file_recovers(self, card: type[LiveComponent], tmp_path: Path):
		compiler = Compiler(ComponentRegistry([card]), check_mtime=True)
		with pytest.raises(TemplateNotFoundError):
			compiler.compile("card")

		(tmp_path / "card.mako").write_text("<h1>${card.title}</h1>")

		assert [r.source for r in compiler.compile("card").expressions] == ["card.title"]

	def test_mtime_change_recompiles(self, card: type[LiveComponent], tmp_path: Path):
		path = tmp_path / "card.mako"
		path.write_text("<h1>${card.title}</h1>")
		compiler = Compiler(ComponentRegistry([card]), check_mtime=True)
		first = compiler.compile("card")

		path.write_text("<h2>${card.body}</h2>")
		stat = path.stat()
		os.utime(path, (stat.st_atime, stat.st_mtime + 10))

		second = compiler.compile("card")
		assert second is not first
		assert [r.source for r in second.expressions] == ["card.body"]

	def test_without_mtime_checks_the_cache_holds(self, card: type[LiveComponent], tmp_path: Path):
		path = tmp_path / "card.mako"
		path.write_text("<h1>${card.title}</h1>")
		compiler = Compiler(ComponentRegistry([card]), check_mtime=False)
		first = compiler.compile("card")

		path.write_text("<h2>${card.body}</h2>")
		os.utime(path, (path.stat().st_atime, path.stat().st_mtime + 10))

		assert compiler.compile("card") is first

	def test_invalidate_path(self, card: type[LiveComponent], tmp_path: Path):
		path = tmp_path / "card.mako"
		path.write_text("<h1>${card.title}</h1>")
		compiler = Compiler(ComponentRegistry([card]), check_mtime=False)
		compiler.compile("card")

		assert compiler.invalidate_path(path) == ["card"]
		assert not compiler.is_cached("card")
		assert compiler.invalidate_path(tmp_path / "other.mako") == []
