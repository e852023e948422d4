import html
import json
import re

import pytest
from livecomp.compiler import Compiler
from livecomp.component import ComponentRegistry, LiveComponent
from livecomp.render import TEMPLATE_MIME, Renderer, format_attrs, template_element_id
from livecomp.signing import Signers
from markupsafe import Markup

from conftest import ALL_COMPONENTS, SECRET, Message, MessageCounter, MessagePreview, MessageRow


def opening_attrs(markup: str) -> dict[str, str]:
	opening = markup[: markup.index(">")]
	return {k: html.unescape(v) for k, v in re.findall(r'([\w-]+)="([^"]*)"', opening)}


class TestLiveWrapper:
	def test_wrapper_attributes(self, renderer: Renderer, signers: Signers, message: Message):
		attrs = opening_attrs(renderer.render_component(MessageRow, message))

		assert attrs["id"] == "message_1"
		assert attrs["data-live-component"] == "message_row"
		assert attrs["data-live-stream"] == signers.sign_stream("inbox")
		assert attrs["data-live-strategy"] == "push"
		assert json.loads(attrs["data-live-state"]) == {"expanded": False}
		assert json.loads(attrs["data-live-data"])["v1"] == "Hello"
		assert "data-live-pull-url" not in attrs

	def test_action_token_names_component_and_record(self, renderer: Renderer, signers: Signers, message: Message):
		attrs = opening_attrs(renderer.render_component(MessageRow, message))

		claims = signers.verify_action(attrs["data-live-action-token"])

		assert (claims.component_id, claims.model_type, claims.model_id) == ("message_row", "Message", "1")

	def test_inline_template_is_the_render_body(self, renderer: Renderer, compiler: Compiler, message: Message):
		attrs = opening_attrs(renderer.render_component(MessageRow, message))
		assert attrs["data-live-template"] == compiler.compile("message_row").render_fn_body

	def test_inner_html_is_server_rendered(self, renderer: Renderer, message: Message):
		markup = renderer.render_component(MessageRow, message)
		assert markup.endswith("</li></div>")
		assert '<span class="badge">urgent</span>' in markup

	def test_notify_node_gets_a_pull_url(self, renderer: Renderer, message: Message):
		attrs = opening_attrs(renderer.render_component(MessageCounter, message))

		assert attrs["data-live-strategy"] == "notify"
		assert attrs["data-live-pull-url"] == "/_live/pull"
		assert "data-live-action-token" in attrs
		assert "data-live-action-url" not in attrs


def test_static_component_has_no_wrapper(renderer: Renderer, message: Message):
	assert renderer.render_component(MessagePreview, message) == "<p>Hel...</p>"


def test_render_by_id_splits_the_record_from_props(renderer: Renderer, message: Message):
	markup = renderer.render("message_row", message=message, expanded=True)
	assert "<p>ann@example.com</p>" in markup


def test_live_nested_components_are_wrapped():
	# A live component rendered from another template keeps its own wrapper.
	outer = type("Thread", (LiveComponent,), {"template": '${render("message_row", message=message)}', "model": "message"})
	compiler = Compiler(ComponentRegistry([outer, *ALL_COMPONENTS]), check_mtime=False)
	renderer = Renderer(compiler, Signers(SECRET), api_prefix="/_live")

	markup = renderer.render_component(outer, Message(3, "Nested"))

	assert markup.startswith('<div id="message_3"')


class TestSharedTemplates:
	@pytest.fixture
	def shared(self, compiler: Compiler, signers: Signers) -> Renderer:
		return Renderer(compiler, signers, api_prefix="/_live", shared_templates=True)

	def test_node_references_the_template_element(self, shared: Renderer, message: Message):
		attrs = opening_attrs(shared.render_component(MessageRow, message))

		assert attrs["data-live-template-id"] == "live-template-message_row"
		assert "data-live-template" not in attrs

	def test_template_tag(self, shared: Renderer, compiler: Compiler):
		tag = shared.template_tag("message_row")

		assert tag.startswith(f'<script type="{TEMPLATE_MIME}" id="{template_element_id("message_row")}">')
		assert compiler.compile("message_row").render_fn_body in tag
		assert tag.count("</script>") == 1

	def test_template_tags_cover_the_registry(self, shared: Renderer):
		tags = shared.template_tags(["label_badge", "message_row"])
		assert tags.count("<script ") == 2


def test_format_attrs_escapes_values():
	assert format_attrs({"data-x": '"><b>'}) == Markup('data-x="&#34;&gt;&lt;b&gt;"')
