import pytest
from livecomp.compiler.classifier import (
	Kind,
	LoopFrame,
	Scope,
	classify,
	classify_collection,
	free_names,
)
from livecomp.errors import TemplateCompileError
from livecomp.template.parser import parse_expression


@pytest.fixture
def scope() -> Scope:
	return Scope(frozenset({"expanded", "tab"}))


def kind(source: str, scope: Scope) -> Kind:
	return classify(parse_expression(source), scope).kind


def test_free_names_skip_comprehension_and_lambda_bindings():
	expr = parse_expression("[f(x) for x in items if x > limit] + list(map(lambda y: y, ys))")
	assert set(free_names(expr)) == {"f", "items", "limit", "list", "map", "ys"}


class TestClassify:
	def test_record_access_is_server_only(self, scope: Scope):
		assert kind("message.subject", scope) is Kind.SERVER_ONLY

	def test_helper_call_is_server_only(self, scope: Scope):
		assert kind("time_ago(message.created_at)", scope) is Kind.SERVER_ONLY

	def test_builtin_over_server_data_is_server_only(self, scope: Scope):
		assert kind("len(messages)", scope) is Kind.SERVER_ONLY

	def test_state_is_client_renderable(self, scope: Scope):
		assert kind("expanded", scope) is Kind.CLIENT_RENDERABLE

	def test_literals_and_builtins_are_client_renderable(self, scope: Scope):
		assert kind("len('abc') + 1", scope) is Kind.CLIENT_RENDERABLE

	def test_operator_mixing_state_and_server_is_split(self, scope: Scope):
		assert kind("expanded and message.starred", scope) is Kind.SPLIT
		assert kind("'open' if tab == 'inbox' else message.folder", scope) is Kind.SPLIT

	def test_access_mixing_state_and_server_is_server_only(self, scope: Scope):
		assert kind("message.tabs[tab]", scope) is Kind.SERVER_ONLY

	def test_access_mixing_client_local_and_server_fails(self, scope: Scope):
		scope.push(LoopFrame("client", ("i",)))
		with pytest.raises(TemplateCompileError, match="client-side loop variables"):
			classify(parse_expression("message.labels[i]"), scope)

	def test_item_variable_is_per_item(self, scope: Scope):
		frame = LoopFrame("server", ("m",))
		scope.push(frame)

		result = classify(parse_expression("m.subject.upper()"), scope)

		assert result.kind is Kind.PER_ITEM
		assert result.frame is frame

	def test_two_server_loops_in_one_expression_fail(self, scope: Scope):
		scope.push(LoopFrame("server", ("m",)))
		scope.push(LoopFrame("server", ("l",)))
		with pytest.raises(TemplateCompileError, match="more than one server loop"):
			classify(parse_expression("m.subject + l.name"), scope)

	def test_render_call_is_nested_component(self, scope: Scope):
		assert kind("render('message_row', message=m)", scope) is Kind.NESTED_COMPONENT

	def test_comprehension_variables_are_local(self, scope: Scope):
		assert kind("[t.upper() for t in ['a', 'b']]", scope) is Kind.CLIENT_RENDERABLE


class TestClassifyCollection:
	def test_server_collection(self, scope: Scope):
		result = classify_collection(parse_expression("message.labels"), scope)
		assert result.kind is Kind.COLLECTION_ROOT

	def test_client_collection(self, scope: Scope):
		result = classify_collection(parse_expression("range(3)"), scope)
		assert result.kind is Kind.CLIENT_RENDERABLE

	def test_per_item_collection_fails(self, scope: Scope):
		scope.push(LoopFrame("server", ("m",)))
		with pytest.raises(TemplateCompileError, match="per-item value"):
			classify_collection(parse_expression("m.labels"), scope)

	def test_render_call_as_iterable_fails(self, scope: Scope):
		with pytest.raises(TemplateCompileError):
			classify_collection(parse_expression("render('x')"), scope)
