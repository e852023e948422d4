import asyncio
from pathlib import Path

import pytest
from livecomp.compiler import Compiler
from livecomp.component import ComponentRegistry, LiveComponent
from livecomp.hot_reload import (
	TemplateWatcher,
	_paths_from_changes,  # pyright: ignore[reportPrivateUsage]
	watch_roots,
)
from watchfiles import Change

from conftest import LabelBadge


def file_component(name: str, path: Path) -> type[LiveComponent]:
	return type(name, (LiveComponent,), {"model": "card", "template_path": path})


@pytest.fixture
def card_path(tmp_path: Path) -> Path:
	path = tmp_path / "card.mako"
	path.write_text("<h1>${card.title}</h1>")
	return path


@pytest.fixture
def compiler(card_path: Path) -> Compiler:
	registry = ComponentRegistry([file_component("Card", card_path), LabelBadge])
	return Compiler(registry, check_mtime=False)


def test_watch_roots_skip_inline_and_nested_directories(tmp_path: Path):
	(tmp_path / "sub").mkdir()
	registry = ComponentRegistry(
		[
			file_component("Card", tmp_path / "card.mako"),
			file_component("Panel", tmp_path / "sub" / "panel.mako"),
			LabelBadge,
		]
	)

	assert watch_roots(registry) == [tmp_path.resolve()]


class TestApply:
	def test_changed_template_is_dropped(self, compiler: Compiler, card_path: Path):
		compiler.compile("card")
		watcher = TemplateWatcher(compiler, [card_path.parent])

		assert watcher.apply([card_path.resolve()]) == ["card"]
		assert not compiler.is_cached("card")

	def test_other_files_are_ignored(self, compiler: Compiler, card_path: Path):
		compiler.compile("card")
		watcher = TemplateWatcher(compiler, [card_path.parent])

		assert watcher.apply([card_path.with_suffix(".py")]) == []
		assert compiler.is_cached("card")

	def test_excluded_globs(self, compiler: Compiler, card_path: Path):
		compiler.compile("card")
		watcher = TemplateWatcher(compiler, [card_path.parent], exclude_globs=["*/card.mako"])

		assert watcher.apply([card_path.resolve()]) == []

	def test_edit_recompiles_on_next_use(self, compiler: Compiler, card_path: Path):
		compiler.compile("card")
		card_path.write_text("<h2>${card.body}</h2>")

		TemplateWatcher(compiler, [card_path.parent]).apply([card_path.resolve()])

		assert [r.source for r in compiler.compile("card").expressions] == ["card.body"]


def test_paths_from_changes(tmp_path: Path):
	changes = {(Change.modified, str(tmp_path / "a.mako")), (Change.deleted, str(tmp_path / "b.mako"))}
	assert _paths_from_changes(changes) == {(tmp_path / "a.mako").resolve(), (tmp_path / "b.mako").resolve()}


def test_start_without_roots_is_a_no_op(compiler: Compiler):
	watcher = TemplateWatcher(compiler, [])
	watcher.start()
	assert not watcher.running


@pytest.mark.asyncio
async def test_start_and_stop(compiler: Compiler, tmp_path: Path):
	watcher = TemplateWatcher(compiler, [tmp_path])

	watcher.start()
	assert watcher.running

	watcher.stop()
	await asyncio.sleep(0)
	assert not watcher.running
