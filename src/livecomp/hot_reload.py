"""Template hot reload.

Watches the directories holding component templates and drops compiled
artifacts whose sources changed. The next render recompiles them.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import anyio
from watchfiles import awatch

from livecomp.errors import report_error
from livecomp.scheduling import create_task

if TYPE_CHECKING:
	from livecomp.compiler.service import Compiler
	from livecomp.component import ComponentRegistry

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = frozenset({".mako"})


def watch_roots(registry: ComponentRegistry) -> list[Path]:
	"""Directories of every file-backed component template."""
	roots: set[Path] = set()
	for component_cls in registry:
		if component_cls.template is not None:
			continue
		path = component_cls.default_template_path()
		if path is None:
			continue
		parent = path.resolve().parent
		if parent.is_dir():
			roots.add(parent)
	# Nested roots would report the same change twice.
	return sorted(r for r in roots if not any(o != r and r.is_relative_to(o) for o in roots))


class TemplateWatcher:
	compiler: Compiler
	roots: list[Path]
	exclude_globs: list[str]
	debounce_ms: int
	task: asyncio.Task[None] | None

	def __init__(
		self,
		compiler: Compiler,
		roots: Iterable[Path],
		*,
		exclude_globs: Iterable[str] = (),
		debounce_ms: int = 100,
	) -> None:
		self.compiler = compiler
		self.roots = list(roots)
		self.exclude_globs = list(exclude_globs)
		self.debounce_ms = debounce_ms
		self.task = None
		self._stop_event: anyio.Event = anyio.Event()

	@property
	def running(self) -> bool:
		return self.task is not None and not self.task.done()

	def start(self) -> None:
		if self.running:
			return
		self.task = None
		if self._stop_event.is_set():
			self._stop_event = anyio.Event()
		if not self.roots:
			return
		logger.info("Watching templates in %s", ", ".join(str(r) for r in self.roots))
		self.task = create_task(self._watch_loop(), name="livecomp.hot-reload")

	def stop(self) -> None:
		self._stop_event.set()
		if self.task is not None and not self.task.done():
			self.task.cancel()
		self.task = None

	async def _watch_loop(self) -> None:
		roots = [str(root) for root in self.roots]
		try:
			while not self._stop_event.is_set():
				try:
					async for changes in awatch(
						*roots,
						stop_event=self._stop_event,
						debounce=self.debounce_ms,
					):
						self.apply(_paths_from_changes(changes))
					if not self._stop_event.is_set():
						logger.warning("Template watcher stopped; restarting")
				except Exception as exc:
					if self._stop_event.is_set():
						return
					report_error(exc, code="hot_reload", details={"roots": roots})
				await asyncio.sleep(0.5)
		except asyncio.CancelledError:
			return

	def apply(self, paths: Iterable[Path]) -> list[str]:
		"""Invalidate every cached component built from one of ``paths``."""
		dropped: list[str] = []
		for path in self._filter_paths(paths):
			dropped.extend(self.compiler.invalidate_path(path))
		return dropped

	def _filter_paths(self, paths: Iterable[Path]) -> list[Path]:
		return sorted(
			p for p in paths if p.suffix in TEMPLATE_SUFFIXES and not self._is_excluded(p)
		)

	def _is_excluded(self, path: Path) -> bool:
		posix = path.as_posix()
		return any(fnmatch.fnmatch(posix, pattern) for pattern in self.exclude_globs)


def _paths_from_changes(changes: Any) -> set[Path]:
	paths: set[Path] = set()
	for change in changes:
		try:
			paths.add(Path(change[1]).resolve())
		except (TypeError, IndexError, OSError):
			continue
	return paths


__all__ = ["TEMPLATE_SUFFIXES", "TemplateWatcher", "watch_roots"]
