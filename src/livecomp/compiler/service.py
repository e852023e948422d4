"""Memoizing compiler service.

Artifacts are cached per component for the life of the process. Outside
production the cache also watches template mtimes, including the templates
of inlined nested components. Failures are cached like successes: a broken
template raises the same error on every call until it is invalidated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple, Protocol

from mako.exceptions import MakoException
from mako.template import Template

from livecomp.compiler.artifact import CompiledArtifact
from livecomp.compiler.builder import ArtifactBuilder
from livecomp.compiler.server_template import build_server_template
from livecomp.env import env
from livecomp.errors import (
	LiveComponentError,
	TemplateCompileError,
	TemplateNotFoundError,
	UnresolvableComponentError,
	report_error,
)
from livecomp.template.nodes import TemplateNode
from livecomp.template.parser import parse_template

if TYPE_CHECKING:
	from livecomp.component import ComponentRegistry, LiveComponent

logger = logging.getLogger(__name__)


class LoadedTemplate(NamedTuple):
	text: str
	path: Path | None


class TemplateSource(Protocol):
	def load(self, component_cls: type[LiveComponent]) -> LoadedTemplate: ...

	def mtime(self, path: Path) -> float | None: ...


class FileTemplateSource:
	"""Inline ``template`` text, else the component's template file."""

	def load(self, component_cls: type[LiveComponent]) -> LoadedTemplate:
		if component_cls.template is not None:
			return LoadedTemplate(component_cls.template, None)
		path = component_cls.default_template_path()
		if path is None or not path.is_file():
			raise TemplateNotFoundError(
				component_cls.id, searched=str(path) if path is not None else None
			)
		return LoadedTemplate(path.read_text(encoding="utf-8"), path.resolve())

	def mtime(self, path: Path) -> float | None:
		try:
			return path.stat().st_mtime
		except OSError:
			return None


@dataclass(slots=True)
class _Entry:
	# every template file this entry was derived from, with the mtime seen
	sources: dict[Path, float | None]
	deps: frozenset[str]
	artifact: CompiledArtifact | None = None
	nodes: tuple[TemplateNode, ...] | None = None
	error: LiveComponentError | None = None
	server_template: Template | None = field(default=None)


class Compiler:
	def __init__(
		self,
		registry: ComponentRegistry,
		*,
		source: TemplateSource | None = None,
		check_mtime: bool | None = None,
	) -> None:
		self.registry = registry
		self.source = source or FileTemplateSource()
		self.check_mtime = (not env.is_production) if check_mtime is None else check_mtime
		self._entries: dict[str, _Entry] = {}
		self._compiling: list[str] = []

	def compile(self, component_id: str) -> CompiledArtifact:
		entry = self._entry(component_id)
		if entry.error is not None:
			raise entry.error
		assert entry.artifact is not None
		return entry.artifact

	def parsed(self, component_id: str) -> tuple[TemplateNode, ...]:
		entry = self._entry(component_id)
		if entry.error is not None:
			raise entry.error
		assert entry.nodes is not None
		return entry.nodes

	def server_template(self, component_id: str) -> Template:
		entry = self._entry(component_id)
		if entry.error is not None:
			raise entry.error
		if entry.server_template is None:
			assert entry.nodes is not None
			try:
				entry.server_template = build_server_template(
					entry.nodes, uri=f"livecomp:{component_id}"
				)
			except MakoException as exc:
				raise TemplateCompileError(
					f"Cannot build server template for '{component_id}': {exc}"
				) from exc
		return entry.server_template

	def is_cached(self, component_id: str) -> bool:
		return component_id in self._entries

	def invalidate(self, component_id: str | None = None) -> list[str]:
		"""Drop cached entries; a component's dependents are dropped with it."""
		if component_id is None:
			dropped = list(self._entries)
			self._entries.clear()
			return dropped
		dropped: list[str] = []
		pending = [component_id]
		while pending:
			cid = pending.pop()
			if self._entries.pop(cid, None) is None:
				continue
			dropped.append(cid)
			pending.extend(k for k, e in self._entries.items() if cid in e.deps)
		return dropped

	def invalidate_path(self, path: str | Path) -> list[str]:
		target = Path(path).resolve()
		affected = [cid for cid, e in self._entries.items() if target in e.sources]
		dropped: list[str] = []
		for cid in affected:
			dropped.extend(self.invalidate(cid))
		if dropped:
			logger.info("Template %s changed, invalidated %s", target, ", ".join(dropped))
		return dropped

	# --- Internals -----------------------------------------------------------

	def _stale(self, entry: _Entry) -> bool:
		if not self.check_mtime:
			return False
		return any(self.source.mtime(p) != seen for p, seen in entry.sources.items())

	def _entry(self, component_id: str) -> _Entry:
		entry = self._entries.get(component_id)
		if entry is not None:
			if not self._stale(entry):
				logger.debug("Compile cache hit for '%s'", component_id)
				return entry
			logger.debug("Template for '%s' changed on disk, recompiling", component_id)
		else:
			logger.debug("Compile cache miss for '%s'", component_id)
		entry = self._build(component_id)
		self._entries[component_id] = entry
		return entry

	def _build(self, component_id: str) -> _Entry:
		if component_id in self._compiling:
			chain = [*self._compiling[self._compiling.index(component_id) :], component_id]
			raise TemplateCompileError(f"Recursive component nesting: {' -> '.join(chain)}")
		component_cls = self.registry.get(component_id)
		if component_cls is None:
			raise UnresolvableComponentError(component_id)

		sources: dict[Path, float | None] = {}
		deps: set[str] = set()

		def resolve_nested(target: str) -> CompiledArtifact:
			deps.add(target)
			try:
				return self.compile(target)
			finally:
				nested = self._entries.get(target)
				if nested is not None:
					sources.update(nested.sources)

		self._compiling.append(component_id)
		nodes: tuple[TemplateNode, ...] | None = None
		try:
			loaded = self.source.load(component_cls)
			if loaded.path is not None:
				sources[loaded.path] = self.source.mtime(loaded.path)
			nodes = parse_template(
				loaded.text, filename=str(loaded.path) if loaded.path else None
			)
			artifact = ArtifactBuilder(
				component_cls,
				nodes,
				registry=self.registry,
				resolve_nested=resolve_nested,
			).build()
		except LiveComponentError as exc:
			if isinstance(exc, TemplateNotFoundError) and exc.searched:
				sources[Path(exc.searched).resolve()] = None
			report_error(exc, code="compile", details={"component": component_id})
			return _Entry(sources, frozenset(deps), nodes=nodes, error=exc)
		finally:
			self._compiling.pop()
		return _Entry(sources, frozenset(deps), artifact=artifact, nodes=nodes)


__all__ = ["Compiler", "FileTemplateSource", "LoadedTemplate", "TemplateSource"]
