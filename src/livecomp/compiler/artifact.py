from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ExpressionRecord:
	"""One server-evaluated expression and the data-bag key it fills."""

	key: str
	source: str
	raw: bool = False


@dataclass(frozen=True, slots=True)
class NestedComponentRef:
	"""An inlined ``render(target, **kwargs)``; kwargs map names to sources."""

	target: str
	kwargs: Mapping[str, str]
	source: str = ""


@dataclass(frozen=True, slots=True)
class CollectionContext:
	collection_key: str
	source: str
	item_var: str
	per_item: Mapping[str, ExpressionRecord]
	nested: Mapping[str, NestedComponentRef] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CompiledArtifact:
	"""Everything derived from one component's template.

	``render_fn_body`` is the body of ``function(data) { ... }``; the rest
	tells the evaluator which keys to fill.
	"""

	component_id: str
	render_fn_body: str
	top_level_fields: tuple[str, ...]
	expressions: tuple[ExpressionRecord, ...]
	collections: tuple[CollectionContext, ...]
	nested: Mapping[str, NestedComponentRef]
	raw_field_keys: frozenset[str]
	state_fields: tuple[str, ...] = ()
	# Named JS functions for inlined components (transitively), and the
	# statements of this template alone; used when another template inlines it.
	functions: Mapping[str, str] = field(default_factory=dict)
	main_body: str = ""

	def to_dict(self) -> dict[str, Any]:
		return {
			"component_id": self.component_id,
			"top_level_fields": list(self.top_level_fields),
			"expressions": [
				{"key": r.key, "source": r.source, "raw": r.raw} for r in self.expressions
			],
			"collections": [
				{
					"collection_key": c.collection_key,
					"source": c.source,
					"item_var": c.item_var,
					"per_item": {
						k: {"source": r.source, "raw": r.raw} for k, r in c.per_item.items()
					},
					"nested": {
						k: {"target": n.target, "kwargs": dict(n.kwargs)}
						for k, n in c.nested.items()
					},
				}
				for c in self.collections
			],
			"nested": {
				k: {"target": n.target, "kwargs": dict(n.kwargs)} for k, n in self.nested.items()
			},
			"raw_field_keys": sorted(self.raw_field_keys),
			"state_fields": list(self.state_fields),
			"render_fn_body": self.render_fn_body,
		}


__all__ = [
	"CollectionContext",
	"CompiledArtifact",
	"ExpressionRecord",
	"NestedComponentRef",
]
