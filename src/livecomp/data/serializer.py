"""Schema-driven data bags.

An alternative to compiled expressions: the component declares which
attributes it needs and the serializer reads them off the record. Because
every key maps to known columns, it can also compute the minimal delta for
an update from the record's changed column names.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from livecomp.component import model_id
from livecomp.data.formatting import format_value, json_safe

if TYPE_CHECKING:
	from livecomp.component import LiveComponent

logger = logging.getLogger(__name__)

DataBag = dict[str, Any]


def predicate_columns(name: str) -> set[str]:
	"""Columns a predicate is assumed to read: ``starred``, ``starred_at``, ..."""
	base = name.removeprefix("is_")
	return {name, f"{name}_at", base, f"{base}_at"}


class DataSerializer:
	def __init__(
		self,
		component_cls: type[LiveComponent],
		*,
		helpers: Any = None,
		now: dt.datetime | None = None,
	) -> None:
		if component_cls.data_helpers and helpers is None:
			raise ValueError(
				f"Component '{component_cls.id}' declares data_helpers but no helper "
				+ "collaborator was given"
			)
		self.component_cls = component_cls
		self.helpers = helpers
		self.now = now

	# --- Full bags -----------------------------------------------------------

	def serialize(self, record: Any) -> DataBag:
		cls = self.component_cls
		data: DataBag = {"id": json_safe(model_id(record))}
		for name in cls.data_fields:
			data[name] = self._field(record, name)
		for name in cls.data_predicates:
			data[name] = self._predicate(record, name)
		for name in cls.data_helpers:
			data[name] = self._helper(record, name)
		for relation, sub_fields in cls.data_iterations.items():
			data[relation] = self._iteration(record, relation, sub_fields)
		for name in cls.data_derived:
			data[name] = self._derived(record, name)
		for name, default in cls.state.items():
			data.setdefault(name, json_safe(default))
		return data

	# --- Deltas --------------------------------------------------------------

	def changed_columns(self, record: Any, changed: Iterable[str] | None = None) -> set[str] | None:
		if changed is None:
			changed = getattr(record, "saved_changes", None)
			if changed is None:
				return None
		if isinstance(changed, Mapping):
			return {str(k) for k in changed}
		return {str(c) for c in changed}

	def affected_keys(self, columns: set[str]) -> list[str]:
		"""Declared keys that read any of ``columns``, in declaration order."""
		cls = self.component_cls
		depends = cls.data_depends

		def hit(key: str, own: set[str]) -> bool:
			return bool((own | set(depends.get(key, ()))) & columns)

		keys: list[str] = []
		for name in cls.data_fields:
			if hit(name, {name}):
				keys.append(name)
		for name in cls.data_predicates:
			if hit(name, predicate_columns(name)):
				keys.append(name)
		for name in cls.data_helpers:
			if hit(name, set()):
				keys.append(name)
		for relation in cls.data_iterations:
			if hit(relation, {relation}):
				keys.append(relation)
		for name in cls.data_derived:
			if hit(name, set()):
				keys.append(name)
		return keys

	def serialize_changes(
		self, record: Any, changed: Iterable[str] | None = None
	) -> DataBag | None:
		"""Delta for an update, or ``None`` when no declared key is affected."""
		columns = self.changed_columns(record, changed)
		if not columns:
			return None
		keys = self.affected_keys(columns)
		if not keys:
			logger.debug(
				"No keys of '%s' depend on %s", self.component_cls.id, ", ".join(sorted(columns))
			)
			return None
		data: DataBag = {"id": json_safe(model_id(record))}
		for key in keys:
			data[key] = self.serialize_key(record, key)
		return data

	def serialize_key(self, record: Any, key: str) -> Any:
		cls = self.component_cls
		if key in cls.data_fields:
			return self._field(record, key)
		if key in cls.data_predicates:
			return self._predicate(record, key)
		if key in cls.data_helpers:
			return self._helper(record, key)
		if key in cls.data_iterations:
			return self._iteration(record, key, cls.data_iterations[key])
		if key in cls.data_derived:
			return self._derived(record, key)
		return None

	# --- Readers -------------------------------------------------------------

	def _field(self, record: Any, name: str) -> Any:
		return format_value(getattr(record, name), self.now)

	def _predicate(self, record: Any, name: str) -> bool:
		value = getattr(record, name)
		if callable(value):
			value = value()
		return bool(value)

	def _helper(self, record: Any, name: str) -> Any:
		return json_safe(getattr(self.helpers, name)(record))

	def _iteration(self, record: Any, relation: str, sub_fields: Iterable[str]) -> list[DataBag]:
		items = getattr(record, relation) or ()
		rows: list[DataBag] = []
		for item in items:
			rows.append(
				{f: str(getattr(item, f)) for f in sub_fields if hasattr(item, f)}
			)
		return rows

	def _derived(self, record: Any, name: str) -> Any:
		compute = getattr(self.component_cls, f"compute_{name}")
		return json_safe(compute(record))


__all__ = ["DataSerializer", "predicate_columns"]
