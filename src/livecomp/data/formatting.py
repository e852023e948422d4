"""Value formatting shared by the data bag builders."""

from __future__ import annotations

import datetime as dt
from collections.abc import Mapping
from typing import Any

_MINUTE = 60
_HOUR = 3600
_DAY = 86_400
_MONTH = 2_592_000


def time_ago_in_words(value: dt.datetime | dt.date, now: dt.datetime | None = None) -> str:
	"""Human relative distance, e.g. ``about 2 hours``. Direction is ignored."""
	if not isinstance(value, dt.datetime):
		value = dt.datetime.combine(value, dt.time())
	if now is None:
		now = dt.datetime.now(value.tzinfo)
	distance = abs((now - value).total_seconds())
	if distance < _MINUTE:
		return "less than a minute"
	if distance < _HOUR:
		minutes = round(distance / _MINUTE)
		return "1 minute" if minutes == 1 else f"{minutes} minutes"
	if distance < _DAY:
		hours = round(distance / _HOUR)
		return "about 1 hour" if hours == 1 else f"about {hours} hours"
	if distance < _MONTH:
		days = round(distance / _DAY)
		return "1 day" if days == 1 else f"{days} days"
	months = round(distance / _MONTH)
	return "about 1 month" if months <= 1 else f"{months} months"


def is_record(value: Any) -> bool:
	"""Persisted model objects: anything non-primitive that carries an ``id``."""
	if isinstance(value, (str, bytes, int, float, bool, dict, list, tuple)) or value is None:
		return False
	return hasattr(value, "id")


def format_value(value: Any, now: dt.datetime | None = None) -> str | None:
	"""Schema field formatting: timestamps read relative, records become None."""
	if isinstance(value, (dt.datetime, dt.date)):
		return time_ago_in_words(value, now)
	if is_record(value):
		return None
	if value is None:
		return ""
	return str(value)


def json_safe(value: Any) -> Any:
	"""Coerce an evaluated expression into something ``json.dumps`` accepts."""
	if value is None or isinstance(value, (bool, int, float)):
		return value
	if isinstance(value, str):
		# Markup and other str subclasses
		return str(value)
	if isinstance(value, Mapping):
		return {str(k): json_safe(v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set, frozenset)):
		return [json_safe(v) for v in value]
	return str(value)


def item_value(value: Any) -> Any:
	"""Per-item values are strings, except None, booleans and nested bags."""
	if value is None or isinstance(value, bool):
		return value
	if isinstance(value, dict):
		return json_safe(value)
	return str(value)


__all__ = ["format_value", "is_record", "item_value", "json_safe", "time_ago_in_words"]
