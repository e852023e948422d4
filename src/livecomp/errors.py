from __future__ import annotations

import logging
import traceback
from typing import Any, Literal

logger = logging.getLogger(__name__)

ErrorCode = Literal[
	"compile",
	"evaluate",
	"evaluate.collection",
	"broadcast",
	"channel",
	"action",
	"render",
	"hot_reload",
]


class LiveComponentError(Exception):
	"""Base class for livecomp errors."""


class TemplateNotFoundError(LiveComponentError):
	"""No template source could be located for a component."""

	def __init__(self, component_id: str, searched: str | None = None) -> None:
		self.component_id = component_id
		self.searched = searched
		msg = f"No template found for component '{component_id}'"
		if searched:
			msg += f" (looked in {searched})"
		super().__init__(msg)


class TemplateSyntaxError(LiveComponentError):
	"""The template text is not valid for the supported mako subset."""

	def __init__(self, message: str, *, line: int | None = None) -> None:
		self.line = line
		if line is not None:
			message = f"{message} (line {line})"
		super().__init__(message)


class TemplateCompileError(LiveComponentError):
	"""The template parsed but cannot be split into server data and client code."""


class UnresolvableComponentError(TemplateCompileError):
	def __init__(self, component_id: str, referenced_by: str | None = None) -> None:
		self.component_id = component_id
		self.referenced_by = referenced_by
		msg = f"Unknown component '{component_id}'"
		if referenced_by:
			msg += f" rendered from '{referenced_by}'"
		super().__init__(msg)


class BadSignature(LiveComponentError):
	"""A signed value failed verification."""


class ComponentNotFound(LiveComponentError):
	"""Public-facing rejection; never says why."""

	def __init__(self) -> None:
		super().__init__("Not found")


def _format_stack(exc: BaseException) -> str:
	return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def report_error(
	exc: BaseException,
	*,
	code: ErrorCode,
	details: dict[str, Any] | None = None,
	message: str | None = None,
) -> None:
	"""Log an error with a stable ``code=`` marker and structured details."""
	logger.error(
		"livecomp error code=%s message=%s details=%s\n%s",
		code,
		message or str(exc),
		dict(details) if details else {},
		_format_stack(exc),
	)


__all__ = [
	"BadSignature",
	"ComponentNotFound",
	"ErrorCode",
	"LiveComponentError",
	"TemplateCompileError",
	"TemplateNotFoundError",
	"TemplateSyntaxError",
	"UnresolvableComponentError",
	"report_error",
]
