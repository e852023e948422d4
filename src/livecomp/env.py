"""Environment-driven configuration.

Values are read lazily from ``os.environ`` so that tests and the CLI can
override them after import.
"""

from __future__ import annotations

import os
import secrets
from pathlib import Path
from typing import Literal, cast

LiveEnv = Literal["dev", "ci", "prod"]

ENV_LIVECOMP_ENV = "LIVECOMP_ENV"
ENV_LIVECOMP_SECRET = "LIVECOMP_SECRET"
ENV_LIVECOMP_COMPRESS = "LIVECOMP_COMPRESS"
ENV_LIVECOMP_DEBOUNCE_MS = "LIVECOMP_DEBOUNCE_MS"
ENV_LIVECOMP_API_PREFIX = "LIVECOMP_API_PREFIX"
ENV_LIVECOMP_HOT_RELOAD = "LIVECOMP_HOT_RELOAD"
ENV_LIVECOMP_APP_DIR = "LIVECOMP_APP_DIR"

_FALSY = {"", "0", "false", "False", "no", "off"}
_PROCESS_SECRET = secrets.token_urlsafe(32)


def _flag(name: str, default: bool) -> bool:
	value = os.environ.get(name)
	if value is None:
		return default
	return value not in _FALSY


class EnvVars:
	"""Typed accessors over the LIVECOMP_* environment variables."""

	@property
	def livecomp_env(self) -> LiveEnv:
		value = os.environ.get(ENV_LIVECOMP_ENV, "dev")
		if value not in ("dev", "ci", "prod"):
			raise ValueError(
				f"{ENV_LIVECOMP_ENV} must be one of dev, ci, prod (got {value!r})"
			)
		return cast(LiveEnv, value)

	@livecomp_env.setter
	def livecomp_env(self, value: LiveEnv) -> None:
		os.environ[ENV_LIVECOMP_ENV] = value

	@property
	def is_production(self) -> bool:
		return self.livecomp_env == "prod"

	@property
	def secret(self) -> str | None:
		return os.environ.get(ENV_LIVECOMP_SECRET) or None

	@property
	def compress(self) -> bool:
		return _flag(ENV_LIVECOMP_COMPRESS, False)

	@property
	def debounce_ms(self) -> int:
		raw = os.environ.get(ENV_LIVECOMP_DEBOUNCE_MS)
		if not raw:
			return 150
		value = int(raw)
		if value < 0:
			raise ValueError(f"{ENV_LIVECOMP_DEBOUNCE_MS} must be >= 0")
		return value

	@property
	def api_prefix(self) -> str:
		prefix = os.environ.get(ENV_LIVECOMP_API_PREFIX, "/_live")
		return "/" + prefix.strip("/")

	@property
	def hot_reload(self) -> bool:
		return _flag(ENV_LIVECOMP_HOT_RELOAD, self.livecomp_env == "dev")

	@property
	def app_dir(self) -> Path | None:
		raw = os.environ.get(ENV_LIVECOMP_APP_DIR)
		return Path(raw) if raw else None


env = EnvVars()


def resolve_secret(app_path: Path | None = None) -> str:
	"""Signing secret for this process.

	Production requires ``LIVECOMP_SECRET``. Elsewhere a secret is persisted
	under ``.livecomp/secret`` next to the app so that signed identities stay
	valid across restarts, falling back to a per-process random value.
	"""
	configured = env.secret
	if configured:
		return configured
	if env.is_production:
		raise RuntimeError(f"{ENV_LIVECOMP_SECRET} must be set in production")
	if app_path is None:
		app_path = env.app_dir
	if app_path is None:
		return _PROCESS_SECRET

	root = app_path if app_path.is_dir() else app_path.parent
	secret_file = root / ".livecomp" / "secret"
	try:
		if secret_file.exists():
			content = secret_file.read_text().strip()
			if content:
				return content
		secret_file.parent.mkdir(parents=True, exist_ok=True)
		value = secrets.token_urlsafe(32)
		secret_file.write_text(value)
		return value
	except OSError:
		return _PROCESS_SECRET


__all__ = [
	"ENV_LIVECOMP_API_PREFIX",
	"ENV_LIVECOMP_APP_DIR",
	"ENV_LIVECOMP_COMPRESS",
	"ENV_LIVECOMP_DEBOUNCE_MS",
	"ENV_LIVECOMP_ENV",
	"ENV_LIVECOMP_HOT_RELOAD",
	"ENV_LIVECOMP_SECRET",
	"EnvVars",
	"LiveEnv",
	"env",
	"resolve_secret",
]
