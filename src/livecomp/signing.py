"""HMAC signing for stream identities and action tokens.

Signatures are deterministic: signing the same payload twice yields the same
string, so two renders of the same topic subscribe to the same stream.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any

from livecomp.errors import BadSignature

_VERSION = "v1"


def _b64encode(raw: bytes) -> str:
	return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(s: str) -> bytes:
	return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))


def canonical_json(value: Any) -> str:
	return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class Signer:
	"""Signs JSON-compatible payloads under a secret and a purpose salt."""

	__slots__: tuple[str, ...] = ("_secret", "_salt", "_digest", "purpose")

	def __init__(self, secret: str, salt: str, *, digestmod: str = "sha256") -> None:
		if not secret:
			raise ValueError("Signer requires a non-empty secret")
		self._secret = secret.encode("utf-8")
		self._salt = salt.encode("utf-8")
		self._digest = getattr(hashlib, digestmod)
		self.purpose = salt

	def _mac(self, payload: bytes) -> bytes:
		return hmac.new(
			self._secret + b"|" + self._salt, payload, self._digest
		).digest()

	def sign(self, value: Any) -> str:
		raw = canonical_json(value).encode("utf-8")
		return f"{_VERSION}.{_b64encode(raw)}.{_b64encode(self._mac(raw))}"

	def verify(self, token: str) -> Any:
		"""Return the signed payload or raise BadSignature."""
		if not isinstance(token, str) or not token.startswith(f"{_VERSION}."):
			raise BadSignature("malformed token")
		try:
			_, b64, sig = token.split(".", 2)
			raw = _b64decode(b64)
			mac = _b64decode(sig)
		except ValueError as exc:
			raise BadSignature("malformed token") from exc
		if not hmac.compare_digest(mac, self._mac(raw)):
			raise BadSignature("signature mismatch")
		try:
			return json.loads(raw.decode("utf-8"))
		except ValueError as exc:
			raise BadSignature("malformed payload") from exc

	def unsign(self, token: str) -> Any | None:
		try:
			return self.verify(token)
		except BadSignature:
			return None


@dataclass(frozen=True, slots=True)
class ActionClaims:
	"""What an action token authorizes: one component bound to one record."""

	component_id: str
	model_type: str
	model_id: str

	def payload(self) -> dict[str, str]:
		return {"c": self.component_id, "m": self.model_type, "r": self.model_id}

	@classmethod
	def from_payload(cls, payload: Any) -> ActionClaims:
		if not isinstance(payload, dict):
			raise BadSignature("unexpected action payload")
		try:
			return cls(str(payload["c"]), str(payload["m"]), str(payload["r"]))
		except KeyError as exc:
			raise BadSignature("incomplete action payload") from exc


class Signers:
	"""The two purposes livecomp signs for, derived from one secret."""

	def __init__(self, secret: str) -> None:
		self.streams = Signer(secret, "livecomp.stream")
		self.actions = Signer(secret, "livecomp.action")

	def sign_stream(self, name: str) -> str:
		return self.streams.sign(name)

	def verify_stream(self, token: str) -> str:
		name = self.streams.verify(token)
		if not isinstance(name, str):
			raise BadSignature("unexpected stream payload")
		return name

	def sign_action(self, claims: ActionClaims) -> str:
		return self.actions.sign(claims.payload())

	def verify_action(self, token: str) -> ActionClaims:
		return ActionClaims.from_payload(self.actions.verify(token))


__all__ = ["ActionClaims", "Signer", "Signers", "canonical_json"]
