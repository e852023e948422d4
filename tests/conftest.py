import datetime as dt
import shutil
from dataclasses import dataclass, field
from typing import Any

import pytest
from livecomp.compiler.service import Compiler
from livecomp.component import ComponentRegistry, LiveComponent, action, helper
from livecomp.render import Renderer
from livecomp.signing import Signers

SECRET = "test-secret"
NOW = dt.datetime(2024, 5, 1, 12, 0, 0)


# =============================================================================
# Models
# =============================================================================


@dataclass(eq=False)
class Label:
	id: int
	name: str


@dataclass(eq=False)
class Message:
	id: int | None
	subject: str
	sender: str = "ann@example.com"
	starred: bool = False
	starred_at: dt.datetime | None = None
	created_at: dt.datetime | None = None
	labels: list[Label] = field(default_factory=list)
	saved_changes: dict[str, Any] = field(default_factory=dict)


class MessageStore:
	"""Locator over an in-memory table, keyed like the action token claims."""

	def __init__(self, *messages: Message) -> None:
		self.messages = {str(m.id): m for m in messages}

	def __call__(self, model_type: str, model_id: str) -> Any:
		if model_type != "Message":
			return None
		return self.messages.get(model_id)


# =============================================================================
# Components
# =============================================================================


class LabelBadge(LiveComponent):
	model = "label"
	template = '<span class="badge">${label.name}</span>'


class MessageRow(LiveComponent):
	model = "message"
	stream = "inbox"
	state = {"expanded": False}
	template = """\
<li class="${'starred' if message.starred else ''}">
<span>${message.subject}</span>
% if expanded:
<p>${message.sender}</p>
% endif
% for l in message.labels:
${render("label_badge", label=l)}
% endfor
</li>"""

	@action(params=("value",))
	def star(self, value: str | None = None):
		self.message.starred = value != "off"
		return {"starred": self.message.starred}

	@action
	def explode(self):
		raise RuntimeError("boom")


class MessageCounter(LiveComponent):
	model = "message"
	update_strategy = "notify"
	template = "<em>${len(message.labels)}</em>"

	@staticmethod
	def stream(message: Message):
		return ("inbox", message)


class MessageSummary(LiveComponent):
	model = "message"
	stream = "inbox"
	template = "<b>${message.subject}</b>"
	data_fields = ("subject", "created_at")
	data_predicates = ("starred",)
	data_iterations = {"labels": ("name",)}
	data_derived = ("label_count",)
	data_depends = {"label_count": ("labels",)}

	@staticmethod
	def compute_label_count(record: Message) -> int:
		return len(record.labels)


class MessagePreview(LiveComponent):
	model = "message"
	template = "<p>${excerpt(message.subject)}</p>"

	@helper
	def excerpt(self, text: str) -> str:
		return text[:3] + "..."


class Inbox(LiveComponent):
	template = """\
<ul>
% for m in messages:
${render("message_preview", message=m)}
% endfor
</ul>"""


ALL_COMPONENTS = (LabelBadge, MessageRow, MessageCounter, MessageSummary, MessagePreview, Inbox)


@pytest.fixture
def registry() -> ComponentRegistry:
	return ComponentRegistry(ALL_COMPONENTS)


@pytest.fixture
def compiler(registry: ComponentRegistry) -> Compiler:
	return Compiler(registry, check_mtime=False)


@pytest.fixture
def signers() -> Signers:
	return Signers(SECRET)


@pytest.fixture
def renderer(compiler: Compiler, signers: Signers) -> Renderer:
	return Renderer(compiler, signers, api_prefix="/_live")


@pytest.fixture
def js_runtime() -> str:
	runtime = shutil.which("node") or shutil.which("bun")
	if runtime is None:
		pytest.skip("node or bun is required to run generated JavaScript")
	return runtime


@pytest.fixture
def message() -> Message:
	return Message(
		id=1,
		subject="Hello",
		starred=True,
		labels=[Label(7, "urgent")],
		created_at=NOW - dt.timedelta(hours=2),
	)
