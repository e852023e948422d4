import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from anyio import from_thread

T = TypeVar("T")

logger = logging.getLogger(__name__)


class TimerHandleLike(Protocol):
	def cancel(self) -> None: ...


# (delay in seconds, callback) -> handle
Scheduler = Callable[[float, Callable[[], None]], TimerHandleLike]


def _log_task_exception(task: asyncio.Task[Any]) -> None:
	if task.cancelled():
		return
	exc = task.exception()
	if exc is not None:
		logger.error("Background task %s failed", task.get_name(), exc_info=exc)


def create_task(
	coroutine: Awaitable[T],
	*,
	name: str | None = None,
	on_done: Callable[[asyncio.Task[T]], None] | None = None,
) -> asyncio.Task[T]:
	"""Schedule a coroutine on the main loop from any thread.

	Inside a running loop the task is created directly; from a worker thread
	it is handed to the loop through ``anyio.from_thread``. Failures are
	logged unless ``on_done`` handles them.
	"""

	def _spawn() -> asyncio.Task[T]:
		task = asyncio.ensure_future(coroutine)
		if name is not None:
			task.set_name(name)
		task.add_done_callback(on_done or _log_task_exception)
		return task

	try:
		asyncio.get_running_loop()
	except RuntimeError:

		async def _runner() -> asyncio.Task[T]:
			return _spawn()

		return from_thread.run(_runner)
	return _spawn()


def call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
	"""Run ``callback`` after ``delay`` seconds on the running loop."""
	try:
		loop = asyncio.get_running_loop()
	except RuntimeError:
		try:
			loop = asyncio.get_event_loop()
		except RuntimeError as exc:
			raise RuntimeError("call_later() requires an event loop") from exc
	return loop.call_later(delay, callback)


__all__ = ["Scheduler", "TimerHandleLike", "call_later", "create_task"]
