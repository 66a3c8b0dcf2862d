from __future__ import annotations
import asyncio
import logging
from typing import Callable, Iterable, Optional

from .session import BuilderSession
from .settings import settings

logger = logging.getLogger(__name__)


class AutosaveLoop:
	"""Periodically snapshots every open builder session to the draft store.

	Each tick reads session state at fire time; a failing session is logged
	and skipped so one bad draft never stops the loop.
	"""

	def __init__(self, sessions: Callable[[], Iterable[BuilderSession]], interval: Optional[float] = None) -> None:
		self._sessions = sessions
		self.interval = settings.autosave_interval_seconds if interval is None else interval
		self._task: Optional[asyncio.Task] = None

	def tick(self) -> int:
		saved = 0
		for session in list(self._sessions()):
			if session.busy:
				continue
			try:
				if session.autosave():
					saved += 1
			except Exception:
				logger.exception("autosave failed for %s draft of %s", session.kind, session.owner_id)
		return saved

	async def run(self) -> None:
		while True:
			await asyncio.sleep(self.interval)
			saved = self.tick()
			if saved:
				logger.info("auto-saved %d draft(s)", saved)

	def start(self) -> asyncio.Task:
		if self._task is None or self._task.done():
			self._task = asyncio.create_task(self.run())
		return self._task

	async def stop(self) -> None:
		task, self._task = self._task, None
		if task is None:
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()
