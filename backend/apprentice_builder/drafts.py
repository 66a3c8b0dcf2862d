"""Draft storage: one slot per owner per builder kind.

Saving is a convenience, never the system of record: ``save`` reports
failure by returning ``None`` and logs, it does not raise.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import BuilderDraft
from .schemas import DraftSnapshot

logger = logging.getLogger(__name__)


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


class DraftStore(Protocol):
	def save(self, owner_id: str, state: Dict[str, Any], *, kind: str = "course") -> Optional[str]: ...

	def load(self, owner_id: str, *, kind: str = "course") -> Optional[DraftSnapshot]: ...

	def clear(self, owner_id: str, *, kind: str = "course") -> None: ...


class SqlDraftStore:
	def __init__(self, session_factory: Callable[[], Session], *, clock: Callable[[], str] = _now_iso) -> None:
		self._session_factory = session_factory
		self._clock = clock

	def save(self, owner_id: str, state: Dict[str, Any], *, kind: str = "course") -> Optional[str]:
		try:
			payload = json.dumps(state)
		except (TypeError, ValueError) as exc:
			logger.warning("draft for %s not serializable, skipping save: %s", owner_id, exc)
			return None
		timestamp = self._clock()
		db = self._session_factory()
		try:
			row = db.get(BuilderDraft, (str(owner_id), kind))
			if row is None:
				row = BuilderDraft(owner_id=str(owner_id), kind=kind)
				db.add(row)
			row.payload = payload
			row.saved_at = timestamp
			db.commit()
		except SQLAlchemyError as exc:
			db.rollback()
			logger.warning("draft save failed for %s: %s", owner_id, exc)
			return None
		finally:
			db.close()
		return timestamp

	def load(self, owner_id: str, *, kind: str = "course") -> Optional[DraftSnapshot]:
		db = self._session_factory()
		try:
			row = db.get(BuilderDraft, (str(owner_id), kind))
			if row is None:
				return None
			saved_at, payload = row.saved_at, row.payload
		except SQLAlchemyError as exc:
			logger.warning("draft load failed for %s: %s", owner_id, exc)
			return None
		finally:
			db.close()
		return _decode(str(owner_id), kind, saved_at, payload)

	def clear(self, owner_id: str, *, kind: str = "course") -> None:
		db = self._session_factory()
		try:
			row = db.get(BuilderDraft, (str(owner_id), kind))
			if row is not None:
				db.delete(row)
				db.commit()
		except SQLAlchemyError as exc:
			db.rollback()
			logger.warning("draft clear failed for %s: %s", owner_id, exc)
		finally:
			db.close()


class MemoryDraftStore:
	"""Process-local store with the same JSON round-trip as the SQL one."""

	def __init__(self, *, clock: Callable[[], str] = _now_iso) -> None:
		self._drafts: Dict[Tuple[str, str], Tuple[str, str]] = {}
		self._clock = clock

	def save(self, owner_id: str, state: Dict[str, Any], *, kind: str = "course") -> Optional[str]:
		try:
			payload = json.dumps(state)
		except (TypeError, ValueError) as exc:
			logger.warning("draft for %s not serializable, skipping save: %s", owner_id, exc)
			return None
		timestamp = self._clock()
		self._drafts[(str(owner_id), kind)] = (timestamp, payload)
		return timestamp

	def load(self, owner_id: str, *, kind: str = "course") -> Optional[DraftSnapshot]:
		entry = self._drafts.get((str(owner_id), kind))
		if entry is None:
			return None
		timestamp, payload = entry
		return _decode(str(owner_id), kind, timestamp, payload)

	def clear(self, owner_id: str, *, kind: str = "course") -> None:
		self._drafts.pop((str(owner_id), kind), None)


def _decode(owner_id: str, kind: str, timestamp: str, payload: str) -> Optional[DraftSnapshot]:
	try:
		state = json.loads(payload)
	except ValueError:
		logger.warning("discarding unreadable draft for %s", owner_id)
		return None
	if not isinstance(state, dict):
		return None
	return DraftSnapshot(owner_id=owner_id, kind=kind, timestamp=timestamp, state=state)


def format_timestamp(timestamp: str) -> str:
	"""Render an ISO timestamp as e.g. ``May 16, 2023 at 2:30 PM``."""
	try:
		dt = datetime.fromisoformat(timestamp)
	except (TypeError, ValueError):
		return "Unknown date"
	hour = dt.hour % 12 or 12
	meridiem = "AM" if dt.hour < 12 else "PM"
	return f"{dt:%b} {dt.day}, {dt.year} at {hour}:{dt:%M} {meridiem}"
