from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import BuilderDraft
from .settings import settings


def purge_stale_drafts(db: Session, days: Optional[int] = None, *, now: Optional[datetime] = None) -> int:
	# Drafts untouched for the retention window are abandoned sessions
	retention = settings.draft_retention_days if days is None else days
	threshold = (now or datetime.utcnow()) - timedelta(days=retention)
	res = db.execute(delete(BuilderDraft).where(BuilderDraft.updated_at < threshold))
	db.commit()
	return res.rowcount or 0
