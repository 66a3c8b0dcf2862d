from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from .db import Base


class BuilderDraft(Base):
	__tablename__ = "builder_drafts"
	# One slot per owner per builder; a new save overwrites the previous one
	owner_id = Column(String(128), primary_key=True)
	kind = Column(String(32), primary_key=True, default="course")
	payload = Column(Text, nullable=False)  # JSON string snapshot
	saved_at = Column(String(64), nullable=False)  # ISO timestamp shown to the user
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
