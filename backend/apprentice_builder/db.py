from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./builder.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except Exception:
		return
	if "builder_drafts" not in tables:
		return
	pk = inspector.get_pk_constraint("builder_drafts").get("constrained_columns") or []
	if "kind" in pk:
		return
	# Older tables keyed drafts by owner only; rebuild with the (owner_id, kind) key
	from .models import BuilderDraft

	cols = {c["name"] for c in inspector.get_columns("builder_drafts")}
	kind_expr = "COALESCE(kind, 'course')" if "kind" in cols else "'course'"
	with engine.begin() as conn:
		conn.exec_driver_sql("ALTER TABLE builder_drafts RENAME TO builder_drafts_old")
		BuilderDraft.__table__.create(bind=conn)
		conn.exec_driver_sql(
			"INSERT INTO builder_drafts (owner_id, kind, payload, saved_at, created_at, updated_at) "
			f"SELECT owner_id, {kind_expr}, payload, saved_at, created_at, updated_at FROM builder_drafts_old"
		)
		conn.exec_driver_sql("DROP TABLE builder_drafts_old")
