from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from apprentice_builder import db as db_module
from apprentice_builder.cleanup import purge_stale_drafts
from apprentice_builder.db import Base, ensure_schema
from apprentice_builder.drafts import MemoryDraftStore, SqlDraftStore, format_timestamp
from apprentice_builder.ids import CounterIds
from apprentice_builder.models import BuilderDraft
from apprentice_builder.schemas import Module
from apprentice_builder.synthesis import synthesize


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, session_factory):
    clock = lambda: "2023-05-16T14:30:00"  # noqa: E731
    if request.param == "memory":
        return MemoryDraftStore(clock=clock)
    return SqlDraftStore(session_factory, clock=clock)


def _state(items):
    modules = synthesize(items, ids=CounterIds())
    modules[1].lessons[0].ksb_ids.append(12)
    return {
        "formValues": {"title": "Data Analyst L4", "standardId": 7},
        "courseModules": [m.to_wire() for m in modules],
        "selectedModule": modules[0].id,
    }


def test_round_trip_preserves_tree(store, standard7_items) -> None:
    state = _state(standard7_items)
    assert store.save("owner-1", state) == "2023-05-16T14:30:00"

    snapshot = store.load("owner-1")

    assert snapshot is not None
    assert snapshot.kind == "course"
    assert snapshot.timestamp == "2023-05-16T14:30:00"
    restored = [Module.model_validate(m) for m in snapshot.state["courseModules"]]
    expected = [Module.model_validate(m) for m in state["courseModules"]]
    assert restored == expected
    assert snapshot.state["formValues"] == state["formValues"]


def test_same_kind_overwrites(store) -> None:
    store.save("owner-1", {"formValues": {"title": "first"}})
    store.save("owner-1", {"formValues": {"title": "second"}})
    assert store.load("owner-1").state["formValues"]["title"] == "second"


def test_kinds_have_separate_slots(store) -> None:
    store.save("owner-1", {"formValues": {"title": "course"}})
    store.save("owner-1", {"formValues": {"title": "review"}}, kind="review")

    course = store.load("owner-1")
    review = store.load("owner-1", kind="review")

    assert (course.kind, course.state["formValues"]["title"]) == ("course", "course")
    assert (review.kind, review.state["formValues"]["title"]) == ("review", "review")
    assert store.load("owner-1", kind="form") is None

    store.clear("owner-1", kind="review")
    assert store.load("owner-1", kind="review") is None
    assert store.load("owner-1") is not None


def test_clear_then_load_is_absent(store) -> None:
    store.save("owner-1", {"formValues": {}})
    store.clear("owner-1")
    assert store.load("owner-1") is None
    store.clear("never-saved")


def test_owners_are_isolated(store) -> None:
    store.save("a", {"formValues": {"title": "A"}})
    assert store.load("b") is None


def test_unserializable_state_is_reported_not_raised(store) -> None:
    assert store.save("owner-1", {"bad": object()}) is None
    assert store.load("owner-1") is None


def test_corrupt_row_loads_as_absent(session_factory) -> None:
    db = session_factory()
    db.add(BuilderDraft(owner_id="owner-1", kind="course", payload="{not json", saved_at="2023-05-16T14:30:00"))
    db.commit()
    db.close()

    assert SqlDraftStore(session_factory).load("owner-1") is None


def test_database_failure_returns_none(session_factory, caplog) -> None:
    store = SqlDraftStore(session_factory)
    Base.metadata.drop_all(bind=session_factory.kw["bind"])

    assert store.save("owner-1", {"formValues": {}}) is None
    assert store.load("owner-1") is None
    assert "draft save failed" in caplog.text


def test_purge_removes_only_stale_rows(session_factory) -> None:
    now = datetime(2024, 3, 1, 12, 0, 0)
    db = session_factory()
    db.add(BuilderDraft(owner_id="old", kind="course", payload="{}", saved_at="x", updated_at=now - timedelta(days=9)))
    db.add(BuilderDraft(owner_id="fresh", kind="course", payload="{}", saved_at="x", updated_at=now - timedelta(days=2)))
    db.commit()

    removed = purge_stale_drafts(db, days=7, now=now)

    assert removed == 1
    assert [row.owner_id for row in db.query(BuilderDraft).all()] == ["fresh"]
    db.close()


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2023-05-16T14:30:00", "May 16, 2023 at 2:30 PM"),
        ("2023-05-16T00:05:00+00:00", "May 16, 2023 at 12:05 AM"),
        ("2024-12-01T12:00:00", "Dec 1, 2024 at 12:00 PM"),
        ("yesterday", "Unknown date"),
    ],
)
def test_format_timestamp(value, expected) -> None:
    assert format_timestamp(value) == expected


def _legacy_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE builder_drafts ("
            "owner_id VARCHAR(128) PRIMARY KEY, kind VARCHAR(32), payload TEXT NOT NULL, "
            "saved_at VARCHAR(64) NOT NULL, created_at DATETIME NOT NULL, updated_at DATETIME NOT NULL)"
        )
        conn.exec_driver_sql(
            "INSERT INTO builder_drafts VALUES "
            "('owner-1', 'review', '{\"formValues\": {\"title\": \"kept\"}}', '2023-05-16T14:30:00', "
            "'2023-05-16 14:30:00', '2023-05-16 14:30:00')"
        )
    return engine


def test_ensure_schema_moves_owner_key_to_owner_and_kind(monkeypatch) -> None:
    engine = _legacy_engine()
    monkeypatch.setattr(db_module, "engine", engine)

    ensure_schema()
    ensure_schema()

    inspector = inspect(engine)
    assert inspector.get_pk_constraint("builder_drafts")["constrained_columns"] == ["owner_id", "kind"]
    assert "builder_drafts_old" not in inspector.get_table_names()

    store = SqlDraftStore(sessionmaker(bind=engine), clock=lambda: "2023-05-17T09:00:00")
    assert store.load("owner-1", kind="review").state["formValues"]["title"] == "kept"
    assert store.save("owner-1", {"formValues": {"title": "course"}}) == "2023-05-17T09:00:00"
    assert store.load("owner-1", kind="review") is not None
    engine.dispose()
