from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# settings and the engine are built at import time
_DB_DIR = tempfile.mkdtemp(prefix="builder-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(_DB_DIR) / 'builder.db'}")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from apprentice_builder.drafts import MemoryDraftStore  # noqa: E402
from apprentice_builder.errors import ExternalServiceError  # noqa: E402
from apprentice_builder.ids import CounterIds  # noqa: E402
from apprentice_builder.schemas import Classification, Module, ReferenceItem, Standard  # noqa: E402
from apprentice_builder.session import CourseBuilderSession  # noqa: E402


def make_items(standard_id: int, knowledge: int, skills: int, behaviors: int) -> List[ReferenceItem]:
    items: List[ReferenceItem] = []
    next_id = 1
    for prefix, count, classification in (
        ("K", knowledge, Classification.KNOWLEDGE),
        ("S", skills, Classification.SKILL),
        ("B", behaviors, Classification.BEHAVIOR),
    ):
        for n in range(1, count + 1):
            items.append(ReferenceItem(
                id=next_id,
                classification=classification,
                code=f"{prefix}{n}",
                description=f"{classification.value} element {n}",
                standard_id=standard_id,
            ))
            next_id += 1
    return items


class FakeCatalog:
    def __init__(self, items: Dict[int, List[ReferenceItem]], standards: Optional[List[Standard]] = None) -> None:
        self.items = items
        self._standards = standards or [Standard(id=sid, title=f"Standard {sid}", level=3) for sid in items]
        self.fail = False
        self.calls: List[int] = []

    async def standards(self) -> List[Standard]:
        if self.fail:
            raise ExternalServiceError("catalog", "unavailable")
        return list(self._standards)

    async def reference_items(self, standard_id: int) -> List[ReferenceItem]:
        self.calls.append(standard_id)
        if self.fail:
            raise ExternalServiceError("catalog", "unavailable")
        return list(self.items.get(standard_id, []))


class FakeTemplateStore:
    def __init__(self) -> None:
        self.created: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []
        self.stored: Dict[str, Dict[str, Any]] = {}
        self.fail = False

    async def create(self, payload: Dict[str, Any]) -> str:
        if self.fail:
            raise ExternalServiceError("templates", "POST failed")
        self.created.append(payload)
        template_id = str(len(self.created))
        self.stored[template_id] = {"id": template_id, **payload}
        return template_id

    async def update(self, template_id: str, payload: Dict[str, Any]) -> str:
        if self.fail:
            raise ExternalServiceError("templates", "PUT failed")
        self.updated.append((template_id, payload))
        self.stored[template_id] = {"id": template_id, **payload}
        return template_id

    async def fetch(self, template_id: str) -> Dict[str, Any]:
        if self.fail or template_id not in self.stored:
            raise ExternalServiceError("templates", f"template {template_id} not found")
        return self.stored[template_id]


class FakeGenerator:
    def __init__(self, modules: Optional[List[Module]] = None) -> None:
        self.modules = modules or []
        self.fail = False
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, standard_id: int, *, include_resources: bool = True, include_assessments: bool = True) -> List[Module]:
        self.calls.append({
            "standard_id": standard_id,
            "include_resources": include_resources,
            "include_assessments": include_assessments,
        })
        if self.fail:
            raise ExternalServiceError("ai", "model unavailable")
        return [m.model_copy(deep=True) for m in self.modules]


@pytest.fixture
def standard7_items() -> List[ReferenceItem]:
    return make_items(7, knowledge=6, skills=4, behaviors=2)


@pytest.fixture
def catalog(standard7_items) -> FakeCatalog:
    return FakeCatalog({7: standard7_items, 9: make_items(9, knowledge=2, skills=1, behaviors=0)})


@pytest.fixture
def store() -> FakeTemplateStore:
    return FakeTemplateStore()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator([
        Module(id="gen_m1", title="Generated Module", description="From the model", order=1, ksb_ids=[1, 7]),
    ])


@pytest.fixture
def drafts() -> MemoryDraftStore:
    return MemoryDraftStore(clock=lambda: "2023-05-16T14:30:00")


@pytest.fixture
def ids() -> CounterIds:
    return CounterIds()


@pytest.fixture
def course_session(catalog, store, drafts, generator, ids) -> CourseBuilderSession:
    return CourseBuilderSession(
        "owner-1",
        catalog=catalog,
        store=store,
        drafts=drafts,
        generator=generator,
        ids=ids,
        module_cap=5,
        lesson_cap=3,
        autosave_enabled=True,
    )
