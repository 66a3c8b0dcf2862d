"""Process-wide collaborators handed to the routers through ``Depends``.

Tests swap any of these with ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends

from .catalog import Catalog, PlatformCatalog
from .db import SessionLocal
from .drafts import DraftStore, SqlDraftStore
from .generation import AIStructureGenerator, StructureGenerator
from .ids import IdFactory, uuid_ids
from .session import SessionRegistry
from .template_store import PlatformTemplateStore, TemplateStore

_registry = SessionRegistry()
_catalog: Optional[PlatformCatalog] = None
_template_store: Optional[PlatformTemplateStore] = None
_drafts: Optional[SqlDraftStore] = None


def get_registry() -> SessionRegistry:
    return _registry


def get_catalog() -> Catalog:
    global _catalog
    if _catalog is None:
        _catalog = PlatformCatalog.from_settings()
    return _catalog


def get_template_store() -> TemplateStore:
    global _template_store
    if _template_store is None:
        _template_store = PlatformTemplateStore.from_settings()
    return _template_store


def get_drafts() -> DraftStore:
    global _drafts
    if _drafts is None:
        _drafts = SqlDraftStore(SessionLocal)
    return _drafts


def get_ids() -> IdFactory:
    return uuid_ids


def get_generator(catalog: Catalog = Depends(get_catalog), ids: IdFactory = Depends(get_ids)) -> StructureGenerator:
    return AIStructureGenerator(catalog, ids=ids)


async def close_clients() -> None:
    global _catalog, _template_store
    for client in (_catalog, _template_store):
        if client is not None:
            await client.aclose()
    _catalog = None
    _template_store = None
