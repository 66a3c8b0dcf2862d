from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..catalog import Catalog
from ..dependencies import get_catalog, get_drafts, get_ids, get_registry
from ..drafts import DraftStore, format_timestamp
from ..ids import IdFactory
from ..schemas import Classification, QuestionType, SectionType
from ..session import SessionRegistry, SessionState, TemplateBuilderSession
from .auth import User, get_current_user


router = APIRouter(prefix="/templates", tags=["template_builder"])

KINDS = ("review", "form")


class OpenRequest(BaseModel):
    restart: bool = False


class AutosaveRequest(BaseModel):
    enabled: bool


class StandardRequest(BaseModel):
    standard_id: int


class DetailsPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class SectionPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[SectionType] = None
    required: Optional[bool] = None
    ksb_ids: Optional[List[int]] = None


class QuestionCreate(BaseModel):
    section_id: Optional[str] = None
    type: QuestionType = QuestionType.TEXT


class QuestionPatch(BaseModel):
    type: Optional[QuestionType] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    required: Optional[bool] = None
    options: Optional[List[str]] = None
    default_value: Optional[str] = None
    ksb_ids: Optional[List[int]] = None


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int
    section_id: Optional[str] = None


class SelectAllRequest(BaseModel):
    classification: Classification


def _check_kind(kind: str) -> str:
    if kind not in KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown template builder '{kind}'")
    return kind


def _session(registry: SessionRegistry, kind: str, user: User) -> TemplateBuilderSession:
    session = registry.get(_check_kind(kind), user.username)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No {kind} builder session; open one first")
    return session


@router.post("/{kind}/session")
async def open_session(
    kind: str,
    req: Optional[OpenRequest] = None,
    user: User = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_registry),
    catalog: Catalog = Depends(get_catalog),
    drafts: DraftStore = Depends(get_drafts),
    ids: IdFactory = Depends(get_ids),
):
    session = registry.get(_check_kind(kind), user.username)
    if session is None or (req is not None and req.restart):
        session = registry.put(TemplateBuilderSession(user.username, kind=kind, drafts=drafts, catalog=catalog, ids=ids))
    pending = None
    if session.state == SessionState.IDLE:
        snapshot = session.pending_draft()
        if snapshot is not None:
            pending = {"timestamp": snapshot.timestamp, "display": format_timestamp(snapshot.timestamp)}
    return {"session": session.view(), "pending_draft": pending}


@router.get("/{kind}/session")
async def get_session(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    return _session(registry, kind, user).view()


@router.delete("/{kind}/session")
async def close_session(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.autosave()
    registry.drop(kind, user.username)
    return {"ok": True}


@router.post("/{kind}/session/draft/recover")
async def recover_draft(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    snapshot = session.recover_draft()
    return {"recovered": snapshot is not None, "session": session.view()}


@router.post("/{kind}/session/draft/discard")
async def discard_draft(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.discard_draft()
    return session.view()


@router.post("/{kind}/session/draft/save")
async def save_draft(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    saved_at = session.save_draft()
    if saved_at is None:
        raise HTTPException(status_code=500, detail="Failed to save draft")
    return {"saved_at": saved_at, "display": format_timestamp(saved_at)}


@router.put("/{kind}/session/autosave")
async def set_autosave(kind: str, req: AutosaveRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.set_autosave(req.enabled)
    return {"autosave_enabled": session.autosave_enabled}


@router.post("/{kind}/session/standard")
async def select_standard(kind: str, req: StandardRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    await session.select_standard(req.standard_id)
    return session.view()


@router.patch("/{kind}/session/details")
async def update_details(kind: str, req: DetailsPatch, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.update_details(**req.model_dump(exclude_none=True))
    return session.view()


# ---- sections -------------------------------------------------------------------

@router.post("/{kind}/session/sections")
async def add_section(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    section = session.add_section()
    return {"section": section.to_wire(), "session": session.view()}


@router.post("/{kind}/session/sections/reorder")
async def reorder_sections(kind: str, req: ReorderRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.reorder_sections(req.from_index, req.to_index)
    return session.view()


@router.patch("/{kind}/session/sections/{section_id}")
async def update_section(kind: str, section_id: str, req: SectionPatch, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.update_section(section_id, **req.model_dump(exclude_none=True))
    return session.view()


@router.delete("/{kind}/session/sections/{section_id}")
async def delete_section(kind: str, section_id: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.delete_section(section_id)
    return session.view()


@router.post("/{kind}/session/sections/{section_id}/select")
async def select_section(kind: str, section_id: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.select_section(section_id)
    return session.view()


# ---- questions ------------------------------------------------------------------

@router.post("/{kind}/session/questions")
async def add_question(kind: str, req: Optional[QuestionCreate] = None, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    req = req or QuestionCreate()
    question = session.add_question(req.section_id, req.type)
    return {"question": question.to_wire() if question else None, "session": session.view()}


@router.post("/{kind}/session/questions/reorder")
async def reorder_questions(kind: str, req: ReorderRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.reorder_questions(req.from_index, req.to_index, req.section_id)
    return session.view()


@router.patch("/{kind}/session/questions/{question_id}")
async def update_question(kind: str, question_id: str, req: QuestionPatch, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.update_question(question_id, **req.model_dump(exclude_none=True))
    return session.view()


@router.delete("/{kind}/session/questions/{question_id}")
async def delete_question(kind: str, question_id: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.delete_question(question_id)
    return session.view()


# ---- KSB linking / publish ------------------------------------------------------

@router.post("/{kind}/session/nodes/{node_id}/ksbs/{ksb_id}/toggle")
async def toggle_ksb(kind: str, node_id: str, ksb_id: int, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    refs = session.toggle_ksb(node_id, ksb_id)
    return {"ksb_ids": sorted(refs), "session": session.view()}


@router.post("/{kind}/session/nodes/{node_id}/ksbs/select-all")
async def select_all_ksbs(kind: str, node_id: str, req: SelectAllRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    refs = session.select_all_ksbs(node_id, req.classification)
    return {"ksb_ids": sorted(refs), "session": session.view()}


@router.get("/{kind}/session/validate")
async def validate(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    errors = _session(registry, kind, user).validate()
    return {"valid": not errors, "errors": errors}


@router.post("/{kind}/session/publish")
async def publish(kind: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, kind, user)
    session.publish()
    return session.view()
