from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..catalog import Catalog
from ..dependencies import get_catalog, get_drafts, get_generator, get_ids, get_registry, get_template_store
from ..drafts import DraftStore, format_timestamp
from ..generation import StructureGenerator
from ..ids import IdFactory
from ..schemas import Classification, LessonType, ReferenceItem, Resource
from ..session import CourseBuilderSession, SessionRegistry, SessionState
from ..template_store import TemplateStore
from .auth import User, get_current_user


router = APIRouter(prefix="/course-builder", tags=["course_builder"])


class OpenRequest(BaseModel):
    restart: bool = False


class AutosaveRequest(BaseModel):
    enabled: bool


class StandardRequest(BaseModel):
    standard_id: int


class AnalysisRequest(BaseModel):
    standard_id: Optional[int] = None
    ksbs: List[ReferenceItem] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    include_resources: Optional[bool] = None
    include_assessments: Optional[bool] = None


class LoadTemplateRequest(BaseModel):
    template_id: str


class DetailsPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None
    include_resources: Optional[bool] = None
    include_assessments: Optional[bool] = None


class ModulePatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    ksb_ids: Optional[List[int]] = None


class LessonCreate(BaseModel):
    type: LessonType = LessonType.CONTENT


class LessonPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[LessonType] = None
    content: Optional[str] = None
    ksb_ids: Optional[List[int]] = None


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


class SelectAllRequest(BaseModel):
    classification: Classification


def _session(registry: SessionRegistry, user: User) -> CourseBuilderSession:
    session = registry.get(CourseBuilderSession.kind, user.username)
    if session is None:
        raise HTTPException(status_code=404, detail="No course builder session; open one first")
    return session


def _draft_info(session: CourseBuilderSession) -> Optional[Dict[str, Any]]:
    pending = session.pending_draft()
    if pending is None:
        return None
    return {"timestamp": pending.timestamp, "display": format_timestamp(pending.timestamp)}


@router.post("/session")
async def open_session(
    req: Optional[OpenRequest] = None,
    user: User = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_registry),
    catalog: Catalog = Depends(get_catalog),
    store: TemplateStore = Depends(get_template_store),
    drafts: DraftStore = Depends(get_drafts),
    generator: StructureGenerator = Depends(get_generator),
    ids: IdFactory = Depends(get_ids),
):
    session = registry.get(CourseBuilderSession.kind, user.username)
    if session is None or (req is not None and req.restart):
        session = registry.put(CourseBuilderSession(
            user.username,
            catalog=catalog,
            store=store,
            drafts=drafts,
            generator=generator,
            ids=ids,
        ))
    # only a fresh session is offered its stored draft
    pending = _draft_info(session) if session.state == SessionState.IDLE else None
    return {"session": session.view(), "pending_draft": pending}


@router.get("/session")
async def get_session(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    return _session(registry, user).view()


@router.delete("/session")
async def close_session(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.autosave()
    registry.drop(CourseBuilderSession.kind, user.username)
    return {"ok": True}


@router.get("/session/validate")
async def validate(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    errors = _session(registry, user).validate()
    return {"valid": not errors, "errors": errors}


# ---- drafts ----------------------------------------------------------------

@router.post("/session/draft/recover")
async def recover_draft(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    snapshot = session.recover_draft()
    return {"recovered": snapshot is not None, "session": session.view()}


@router.post("/session/draft/discard")
async def discard_draft(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.discard_draft()
    return session.view()


@router.post("/session/draft/save")
async def save_draft(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    saved_at = session.save_draft()
    if saved_at is None:
        raise HTTPException(status_code=500, detail="Failed to save draft")
    return {"saved_at": saved_at, "display": format_timestamp(saved_at)}


@router.put("/session/autosave")
async def set_autosave(req: AutosaveRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.set_autosave(req.enabled)
    return {"autosave_enabled": session.autosave_enabled}


# ---- populating the tree ----------------------------------------------------

@router.post("/session/standard")
async def select_standard(req: StandardRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    await session.select_standard(req.standard_id)
    return session.view()


@router.post("/session/synthesize")
async def synthesize_structure(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.synthesize_structure()
    return session.view()


@router.post("/session/analysis")
async def load_standard_analysis(req: AnalysisRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.load_standard_analysis(req.ksbs, req.standard_id)
    return session.view()


@router.post("/session/generate")
async def generate_structure(req: GenerateRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    await session.generate_structure(
        include_resources=req.include_resources,
        include_assessments=req.include_assessments,
    )
    return session.view()


@router.post("/session/load-template")
async def load_template(req: LoadTemplateRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    await session.load_template(req.template_id)
    return session.view()


# ---- editing ------------------------------------------------------------------

@router.patch("/session/details")
async def update_details(req: DetailsPatch, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.update_details(**req.model_dump(exclude_none=True))
    return session.view()


@router.post("/session/modules")
async def add_module(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    module = session.add_module()
    return {"module": module.to_wire(), "session": session.view()}


@router.post("/session/modules/reorder")
async def reorder_modules(req: ReorderRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.reorder_modules(req.from_index, req.to_index)
    return session.view()


@router.patch("/session/modules/{module_id}")
async def update_module(module_id: str, req: ModulePatch, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.update_module(module_id, **req.model_dump(exclude_none=True))
    return session.view()


@router.delete("/session/modules/{module_id}")
async def delete_module(module_id: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.delete_module(module_id)
    return session.view()


@router.post("/session/modules/{module_id}/select")
async def select_module(module_id: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.select_module(module_id)
    return session.view()


@router.post("/session/modules/{module_id}/lessons")
async def add_lesson(module_id: str, req: Optional[LessonCreate] = None, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    lesson = session.add_lesson(module_id, req.type if req else LessonType.CONTENT)
    return {"lesson": lesson.to_wire() if lesson else None, "session": session.view()}


@router.post("/session/modules/{module_id}/lessons/reorder")
async def reorder_lessons(module_id: str, req: ReorderRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.reorder_lessons(module_id, req.from_index, req.to_index)
    return session.view()


@router.patch("/session/modules/{module_id}/lessons/{lesson_id}")
async def update_lesson(module_id: str, lesson_id: str, req: LessonPatch, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.update_lesson(module_id, lesson_id, **req.model_dump(exclude_none=True))
    return session.view()


@router.delete("/session/modules/{module_id}/lessons/{lesson_id}")
async def delete_lesson(module_id: str, lesson_id: str, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.delete_lesson(module_id, lesson_id)
    return session.view()


@router.post("/session/modules/{module_id}/lessons/{lesson_id}/resource")
async def attach_resource(module_id: str, lesson_id: str, req: Resource, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    session.attach_resource(module_id, lesson_id, req)
    return session.view()


# ---- KSB linking ----------------------------------------------------------------

@router.post("/session/nodes/{node_id}/ksbs/{ksb_id}/toggle")
async def toggle_ksb(node_id: str, ksb_id: int, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    refs = session.toggle_ksb(node_id, ksb_id)
    return {"ksb_ids": sorted(refs), "session": session.view()}


@router.post("/session/nodes/{node_id}/ksbs/select-all")
async def select_all_ksbs(node_id: str, req: SelectAllRequest, user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    refs = session.select_all_ksbs(node_id, req.classification)
    return {"ksb_ids": sorted(refs), "session": session.view()}


# ---- submit ---------------------------------------------------------------------

@router.post("/session/submit")
async def submit(user: User = Depends(get_current_user), registry: SessionRegistry = Depends(get_registry)):
    session = _session(registry, user)
    template_id = await session.submit()
    return {"template_id": template_id, "session": session.view()}
