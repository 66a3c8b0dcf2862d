"""Builder sessions: the state machine the presentation layer drives.

A session belongs to one owner and is the only writer of its tree. Network
calls (catalog fetch, AI generation, submit) are awaited; while one is in
flight ``busy`` is set, and a failure leaves the session exactly as it was
before the call.

Lifecycle::

    idle -> standard_selected -> tree_populated -> editing -> saved
                                                      ^
    draft recovery on open -----------------------------+
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from .catalog import Catalog
from .drafts import DraftStore, format_timestamp
from .errors import BuilderValidationError, ExternalServiceError, InvalidTransitionError
from .generation import StructureGenerator
from .ids import IdFactory, uuid_ids
from .linking import ReferenceLinker
from .schemas import (
    Classification,
    DraftSnapshot,
    FormDetails,
    Lesson,
    LessonType,
    Module,
    Question,
    QuestionType,
    ReferenceItem,
    Resource,
    Section,
    TemplateDetails,
)
from .settings import settings
from .synthesis import synthesize
from .template_store import TemplateStore, build_template_payload, parse_stored_template
from .tree import CourseTree, EntityTree, TemplateTree, default_form_sections, default_review_sections

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STANDARD_SELECTED = "standard_selected"
    TREE_POPULATED = "tree_populated"
    EDITING = "editing"
    SAVED = "saved"


class BuilderSession:
    """Shared draft, autosave, standard and KSB-linking behaviour."""

    kind = ""

    def __init__(
        self,
        owner_id: str,
        *,
        tree: EntityTree,
        drafts: DraftStore,
        catalog: Optional[Catalog] = None,
        autosave_enabled: Optional[bool] = None,
    ) -> None:
        self.owner_id = str(owner_id)
        self.tree = tree
        self.linker = ReferenceLinker(tree)
        self.drafts = drafts
        self.catalog = catalog
        self.state = SessionState.IDLE
        self.busy = False
        self.last_error: Optional[str] = None
        self.draft_saved_at: Optional[str] = None
        self.autosave_enabled = settings.autosave_enabled_default if autosave_enabled is None else autosave_enabled
        self.details: Any = None

    # -- hooks -----------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _restore(self, state: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _reset(self) -> None:
        raise NotImplementedError

    def has_content(self) -> bool:
        return bool(self.details.title) or len(self.tree) > 0

    # -- state -----------------------------------------------------------

    def _edited(self) -> None:
        self.state = SessionState.EDITING

    def _edited_if_changed(self, revision: int) -> None:
        if self.tree.revision != revision:
            self._edited()

    @property
    def catalog_items(self) -> List[ReferenceItem]:
        return self.linker.items

    async def select_standard(self, standard_id: int) -> List[ReferenceItem]:
        if self.catalog is None:
            raise InvalidTransitionError("this builder has no KSB catalog configured")
        prior = (self.details.standard_id, list(self.linker.items), self.state)
        self.details.standard_id = standard_id
        self.busy = True
        try:
            items = await self.catalog.reference_items(standard_id)
        except ExternalServiceError as exc:
            self.details.standard_id, previous_items, self.state = prior
            self.linker.set_catalog(previous_items)
            self.last_error = "Failed to fetch KSBs for the selected standard"
            logger.warning("KSB fetch for standard %s failed: %s", standard_id, exc)
            raise
        finally:
            self.busy = False
        self.linker.set_catalog(items)
        self.last_error = None
        if self.state in (SessionState.IDLE, SessionState.STANDARD_SELECTED):
            self.state = SessionState.STANDARD_SELECTED
        return items

    # -- KSB linking -----------------------------------------------------

    def toggle_ksb(self, node_id: str, ksb_id: int) -> frozenset:
        if self.tree.find_node(node_id) is None:
            return frozenset()
        refs = self.linker.toggle(node_id, ksb_id)
        self._edited()
        return refs

    def select_all_ksbs(self, node_id: str, classification: Classification) -> frozenset:
        if self.tree.find_node(node_id) is None:
            return frozenset()
        refs = self.linker.select_all_of_classification(node_id, classification)
        self._edited()
        return refs

    # -- drafts ----------------------------------------------------------

    def pending_draft(self) -> Optional[DraftSnapshot]:
        return self.drafts.load(self.owner_id, kind=self.kind)

    def recover_draft(self) -> Optional[DraftSnapshot]:
        snapshot = self.pending_draft()
        if snapshot is None:
            return None
        try:
            self._restore(snapshot.state)
        except (ValidationError, TypeError, KeyError) as exc:
            logger.warning("draft for %s could not be restored: %s", self.owner_id, exc)
            self._reset()
            return None
        self.draft_saved_at = snapshot.timestamp
        self.state = SessionState.EDITING
        return snapshot

    def discard_draft(self) -> None:
        self.drafts.clear(self.owner_id, kind=self.kind)
        self.draft_saved_at = None
        self._reset()

    def save_draft(self) -> Optional[str]:
        saved_at = self.drafts.save(self.owner_id, self.snapshot(), kind=self.kind)
        if saved_at is not None:
            self.draft_saved_at = saved_at
        return saved_at

    def set_autosave(self, enabled: bool) -> None:
        self.autosave_enabled = enabled

    def autosave(self) -> bool:
        # Submitted or published work stays cleared until the next edit
        if self.state == SessionState.SAVED:
            return False
        if not self.autosave_enabled or not self.has_content():
            return False
        saved = self.save_draft() is not None
        if saved:
            logger.debug("auto-saved %s draft for %s", self.kind, self.owner_id)
        return saved

    def _draft_view(self) -> Dict[str, Any]:
        return {
            "autosave_enabled": self.autosave_enabled,
            "saved_at": self.draft_saved_at,
            "saved_at_display": format_timestamp(self.draft_saved_at) if self.draft_saved_at else None,
        }


class CourseBuilderSession(BuilderSession):
    kind = "course"

    def __init__(
        self,
        owner_id: str,
        *,
        catalog: Catalog,
        store: TemplateStore,
        drafts: DraftStore,
        generator: Optional[StructureGenerator] = None,
        ids: IdFactory = uuid_ids,
        module_cap: Optional[int] = None,
        lesson_cap: Optional[int] = None,
        autosave_enabled: Optional[bool] = None,
    ) -> None:
        super().__init__(
            owner_id,
            tree=CourseTree(ids=ids),
            drafts=drafts,
            catalog=catalog,
            autosave_enabled=autosave_enabled,
        )
        self.store = store
        self.generator = generator
        self.ids = ids
        self.module_cap = settings.synth_module_ksb_cap if module_cap is None else module_cap
        self.lesson_cap = settings.synth_lesson_ksb_cap if lesson_cap is None else lesson_cap
        self.details = TemplateDetails()
        self.template_id: Optional[str] = None

    @property
    def modules(self) -> List[Module]:
        return self.tree.parents

    def _reset(self) -> None:
        self.details = TemplateDetails()
        self.tree.replace([])
        self.linker.set_catalog([])
        self.template_id = None
        self.last_error = None
        self.state = SessionState.IDLE

    # -- populating the tree ---------------------------------------------

    def synthesize_structure(self) -> List[Module]:
        if self.details.standard_id is None:
            raise InvalidTransitionError("select an apprenticeship standard before suggesting a structure")
        modules = synthesize(
            self.linker.items,
            ids=self.ids,
            module_cap=self.module_cap,
            lesson_cap=self.lesson_cap,
        )
        self.tree.replace(modules)
        self.state = SessionState.TREE_POPULATED
        return modules

    def load_standard_analysis(self, items: List[ReferenceItem], standard_id: Optional[int] = None) -> List[Module]:
        """Accept KSBs extracted from an analysed standard document."""
        if standard_id is not None:
            self.details.standard_id = standard_id
        elif self.details.standard_id is None and items:
            self.details.standard_id = items[0].standard_id
        self.linker.set_catalog(items)
        return self.synthesize_structure()

    async def generate_structure(
        self,
        *,
        include_resources: Optional[bool] = None,
        include_assessments: Optional[bool] = None,
    ) -> List[Module]:
        if self.details.standard_id is None:
            raise BuilderValidationError(["Please select an apprenticeship standard first"])
        if self.generator is None:
            raise ExternalServiceError("ai", "structure generation is not configured")
        if include_resources is not None:
            self.details.include_resources = include_resources
        if include_assessments is not None:
            self.details.include_assessments = include_assessments
        self.busy = True
        try:
            modules = await self.generator.generate(
                self.details.standard_id,
                include_resources=self.details.include_resources,
                include_assessments=self.details.include_assessments,
            )
        except ExternalServiceError as exc:
            self.last_error = "Failed to generate course structure with AI"
            logger.warning("structure generation failed for %s: %s", self.owner_id, exc)
            raise
        finally:
            self.busy = False
        self.tree.replace(modules)
        self.last_error = None
        self.state = SessionState.TREE_POPULATED
        return modules

    async def load_template(self, template_id: str) -> List[Module]:
        self.busy = True
        try:
            details, modules = parse_stored_template(await self.store.fetch(template_id))
            items: List[ReferenceItem] = []
            if details.standard_id is not None:
                items = await self.catalog.reference_items(details.standard_id)
        except ExternalServiceError as exc:
            self.last_error = "Failed to load template"
            logger.warning("loading template %s failed: %s", template_id, exc)
            raise
        finally:
            self.busy = False
        self.details = details
        self.linker.set_catalog(items)
        self.tree.replace(modules)
        self.template_id = str(template_id)
        self.last_error = None
        self.state = SessionState.EDITING
        return modules

    # -- editing ---------------------------------------------------------

    def update_details(self, **fields: Any) -> TemplateDetails:
        # the standard changes through select_standard so the catalog follows
        fields.pop("standard_id", None)
        self.details = TemplateDetails(**{**self.details.model_dump(), **fields})
        self.tree.touch()
        self._edited()
        return self.details

    def add_module(self) -> Module:
        module = self.tree.add_parent()
        self._edited()
        return module

    def add_lesson(self, module_id: str, kind: LessonType = LessonType.CONTENT) -> Optional[Lesson]:
        lesson = self.tree.add_child(module_id, kind)
        if lesson is not None:
            self._edited()
        return lesson

    def update_module(self, module_id: str, **fields: Any) -> Optional[Module]:
        before = self.tree.revision
        module = self.tree.update_parent(module_id, **fields)
        self._edited_if_changed(before)
        return module

    def update_lesson(self, module_id: str, lesson_id: str, **fields: Any) -> Optional[Lesson]:
        before = self.tree.revision
        lesson = self.tree.update_child(module_id, lesson_id, **fields)
        self._edited_if_changed(before)
        return lesson

    def delete_module(self, module_id: str) -> bool:
        removed = self.tree.delete_parent(module_id)
        if removed:
            self._edited()
        return removed

    def delete_lesson(self, module_id: str, lesson_id: str) -> bool:
        removed = self.tree.delete_child(module_id, lesson_id)
        if removed:
            self._edited()
        return removed

    def reorder_lessons(self, module_id: str, from_index: int, to_index: int) -> bool:
        moved = self.tree.reorder(module_id, from_index, to_index)
        if moved:
            self._edited()
        return moved

    def reorder_modules(self, from_index: int, to_index: int) -> bool:
        moved = self.tree.reorder_parents(from_index, to_index)
        if moved:
            self._edited()
        return moved

    def select_module(self, module_id: Optional[str]) -> Optional[Module]:
        return self.tree.select_parent(module_id)

    def attach_resource(self, module_id: str, lesson_id: str, resource: Resource) -> Optional[Lesson]:
        return self.update_lesson(
            module_id,
            lesson_id,
            title=resource.title,
            description=resource.description,
            content=resource.url,
            ksb_ids=list(resource.ksb_ids),
        )

    # -- saving ----------------------------------------------------------

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.details.title.strip():
            errors.append("Title is required")
        if not self.details.description.strip():
            errors.append("Description is required")
        if not self.details.standard_id:
            errors.append("Standard is required")
        if not self.tree.parents:
            errors.append("Please add at least one module to your course")
        return errors

    async def submit(self) -> str:
        errors = self.validate()
        if errors:
            raise BuilderValidationError(errors)
        payload = build_template_payload(self.details, self.tree.parents)
        self.busy = True
        try:
            if self.template_id:
                stored_id = await self.store.update(self.template_id, payload)
            else:
                stored_id = await self.store.create(payload)
        except ExternalServiceError as exc:
            self.last_error = "Failed to save course template"
            logger.warning("saving template for %s failed: %s", self.owner_id, exc)
            raise
        finally:
            self.busy = False
        self.template_id = stored_id
        self.drafts.clear(self.owner_id, kind=self.kind)
        self.draft_saved_at = None
        self.last_error = None
        self.state = SessionState.SAVED
        return stored_id

    # -- snapshots -------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            "formValues": self.details.to_wire(),
            "courseModules": self.tree.to_payload(),
            "selectedModule": self.tree.selected_parent_id,
            "standardKSBs": [item.to_wire() for item in self.linker.items],
            "templateId": self.template_id,
        }

    def _restore(self, state: Dict[str, Any]) -> None:
        details = TemplateDetails.model_validate(state.get("formValues") or {})
        modules = [Module.model_validate(m) for m in state.get("courseModules") or []]
        items = [ReferenceItem.model_validate(k) for k in state.get("standardKSBs") or []]
        self.details = details
        self.tree.replace(modules)
        self.tree.select_parent(state.get("selectedModule"))
        self.linker.set_catalog(items)
        self.template_id = state.get("templateId")

    def view(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "state": self.state.value,
            "busy": self.busy,
            "error": self.last_error,
            "template_id": self.template_id,
            "details": self.details.to_wire(),
            "modules": self.tree.to_payload(),
            "selected_module": self.tree.selected_parent_id,
            "ksb_counts": self.linker.counts(),
            "ksbs": [item.to_wire() for item in self.linker.items],
            "updated_at": self.tree.updated_at.isoformat(),
            "draft": self._draft_view(),
        }


class TemplateBuilderSession(BuilderSession):
    """12-weekly review template and generic form builder."""

    _DEFAULTS = {
        "review": ("New 12-Weekly Review Template", "A template for 12-weekly progress reviews", default_review_sections),
        "form": ("Untitled Form", "Form description", default_form_sections),
    }

    def __init__(
        self,
        owner_id: str,
        *,
        kind: str = "review",
        drafts: DraftStore,
        catalog: Optional[Catalog] = None,
        ids: IdFactory = uuid_ids,
        autosave_enabled: Optional[bool] = None,
    ) -> None:
        if kind not in self._DEFAULTS:
            raise ValueError(f"unknown template kind {kind!r}")
        self.kind = kind
        self.ids = ids
        super().__init__(
            owner_id,
            tree=TemplateTree(ids=ids),
            drafts=drafts,
            catalog=catalog,
            autosave_enabled=autosave_enabled,
        )
        self._reset()

    @property
    def sections(self) -> List[Section]:
        return self.tree.parents

    def has_content(self) -> bool:
        # the seeded defaults alone are not worth a draft
        return self.state != SessionState.IDLE and super().has_content()

    def _reset(self) -> None:
        title, description, sections = self._DEFAULTS[self.kind]
        self.details = FormDetails(title=title, description=description)
        self.tree.replace(sections(self.ids))
        if self.tree.parents:
            self.tree.select_parent(self.tree.parents[0].id)
        self.linker.set_catalog([])
        self.last_error = None
        self.state = SessionState.IDLE

    def _active_section_id(self, section_id: Optional[str]) -> Optional[str]:
        return section_id or self.tree.selected_parent_id

    # -- editing ---------------------------------------------------------

    def update_details(self, **fields: Any) -> FormDetails:
        fields.pop("standard_id", None)
        fields.pop("is_published", None)
        self.details = FormDetails(**{**self.details.model_dump(), **fields})
        self.tree.touch()
        self._edited()
        return self.details

    def select_section(self, section_id: Optional[str]) -> Optional[Section]:
        return self.tree.select_parent(section_id)

    def add_section(self) -> Section:
        section = self.tree.add_parent()
        self._edited()
        return section

    def update_section(self, section_id: str, **fields: Any) -> Optional[Section]:
        before = self.tree.revision
        section = self.tree.update_parent(section_id, **fields)
        self._edited_if_changed(before)
        return section

    def delete_section(self, section_id: str) -> bool:
        removed = self.tree.delete_parent(section_id)
        if removed:
            self._edited()
        return removed

    def add_question(self, section_id: Optional[str] = None, kind: QuestionType = QuestionType.TEXT) -> Optional[Question]:
        target = self._active_section_id(section_id)
        question = self.tree.add_child(target, kind) if target else None
        if question is not None:
            self._edited()
        return question

    def _locate(self, question_id: str) -> Optional[Tuple[Section, Question]]:
        return self.tree.find_child(question_id)

    def update_question(self, question_id: str, **fields: Any) -> Optional[Question]:
        found = self._locate(question_id)
        if found is None:
            return None
        before = self.tree.revision
        question = self.tree.update_child(found[0].id, question_id, **fields)
        self._edited_if_changed(before)
        return question

    def delete_question(self, question_id: str) -> bool:
        found = self._locate(question_id)
        if found is None:
            return False
        removed = self.tree.delete_child(found[0].id, question_id)
        if removed:
            self._edited()
        return removed

    def reorder_questions(self, from_index: int, to_index: int, section_id: Optional[str] = None) -> bool:
        target = self._active_section_id(section_id)
        moved = bool(target) and self.tree.reorder(target, from_index, to_index)
        if moved:
            self._edited()
        return moved

    def reorder_sections(self, from_index: int, to_index: int) -> bool:
        moved = self.tree.reorder_parents(from_index, to_index)
        if moved:
            self._edited()
        return moved

    # -- publishing ------------------------------------------------------

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.details.title.strip():
            errors.append("Title is required")
        if not self.tree.parents:
            errors.append("Please add at least one section")
        for section in self.tree.parents:
            if not section.title.strip():
                errors.append(f"Section {section.order} needs a title")
            for question in section.questions:
                if not question.label.strip():
                    errors.append(f"Question {question.order} in '{section.title}' needs a label")
                if question.type in (QuestionType.SELECT, QuestionType.MULTISELECT, QuestionType.RADIO) and not question.options:
                    errors.append(f"'{question.label}' needs at least one option")
        return errors

    def publish(self) -> FormDetails:
        errors = self.validate()
        if errors:
            raise BuilderValidationError(errors)
        self.details.is_published = True
        self.tree.touch()
        self.drafts.clear(self.owner_id, kind=self.kind)
        self.draft_saved_at = None
        self.state = SessionState.SAVED
        return self.details

    # -- snapshots -------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return {
            "formValues": self.details.to_wire(),
            "sections": self.tree.to_payload(),
            "activeSection": self.tree.selected_parent_id,
            "standardKSBs": [item.to_wire() for item in self.linker.items],
        }

    def _restore(self, state: Dict[str, Any]) -> None:
        details = FormDetails.model_validate(state.get("formValues") or {})
        sections = [Section.model_validate(s) for s in state.get("sections") or []]
        items = [ReferenceItem.model_validate(k) for k in state.get("standardKSBs") or []]
        self.details = details
        self.tree.replace(sections)
        self.tree.select_parent(state.get("activeSection"))
        self.linker.set_catalog(items)

    def view(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "state": self.state.value,
            "busy": self.busy,
            "error": self.last_error,
            "details": self.details.to_wire(),
            "sections": self.tree.to_payload(),
            "active_section": self.tree.selected_parent_id,
            "active_question": self.tree.selected_child_id,
            "ksb_counts": self.linker.counts(),
            "updated_at": self.tree.updated_at.isoformat(),
            "draft": self._draft_view(),
        }


class SessionRegistry:
    """In-memory sessions, one per (builder kind, owner)."""

    def __init__(self) -> None:
        self._sessions: Dict[Tuple[str, str], BuilderSession] = {}

    def get(self, kind: str, owner_id: str) -> Optional[BuilderSession]:
        return self._sessions.get((kind, str(owner_id)))

    def put(self, session: BuilderSession) -> BuilderSession:
        self._sessions[(session.kind, session.owner_id)] = session
        return session

    def drop(self, kind: str, owner_id: str) -> None:
        self._sessions.pop((kind, str(owner_id)), None)

    def clear(self) -> None:
        self._sessions.clear()

    def __iter__(self) -> Iterator[BuilderSession]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
