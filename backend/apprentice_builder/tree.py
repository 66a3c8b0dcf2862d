"""Ordered two-level entity trees edited by the builders.

``CourseTree`` holds Module -> Lesson, ``TemplateTree`` holds
Section -> Question. Both share the same operations: children are owned by
exactly one parent, deleting a parent drops its children, reordering only
moves a child within its own parent, and unknown ids are silent no-ops.
Every change stamps ``updated_at`` (last write wins) and bumps ``revision``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from .ids import IdFactory, uuid_ids
from .schemas import (
    Lesson,
    LessonType,
    Module,
    Question,
    QuestionType,
    Section,
    SectionType,
)

logger = logging.getLogger(__name__)

P = TypeVar("P", Module, Section)
C = TypeVar("C", Lesson, Question)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityTree(Generic[P, C]):
    parent_model: type
    child_model: type
    children_field: str
    parent_link: str

    def __init__(
        self,
        parents: Optional[Iterable[P]] = None,
        *,
        ids: IdFactory = uuid_ids,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ids = ids
        self._clock = clock
        self.parents: List[P] = []
        self.selected_parent_id: Optional[str] = None
        self.selected_child_id: Optional[str] = None
        self.updated_at: datetime = clock()
        self.revision = 0
        if parents:
            self.replace(parents)

    # -- hooks -----------------------------------------------------------

    def _new_parent(self, order: int) -> P:
        raise NotImplementedError

    def _new_child(self, parent_id: str, kind: Optional[str], order: int) -> C:
        raise NotImplementedError

    # -- reads -----------------------------------------------------------

    def children(self, parent: P) -> List[C]:
        return getattr(parent, self.children_field)

    def get_parent(self, parent_id: str) -> Optional[P]:
        for parent in self.parents:
            if parent.id == parent_id:
                return parent
        return None

    def find_child(self, child_id: str) -> Optional[Tuple[P, C]]:
        for parent in self.parents:
            for child in self.children(parent):
                if child.id == child_id:
                    return parent, child
        return None

    def get_child(self, parent_id: str, child_id: str) -> Optional[C]:
        parent = self.get_parent(parent_id)
        if parent is None:
            return None
        for child in self.children(parent):
            if child.id == child_id:
                return child
        return None

    def find_node(self, node_id: str) -> Optional[Union[P, C]]:
        parent = self.get_parent(node_id)
        if parent is not None:
            return parent
        found = self.find_child(node_id)
        return found[1] if found else None

    def iter_children(self) -> Iterator[C]:
        for parent in self.parents:
            yield from self.children(parent)

    def __len__(self) -> int:
        return len(self.parents)

    # -- mutations -------------------------------------------------------

    def touch(self) -> None:
        self.updated_at = self._clock()
        self.revision += 1

    def replace(self, parents: Iterable[P]) -> None:
        """Load a whole tree, re-linking every child to its parent."""
        self.parents = list(parents)
        for parent in self.parents:
            for child in self.children(parent):
                if getattr(child, self.parent_link) != parent.id:
                    setattr(child, self.parent_link, parent.id)
        self.selected_parent_id = None
        self.selected_child_id = None
        self.touch()

    def add_parent(self) -> P:
        parent = self._new_parent(len(self.parents) + 1)
        self.parents.append(parent)
        self.selected_parent_id = parent.id
        self.touch()
        return parent

    def add_child(self, parent_id: str, kind: Optional[str] = None) -> Optional[C]:
        parent = self.get_parent(parent_id)
        if parent is None:
            return None
        siblings = self.children(parent)
        child = self._new_child(parent.id, kind, len(siblings) + 1)
        siblings.append(child)
        self.selected_child_id = child.id
        self.touch()
        return child

    def update_parent(self, parent_id: str, **fields: Any) -> Optional[P]:
        parent = self.get_parent(parent_id)
        if parent is None:
            return None
        if self._patch(parent, fields, protected=("id", self.children_field)):
            self.touch()
        return parent

    def update_child(self, parent_id: str, child_id: str, **fields: Any) -> Optional[C]:
        child = self.get_child(parent_id, child_id)
        if child is None:
            return None
        if self._patch(child, fields, protected=("id", self.parent_link)):
            self.touch()
        return child

    def delete_parent(self, parent_id: str) -> bool:
        remaining = [p for p in self.parents if p.id != parent_id]
        if len(remaining) == len(self.parents):
            return False
        # children go with their parent
        self.parents = remaining
        if self.selected_parent_id == parent_id:
            self.selected_parent_id = None
            self.selected_child_id = None
        self.touch()
        return True

    def delete_child(self, parent_id: str, child_id: str) -> bool:
        parent = self.get_parent(parent_id)
        if parent is None:
            return False
        siblings = self.children(parent)
        remaining = [c for c in siblings if c.id != child_id]
        if len(remaining) == len(siblings):
            return False
        setattr(parent, self.children_field, remaining)
        if self.selected_child_id == child_id:
            self.selected_child_id = None
        self.touch()
        return True

    def reorder(self, parent_id: str, from_index: int, to_index: int) -> bool:
        parent = self.get_parent(parent_id)
        if parent is None:
            return False
        siblings = self.children(parent)
        if not _move(siblings, from_index, to_index):
            return False
        _restamp(siblings)
        self.touch()
        return True

    def reorder_parents(self, from_index: int, to_index: int) -> bool:
        if not _move(self.parents, from_index, to_index):
            return False
        _restamp(self.parents)
        self.touch()
        return True

    def select_parent(self, parent_id: Optional[str]) -> Optional[P]:
        parent = self.get_parent(parent_id) if parent_id else None
        self.selected_parent_id = parent.id if parent else None
        return parent

    def select_child(self, child_id: Optional[str]) -> Optional[C]:
        found = self.find_child(child_id) if child_id else None
        self.selected_child_id = found[1].id if found else None
        return found[1] if found else None

    # -- serialization ---------------------------------------------------

    def to_payload(self) -> List[Dict[str, Any]]:
        return [parent.to_wire() for parent in self.parents]

    def load_payload(self, payload: Sequence[Dict[str, Any]]) -> None:
        self.replace(self.parent_model.model_validate(item) for item in payload)

    def _patch(self, node: Any, fields: Dict[str, Any], *, protected: Tuple[str, ...]) -> bool:
        known = type(node).model_fields
        applied = False
        for name, value in fields.items():
            if name in protected:
                continue
            if name not in known:
                logger.debug("ignoring unknown field %s on %s", name, type(node).__name__)
                continue
            setattr(node, name, value)
            applied = True
        return applied


def _move(items: list, from_index: int, to_index: int) -> bool:
    if from_index == to_index:
        return False
    if not (0 <= from_index < len(items)) or not (0 <= to_index < len(items)):
        return False
    item = items.pop(from_index)
    items.insert(to_index, item)
    return True


def _restamp(items: list) -> None:
    for position, item in enumerate(items, start=1):
        if item.order != position:
            item.order = position


class CourseTree(EntityTree[Module, Lesson]):
    parent_model = Module
    child_model = Lesson
    children_field = "lessons"
    parent_link = "module_id"

    def _new_parent(self, order: int) -> Module:
        return Module(id=self.ids("module"), title="New Module", description="", order=order)

    def _new_child(self, parent_id: str, kind: Optional[str], order: int) -> Lesson:
        lesson_type = LessonType(kind or LessonType.CONTENT)
        return Lesson(
            id=self.ids("lesson"),
            module_id=parent_id,
            title=f"New {lesson_type.value.capitalize()}",
            description="",
            type=lesson_type,
            order=order,
        )


class TemplateTree(EntityTree[Section, Question]):
    parent_model = Section
    child_model = Question
    children_field = "questions"
    parent_link = "section_id"

    def _new_parent(self, order: int) -> Section:
        return Section(
            id=self.ids("section"),
            type=SectionType.CUSTOM,
            title="New Custom Section",
            description="Description for this custom section",
            required=False,
            order=order,
        )

    def _new_child(self, parent_id: str, kind: Optional[str], order: int) -> Question:
        return Question(
            id=self.ids("q"),
            section_id=parent_id,
            type=QuestionType(kind or QuestionType.TEXT),
            label="New Question",
            placeholder="Enter your answer here...",
            required=False,
            order=order,
        )


# ---------------------------------------------------------------------------
# Default sections
# ---------------------------------------------------------------------------

_RATING = ["Excellent", "Good", "Satisfactory", "Needs Improvement", "Unsatisfactory"]
_OTJ_TRACK = ["Yes, exceeding target", "Yes, meeting target", "Slightly behind target", "Significantly behind target"]

# (type, title, description, [(question type, label, placeholder, required, options)])
REVIEW_SECTIONS = [
    ("progress", "Progress Review", "Review the learner's progress since the last review", [
        ("textarea", "What progress has been made since the last review?", "Describe the progress in detail...", True, None),
        ("radio", "How would you rate the overall progress?", None, True, _RATING),
    ]),
    ("otj_hours", "Off-the-Job Training Hours", "Review of OTJ hours completed during this period", [
        ("text", "Total OTJ hours completed in this period", "Enter the number of hours", True, None),
        ("radio", "Is the learner on track to meet the minimum OTJ hours requirement?", None, True, _OTJ_TRACK),
        ("textarea", "Action plan for OTJ hours (if behind target)", "Describe steps to address any shortfall in OTJ hours...", False, None),
    ]),
    ("ksb_review", "Knowledge, Skills & Behaviors Review", "Assessment of KSB progress and development", [
        ("textarea", "Which KSBs have been addressed during this period?", "List the specific KSBs from the standard...", True, None),
        ("textarea", "Which KSBs require further development?", "Identify areas needing additional focus...", True, None),
    ]),
    ("goals", "Goals & Targets", "Set goals for the next review period", [
        ("textarea", "Goals from previous review", "List goals from the previous review session...", True, None),
        ("textarea", "New goals for the next review period", "Set SMART goals for the coming weeks...", True, None),
    ]),
    ("challenges", "Challenges & Support", "Identify any challenges and required support", [
        ("textarea", "What challenges is the learner facing?", "Describe any barriers or difficulties...", True, None),
        ("textarea", "What support is needed from the employer?", "Specify any resources or assistance required...", True, None),
        ("textarea", "What support is needed from the training provider?", "Specify any resources or assistance required...", True, None),
    ]),
    ("feedback", "Feedback", "Collect feedback from all parties", [
        ("textarea", "Learner feedback on their apprenticeship journey", "Please provide your thoughts on your apprenticeship experience...", True, None),
        ("textarea", "Employer feedback", "Please provide feedback on the learner's workplace performance...", True, None),
        ("textarea", "Training provider feedback", "Please provide feedback on the learner's academic progress...", True, None),
    ]),
    ("action_plan", "Action Plan", "Agree on actions to be taken before the next review", [
        ("textarea", "Actions for the learner", "List specific actions for the learner to complete...", True, None),
        ("textarea", "Actions for the employer", "List specific actions for the employer to complete...", True, None),
        ("textarea", "Actions for the training provider", "List specific actions for the training provider to complete...", True, None),
        ("date", "Date of next review", None, True, None),
    ]),
    ("signatures", "Signatures", "Confirmation of review by all parties", [
        ("signature", "Learner signature", None, True, None),
        ("signature", "Employer signature", None, True, None),
        ("signature", "Training provider signature", None, True, None),
        ("date", "Date signed", None, True, None),
    ]),
]

FORM_SECTIONS = [
    ("custom", "Section 1", "First section of your form", [
        ("text", "What progress has been made since the last review?", "Enter your answer here...", True, None),
        ("textarea", "Describe any challenges or blockers you are facing", "Describe in detail...", False, None),
        ("select", "How would you rate your progress?", None, True, ["Excellent", "Good", "Satisfactory", "Needs Improvement"]),
    ]),
]


def build_sections(table: Sequence[Any], ids: IdFactory = uuid_ids) -> List[Section]:
    sections: List[Section] = []
    for order, (section_type, title, description, questions) in enumerate(table, start=1):
        section_id = ids("section")
        sections.append(Section(
            id=section_id,
            type=SectionType(section_type),
            title=title,
            description=description,
            required=section_type != "custom",
            order=order,
            questions=[
                Question(
                    id=ids("q"),
                    section_id=section_id,
                    type=QuestionType(q_type),
                    label=label,
                    placeholder=placeholder,
                    required=required,
                    options=list(options) if options else None,
                    order=q_order,
                )
                for q_order, (q_type, label, placeholder, required, options) in enumerate(questions, start=1)
            ],
        ))
    return sections


def default_review_sections(ids: IdFactory = uuid_ids) -> List[Section]:
    return build_sections(REVIEW_SECTIONS, ids)


def default_form_sections(ids: IdFactory = uuid_ids) -> List[Section]:
    return build_sections(FORM_SECTIONS, ids)
