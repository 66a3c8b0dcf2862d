from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
	"""Builder records travel as camelCase JSON (``ksbIds``, ``moduleId``...)."""

	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

	def to_wire(self) -> Dict[str, Any]:
		return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Classification(str, Enum):
	KNOWLEDGE = "knowledge"
	SKILL = "skill"
	BEHAVIOR = "behavior"


class ReferenceItem(WireModel):
	"""One KSB element of an apprenticeship standard (read-only here)."""

	id: int
	classification: Classification = Field(alias="type")
	code: str
	description: str = ""
	standard_id: int


class Standard(WireModel):
	id: int
	title: str
	level: Optional[int] = None
	description: str = ""


# ---------------------------------------------------------------------------
# Course builder: Module -> Lesson
# ---------------------------------------------------------------------------

class LessonType(str, Enum):
	CONTENT = "content"
	ASSESSMENT = "assessment"
	RESOURCE = "resource"


class Lesson(WireModel):
	id: str
	module_id: str
	title: str
	description: str = ""
	type: LessonType = LessonType.CONTENT
	order: int
	ksb_ids: List[int] = Field(default_factory=list)
	content: Optional[str] = None


class Module(WireModel):
	id: str
	title: str
	description: str = ""
	order: int
	ksb_ids: List[int] = Field(default_factory=list)
	lessons: List[Lesson] = Field(default_factory=list)


class Resource(WireModel):
	title: str
	description: str = ""
	url: Optional[str] = None
	ksb_ids: List[int] = Field(default_factory=list)


class TemplateDetails(WireModel):
	"""Course template form values."""

	title: str = ""
	description: str = ""
	standard_id: Optional[int] = None
	is_public: bool = False
	include_resources: bool = True
	include_assessments: bool = True


# ---------------------------------------------------------------------------
# Review template / form builder: Section -> Question
# ---------------------------------------------------------------------------

class SectionType(str, Enum):
	PROGRESS = "progress"
	CHALLENGES = "challenges"
	GOALS = "goals"
	FEEDBACK = "feedback"
	ACTION_PLAN = "action_plan"
	OTJ_HOURS = "otj_hours"
	KSB_REVIEW = "ksb_review"
	SIGNATURES = "signatures"
	CUSTOM = "custom"


class QuestionType(str, Enum):
	TEXT = "text"
	TEXTAREA = "textarea"
	SELECT = "select"
	MULTISELECT = "multiselect"
	CHECKBOX = "checkbox"
	RADIO = "radio"
	SCALE = "scale"
	DATE = "date"
	SIGNATURE = "signature"
	FILE = "file"


class Question(WireModel):
	id: str
	section_id: str
	type: QuestionType = QuestionType.TEXT
	label: str
	placeholder: Optional[str] = None
	help_text: Optional[str] = None
	required: bool = False
	options: Optional[List[str]] = None
	default_value: Optional[str] = None
	order: int
	ksb_ids: List[int] = Field(default_factory=list)


class Section(WireModel):
	id: str
	type: SectionType = SectionType.CUSTOM
	title: str
	description: Optional[str] = None
	required: bool = False
	order: int
	ksb_ids: List[int] = Field(default_factory=list)
	questions: List[Question] = Field(default_factory=list)


class FormDetails(WireModel):
	"""Review template / form metadata."""

	title: str = ""
	description: str = ""
	standard_id: Optional[int] = None
	is_published: bool = False


class DraftSnapshot(BaseModel):
	owner_id: str
	kind: str
	timestamp: str
	state: Dict[str, Any]
