from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .catalog import Catalog, index_by_code
from .errors import ExternalServiceError
from .gemini_client import GeminiClient
from .ids import IdFactory, uuid_ids
from .schemas import Lesson, LessonType, Module, ReferenceItem, Standard

logger = logging.getLogger(__name__)


class StructureGenerator(Protocol):
    async def generate(
        self,
        standard_id: int,
        *,
        include_resources: bool = True,
        include_assessments: bool = True,
    ) -> List[Module]: ...


def extract_json_object(text: str) -> Dict[str, Any]:
    candidates = [text]
    code_block = re.search(r"```json\s*([\s\S]*?)\s*```", text)
    if code_block:
        candidates.append(code_block.group(1))
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first : last + 1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    raise ValueError("model output did not contain a JSON object")


def _one_line(text: str) -> str:
    return re.sub(r"[\r\n]+", " ", text or "")


def build_structure_prompt(
    standard: Optional[Standard],
    items: Sequence[ReferenceItem],
    *,
    include_resources: bool,
    include_assessments: bool,
) -> str:
    title = standard.title if standard else "Apprenticeship standard"
    level = standard.level if standard and standard.level is not None else "unspecified"
    description = _one_line(standard.description) if standard else ""
    ksb_lines = "\n".join(
        f"- {item.code}: {_one_line(item.description)} (Type: {item.classification.value})" for item in items
    )
    extras = []
    if include_resources:
        extras.append('"resources": ["Resource 1", "Resource 2"]')
    if include_assessments:
        extras.append('"assessments": ["Assessment 1", "Assessment 2"]')
    extra_fields = "".join(f", {field}" for field in extras)
    return (
        "Please generate a structured course for an apprenticeship program based on the following standard:\n\n"
        f"Title: {title}\n"
        f"Level: {level}\n"
        f"Description: {description}\n\n"
        f"Knowledge, Skills, and Behaviors to cover:\n{ksb_lines}\n\n"
        "Generate a comprehensive course structure with:\n"
        "1. Modules (4-8 modules)\n"
        "2. Lessons within each module (3-6 lessons per module)\n"
        + ("3. Learning resources for each module\n" if include_resources else "")
        + ("4. Assessment activities for each module\n" if include_assessments else "")
        + "\nFormat your response as a JSON object with the following structure:\n"
        '{"modules": [{"title": "Module Title", "description": "Module description", "ksbCodes": ["K1"], '
        '"lessons": [{"title": "Lesson Title", "description": "Lesson description", "type": "content", "ksbCodes": ["K1", "S2"]}]'
        f"{extra_fields}}}]}}\n\n"
        "Always respond with valid, minified JSON only, no extra explanations."
    )


def _ksb_ids(entry: Dict[str, Any], by_code: Dict[str, ReferenceItem]) -> List[int]:
    found: List[int] = []
    for code in entry.get("ksbCodes") or []:
        item = by_code.get(str(code).strip().upper())
        if item is not None and item.id not in found:
            found.append(item.id)
    for raw in entry.get("ksbIds") or []:
        if isinstance(raw, int) and raw not in found:
            found.append(raw)
    return found


def _lesson_type(value: Any) -> LessonType:
    try:
        return LessonType(str(value).lower())
    except ValueError:
        return LessonType.CONTENT


def modules_from_generated(data: Dict[str, Any], items: Sequence[ReferenceItem], ids: IdFactory = uuid_ids) -> List[Module]:
    """Turn the model's JSON into Modules with fresh ids and dense orders.

    KSB codes are resolved against the catalog; unknown codes are dropped.
    Per-module ``resources`` and ``assessments`` become lessons of that type.
    """
    raw_modules = data.get("modules")
    if not isinstance(raw_modules, list) or not raw_modules:
        raise ValueError("generated structure has no modules")
    by_code = index_by_code(list(items))
    modules: List[Module] = []
    for m_order, raw in enumerate(raw_modules, start=1):
        if not isinstance(raw, dict):
            raise ValueError("module entries must be objects")
        module_id = ids("module")
        lessons: List[Lesson] = []
        for raw_lesson in raw.get("lessons") or []:
            if not isinstance(raw_lesson, dict):
                continue
            lessons.append(Lesson(
                id=ids("lesson"),
                module_id=module_id,
                title=str(raw_lesson.get("title") or "Untitled Lesson"),
                description=str(raw_lesson.get("description") or ""),
                type=_lesson_type(raw_lesson.get("type")),
                order=len(lessons) + 1,
                ksb_ids=_ksb_ids(raw_lesson, by_code),
            ))
        for kind, key in ((LessonType.RESOURCE, "resources"), (LessonType.ASSESSMENT, "assessments")):
            for title in raw.get(key) or []:
                lessons.append(Lesson(
                    id=ids("lesson"),
                    module_id=module_id,
                    title=str(title),
                    type=kind,
                    order=len(lessons) + 1,
                ))
        modules.append(Module(
            id=module_id,
            title=str(raw.get("title") or f"Module {m_order}"),
            description=str(raw.get("description") or ""),
            order=m_order,
            ksb_ids=_ksb_ids(raw, by_code),
            lessons=lessons,
        ))
    return modules


class AIStructureGenerator:
    def __init__(
        self,
        catalog: Catalog,
        *,
        client_factory: Callable[[], Any] = GeminiClient,
        ids: IdFactory = uuid_ids,
    ) -> None:
        self.catalog = catalog
        self._client_factory = client_factory
        self.ids = ids

    async def _standard(self, standard_id: int) -> Optional[Standard]:
        for standard in await self.catalog.standards():
            if standard.id == standard_id:
                return standard
        return None

    async def generate(
        self,
        standard_id: int,
        *,
        include_resources: bool = True,
        include_assessments: bool = True,
    ) -> List[Module]:
        standard = await self._standard(standard_id)
        if standard is None:
            raise ExternalServiceError("ai", f"apprenticeship standard {standard_id} not found")
        items = await self.catalog.reference_items(standard_id)
        prompt = build_structure_prompt(
            standard,
            items,
            include_resources=include_resources,
            include_assessments=include_assessments,
        )
        try:
            client = self._client_factory()
        except ValueError as exc:
            raise ExternalServiceError("ai", str(exc)) from exc
        try:
            raw = await client.generate(prompt, json_output=True)
        except Exception as exc:
            raise ExternalServiceError("ai", f"generation failed: {exc}") from exc
        finally:
            await client.aclose()
        logger.debug("AI course structure raw output: %s", raw[:500])
        try:
            return modules_from_generated(extract_json_object(raw), items, self.ids)
        except ValueError as exc:
            raise ExternalServiceError("ai", f"could not parse generated structure: {exc}") from exc
