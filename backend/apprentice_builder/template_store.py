"""Course template persistence through the platform REST API."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Protocol, Sequence, Tuple

from pydantic import ValidationError

from .catalog import PlatformClient
from .errors import ExternalServiceError
from .schemas import Module, TemplateDetails


class TemplateStore(Protocol):
    async def create(self, payload: Dict[str, Any]) -> str: ...

    async def update(self, template_id: str, payload: Dict[str, Any]) -> str: ...

    async def fetch(self, template_id: str) -> Dict[str, Any]: ...


class PlatformTemplateStore(PlatformClient):
    service = "templates"

    async def create(self, payload: Dict[str, Any]) -> str:
        data = await self._request("POST", "/api/course-builder/templates", json=payload)
        return _stored_id(data, self.service)

    async def update(self, template_id: str, payload: Dict[str, Any]) -> str:
        data = await self._request("PUT", f"/api/course-builder/templates/{template_id}", json=payload)
        return _stored_id(data, self.service, default=template_id)

    async def fetch(self, template_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/api/course-builder/templates/{template_id}")
        if not isinstance(data, dict):
            raise ExternalServiceError(self.service, "expected a JSON object")
        return data


def _stored_id(data: Any, service: str, default: str = "") -> str:
    if isinstance(data, dict) and data.get("id") is not None:
        return str(data["id"])
    if default:
        return default
    raise ExternalServiceError(service, "response did not include an id")


def _clean(text: str) -> str:
    return text.replace("<", "").replace(">", "")


def build_template_payload(details: TemplateDetails, modules: Sequence[Module]) -> Dict[str, Any]:
    payload = details.to_wire()
    payload["title"] = _clean(details.title)
    payload["description"] = _clean(details.description)
    cleaned: List[Dict[str, Any]] = []
    for module in modules:
        wire = module.to_wire()
        wire["title"] = _clean(module.title)
        wire["description"] = _clean(module.description)
        for lesson in wire["lessons"]:
            lesson["title"] = _clean(lesson["title"])
            lesson["description"] = _clean(lesson["description"])
            if lesson.get("content"):
                lesson["content"] = _clean(lesson["content"])
        cleaned.append(wire)
    payload["modules"] = cleaned
    return payload


def parse_stored_template(data: Dict[str, Any]) -> Tuple[TemplateDetails, List[Module]]:
    """Split a stored template into form values and its module tree.

    The tree lives either under ``modules`` or under ``structure.modules``,
    where ``structure`` may itself be a JSON string.
    """
    structure = data.get("structure")
    if isinstance(structure, str):
        try:
            structure = json.loads(structure)
        except ValueError as exc:
            raise ExternalServiceError("templates", "stored structure is not valid JSON") from exc
    raw_modules = data.get("modules")
    if raw_modules is None and isinstance(structure, dict):
        raw_modules = structure.get("modules")
    try:
        details = TemplateDetails(
            title=data.get("title") or "",
            description=data.get("description") or "",
            standard_id=data.get("standardId"),
            is_public=bool(data.get("isPublic", False)),
        )
        modules = [Module.model_validate(m) for m in raw_modules or []]
    except ValidationError as exc:
        raise ExternalServiceError("templates", f"malformed template: {exc.errors()[0]['msg']}") from exc
    return details, modules
