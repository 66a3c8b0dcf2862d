"""KSB catalog access through the platform REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import ValidationError

from .errors import ExternalServiceError
from .schemas import ReferenceItem, Standard
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)


class Catalog(Protocol):
    async def standards(self) -> List[Standard]: ...

    async def reference_items(self, standard_id: int) -> List[ReferenceItem]: ...


class PlatformClient:
    """Thin httpx wrapper; every failure becomes an ExternalServiceError."""

    service = "platform"

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **kwargs: Any):
        cfg = config or default_settings
        return cls(
            cfg.platform_api_base_url,
            token=cfg.platform_api_token,
            timeout=cfg.platform_api_timeout_seconds,
            **kwargs,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            r = await self._client.request(method, path, **kwargs)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("%s %s -> %s", method, path, exc.response.status_code)
            raise ExternalServiceError(self.service, f"{method} {path} returned {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ExternalServiceError(self.service, f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError(self.service, f"{method} {path} returned invalid JSON") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class PlatformCatalog(PlatformClient):
    service = "catalog"

    async def standards(self) -> List[Standard]:
        data = await self._request("GET", "/api/standards")
        return _parse_list(Standard, data, self.service)

    async def reference_items(self, standard_id: int) -> List[ReferenceItem]:
        data = await self._request("GET", "/api/ksbs", params={"standardId": standard_id})
        return _parse_list(ReferenceItem, data, self.service)


def _parse_list(model: Any, data: Any, service: str) -> List[Any]:
    if not isinstance(data, list):
        raise ExternalServiceError(service, "expected a JSON array")
    try:
        return [model.model_validate(entry) for entry in data]
    except ValidationError as exc:
        raise ExternalServiceError(service, f"malformed record: {exc.errors()[0]['msg']}") from exc


def index_by_code(items: List[ReferenceItem]) -> Dict[str, ReferenceItem]:
    return {item.code.upper(): item for item in items}
