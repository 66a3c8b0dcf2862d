from __future__ import annotations

from fastapi import APIRouter, Depends

from ..catalog import Catalog
from ..dependencies import get_catalog
from .auth import User, get_current_user


router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/standards")
async def list_standards(user: User = Depends(get_current_user), catalog: Catalog = Depends(get_catalog)):
    return [standard.to_wire() for standard in await catalog.standards()]


@router.get("/standards/{standard_id}/ksbs")
async def list_ksbs(standard_id: int, user: User = Depends(get_current_user), catalog: Catalog = Depends(get_catalog)):
    return [item.to_wire() for item in await catalog.reference_items(standard_id)]
