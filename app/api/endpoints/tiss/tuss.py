"""
TUSS Endpoints
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query

from app.core.error_handling import NotFoundException
from app.schemas.tiss import CodigoTUSS
from app.services.tiss.tuss_catalog import get_tuss_catalog

router = APIRouter(prefix="/tiss/tuss", tags=["TUSS"])


@router.get("/search", response_model=List[CodigoTUSS])
async def search_tuss_codes(
    q: str = Query(..., min_length=1, description="Text or code fragment"),
    limit: int = Query(50, ge=1, le=100),
    include_inactive: bool = Query(False),
    data_referencia: Optional[date] = Query(None, description="Only codes valid at this date"),
):
    """Search TUSS codes by description or code"""
    return get_tuss_catalog().search_tuss_codes(q, limit, include_inactive, data_referencia)


@router.get("/grupos", response_model=List[str])
async def list_tuss_groups():
    return get_tuss_catalog().get_groups()


@router.get("/grupos/{grupo}", response_model=List[CodigoTUSS])
async def list_tuss_codes_by_group(grupo: str):
    return get_tuss_catalog().get_by_group(grupo)


@router.get("/{codigo}", response_model=CodigoTUSS)
async def get_tuss_code(
    codigo: str,
    include_inactive: bool = Query(False),
    data_referencia: Optional[date] = Query(None),
):
    """Get a TUSS code"""
    code = get_tuss_catalog().get_tuss_code_by_code(codigo, include_inactive, data_referencia)
    if code is None:
        raise NotFoundException("Código TUSS não encontrado", {"codigo": codigo})
    return code
