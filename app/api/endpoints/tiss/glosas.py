"""
TISS Glosa and Recurso Endpoints
"""

from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.api.deps import (
    get_clinic_id,
    get_glosa_service,
    get_operator_service,
    get_recurso_transport,
    get_xml_signer,
)
from app.core.error_handling import NotFoundException, TransmissionFailed
from app.schemas.tiss import (
    GlosaCreate,
    GlosaPrazoResponse,
    GlosaResponse,
    RecursoCreate,
    RecursoResolve,
    RecursoResponse,
)
from app.services.tiss.glosa_service import GlosaService
from app.services.tiss.operator_service import OperatorService
from app.services.tiss.security import XMLSigner
from app.services.tiss.transport import TISSTransport

router = APIRouter(prefix="/tiss", tags=["TISS Glosas"])


@router.post("/guias/{guia_id}/glosas", response_model=GlosaResponse, status_code=status.HTTP_201_CREATED)
async def import_glosa(
    guia_id: int,
    data: GlosaCreate,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GlosaService = Depends(get_glosa_service),
):
    """Register a denial statement for a sent guia"""
    return await service.import_glosa(clinic_id, guia_id, data, user_id)


@router.post("/glosas/xml", response_model=GlosaResponse, status_code=status.HTTP_201_CREATED)
async def import_glosa_xml(
    request: Request,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GlosaService = Depends(get_glosa_service),
):
    """Import an operator demonstrativo XML"""
    return await service.import_glosa_xml(clinic_id, await request.body(), user_id)


@router.get("/glosas", response_model=List[GlosaResponse])
async def list_glosas(
    guia_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
):
    return await service.list_glosas(clinic_id, guia_id, status_filter)


@router.get("/glosas/prazos", response_model=List[GlosaPrazoResponse])
async def list_glosas_near_deadline(
    dias: Optional[int] = Query(None, ge=0, description="Days ahead, defaults to TISS_ALERTA_PRAZO_DIAS"),
    data_referencia: Optional[date] = Query(None),
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
):
    """Pending glosas whose appeal deadline is near, closest first"""
    return await service.list_glosas_near_deadline(clinic_id, dias, data_referencia)


@router.get("/glosas/{glosa_id}", response_model=GlosaResponse)
async def get_glosa(
    glosa_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
):
    return await service.get_glosa(clinic_id, glosa_id)


@router.get("/glosas/{glosa_id}/interpretacao")
async def interpret_glosa(
    glosa_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
) -> Dict:
    """Reason descriptions, recommended actions and days left to appeal"""
    return await service.interpret_glosa(clinic_id, glosa_id)


@router.post("/glosas/{glosa_id}/recursos", response_model=RecursoResponse, status_code=status.HTTP_201_CREATED)
async def create_recurso(
    glosa_id: int,
    data: RecursoCreate,
    data_referencia: Optional[date] = Query(None),
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GlosaService = Depends(get_glosa_service),
):
    """File an appeal against a pending glosa"""
    return await service.create_recurso(clinic_id, glosa_id, data, data_referencia, user_id)


@router.get("/recursos", response_model=List[RecursoResponse])
async def list_recursos(
    glosa_id: Optional[int] = Query(None),
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
):
    return await service.list_recursos(clinic_id, glosa_id)


@router.get("/recursos/{recurso_id}", response_model=RecursoResponse)
async def get_recurso(
    recurso_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
):
    return await service.get_recurso(clinic_id, recurso_id)


@router.get("/recursos/{recurso_id}/xml")
async def get_recurso_xml(
    recurso_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
):
    recurso = await service.get_recurso(clinic_id, recurso_id)
    if not recurso.xml_content:
        raise NotFoundException("Recurso sem XML", {"recurso_id": recurso_id})
    return Response(content=recurso.xml_content, media_type="application/xml")


@router.patch("/recursos/{recurso_id}", response_model=RecursoResponse)
async def resolve_recurso(
    recurso_id: int,
    data: RecursoResolve,
    expected_version: Optional[int] = Query(None),
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GlosaService = Depends(get_glosa_service),
):
    """Record the operator answer to an appeal"""
    return await service.resolve_recurso(clinic_id, recurso_id, data, expected_version, user_id)


@router.post("/recursos/{recurso_id}/send", response_model=RecursoResponse)
async def transmit_recurso(
    recurso_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GlosaService = Depends(get_glosa_service),
    operators: OperatorService = Depends(get_operator_service),
    transport: TISSTransport = Depends(get_recurso_transport),
    signer: Optional[XMLSigner] = Depends(get_xml_signer),
    db: AsyncSession = Depends(get_async_session),
):
    """Send an appeal to the operator webservice"""
    recurso = await service.get_recurso(clinic_id, recurso_id)
    glosa = await service.get_glosa(clinic_id, recurso.glosa_id)
    config = await operators.get_webservice_config(clinic_id, glosa.registro_ans)
    try:
        return await service.transmit_recurso(clinic_id, recurso_id, transport, config, signer=signer)
    except TransmissionFailed:
        # Keep the attempt count and the signed XML
        await db.commit()
        raise
