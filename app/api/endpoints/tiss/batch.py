"""
TISS Lote Endpoints
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.api.deps import get_batch_assembler, get_clinic_id, get_operator_service, get_transport, get_xml_signer
from app.core.error_handling import NotFoundException, XmlValidationFailed
from app.schemas.tiss import LoteCreate, LoteResponse, TissValidationResult, TissXmlOptions
from app.services.tiss.batch_assembler import BatchAssemblerService
from app.services.tiss.operator_service import OperatorService
from app.services.tiss.security import XMLSigner
from app.services.tiss.transport import TISSTransport

router = APIRouter(prefix="/tiss/lotes", tags=["TISS Lotes"])


@router.post("/", response_model=LoteResponse, status_code=status.HTTP_201_CREATED)
async def create_lote(
    data: LoteCreate,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: BatchAssemblerService = Depends(get_batch_assembler),
):
    """Create a lote from draft guias of one operator"""
    return await service.create_lote(clinic_id, data.guia_ids, user_id)


@router.get("/", response_model=List[LoteResponse])
async def list_lotes(
    status_filter: Optional[str] = Query(None, alias="status"),
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
):
    return await service.list_lotes(clinic_id, status_filter)


@router.get("/{lote_id}", response_model=LoteResponse)
async def get_lote(
    lote_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
):
    return await service.get_lote(clinic_id, lote_id)


@router.post("/{lote_id}/validate", response_model=TissValidationResult)
async def validate_lote(
    lote_id: int,
    options: Optional[TissXmlOptions] = None,
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
    db: AsyncSession = Depends(get_async_session),
):
    """Validate every guia of the lote and build its XML"""
    try:
        return await service.validate_lote(clinic_id, lote_id, options)
    except XmlValidationFailed:
        # Keep the recorded errors, the lote is already back in rascunho
        await db.commit()
        raise


@router.post("/{lote_id}/send", response_model=LoteResponse)
async def transmit_lote(
    lote_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
    operators: OperatorService = Depends(get_operator_service),
    transport: TISSTransport = Depends(get_transport),
    signer: Optional[XMLSigner] = Depends(get_xml_signer),
):
    """Send a validated lote to its operator webservice, signed when a certificate is configured"""
    lote = await service.get_lote(clinic_id, lote_id)
    config = await operators.get_webservice_config(clinic_id, lote.registro_ans)
    return await service.transmit_lote(clinic_id, lote_id, transport, config, signer=signer)


@router.post("/{lote_id}/processado", response_model=LoteResponse)
async def mark_lote_processado(
    lote_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
):
    """Close a lote after the operator processed it"""
    return await service.mark_processado(clinic_id, lote_id)


@router.delete("/{lote_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_lote(
    lote_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
):
    """Delete a lote that was not sent"""
    await service.cancel_lote(clinic_id, lote_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{lote_id}/xml")
async def get_lote_xml(
    lote_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: BatchAssemblerService = Depends(get_batch_assembler),
):
    lote = await service.get_lote(clinic_id, lote_id)
    if not lote.xml_content:
        raise NotFoundException("Lote ainda não validado", {"lote_id": lote_id})
    return Response(content=lote.xml_content, media_type="application/xml")
