"""
TISS Guia Endpoints
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from app.api.deps import get_clinic_id, get_guide_builder
from app.schemas.tiss import (
    GuiaConsultaCreate,
    GuiaContentUpdate,
    GuiaResponse,
    GuiaSADTCreate,
    GuiaStatusUpdate,
    TissValidationResult,
    TissXmlOptions,
)
from app.services.tiss.guide_builder import GuideBuilderService
from app.services.tiss.xml_validator import validate_xml

router = APIRouter(prefix="/tiss/guias", tags=["TISS Guias"])


@router.post("/consulta", response_model=GuiaResponse, status_code=status.HTTP_201_CREATED)
async def create_guia_consulta(
    data: GuiaConsultaCreate,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """Create a guia de consulta in rascunho"""
    guia_id = await service.create_guia_consulta(clinic_id, data, user_id)
    return await service.get_guia(clinic_id, guia_id)


@router.post("/sadt", response_model=GuiaResponse, status_code=status.HTTP_201_CREATED)
async def create_guia_sadt(
    data: GuiaSADTCreate,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """Create a guia SP/SADT in rascunho"""
    guia_id = await service.create_guia_sadt(clinic_id, data, user_id)
    return await service.get_guia(clinic_id, guia_id)


@router.get("/", response_model=List[GuiaResponse])
async def list_guias(
    patient_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    clinic_id: str = Depends(get_clinic_id),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """List guias by patient or by status"""
    if patient_id is not None:
        guias = await service.list_guias_by_patient(clinic_id, patient_id)
        if status_filter:
            guias = [g for g in guias if g.status == status_filter]
        return guias
    if status_filter:
        return await service.list_guias_by_status(clinic_id, status_filter)
    return await service.repository.list_guias(clinic_id)


@router.get("/{guia_id}", response_model=GuiaResponse)
async def get_guia(
    guia_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    return await service.get_guia(clinic_id, guia_id)


@router.put("/{guia_id}", response_model=GuiaResponse)
async def update_guia_content(
    guia_id: int,
    data: GuiaContentUpdate,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """Edit a draft guia"""
    return await service.update_guia_content(clinic_id, guia_id, data, user_id)


@router.patch("/{guia_id}/status", response_model=GuiaResponse)
async def update_guia_status(
    guia_id: int,
    data: GuiaStatusUpdate,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Header(None, alias="X-User-ID"),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """Move a guia along its status machine"""
    return await service.update_guia_status(clinic_id, guia_id, data.status, data.expected_version, user_id)


@router.get("/{guia_id}/xml")
async def get_guia_xml(
    guia_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """TISS XML of a guia"""
    guia = await service.get_guia(clinic_id, guia_id)
    xml_content = guia.xml_content or await service.regenerate_xml(clinic_id, guia_id)
    return Response(content=xml_content, media_type="application/xml")


@router.post("/{guia_id}/xml", status_code=status.HTTP_200_OK)
async def regenerate_guia_xml(
    guia_id: int,
    options: Optional[TissXmlOptions] = None,
    clinic_id: str = Depends(get_clinic_id),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """Render the guia XML again"""
    xml_content = await service.regenerate_xml(clinic_id, guia_id, options)
    return Response(content=xml_content, media_type="application/xml")


@router.post("/{guia_id}/validate", response_model=TissValidationResult)
async def validate_guia_xml(
    guia_id: int,
    clinic_id: str = Depends(get_clinic_id),
    service: GuideBuilderService = Depends(get_guide_builder),
):
    """Validate the stored XML of a guia"""
    guia = await service.get_guia(clinic_id, guia_id)
    xml_content = guia.xml_content or await service.regenerate_xml(clinic_id, guia_id)
    return validate_xml(xml_content)
