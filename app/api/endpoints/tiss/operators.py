"""
TISS Operator Endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, status

from app.api.deps import get_clinic_id, get_operator_service
from app.schemas.tiss import OperatorCreate, OperatorResponse
from app.services.tiss.operator_service import OperatorService

router = APIRouter(prefix="/tiss/operadoras", tags=["TISS Operadoras"])


@router.put("/", response_model=OperatorResponse, status_code=status.HTTP_200_OK)
async def save_operator(
    data: OperatorCreate,
    clinic_id: str = Depends(get_clinic_id),
    service: OperatorService = Depends(get_operator_service),
):
    """Create or update an operator and its webservice credentials"""
    return await service.save_operator(clinic_id, data)


@router.get("/", response_model=List[OperatorResponse])
async def list_operators(
    clinic_id: str = Depends(get_clinic_id),
    service: OperatorService = Depends(get_operator_service),
):
    return await service.list_operators(clinic_id)
