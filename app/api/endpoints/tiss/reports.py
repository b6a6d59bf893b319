"""
TISS Billing Report Endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_clinic_id, get_report_service
from app.schemas.tiss import AnaliseGlosas, EstatisticasGlosas, ResumoFaturamento
from app.services.tiss.reports import BillingReportService

router = APIRouter(prefix="/tiss/relatorios", tags=["TISS Reports"])


@router.get("/faturamento", response_model=ResumoFaturamento)
async def get_resumo_faturamento(
    inicio: date = Query(..., description="First attendance date"),
    fim: date = Query(..., description="Last attendance date"),
    clinic_id: str = Depends(get_clinic_id),
    service: BillingReportService = Depends(get_report_service),
):
    """Billing summary by type, status and operator"""
    return await service.get_resumo_faturamento(clinic_id, inicio, fim)


@router.get("/glosas", response_model=AnaliseGlosas)
async def get_analise_glosas(
    inicio: date = Query(...),
    fim: date = Query(...),
    clinic_id: str = Depends(get_clinic_id),
    service: BillingReportService = Depends(get_report_service),
):
    """Denials by reason and operator, with the recovery rate"""
    return await service.get_analise_glosas(clinic_id, inicio, fim)


@router.get("/glosas/estatisticas", response_model=EstatisticasGlosas)
async def get_estatisticas_glosas(
    periodo: str = Query("mes", description="mes, trimestre or ano"),
    data_referencia: Optional[date] = Query(None, description="End of the period, defaults to today"),
    clinic_id: str = Depends(get_clinic_id),
    service: BillingReportService = Depends(get_report_service),
):
    """Glosas received in the period, with recovery rate and deadline counts"""
    return await service.get_estatisticas_glosas(clinic_id, periodo, data_referencia)
