"""
Shared API dependencies
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_async_session
from app.core.error_handling import ValidationException
from app.services.tiss.batch_assembler import BatchAssemblerService
from app.services.tiss.glosa_service import GlosaService
from app.services.tiss.guide_builder import GuideBuilderService
from app.services.tiss.operator_service import OperatorService
from app.services.tiss.reports import BillingReportService
from app.services.tiss.security import XMLSigner, load_xml_signer
from app.services.tiss.transport import SOAPTransport, TISSTransport


async def get_clinic_id(x_clinic_id: str = Header(..., alias="X-Clinic-ID")) -> str:
    """Tenant of the request, set by the authenticating gateway"""
    clinic_id = x_clinic_id.strip()
    if not clinic_id:
        raise ValidationException("Cabeçalho X-Clinic-ID vazio", {"header": "X-Clinic-ID"})
    return clinic_id


def get_guide_builder(db: AsyncSession = Depends(get_async_session)) -> GuideBuilderService:
    return GuideBuilderService(db)


def get_batch_assembler(db: AsyncSession = Depends(get_async_session)) -> BatchAssemblerService:
    return BatchAssemblerService(db)


def get_glosa_service(db: AsyncSession = Depends(get_async_session)) -> GlosaService:
    return GlosaService(db)


def get_operator_service(db: AsyncSession = Depends(get_async_session)) -> OperatorService:
    return OperatorService(db)


def get_report_service(db: AsyncSession = Depends(get_async_session)) -> BillingReportService:
    return BillingReportService(db)


def get_transport() -> TISSTransport:
    return SOAPTransport()


def get_recurso_transport() -> TISSTransport:
    return SOAPTransport(soap_action="tissRecursoGlosa")


def get_xml_signer() -> Optional[XMLSigner]:
    """Deployment certificate, None when documents go out unsigned"""
    return load_xml_signer()
