"""
TISS Repository
Tenant-scoped persistence for guias, lotes, glosas, recursos and operators
"""

import logging
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.error_handling import ConcurrentModification, ConflictException, NotFoundException
from app.models.tiss import TISSBatch, TISSGlosa, TISSGuide, TISSOperator, TISSRecurso

logger = logging.getLogger(__name__)


class TISSRepository:
    """Every read is filtered by clinic_id, ids from another tenant behave as missing"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, model, entity: str, clinic_id: str, entity_id: int):
        result = await self.db.execute(
            select(model).where(model.id == entity_id, model.clinic_id == clinic_id)
        )
        obj = result.scalar_one_or_none()
        if not obj:
            raise NotFoundException(f"{entity.capitalize()} não encontrado(a)", {f"{entity}_id": entity_id})
        return obj

    # Guias

    async def get_guia(self, clinic_id: str, guia_id: int) -> TISSGuide:
        return await self._get(TISSGuide, "guia", clinic_id, guia_id)

    async def get_guias(self, clinic_id: str, guia_ids: Sequence[int], refresh: bool = False) -> List[TISSGuide]:
        """Guias of the tenant matching the ids, in the order requested"""
        query = select(TISSGuide).where(TISSGuide.clinic_id == clinic_id, TISSGuide.id.in_(list(guia_ids)))
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        by_id = {guia.id: guia for guia in result.scalars().all()}
        return [by_id[guia_id] for guia_id in guia_ids if guia_id in by_id]

    async def get_guia_by_numero(self, clinic_id: str, numero_guia_prestador: str) -> TISSGuide:
        result = await self.db.execute(
            select(TISSGuide).where(
                TISSGuide.clinic_id == clinic_id,
                TISSGuide.numero_guia_prestador == numero_guia_prestador,
            )
        )
        guia = result.scalar_one_or_none()
        if not guia:
            raise NotFoundException("Guia não encontrada", {"numero_guia_prestador": numero_guia_prestador})
        return guia

    async def list_guias(
        self,
        clinic_id: str,
        patient_id: Optional[int] = None,
        status: Optional[str] = None,
        data_inicio: Optional[date] = None,
        data_fim: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[TISSGuide]:
        query = select(TISSGuide).where(TISSGuide.clinic_id == clinic_id)
        if patient_id is not None:
            query = query.where(TISSGuide.patient_id == patient_id)
        if status:
            query = query.where(TISSGuide.status == status)
        if data_inicio:
            query = query.where(TISSGuide.data_atendimento >= data_inicio)
        if data_fim:
            query = query.where(TISSGuide.data_atendimento <= data_fim)
        query = query.order_by(TISSGuide.data_atendimento.desc(), TISSGuide.id.desc())
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def next_numero_guia_prestador(self, clinic_id: str) -> str:
        """Next sequential guia number of the clinic, zero padded"""
        result = await self.db.execute(
            select(func.max(TISSGuide.numero_guia_prestador)).where(TISSGuide.clinic_id == clinic_id)
        )
        current = result.scalar()
        sequence = int(current) + 1 if current and current.isdigit() else 1
        return f"{sequence:012d}"

    # Lotes

    async def get_lote(self, clinic_id: str, lote_id: int) -> TISSBatch:
        return await self._get(TISSBatch, "lote", clinic_id, lote_id)

    async def list_lotes(self, clinic_id: str, status: Optional[str] = None) -> List[TISSBatch]:
        query = select(TISSBatch).where(TISSBatch.clinic_id == clinic_id)
        if status:
            query = query.where(TISSBatch.status == status)
        result = await self.db.execute(query.order_by(TISSBatch.created_at.desc(), TISSBatch.id.desc()))
        return list(result.scalars().all())

    async def next_numero_lote(self, clinic_id: str, today: date) -> str:
        """Batch number in the form YYYYMMDD + 4-digit daily sequence"""
        prefix = today.strftime("%Y%m%d")
        result = await self.db.execute(
            select(func.max(TISSBatch.numero_lote)).where(
                TISSBatch.clinic_id == clinic_id,
                TISSBatch.numero_lote.like(f"{prefix}%"),
            )
        )
        current = result.scalar()
        sequence = int(current[len(prefix):]) + 1 if current else 1
        return f"{prefix}{sequence:04d}"

    # Glosas / Recursos

    async def get_glosa(self, clinic_id: str, glosa_id: int) -> TISSGlosa:
        return await self._get(TISSGlosa, "glosa", clinic_id, glosa_id)

    async def list_glosas(
        self,
        clinic_id: str,
        guia_id: Optional[int] = None,
        data_inicio: Optional[date] = None,
        data_fim: Optional[date] = None,
        status: Optional[str] = None,
        atendimento_inicio: Optional[date] = None,
        atendimento_fim: Optional[date] = None,
        prazo_desde: Optional[date] = None,
        prazo_ate: Optional[date] = None,
    ) -> List[TISSGlosa]:
        """
        Glosas of a clinic

        data_inicio/data_fim bound the receipt date, atendimento_inicio/
        atendimento_fim the attendance date of the denied guia, and prazo_desde/
        prazo_ate the appeal deadline.
        """
        query = select(TISSGlosa).where(TISSGlosa.clinic_id == clinic_id)
        if guia_id is not None:
            query = query.where(TISSGlosa.guia_id == guia_id)
        if data_inicio:
            query = query.where(TISSGlosa.data_recebimento >= data_inicio)
        if data_fim:
            query = query.where(TISSGlosa.data_recebimento <= data_fim)
        if status:
            query = query.where(TISSGlosa.status == status)
        if prazo_desde:
            query = query.where(TISSGlosa.prazo_recurso >= prazo_desde)
        if prazo_ate:
            query = query.where(TISSGlosa.prazo_recurso <= prazo_ate)
        if atendimento_inicio or atendimento_fim:
            query = query.join(TISSGuide, TISSGuide.id == TISSGlosa.guia_id).where(TISSGuide.clinic_id == clinic_id)
            if atendimento_inicio:
                query = query.where(TISSGuide.data_atendimento >= atendimento_inicio)
            if atendimento_fim:
                query = query.where(TISSGuide.data_atendimento <= atendimento_fim)
        result = await self.db.execute(query.order_by(TISSGlosa.id))
        return list(result.scalars().all())

    async def get_recurso(self, clinic_id: str, recurso_id: int) -> TISSRecurso:
        return await self._get(TISSRecurso, "recurso", clinic_id, recurso_id)

    async def list_recursos(self, clinic_id: str, glosa_ids: Optional[Sequence[int]] = None) -> List[TISSRecurso]:
        query = select(TISSRecurso).where(TISSRecurso.clinic_id == clinic_id)
        if glosa_ids is not None:
            query = query.where(TISSRecurso.glosa_id.in_(list(glosa_ids)))
        result = await self.db.execute(query.order_by(TISSRecurso.id))
        return list(result.scalars().all())

    # Operators

    async def get_operator(self, clinic_id: str, registro_ans: str) -> Optional[TISSOperator]:
        result = await self.db.execute(
            select(TISSOperator).where(
                TISSOperator.clinic_id == clinic_id,
                TISSOperator.registro_ans == registro_ans,
            )
        )
        return result.scalar_one_or_none()

    async def list_operators(self, clinic_id: str) -> List[TISSOperator]:
        result = await self.db.execute(
            select(TISSOperator).where(TISSOperator.clinic_id == clinic_id).order_by(TISSOperator.nome)
        )
        return list(result.scalars().all())

    # Unit of work

    def add(self, obj) -> None:
        self.db.add(obj)

    async def delete(self, obj) -> None:
        await self.db.delete(obj)

    @staticmethod
    def check_version(entity: str, obj, expected_version: Optional[int]) -> None:
        """Reject the write when the caller read an older version"""
        if expected_version is not None and obj.version != expected_version:
            raise ConcurrentModification(entity, obj.id, expected_version, obj.version)

    async def flush(self, entity: str = "registro", entity_id=None) -> None:
        """
        Flush pending writes

        Raises:
            ConcurrentModification: another transaction updated a row first
            ConflictException: a unique constraint was violated
        """
        try:
            await self.db.flush()
        except StaleDataError:
            logger.warning(f"Concurrent modification detected on {entity} {entity_id}")
            raise ConcurrentModification(entity, entity_id)
        except IntegrityError as e:
            logger.warning(f"Integrity error on {entity} {entity_id}: {e.orig}")
            raise ConflictException(f"Conflito ao gravar {entity}", {"id": entity_id})
