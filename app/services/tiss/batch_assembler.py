"""
TISS Batch Assembler Service
Groups guias into lotes, validates and transmits them to the operator
"""

import asyncio
import logging
from collections import Counter
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.error_handling import (
    ClaimAlreadyBatched,
    InvalidStatusTransition,
    MixedOperatorBatch,
    NotFoundException,
    ValidationException,
    XmlValidationFailed,
)
from app.models.tiss.batch import TISSBatch
from app.models.tiss.guide import TISSGuide
from app.schemas.tiss import LoteError, TissValidationResult, TissXmlOptions, WebServiceConfig, to_money
from app.services.tiss.guide_builder import apply_guia_status, load_dados_guia
from app.services.tiss.repository import TISSRepository
from app.services.tiss.security import XMLSigner
from app.services.tiss.status_machine import (
    CANCELAVEL_LOTE_STATUSES,
    StatusGuia,
    StatusLote,
    ensure_lote_transition,
)
from app.services.tiss.transport import TISSTransport
from app.services.tiss.xml_generator import extract_hash, generate_xml_guia, generate_xml_lote
from app.services.tiss.xml_validator import validate_xml
from config import settings

logger = logging.getLogger(__name__)


def _sum_totals(guias: Sequence[TISSGuide]) -> Tuple[int, Decimal]:
    return len(guias), to_money(sum((to_money(g.valor_total) for g in guias), Decimal("0")))


class BatchAssemblerService:
    """Service for assembling, validating and sending TISS lotes"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = TISSRepository(db)

    def _set_status(self, lote: TISSBatch, new_status: StatusLote) -> None:
        previous = lote.status
        lote.status = ensure_lote_transition(lote.id, previous, new_status).value
        logger.info(f"Lote {lote.id} status {previous} -> {lote.status}")

    async def _load_members(self, lote: TISSBatch) -> List[TISSGuide]:
        guias = await self.repository.get_guias(lote.clinic_id, lote.guia_ids)
        if len(guias) != len(lote.guia_ids):
            found = {g.id for g in guias}
            missing = [guia_id for guia_id in lote.guia_ids if guia_id not in found]
            raise NotFoundException("Guia(s) do lote não encontrada(s)", {"lote_id": lote.id, "guia_ids": missing})
        return guias

    @staticmethod
    def _release(guias: Sequence[TISSGuide], lote_id: int) -> None:
        for guia in guias:
            if guia.lote_id == lote_id:
                guia.lote_id = None

    async def create_lote(
        self,
        clinic_id: str,
        guia_ids: List[int],
        user_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> TISSBatch:
        """
        Create a lote from draft guias of one operator

        Args:
            clinic_id: Tenant
            guia_ids: Guias in submission order
            user_id: Author, for audit
            today: Date used for the batch number (default today)

        Returns:
            The new lote in rascunho

        Raises:
            ValidationException: empty, duplicated or oversized id list
            NotFoundException: guia missing in the tenant
            MixedOperatorBatch: guias target more than one registro_ans
            ClaimAlreadyBatched: guia not in rascunho or held by another lote
        """
        if not guia_ids:
            raise ValidationException("Lote deve conter ao menos uma guia", {"field": "guia_ids"})
        duplicated = sorted(guia_id for guia_id, count in Counter(guia_ids).items() if count > 1)
        if duplicated:
            raise ValidationException("Guias duplicadas no lote", {"guia_ids": duplicated})
        if len(guia_ids) > settings.TISS_MAX_GUIAS_POR_LOTE:
            raise ValidationException(
                f"Lote excede o máximo de {settings.TISS_MAX_GUIAS_POR_LOTE} guias",
                {"quantidade": len(guia_ids), "maximo": settings.TISS_MAX_GUIAS_POR_LOTE},
            )

        guias = await self.repository.get_guias(clinic_id, guia_ids)
        if len(guias) != len(guia_ids):
            found = {g.id for g in guias}
            raise NotFoundException(
                "Guia(s) não encontrada(s)",
                {"guia_ids": [guia_id for guia_id in guia_ids if guia_id not in found]},
            )

        registros = {g.registro_ans for g in guias}
        if len(registros) > 1:
            raise MixedOperatorBatch(list(registros))

        unavailable = [g.id for g in guias if g.status != StatusGuia.RASCUNHO.value or g.lote_id is not None]
        if unavailable:
            raise ClaimAlreadyBatched(unavailable)

        quantidade, valor_total = _sum_totals(guias)
        numero_lote = await self.repository.next_numero_lote(clinic_id, today or date.today())
        lote = TISSBatch(
            clinic_id=clinic_id,
            numero_lote=numero_lote,
            registro_ans=guias[0].registro_ans,
            nome_operadora=guias[0].nome_operadora,
            guia_ids=list(guia_ids),
            quantidade_guias=quantidade,
            valor_total=valor_total,
            status=StatusLote.RASCUNHO.value,
            erros=[],
            versao_tiss=settings.TISS_VERSAO,
            created_by=user_id,
        )
        self.repository.add(lote)
        await self.repository.flush("lote", numero_lote)

        # Check-and-mark in one statement so concurrent assemblies cannot share a guia
        result = await self.db.execute(
            update(TISSGuide)
            .where(
                TISSGuide.clinic_id == clinic_id,
                TISSGuide.id.in_(guia_ids),
                TISSGuide.lote_id.is_(None),
                TISSGuide.status == StatusGuia.RASCUNHO.value,
            )
            .values(lote_id=lote.id, version=TISSGuide.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(guia_ids):
            logger.warning(f"Lote {numero_lote} lost the race for {len(guia_ids) - result.rowcount} guia(s)")
            await self.db.execute(
                update(TISSGuide)
                .where(TISSGuide.lote_id == lote.id)
                .values(lote_id=None, version=TISSGuide.version + 1)
                .execution_options(synchronize_session=False)
            )
            await self.repository.delete(lote)
            await self.repository.flush("lote", numero_lote)
            await self.repository.get_guias(clinic_id, guia_ids, refresh=True)
            raise ClaimAlreadyBatched(list(guia_ids))

        await self.repository.get_guias(clinic_id, guia_ids, refresh=True)
        logger.info(
            f"Created lote {lote.id} ({numero_lote}) for clinic {clinic_id}: "
            f"{quantidade} guia(s), valor {valor_total}"
        )
        return lote

    async def recompute_totals(self, clinic_id: str, lote_id: int) -> Tuple[int, Decimal]:
        """Aggregate of the current member guias"""
        lote = await self.repository.get_lote(clinic_id, lote_id)
        return _sum_totals(await self._load_members(lote))

    async def validate_lote(
        self,
        clinic_id: str,
        lote_id: int,
        options: Optional[TissXmlOptions] = None,
        expected_version: Optional[int] = None,
    ) -> TissValidationResult:
        """
        Validate every guia of a lote and build the lote XML

        Every error is recorded per guia in lote.erros. On failure the lote
        returns to rascunho; on success it holds the XML and becomes pronto.

        Raises:
            XmlValidationFailed: with every issue found
        """
        lote = await self.repository.get_lote(clinic_id, lote_id)
        self.repository.check_version("lote", lote, expected_version)
        self._set_status(lote, StatusLote.VALIDANDO)

        options = options or TissXmlOptions()
        guias = await self._load_members(lote)
        erros: List[LoteError] = []
        warnings = []

        for guia in guias:
            if guia.status != StatusGuia.RASCUNHO.value:
                erros.append(LoteError(
                    guia_id=guia.id,
                    codigo="STATUS_INVALIDO",
                    mensagem=f"Guia em status {guia.status}",
                    campo="status",
                ))
                continue
            result = validate_xml(generate_xml_guia(load_dados_guia(guia), options))
            warnings.extend(result.warnings)
            for issue in result.errors:
                erros.append(LoteError(guia_id=guia.id, codigo="XML_INVALIDO", mensagem=issue.message, campo=issue.path))

        quantidade, valor_total = _sum_totals(guias)
        if quantidade != lote.quantidade_guias or valor_total != to_money(lote.valor_total):
            erros.append(LoteError(
                codigo="TOTAL_DIVERGENTE",
                mensagem=(
                    f"Totais do lote ({lote.quantidade_guias}, {lote.valor_total}) "
                    f"diferem das guias ({quantidade}, {valor_total})"
                ),
                campo="valor_total",
            ))

        xml_content = None
        if not erros:
            options = options.model_copy(update={"numero_lote": lote.numero_lote})
            xml_content = generate_xml_lote([load_dados_guia(g) for g in guias], lote.numero_lote, options)
            result = validate_xml(xml_content)
            for issue in result.errors:
                erros.append(LoteError(codigo="XML_LOTE_INVALIDO", mensagem=issue.message, campo=issue.path))

        if erros:
            lote.erros = [e.model_dump() for e in erros]
            self._set_status(lote, StatusLote.RASCUNHO)
            await self.repository.flush("lote", lote_id)
            logger.warning(f"Lote {lote_id} failed validation with {len(erros)} error(s)")
            raise XmlValidationFailed([e.model_dump() for e in erros], lote_id=lote_id)

        lote.xml_content = xml_content
        lote.xml_hash = extract_hash(xml_content)
        lote.erros = []
        self._set_status(lote, StatusLote.PRONTO)
        await self.repository.flush("lote", lote_id)
        return TissValidationResult(valid=True, errors=[], warnings=warnings)

    async def transmit_lote(
        self,
        clinic_id: str,
        lote_id: int,
        transport: TISSTransport,
        config: WebServiceConfig,
        expected_version: Optional[int] = None,
        signer: Optional[XMLSigner] = None,
    ) -> TISSBatch:
        """
        Send a pronto (or previously failed) lote to the operator

        The transport call is bounded by the configured timeout for all
        attempts. A failure or timeout leaves the lote in erro; retrying is
        up to the caller. With a signer the stored XML is replaced by the
        signed document before it goes out.

        Returns:
            The lote, enviado with its protocol or erro with the cause
        """
        lote = await self.repository.get_lote(clinic_id, lote_id)
        self.repository.check_version("lote", lote, expected_version)
        if not lote.xml_content:
            raise ValidationException("Lote sem XML validado", {"lote_id": lote_id})
        if signer is not None:
            lote.xml_content = signer.sign(lote.xml_content)

        self._set_status(lote, StatusLote.ENVIANDO)
        lote.tentativas_envio = (lote.tentativas_envio or 0) + 1
        await self.repository.flush("lote", lote_id)

        timeout = config.timeout * config.max_tentativas
        erro: Optional[LoteError] = None
        result = None
        try:
            result = await asyncio.wait_for(transport.send(lote.xml_content, config), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Lote {lote_id} transmission timed out after {timeout}s")
            erro = LoteError(codigo="TIMEOUT", mensagem=f"Sem resposta da operadora em {timeout}s")
        except Exception as e:
            logger.error(f"Lote {lote_id} transmission failed: {e}", exc_info=True)
            erro = LoteError(codigo="ENVIO_FALHOU", mensagem=str(e))

        if result is not None and not result.success:
            erro = LoteError(codigo=result.codigo or "ENVIO_FALHOU", mensagem=result.mensagem or "Envio recusado")

        if erro is not None:
            lote.erros = [erro.model_dump()]
            self._set_status(lote, StatusLote.ERRO)
            await self.repository.flush("lote", lote_id)
            return lote

        lote.protocolo = result.protocolo
        lote.data_envio = datetime.now(timezone.utc)
        lote.erros = []
        self._set_status(lote, StatusLote.ENVIADO)

        for guia in await self._load_members(lote):
            if guia.status == StatusGuia.RASCUNHO.value:
                apply_guia_status(guia, StatusGuia.ENVIADA.value)

        await self.repository.flush("lote", lote_id)
        logger.info(f"Lote {lote_id} sent, protocolo {lote.protocolo}")
        return lote

    async def mark_processado(
        self,
        clinic_id: str,
        lote_id: int,
        data_processamento: Optional[datetime] = None,
    ) -> TISSBatch:
        """Close a lote, releasing its guias"""
        lote = await self.repository.get_lote(clinic_id, lote_id)
        self._set_status(lote, StatusLote.PROCESSADO)
        lote.data_processamento = data_processamento or datetime.now(timezone.utc)
        self._release(await self._load_members(lote), lote.id)
        await self.repository.flush("lote", lote_id)
        return lote

    async def cancel_lote(self, clinic_id: str, lote_id: int) -> None:
        """
        Delete a lote that was not sent, releasing its guias

        Raises:
            InvalidStatusTransition: lote is being or was already sent
        """
        lote = await self.repository.get_lote(clinic_id, lote_id)
        if lote.status not in {s.value for s in CANCELAVEL_LOTE_STATUSES}:
            raise InvalidStatusTransition("lote", lote_id, lote.status, "cancelado")

        self._release(await self.repository.get_guias(clinic_id, lote.guia_ids), lote.id)
        await self.repository.flush("lote", lote_id)
        await self.repository.delete(lote)
        await self.repository.flush("lote", lote_id)
        logger.info(f"Cancelled lote {lote_id} ({lote.numero_lote})")

    async def get_lote(self, clinic_id: str, lote_id: int) -> TISSBatch:
        return await self.repository.get_lote(clinic_id, lote_id)

    async def list_lotes(self, clinic_id: str, status: Optional[str] = None) -> List[TISSBatch]:
        return await self.repository.list_lotes(clinic_id, status)
