"""
TISS Glosa Service
Imports operator denials (glosas) and drives the appeal (recurso) workflow
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.error_handling import (
    AppealWindowExpired,
    ClaimNotSubmitted,
    ConflictException,
    GlosaNotPending,
    InvalidStatusTransition,
    TransmissionFailed,
    ValidationException,
)
from app.models.tiss.glosa import TISSGlosa, TISSRecurso
from app.models.tiss.guide import TISSGuide
from app.schemas.tiss import (
    GlosaCreate,
    GlosaPrazoResponse,
    GlosaResponse,
    GuiaConsulta,
    GuiaSADT,
    ItemContestado,
    ItemGlosado,
    ItemGlosadoInput,
    RecursoCreate,
    RecursoResolve,
    TissXmlOptions,
    WebServiceConfig,
    to_money,
)
from app.services.tiss.denial_interpreter import DenialInterpreter
from app.services.tiss.glosa_parser import parse_glosa_xml
from app.services.tiss.guide_builder import apply_guia_status, load_dados_guia
from app.services.tiss.recurso_xml import generate_xml_recurso
from app.services.tiss.repository import TISSRepository
from app.services.tiss.security import XMLSigner
from app.services.tiss.status_machine import GLOSAVEL_GUIA_STATUSES, StatusGuia
from app.services.tiss.transport import TISSTransport
from config import settings

logger = logging.getLogger(__name__)

GLOSA_PENDENTE = "pendente"
GLOSA_EM_RECURSO = "em_recurso"
GLOSA_RESOLVIDA = "resolvida"

RECURSO_ENVIADO = "enviado"
RECURSO_EM_ANALISE = "em_analise"

# (codigo_procedimento, descricao, valor_total) per sequencial_item
GuiaLines = Dict[int, Tuple[str, Optional[str], Decimal]]


def guia_lines(dados: Union[GuiaConsulta, GuiaSADT]) -> GuiaLines:
    """Billable lines of a guia; a consulta is a single line 1"""
    if isinstance(dados, GuiaConsulta):
        return {1: (dados.codigo_procedimento, None, to_money(dados.valor_procedimento))}
    return {
        p.sequencial_item: (p.codigo_procedimento, p.descricao_procedimento, to_money(p.valor_total))
        for p in dados.procedimentos_realizados
    }


def allocate_recovery(itens_contestados: List[Dict], valor: Decimal) -> Dict[int, Decimal]:
    """Spread a recovered value over contested items in filing order"""
    restante = to_money(valor)
    recuperado = {}
    for item in itens_contestados:
        parcela = min(restante, to_money(item["valor_glosado"]))
        recuperado[item["sequencial_item"]] = parcela
        restante -= parcela
    return recuperado


def _net_glosado(glosas: List[TISSGlosa]) -> Decimal:
    return to_money(sum(
        (to_money(g.valor_glosado) - to_money(g.valor_recuperado) for g in glosas),
        Decimal("0"),
    ))


class GlosaService:
    """Service for glosa import and recurso management"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = TISSRepository(db)
        self.interpreter = DenialInterpreter()

    def _settle_guia(self, guia: TISSGuide, glosas: List[TISSGlosa], user_id: Optional[str] = None) -> None:
        """
        Recompute the guia financials from all its glosas and move it to
        the status matching the outcome
        """
        guia.valor_glosado = _net_glosado(glosas)
        guia.valor_pago = to_money(to_money(guia.valor_total) - guia.valor_glosado)

        if any(g.status == GLOSA_EM_RECURSO for g in glosas):
            target = StatusGuia.RECURSO.value
        elif all(g.status == GLOSA_RESOLVIDA for g in glosas):
            target = StatusGuia.PAGA.value
        elif guia.valor_pago == 0:
            target = StatusGuia.GLOSADA_TOTAL.value
        else:
            target = StatusGuia.GLOSADA_PARCIAL.value

        if guia.status != target:
            apply_guia_status(guia, target, user_id)

    # =========================================================================
    # Glosa import
    # =========================================================================

    async def import_glosa(
        self,
        clinic_id: str,
        guia_id: int,
        data: GlosaCreate,
        user_id: Optional[str] = None,
    ) -> TISSGlosa:
        """
        Register a denial statement for a sent guia

        Args:
            clinic_id: Tenant
            guia_id: Denied guia
            data: Denied items and receipt date

        Returns:
            The new glosa, pendente

        Raises:
            ClaimNotSubmitted: guia still in rascunho
            InvalidStatusTransition: guia cannot receive a glosa in its status
            ValidationException: unknown item or denial above the line value
        """
        guia = await self.repository.get_guia(clinic_id, guia_id)
        if guia.status == StatusGuia.RASCUNHO.value:
            raise ClaimNotSubmitted(guia_id, guia.status)
        if guia.status not in {s.value for s in GLOSAVEL_GUIA_STATUSES}:
            raise InvalidStatusTransition("guia", guia_id, guia.status, StatusGuia.GLOSADA_PARCIAL.value)

        lines = guia_lines(load_dados_guia(guia))
        glosas = await self.repository.list_glosas(clinic_id, guia_id=guia_id)

        # Denied value per line, cumulative across glosas of the guia
        acumulado: Dict[int, Decimal] = defaultdict(lambda: Decimal("0.00"))
        for glosa in glosas:
            for item in glosa.itens_glosados:
                acumulado[item["sequencial_item"]] += to_money(item["valor_glosado"])

        itens: List[ItemGlosado] = []
        for index, item in enumerate(data.itens):
            if item.sequencial_item not in lines:
                raise ValidationException(
                    f"Item {item.sequencial_item} não existe na guia",
                    {"guia_id": guia_id, "line_index": index, "sequencial_item": item.sequencial_item},
                )
            codigo, descricao, valor_linha = lines[item.sequencial_item]
            valor = to_money(item.valor_glosado)
            acumulado[item.sequencial_item] += valor
            if acumulado[item.sequencial_item] > valor_linha:
                raise ValidationException(
                    f"Valor glosado excede o valor do item {item.sequencial_item}",
                    {
                        "guia_id": guia_id,
                        "line_index": index,
                        "sequencial_item": item.sequencial_item,
                        "valor_item": str(valor_linha),
                        "valor_glosado": str(acumulado[item.sequencial_item]),
                    },
                )
            itens.append(ItemGlosado(
                sequencial_item=item.sequencial_item,
                codigo_procedimento=codigo,
                descricao_procedimento=descricao,
                valor_glosado=valor,
                codigo_glosa=item.codigo_glosa,
                descricao_glosa=item.descricao_glosa or self.interpreter.describe(item.codigo_glosa.value),
            ))

        valor_original = to_money(guia.valor_total)
        valor_glosado = to_money(sum((i.valor_glosado for i in itens), Decimal("0")))
        glosa = TISSGlosa(
            clinic_id=clinic_id,
            guia_id=guia_id,
            numero_guia_prestador=guia.numero_guia_prestador,
            tipo_guia=guia.tipo,
            registro_ans=guia.registro_ans,
            nome_operadora=guia.nome_operadora,
            data_recebimento=data.data_recebimento,
            prazo_recurso=data.prazo_recurso or data.data_recebimento + timedelta(days=settings.TISS_PRAZO_RECURSO_DIAS),
            valor_original=valor_original,
            valor_glosado=valor_glosado,
            valor_aprovado=to_money(valor_original - valor_glosado),
            valor_recuperado=Decimal("0.00"),
            itens_glosados=[i.model_dump(mode="json") for i in itens],
            status=GLOSA_PENDENTE,
            observacao_operadora=data.observacao_operadora,
            created_by=user_id,
        )
        self.repository.add(glosa)

        if data.numero_guia_operadora and not guia.numero_guia_operadora:
            guia.numero_guia_operadora = data.numero_guia_operadora
        self._settle_guia(guia, glosas + [glosa], user_id)

        await self.repository.flush("glosa", guia_id)
        logger.info(
            f"Imported glosa {glosa.id} for guia {guia_id}: {len(itens)} item(s), "
            f"valor glosado {valor_glosado}, prazo {glosa.prazo_recurso}"
        )
        return glosa

    async def import_glosa_xml(
        self,
        clinic_id: str,
        xml_content: Union[str, bytes],
        user_id: Optional[str] = None,
    ) -> TISSGlosa:
        """
        Import an operator demonstrativo into the guia it names

        Items are matched to guia lines by sequencial_item, falling back to
        the procedure code.
        """
        parsed = parse_glosa_xml(xml_content)
        guia = await self.repository.get_guia_by_numero(clinic_id, parsed.numero_guia_prestador)
        lines = guia_lines(load_dados_guia(guia))
        by_codigo = {codigo.lstrip("0"): seq for seq, (codigo, _, _) in lines.items()}

        itens = []
        for item in parsed.itens:
            if item.valor_glosado <= 0:
                continue
            sequencial = item.sequencial_item if item.sequencial_item in lines else by_codigo.get(item.codigo_procedimento)
            if sequencial is None:
                raise ValidationException(
                    f"Procedimento {item.codigo_procedimento} não encontrado na guia {guia.numero_guia_prestador}",
                    {"guia_id": guia.id, "codigo_procedimento": item.codigo_procedimento},
                )
            if any(i.sequencial_item == sequencial for i in itens):
                raise ValidationException(
                    f"Demonstrativo glosa o item {sequencial} mais de uma vez",
                    {"guia_id": guia.id, "sequencial_item": sequencial},
                )
            itens.append(ItemGlosadoInput(
                sequencial_item=sequencial,
                codigo_glosa=item.codigo_glosa,
                descricao_glosa=item.descricao_glosa,
                valor_glosado=item.valor_glosado,
            ))

        if not itens:
            raise ValidationException(
                "Demonstrativo sem itens glosados",
                {"numero_guia_prestador": parsed.numero_guia_prestador},
            )

        data = GlosaCreate(
            data_recebimento=parsed.data_recebimento,
            itens=itens,
            numero_guia_operadora=parsed.numero_guia_operadora,
            observacao_operadora=parsed.observacao_operadora,
        )
        return await self.import_glosa(clinic_id, guia.id, data, user_id)

    # =========================================================================
    # Recurso
    # =========================================================================

    async def create_recurso(
        self,
        clinic_id: str,
        glosa_id: int,
        data: RecursoCreate,
        data_referencia: Optional[date] = None,
        user_id: Optional[str] = None,
        options: Optional[TissXmlOptions] = None,
    ) -> TISSRecurso:
        """
        File an appeal against items of a pending glosa

        Args:
            clinic_id: Tenant
            glosa_id: Appealed glosa
            data: Contested items and justification
            data_referencia: Filing date checked against prazo_recurso (default today)

        Raises:
            GlosaNotPending: glosa already appealed or resolved
            AppealWindowExpired: filed after prazo_recurso
            ValidationException: contested item not in the glosa
        """
        glosa = await self.repository.get_glosa(clinic_id, glosa_id)
        if glosa.status != GLOSA_PENDENTE:
            raise GlosaNotPending(glosa_id, glosa.status)

        today = data_referencia or date.today()
        if not DenialInterpreter.is_within_appeal_deadline(glosa.prazo_recurso, today):
            logger.warning(f"Recurso for glosa {glosa_id} refused, prazo {glosa.prazo_recurso} expired")
            raise AppealWindowExpired(glosa_id, glosa.prazo_recurso.isoformat())

        itens_glosa = {item["sequencial_item"]: ItemGlosado(**item) for item in glosa.itens_glosados}
        contestados: List[ItemContestado] = []
        for index, item in enumerate(data.itens):
            glosado = itens_glosa.get(item.sequencial_item)
            if glosado is None:
                raise ValidationException(
                    f"Item {item.sequencial_item} não consta da glosa",
                    {"glosa_id": glosa_id, "line_index": index, "sequencial_item": item.sequencial_item},
                )
            contestados.append(ItemContestado(
                sequencial_item=item.sequencial_item,
                codigo_procedimento=glosado.codigo_procedimento,
                codigo_glosa=glosado.codigo_glosa.value,
                valor_glosado=glosado.valor_glosado,
                justificativa=item.justificativa,
                documentos_anexos=item.documentos_anexos,
            ))
        valor_contestado = to_money(sum((i.valor_glosado for i in contestados), Decimal("0")))

        guia = await self.repository.get_guia(clinic_id, glosa.guia_id)
        if guia.status != StatusGuia.RECURSO.value:
            apply_guia_status(guia, StatusGuia.RECURSO.value, user_id)

        justificativas = {i.sequencial_item: i.justificativa for i in contestados}
        glosa.itens_glosados = [
            {**item, "justificativa_recurso": justificativas.get(item["sequencial_item"], item.get("justificativa_recurso"))}
            for item in glosa.itens_glosados
        ]
        glosa.status = GLOSA_EM_RECURSO

        dados = load_dados_guia(guia)
        operator = await self.repository.get_operator(clinic_id, glosa.registro_ans)
        codigo_prestador = (
            operator.codigo_prestador
            if operator and operator.codigo_prestador
            else dados.contratado_solicitante.codigo_prestador_na_operadora
        )
        numero_recurso = f"REC{today.strftime('%Y%m%d')}{glosa.id:06d}"

        recurso = TISSRecurso(
            clinic_id=clinic_id,
            glosa_id=glosa_id,
            guia_id=guia.id,
            numero_recurso=numero_recurso,
            itens_contestados=[i.model_dump(mode="json") for i in contestados],
            justificativa_geral=data.justificativa_geral,
            valor_contestado=valor_contestado,
            status=RECURSO_ENVIADO,
            data_envio=today,
            xml_content=generate_xml_recurso(
                registro_ans=glosa.registro_ans,
                codigo_prestador=codigo_prestador,
                numero_recurso=numero_recurso,
                numero_guia_prestador=glosa.numero_guia_prestador,
                itens=contestados,
                justificativa_geral=data.justificativa_geral,
                numero_guia_operadora=guia.numero_guia_operadora,
                options=options,
            ),
            created_by=user_id,
        )
        self.repository.add(recurso)
        await self.repository.flush("recurso", glosa_id)

        logger.info(f"Created recurso {recurso.id} ({numero_recurso}) for glosa {glosa_id}, valor {valor_contestado}")
        return recurso

    async def transmit_recurso(
        self,
        clinic_id: str,
        recurso_id: int,
        transport: TISSTransport,
        config: WebServiceConfig,
        signer: Optional[XMLSigner] = None,
        expected_version: Optional[int] = None,
    ) -> TISSRecurso:
        """
        Send the recurso XML to the operator webservice

        The stored XML is replaced by the signed document when a signer is
        given. A recurso is transmitted once; a failed attempt can be retried.

        Raises:
            ConflictException: recurso already transmitted or answered
            TransmissionFailed: operator refused or did not answer in time
        """
        recurso = await self.repository.get_recurso(clinic_id, recurso_id)
        self.repository.check_version("recurso", recurso, expected_version)
        if recurso.protocolo or recurso.status != RECURSO_ENVIADO:
            raise ConflictException(
                f"Recurso {recurso_id} já transmitido",
                {"recurso_id": recurso_id, "current_status": recurso.status, "protocolo": recurso.protocolo},
            )
        if not recurso.xml_content:
            raise ValidationException("Recurso sem XML", {"recurso_id": recurso_id})

        if signer is not None:
            recurso.xml_content = signer.sign(recurso.xml_content)
        recurso.tentativas_envio = (recurso.tentativas_envio or 0) + 1
        await self.repository.flush("recurso", recurso_id)

        timeout = config.timeout * config.max_tentativas
        try:
            result = await asyncio.wait_for(transport.send(recurso.xml_content, config), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Recurso {recurso_id} transmission timed out after {timeout}s")
            raise TransmissionFailed("recurso", recurso_id, "TIMEOUT", f"Sem resposta da operadora em {timeout}s")

        if not result.success:
            logger.warning(f"Recurso {recurso_id} refused by operator: {result.codigo} {result.mensagem}")
            raise TransmissionFailed(
                "recurso", recurso_id, result.codigo or "ENVIO_FALHOU", result.mensagem or "Envio recusado"
            )

        recurso.protocolo = result.protocolo
        recurso.data_transmissao = datetime.now(timezone.utc)
        await self.repository.flush("recurso", recurso_id)
        logger.info(f"Recurso {recurso_id} ({recurso.numero_recurso}) sent, protocolo {recurso.protocolo}")
        return recurso

    async def resolve_recurso(
        self,
        clinic_id: str,
        recurso_id: int,
        data: RecursoResolve,
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> TISSRecurso:
        """
        Record the operator answer to an appeal

        'em_analise' is an intermediate update. A final answer resolves the
        glosa and moves the recovered value from glosado to pago on the guia.

        Raises:
            InvalidStatusTransition: recurso already answered
            ValidationException: recovered value missing or above the contested value
        """
        recurso = await self.repository.get_recurso(clinic_id, recurso_id)
        self.repository.check_version("recurso", recurso, expected_version)

        if data.status == RECURSO_EM_ANALISE:
            if recurso.status != RECURSO_ENVIADO:
                raise InvalidStatusTransition("recurso", recurso_id, recurso.status, data.status)
            recurso.status = RECURSO_EM_ANALISE
            if data.resposta_operadora:
                recurso.resposta_operadora = data.resposta_operadora
            await self.repository.flush("recurso", recurso_id)
            logger.info(f"Recurso {recurso_id} under analysis")
            return recurso

        if recurso.status not in (RECURSO_ENVIADO, RECURSO_EM_ANALISE):
            raise InvalidStatusTransition("recurso", recurso_id, recurso.status, data.status)

        valor_contestado = to_money(recurso.valor_contestado)
        if data.status == "aceito":
            valor = to_money(data.valor_recuperado) if data.valor_recuperado is not None else valor_contestado
        elif data.status == "negado":
            valor = to_money(data.valor_recuperado)
            if valor != 0:
                raise ValidationException(
                    "Recurso negado não recupera valor",
                    {"recurso_id": recurso_id, "field": "valor_recuperado"},
                )
        else:
            if data.valor_recuperado is None:
                raise ValidationException(
                    "Valor recuperado obrigatório para aceite parcial",
                    {"recurso_id": recurso_id, "field": "valor_recuperado"},
                )
            valor = to_money(data.valor_recuperado)

        if valor > valor_contestado:
            raise ValidationException(
                "Valor recuperado maior que o valor contestado",
                {
                    "recurso_id": recurso_id,
                    "field": "valor_recuperado",
                    "valor_recuperado": str(valor),
                    "valor_contestado": str(valor_contestado),
                },
            )

        recurso.status = data.status
        recurso.valor_recuperado = valor
        recurso.resposta_operadora = data.resposta_operadora or recurso.resposta_operadora
        recurso.data_resposta = data.data_resposta or date.today()

        recuperado_itens = allocate_recovery(recurso.itens_contestados, valor)

        glosa = await self.repository.get_glosa(clinic_id, recurso.glosa_id)
        itens_glosados = []
        for item in glosa.itens_glosados:
            recuperado = recuperado_itens.get(item["sequencial_item"])
            if recuperado is not None:
                item = {
                    **item,
                    "status_recurso": "aceito" if recuperado > 0 else "negado",
                    "valor_recuperado": str(recuperado),
                }
            itens_glosados.append(item)
        glosa.itens_glosados = itens_glosados
        glosa.valor_recuperado = to_money(to_money(glosa.valor_recuperado) + valor)
        glosa.status = GLOSA_RESOLVIDA

        guia = await self.repository.get_guia(clinic_id, recurso.guia_id)
        glosas = await self.repository.list_glosas(clinic_id, guia_id=guia.id)
        self._settle_guia(guia, glosas, user_id)

        await self.repository.flush("recurso", recurso_id)
        logger.info(
            f"Recurso {recurso_id} resolved as {data.status}, recuperado {valor}; "
            f"guia {guia.id} now {guia.status}"
        )
        return recurso

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_glosa(self, clinic_id: str, glosa_id: int) -> TISSGlosa:
        return await self.repository.get_glosa(clinic_id, glosa_id)

    async def list_glosas(
        self,
        clinic_id: str,
        guia_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[TISSGlosa]:
        return await self.repository.list_glosas(clinic_id, guia_id=guia_id, status=status)

    async def list_glosas_near_deadline(
        self,
        clinic_id: str,
        dias: Optional[int] = None,
        data_referencia: Optional[date] = None,
    ) -> List[GlosaPrazoResponse]:
        """
        Pending glosas whose appeal deadline falls within the next `dias` days

        Expired glosas are left out. Ordered by deadline, closest first.
        """
        today = data_referencia or date.today()
        dias = settings.TISS_ALERTA_PRAZO_DIAS if dias is None else dias
        glosas = await self.repository.list_glosas(
            clinic_id, status=GLOSA_PENDENTE, prazo_desde=today, prazo_ate=today + timedelta(days=dias)
        )
        alertas = [
            GlosaPrazoResponse(
                **GlosaResponse.model_validate(glosa).model_dump(),
                dias_restantes=DenialInterpreter.days_to_appeal_deadline(glosa.prazo_recurso, today),
            )
            for glosa in glosas
        ]
        if alertas:
            logger.info(f"{len(alertas)} glosa(s) of clinic {clinic_id} with appeal deadline within {dias} day(s)")
        return sorted(alertas, key=lambda a: (a.prazo_recurso, a.id))

    async def get_recurso(self, clinic_id: str, recurso_id: int) -> TISSRecurso:
        return await self.repository.get_recurso(clinic_id, recurso_id)

    async def list_recursos(self, clinic_id: str, glosa_id: Optional[int] = None) -> List[TISSRecurso]:
        return await self.repository.list_recursos(clinic_id, [glosa_id] if glosa_id is not None else None)

    async def interpret_glosa(self, clinic_id: str, glosa_id: int, data_referencia: Optional[date] = None) -> Dict:
        """Reason descriptions, recommended actions and appeal deadline of a glosa"""
        glosa = await self.repository.get_glosa(clinic_id, glosa_id)
        result = self.interpreter.interpret_multiple_denials(glosa.itens_glosados)
        result["prazo_recurso"] = glosa.prazo_recurso.isoformat()
        result["dias_para_recurso"] = DenialInterpreter.days_to_appeal_deadline(glosa.prazo_recurso, data_referencia)
        result["dentro_do_prazo"] = DenialInterpreter.is_within_appeal_deadline(glosa.prazo_recurso, data_referencia)
        return result
