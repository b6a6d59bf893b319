"""
TISS Guide Builder Service
Creates guias de consulta and SP/SADT, prices them against the TUSS
catalog and drives their status transitions
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.error_handling import (
    ClaimLocked,
    EmptyProcedureList,
    IncompleteBeneficiary,
    InvalidProcedureCode,
    InvalidStatusTransition,
    ValidationException,
)
from app.models.tiss.guide import TISSGuide
from app.schemas.tiss import (
    CategoriaDespesa,
    DadosBeneficiario,
    GuiaConsulta,
    GuiaConsultaCreate,
    GuiaContentUpdate,
    GuiaSADT,
    GuiaSADTCreate,
    ProcedimentoInput,
    ProcedimentoRealizado,
    TissXmlOptions,
    dados_guia_adapter,
    to_money,
)
from app.services.tiss.repository import TISSRepository
from app.services.tiss.status_machine import StatusGuia, ensure_guia_transition, status_value
from app.services.tiss.tuss_catalog import TUSSCatalog, get_tuss_catalog
from app.services.tiss.xml_generator import generate_xml_guia

logger = logging.getLogger(__name__)

TUSS_TABLE = "22"

# Expense category implied by the procedure table
CATEGORIA_POR_TABELA = {
    "18": CategoriaDespesa.TAXAS,
    "19": CategoriaDespesa.MATERIAIS,
    "20": CategoriaDespesa.MEDICAMENTOS,
    "22": CategoriaDespesa.PROCEDIMENTOS,
    "90": CategoriaDespesa.TAXAS,
    "98": CategoriaDespesa.MEDICAMENTOS,
}

CAMPO_TOTAL_POR_CATEGORIA = {
    CategoriaDespesa.PROCEDIMENTOS: "valor_total_procedimentos",
    CategoriaDespesa.TAXAS: "valor_total_taxas",
    CategoriaDespesa.MATERIAIS: "valor_total_materiais",
    CategoriaDespesa.MEDICAMENTOS: "valor_total_medicamentos",
    CategoriaDespesa.OPME: "valor_total_opme",
}


def load_dados_guia(guia: TISSGuide) -> Union[GuiaConsulta, GuiaSADT]:
    """Typed content of a persisted guia"""
    return dados_guia_adapter.validate_python(guia.dados_guia)


def dump_dados_guia(dados: Union[GuiaConsulta, GuiaSADT]) -> Dict:
    return dados.model_dump(mode="json")


def compute_sadt_totals(procedimentos: List[ProcedimentoRealizado]) -> Dict[str, Decimal]:
    """Category totals and grand total of SP/SADT lines"""
    totals = {campo: Decimal("0.00") for campo in CAMPO_TOTAL_POR_CATEGORIA.values()}
    for procedimento in procedimentos:
        campo = CAMPO_TOTAL_POR_CATEGORIA[procedimento.categoria]
        totals[campo] = to_money(totals[campo] + procedimento.valor_total)
    totals["valor_total_geral"] = to_money(sum(totals.values(), Decimal("0")))
    return totals


def apply_guia_status(guia: TISSGuide, new_status: str, user_id: Optional[str] = None) -> StatusGuia:
    """
    Move a guia along the state machine and keep its financial fields consistent

    Used by every workflow that changes a guia status. Entering 'enviada'
    stamps the submission time, after which content edits are refused.
    """
    previous = guia.status
    target = ensure_guia_transition(guia.id, previous, new_status)

    guia.status = target.value
    guia.updated_by = user_id
    if target == StatusGuia.ENVIADA:
        guia.submitted_at = datetime.now(timezone.utc)
    elif target == StatusGuia.PAGA:
        guia.valor_pago = to_money(guia.valor_total - guia.valor_glosado)

    logger.info(f"Guia {guia.id} status {previous} -> {target.value}")
    return target


def regenerate_guia_xml(guia: TISSGuide, options: Optional[TissXmlOptions] = None) -> str:
    guia.xml_content = generate_xml_guia(load_dados_guia(guia), options)
    return guia.xml_content


class GuideBuilderService:
    """Service for building and maintaining TISS guias"""

    def __init__(self, db: AsyncSession, catalog: Optional[TUSSCatalog] = None):
        self.db = db
        self.repository = TISSRepository(db)
        self.catalog = catalog or get_tuss_catalog()

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check_beneficiary(dados: DadosBeneficiario) -> None:
        if not dados.numero_carteira or not dados.numero_carteira.strip():
            raise IncompleteBeneficiary("numero_carteira")
        if not dados.nome_beneficiario or not dados.nome_beneficiario.strip():
            raise IncompleteBeneficiary("nome_beneficiario")

    def _price_line(self, index: int, sequencial: int, line: ProcedimentoInput) -> ProcedimentoRealizado:
        """
        Resolve one SP/SADT line

        TUSS (table 22) lines must exist and be valid at the execution date;
        lines of other tables are priced by the caller.
        """
        descricao = line.descricao_procedimento
        valor_unitario = line.valor_unitario

        if line.codigo_tabela == TUSS_TABLE:
            code = self.catalog.get_tuss_code_by_code(line.codigo_procedimento, data_referencia=line.data_realizacao)
            if code is None:
                raise InvalidProcedureCode(
                    line.codigo_procedimento,
                    line_index=index,
                    data_referencia=line.data_realizacao.isoformat(),
                )
            descricao = descricao or code.descricao
            if valor_unitario is None:
                valor_unitario = code.valor_referencia

        if valor_unitario is None:
            raise ValidationException(
                f"Valor unitário obrigatório para o procedimento {line.codigo_procedimento}",
                {"line_index": index, "field": "valor_unitario"},
            )

        valor_unitario = to_money(valor_unitario)
        return ProcedimentoRealizado(
            sequencial_item=sequencial,
            data_realizacao=line.data_realizacao,
            hora_inicial=line.hora_inicial,
            hora_final=line.hora_final,
            codigo_tabela=line.codigo_tabela,
            codigo_procedimento=line.codigo_procedimento,
            descricao_procedimento=descricao or line.codigo_procedimento,
            quantidade_realizada=line.quantidade_realizada,
            valor_unitario=valor_unitario,
            valor_total=to_money(valor_unitario * line.quantidade_realizada),
            via_acesso=line.via_acesso,
            tecnica_utilizada=line.tecnica_utilizada,
            categoria=line.categoria or CATEGORIA_POR_TABELA.get(line.codigo_tabela, CategoriaDespesa.PROCEDIMENTOS),
        )

    def _price_lines(self, lines: List[ProcedimentoInput]) -> List[ProcedimentoRealizado]:
        if not lines:
            raise EmptyProcedureList()
        return [self._price_line(index, index + 1, line) for index, line in enumerate(lines)]

    def _price_consulta(self, codigo: str, data_atendimento, valor: Optional[Decimal]) -> Decimal:
        code = self.catalog.get_tuss_code_by_code(codigo, data_referencia=data_atendimento)
        if code is None:
            raise InvalidProcedureCode(codigo, data_referencia=data_atendimento.isoformat())
        if valor is None:
            valor = code.valor_referencia
        if valor is None:
            raise ValidationException(
                f"Valor do procedimento obrigatório para {codigo}",
                {"field": "valor_procedimento"},
            )
        return to_money(valor)

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_guia_consulta(
        self,
        clinic_id: str,
        data: GuiaConsultaCreate,
        user_id: Optional[str] = None,
    ) -> int:
        """
        Create a guia de consulta in rascunho

        Args:
            clinic_id: Tenant
            data: Consultation data
            user_id: Author, for audit

        Returns:
            Id of the new guia

        Raises:
            IncompleteBeneficiary: card number or name missing
            InvalidProcedureCode: TUSS code unknown or not valid at data_atendimento
        """
        self._check_beneficiary(data.dados_beneficiario)
        valor = self._price_consulta(data.codigo_procedimento, data.data_atendimento, data.valor_procedimento)
        numero = await self.repository.next_numero_guia_prestador(clinic_id)

        dados = GuiaConsulta(
            registro_ans=data.registro_ans,
            numero_guia_prestador=numero,
            numero_guia_operadora=data.numero_guia_operadora,
            data_autorizacao=data.data_autorizacao,
            senha=data.senha,
            data_validade_senha=data.data_validade_senha,
            dados_beneficiario=data.dados_beneficiario,
            contratado_solicitante=data.contratado_solicitante,
            profissional_solicitante=data.profissional_solicitante,
            observacao=data.observacao,
            tipo_consulta=data.tipo_consulta,
            data_atendimento=data.data_atendimento,
            indicacao_clinica=data.indicacao_clinica,
            codigo_tabela=TUSS_TABLE,
            codigo_procedimento=data.codigo_procedimento,
            valor_procedimento=valor,
        )

        guia = TISSGuide(
            clinic_id=clinic_id,
            patient_id=data.patient_id,
            appointment_id=data.appointment_id,
            tipo="consulta",
            status=StatusGuia.RASCUNHO.value,
            numero_guia_prestador=numero,
            numero_guia_operadora=data.numero_guia_operadora,
            registro_ans=data.registro_ans,
            nome_operadora=data.nome_operadora,
            data_atendimento=data.data_atendimento,
            valor_total=valor,
            valor_glosado=Decimal("0.00"),
            valor_pago=Decimal("0.00"),
            dados_guia=dump_dados_guia(dados),
            xml_content=generate_xml_guia(dados),
            created_by=user_id,
        )
        self.repository.add(guia)
        await self.repository.flush("guia", numero)

        logger.info(f"Created guia de consulta {guia.id} ({numero}) for clinic {clinic_id}, valor {valor}")
        return guia.id

    async def create_guia_sadt(
        self,
        clinic_id: str,
        data: GuiaSADTCreate,
        user_id: Optional[str] = None,
    ) -> int:
        """
        Create a guia SP/SADT in rascunho

        Each line is priced (TUSS lines against the catalog at their
        execution date) and the category totals are summed into
        valor_total_geral.

        Raises:
            EmptyProcedureList: no procedure lines
            InvalidProcedureCode: with the index of the first offending line
        """
        self._check_beneficiary(data.dados_beneficiario)
        procedimentos = self._price_lines(data.procedimentos)
        totals = compute_sadt_totals(procedimentos)
        numero = await self.repository.next_numero_guia_prestador(clinic_id)

        dados = GuiaSADT(
            registro_ans=data.registro_ans,
            numero_guia_prestador=numero,
            numero_guia_operadora=data.numero_guia_operadora,
            data_autorizacao=data.data_autorizacao,
            senha=data.senha,
            data_validade_senha=data.data_validade_senha,
            dados_beneficiario=data.dados_beneficiario,
            contratado_solicitante=data.contratado_solicitante,
            profissional_solicitante=data.profissional_solicitante,
            observacao=data.observacao,
            contratado_executante=data.contratado_executante,
            profissional_executante=data.profissional_executante,
            carater_atendimento=data.carater_atendimento,
            data_solicitacao=data.data_solicitacao,
            indicacao_clinica=data.indicacao_clinica,
            procedimentos_realizados=procedimentos,
            **totals,
        )

        guia = TISSGuide(
            clinic_id=clinic_id,
            patient_id=data.patient_id,
            appointment_id=data.appointment_id,
            tipo="sadt",
            status=StatusGuia.RASCUNHO.value,
            numero_guia_prestador=numero,
            numero_guia_operadora=data.numero_guia_operadora,
            registro_ans=data.registro_ans,
            nome_operadora=data.nome_operadora,
            data_atendimento=min(p.data_realizacao for p in procedimentos),
            valor_total=totals["valor_total_geral"],
            valor_glosado=Decimal("0.00"),
            valor_pago=Decimal("0.00"),
            dados_guia=dump_dados_guia(dados),
            xml_content=generate_xml_guia(dados),
            created_by=user_id,
        )
        self.repository.add(guia)
        await self.repository.flush("guia", numero)

        logger.info(
            f"Created guia SP/SADT {guia.id} ({numero}) for clinic {clinic_id} "
            f"with {len(procedimentos)} procedure(s), valor {totals['valor_total_geral']}"
        )
        return guia.id

    # =========================================================================
    # Updates
    # =========================================================================

    async def update_guia_status(
        self,
        clinic_id: str,
        guia_id: int,
        new_status: str,
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> TISSGuide:
        """
        Transition a guia to a new status

        Entering or leaving 'recurso' belongs to the appeal workflow and is
        refused here, as is entering 'glosada_parcial': a partial denial
        amount only comes from an imported glosa.

        Raises:
            InvalidStatusTransition: edge not allowed, status left unchanged
            ConcurrentModification: expected_version is stale
        """
        guia = await self.repository.get_guia(clinic_id, guia_id)
        self.repository.check_version("guia", guia, expected_version)

        target = status_value(new_status)
        if StatusGuia.RECURSO.value in (guia.status, target) or target == StatusGuia.GLOSADA_PARCIAL.value:
            logger.warning(f"Refused manual transition of guia {guia_id}: {guia.status} -> {target}")
            raise InvalidStatusTransition("guia", guia_id, guia.status, target)

        apply_guia_status(guia, target, user_id)
        if target == StatusGuia.GLOSADA_TOTAL.value:
            guia.valor_glosado = to_money(guia.valor_total)
            guia.valor_pago = Decimal("0.00")

        await self.repository.flush("guia", guia_id)
        return guia

    async def update_guia_content(
        self,
        clinic_id: str,
        guia_id: int,
        data: GuiaContentUpdate,
        user_id: Optional[str] = None,
    ) -> TISSGuide:
        """
        Edit a draft guia and recompute its totals

        Raises:
            ClaimLocked: guia already sent or held by a lote
        """
        guia = await self.repository.get_guia(clinic_id, guia_id)
        self.repository.check_version("guia", guia, data.expected_version)

        if guia.status != StatusGuia.RASCUNHO.value:
            raise ClaimLocked(guia_id, f"status {guia.status}")
        if guia.lote_id is not None:
            raise ClaimLocked(guia_id, f"incluída no lote {guia.lote_id}")

        dados = load_dados_guia(guia)
        changes = {}
        if data.dados_beneficiario is not None:
            self._check_beneficiary(data.dados_beneficiario)
            changes["dados_beneficiario"] = data.dados_beneficiario
        for field in ("numero_guia_operadora", "senha", "indicacao_clinica", "observacao"):
            value = getattr(data, field)
            if value is not None:
                changes[field] = value

        if isinstance(dados, GuiaConsulta):
            if data.procedimentos is not None:
                raise ValidationException("Guia de consulta não possui lista de procedimentos", {"field": "procedimentos"})
            if data.valor_procedimento is not None:
                changes["valor_procedimento"] = to_money(data.valor_procedimento)
        else:
            if data.valor_procedimento is not None:
                raise ValidationException("Use procedimentos para alterar valores da guia SP/SADT", {"field": "valor_procedimento"})
            if data.procedimentos is not None:
                procedimentos = self._price_lines(data.procedimentos)
                changes["procedimentos_realizados"] = procedimentos
                changes.update(compute_sadt_totals(procedimentos))

        dados = dados.model_copy(update=changes)
        guia.dados_guia = dump_dados_guia(dados)
        guia.valor_total = dados.valor_total
        guia.numero_guia_operadora = dados.numero_guia_operadora
        if isinstance(dados, GuiaSADT):
            guia.data_atendimento = min(p.data_realizacao for p in dados.procedimentos_realizados)
        guia.xml_content = generate_xml_guia(dados)
        guia.updated_by = user_id

        await self.repository.flush("guia", guia_id)
        logger.info(f"Updated draft guia {guia_id}, valor {guia.valor_total}")
        return guia

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_guia(self, clinic_id: str, guia_id: int) -> TISSGuide:
        return await self.repository.get_guia(clinic_id, guia_id)

    async def list_guias_by_patient(self, clinic_id: str, patient_id: int) -> List[TISSGuide]:
        return await self.repository.list_guias(clinic_id, patient_id=patient_id)

    async def list_guias_by_status(self, clinic_id: str, status: str) -> List[TISSGuide]:
        return await self.repository.list_guias(clinic_id, status=status_value(status))

    async def regenerate_xml(self, clinic_id: str, guia_id: int, options: Optional[TissXmlOptions] = None) -> str:
        """Render the guia XML again, e.g. with a fixed transaction timestamp"""
        guia = await self.repository.get_guia(clinic_id, guia_id)
        xml_content = regenerate_guia_xml(guia, options)
        await self.repository.flush("guia", guia_id)
        return xml_content
