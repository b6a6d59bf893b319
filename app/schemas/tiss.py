"""
TISS Schemas
Pydantic models for guias, lotes, glosas, recursos and billing reports
"""
import enum
from datetime import date, datetime, time
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

CENTAVOS = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize any numeric value to a 2-place Decimal"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTAVOS, rounding=ROUND_HALF_UP)


class CategoriaDespesa(str, enum.Enum):
    PROCEDIMENTOS = "procedimentos"
    TAXAS = "taxas"
    MATERIAIS = "materiais"
    MEDICAMENTOS = "medicamentos"
    OPME = "opme"


class MotivoGlosa(str, enum.Enum):
    """ANS denial reason codes"""
    A1 = "A1"
    A2 = "A2"
    A3 = "A3"
    A4 = "A4"
    A5 = "A5"
    A6 = "A6"
    A7 = "A7"
    A8 = "A8"
    A9 = "A9"
    A10 = "A10"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    OUTROS = "outros"


# =============================================================================
# Code catalog
# =============================================================================

class CodigoTUSS(BaseModel):
    """TUSS procedure code entry"""
    model_config = ConfigDict(frozen=True)

    codigo: str
    descricao: str
    grupo: str
    subgrupo: Optional[str] = None
    valor_referencia: Optional[Decimal] = None
    vigencia_inicio: date
    vigencia_fim: Optional[date] = None
    ativo: bool = True

    def is_vigente(self, data_referencia: date) -> bool:
        if not self.ativo:
            return False
        if data_referencia < self.vigencia_inicio:
            return False
        if self.vigencia_fim is not None and data_referencia > self.vigencia_fim:
            return False
        return True


# =============================================================================
# Guia content
# =============================================================================

class DadosBeneficiario(BaseModel):
    numero_carteira: str
    nome_beneficiario: str
    validade_carteira: Optional[date] = None
    cns: Optional[str] = None
    atendimento_rn: bool = False


class DadosContratado(BaseModel):
    codigo_prestador_na_operadora: str
    nome_contratado: str
    cnes: Optional[str] = None


class DadosProfissional(BaseModel):
    nome_profissional: str
    conselho_profissional: str = Field("6", pattern=r"^([1-9]|10)$")  # 6 = CRM
    numero_conselho_profissional: str
    uf: str = Field(..., min_length=2, max_length=2)
    cbos: str


class ProcedimentoInput(BaseModel):
    """Procedure line as provided by the caller"""
    data_realizacao: date
    hora_inicial: Optional[time] = None
    hora_final: Optional[time] = None
    codigo_tabela: str = "22"
    codigo_procedimento: str
    descricao_procedimento: Optional[str] = None
    quantidade_realizada: int = Field(1, ge=1)
    valor_unitario: Optional[Decimal] = Field(None, ge=0)
    via_acesso: Optional[str] = None
    tecnica_utilizada: Optional[str] = None
    categoria: Optional[CategoriaDespesa] = None


class ProcedimentoRealizado(BaseModel):
    """Priced procedure line of a SP/SADT guia"""
    sequencial_item: int
    data_realizacao: date
    hora_inicial: Optional[time] = None
    hora_final: Optional[time] = None
    codigo_tabela: str
    codigo_procedimento: str
    descricao_procedimento: str
    quantidade_realizada: int
    valor_unitario: Decimal
    valor_total: Decimal
    via_acesso: Optional[str] = None
    tecnica_utilizada: Optional[str] = None
    categoria: CategoriaDespesa


class GuiaBase(BaseModel):
    registro_ans: str
    numero_guia_prestador: str
    numero_guia_operadora: Optional[str] = None
    data_autorizacao: Optional[date] = None
    senha: Optional[str] = None
    data_validade_senha: Optional[date] = None
    dados_beneficiario: DadosBeneficiario
    contratado_solicitante: DadosContratado
    profissional_solicitante: DadosProfissional
    observacao: Optional[str] = None


class GuiaConsulta(GuiaBase):
    tipo: Literal["consulta"] = "consulta"
    tipo_consulta: Literal["1", "2", "3", "4"] = "1"
    data_atendimento: date
    indicacao_clinica: Optional[str] = None
    codigo_tabela: str = "22"
    codigo_procedimento: str
    valor_procedimento: Decimal

    @property
    def valor_total(self) -> Decimal:
        return to_money(self.valor_procedimento)


class GuiaSADT(GuiaBase):
    tipo: Literal["sadt"] = "sadt"
    contratado_executante: DadosContratado
    profissional_executante: DadosProfissional
    carater_atendimento: Literal["1", "2"] = "1"
    data_solicitacao: date
    indicacao_clinica: Optional[str] = None
    procedimentos_realizados: List[ProcedimentoRealizado]
    valor_total_procedimentos: Decimal = Decimal("0.00")
    valor_total_taxas: Decimal = Decimal("0.00")
    valor_total_materiais: Decimal = Decimal("0.00")
    valor_total_medicamentos: Decimal = Decimal("0.00")
    valor_total_opme: Decimal = Decimal("0.00")
    valor_total_geral: Decimal = Decimal("0.00")

    @property
    def valor_total(self) -> Decimal:
        return to_money(self.valor_total_geral)


DadosGuia = Annotated[Union[GuiaConsulta, GuiaSADT], Field(discriminator="tipo")]

dados_guia_adapter = TypeAdapter(DadosGuia)


# =============================================================================
# Guia requests / responses
# =============================================================================

class GuiaCreateBase(BaseModel):
    patient_id: Optional[int] = None
    appointment_id: Optional[int] = None
    registro_ans: str = Field(..., min_length=1, max_length=6)
    nome_operadora: Optional[str] = None
    numero_guia_operadora: Optional[str] = None
    data_autorizacao: Optional[date] = None
    senha: Optional[str] = None
    data_validade_senha: Optional[date] = None
    dados_beneficiario: DadosBeneficiario
    contratado_solicitante: DadosContratado
    profissional_solicitante: DadosProfissional
    indicacao_clinica: Optional[str] = None
    observacao: Optional[str] = None


class GuiaConsultaCreate(GuiaCreateBase):
    tipo_consulta: Literal["1", "2", "3", "4"] = "1"
    data_atendimento: date
    codigo_procedimento: str
    valor_procedimento: Optional[Decimal] = Field(None, ge=0)


class GuiaSADTCreate(GuiaCreateBase):
    contratado_executante: DadosContratado
    profissional_executante: DadosProfissional
    carater_atendimento: Literal["1", "2"] = "1"
    data_solicitacao: date
    procedimentos: List[ProcedimentoInput] = []


class GuiaContentUpdate(BaseModel):
    """Draft edits, only allowed while the guia is in rascunho"""
    dados_beneficiario: Optional[DadosBeneficiario] = None
    numero_guia_operadora: Optional[str] = None
    senha: Optional[str] = None
    indicacao_clinica: Optional[str] = None
    observacao: Optional[str] = None
    valor_procedimento: Optional[Decimal] = Field(None, ge=0)
    procedimentos: Optional[List[ProcedimentoInput]] = None
    expected_version: Optional[int] = None


class GuiaStatusUpdate(BaseModel):
    status: str
    expected_version: Optional[int] = None


class GuiaResponse(BaseModel):
    id: int
    clinic_id: str
    patient_id: Optional[int] = None
    appointment_id: Optional[int] = None
    tipo: str
    status: str
    numero_guia_prestador: str
    numero_guia_operadora: Optional[str] = None
    registro_ans: str
    nome_operadora: Optional[str] = None
    data_atendimento: date
    valor_total: Decimal
    valor_glosado: Decimal
    valor_pago: Decimal
    lote_id: Optional[int] = None
    version: int
    dados_guia: Dict
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# XML
# =============================================================================

class TissXmlOptions(BaseModel):
    include_declaration: bool = True
    pretty_print: bool = False
    data_registro: Optional[datetime] = None  # transaction timestamp, defaults to now
    sequencial_transacao: Optional[str] = None
    numero_lote: Optional[str] = None
    codigo_prestador: Optional[str] = None  # origin, defaults to the requesting contratado


class ValidationIssue(BaseModel):
    path: str
    message: str
    severity: Literal["error", "warning"] = "error"


class TissValidationResult(BaseModel):
    valid: bool
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []


# =============================================================================
# Lote
# =============================================================================

class LoteError(BaseModel):
    guia_id: Optional[int] = None
    codigo: str
    mensagem: str
    campo: Optional[str] = None


class LoteCreate(BaseModel):
    guia_ids: List[int] = Field(..., min_length=1)


class LoteResponse(BaseModel):
    id: int
    clinic_id: str
    numero_lote: str
    registro_ans: str
    nome_operadora: Optional[str] = None
    guia_ids: List[int]
    quantidade_guias: int
    valor_total: Decimal
    status: str
    protocolo: Optional[str] = None
    xml_hash: Optional[str] = None
    erros: List[LoteError] = []
    tentativas_envio: int = 0
    version: int
    data_envio: Optional[datetime] = None
    data_processamento: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WebServiceConfig(BaseModel):
    """Operator webservice endpoint used by the transport"""
    url: str
    versao_tiss: str = "4.02.00"
    timeout: int = Field(30, gt=0)  # seconds
    auth_type: Literal["none", "basic", "bearer"] = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    max_tentativas: int = Field(1, ge=1)


class TransportResult(BaseModel):
    success: bool
    protocolo: Optional[str] = None
    mensagem: Optional[str] = None
    codigo: Optional[str] = None
    raw_response: Optional[str] = None


class OperatorCreate(BaseModel):
    registro_ans: str = Field(..., min_length=1, max_length=6)
    nome: str
    codigo_prestador: Optional[str] = None
    webservice_url: Optional[str] = None
    auth_type: Literal["none", "basic", "bearer"] = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    timeout: Optional[int] = None
    max_tentativas: Optional[int] = None


class OperatorResponse(BaseModel):
    id: int
    registro_ans: str
    nome: str
    codigo_prestador: Optional[str] = None
    webservice_url: Optional[str] = None
    auth_type: str
    timeout: Optional[int] = None
    max_tentativas: Optional[int] = None
    ativo: bool

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Glosa / Recurso
# =============================================================================

class ItemGlosadoInput(BaseModel):
    sequencial_item: int = Field(..., ge=1)
    codigo_glosa: MotivoGlosa
    descricao_glosa: Optional[str] = None
    valor_glosado: Decimal = Field(..., gt=0)


class ItemGlosado(BaseModel):
    sequencial_item: int
    codigo_procedimento: str
    descricao_procedimento: Optional[str] = None
    valor_glosado: Decimal
    codigo_glosa: MotivoGlosa
    descricao_glosa: str
    justificativa_recurso: Optional[str] = None
    status_recurso: Literal["pendente", "aceito", "negado"] = "pendente"
    valor_recuperado: Optional[Decimal] = None


class GlosaCreate(BaseModel):
    data_recebimento: date
    itens: List[ItemGlosadoInput] = Field(..., min_length=1)
    prazo_recurso: Optional[date] = None
    numero_guia_operadora: Optional[str] = None
    observacao_operadora: Optional[str] = None

    @field_validator("itens")
    @classmethod
    def itens_unicos(cls, itens):
        # one denied item per procedure line
        sequenciais = [item.sequencial_item for item in itens]
        if len(sequenciais) != len(set(sequenciais)):
            raise ValueError("itens glosados duplicados")
        return itens


class GlosaResponse(BaseModel):
    id: int
    guia_id: int
    numero_guia_prestador: str
    tipo_guia: str
    data_recebimento: date
    valor_original: Decimal
    valor_glosado: Decimal
    valor_aprovado: Decimal
    valor_recuperado: Decimal
    itens_glosados: List[ItemGlosado]
    prazo_recurso: date
    status: str
    observacao_operadora: Optional[str] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


class GlosaPrazoResponse(GlosaResponse):
    """Pending glosa with its remaining appeal window"""
    dias_restantes: int


class ItemRecursoInput(BaseModel):
    sequencial_item: int
    justificativa: str = Field(..., min_length=1)
    documentos_anexos: List[str] = []


class RecursoCreate(BaseModel):
    itens: List[ItemRecursoInput] = Field(..., min_length=1)
    justificativa_geral: str = Field(..., min_length=1)

    @field_validator("itens")
    @classmethod
    def itens_unicos(cls, itens):
        sequenciais = [item.sequencial_item for item in itens]
        if len(sequenciais) != len(set(sequenciais)):
            raise ValueError("itens contestados duplicados")
        return itens


class ItemContestado(BaseModel):
    sequencial_item: int
    codigo_procedimento: str
    codigo_glosa: str
    valor_glosado: Decimal
    justificativa: str
    documentos_anexos: List[str] = []


class RecursoResolve(BaseModel):
    status: Literal["em_analise", "aceito", "negado", "aceito_parcial"]
    valor_recuperado: Optional[Decimal] = Field(None, ge=0)
    resposta_operadora: Optional[str] = None
    data_resposta: Optional[date] = None


class RecursoResponse(BaseModel):
    id: int
    glosa_id: int
    guia_id: int
    numero_recurso: str
    itens_contestados: List[ItemContestado]
    justificativa_geral: str
    valor_contestado: Decimal
    status: str
    resposta_operadora: Optional[str] = None
    data_envio: date
    data_resposta: Optional[date] = None
    valor_recuperado: Optional[Decimal] = None
    protocolo: Optional[str] = None
    data_transmissao: Optional[datetime] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Reports
# =============================================================================

class Periodo(BaseModel):
    inicio: date
    fim: date


class FaturamentoOperadora(BaseModel):
    registro_ans: str
    nome_operadora: Optional[str] = None
    quantidade_guias: int = 0
    valor_faturado: Decimal = Decimal("0.00")
    valor_glosado: Decimal = Decimal("0.00")
    valor_recebido: Decimal = Decimal("0.00")


class ResumoFaturamento(BaseModel):
    periodo: Periodo
    total_guias: int
    guias_por_tipo: Dict[str, int]
    guias_por_status: Dict[str, int]
    valor_total_faturado: Decimal
    valor_total_glosado: Decimal
    valor_total_recebido: Decimal
    taxa_glosa: Decimal  # percent
    por_operadora: List[FaturamentoOperadora]


class GlosasPorMotivo(BaseModel):
    motivo: str
    descricao: str
    quantidade: int
    valor: Decimal
    percentual: Decimal


class GlosasPorOperadora(BaseModel):
    registro_ans: str
    nome_operadora: Optional[str] = None
    quantidade: int
    valor: Decimal


class AnaliseGlosas(BaseModel):
    periodo: Periodo
    total_glosas: int
    valor_total_glosado: Decimal
    valor_recuperado: Decimal
    taxa_recuperacao: Decimal  # percent
    por_motivo: List[GlosasPorMotivo]
    por_operadora: List[GlosasPorOperadora]


class EstatisticasGlosas(BaseModel):
    periodo: Periodo
    total_glosas: int
    valor_total_glosado: Decimal
    valor_recuperado: Decimal
    taxa_recuperacao: Decimal  # percent
    glosas_por_status: Dict[str, int]
    principais_motivos: List[GlosasPorMotivo]
    prazos_proximos: int
    prazos_vencidos: int
