"""
TISS XML Generator
Renders guias and lotes as TISS 4.02.00 mensagemTISS documents
"""

import hashlib
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional, Sequence, Union

from lxml import etree

from app.schemas.tiss import (
    DadosBeneficiario,
    DadosContratado,
    DadosProfissional,
    GuiaConsulta,
    GuiaSADT,
    TissXmlOptions,
    to_money,
)

logger = logging.getLogger(__name__)

TISS_NAMESPACE = "http://www.ans.gov.br/padroes/tiss/schemas"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
NSMAP = {"ans": TISS_NAMESPACE, "xsi": XSI_NAMESPACE}
TISS_VERSION = "4.02.00"

TIPO_TRANSACAO_LOTE = "ENVIO_LOTE_GUIAS"
TIPO_TRANSACAO_RECURSO = "RECURSO_GLOSA"


# =============================================================================
# Value formatting
# =============================================================================

def format_money(value: Union[Decimal, int, float, str, None]) -> str:
    """Fixed 2-decimal representation, e.g. 150 -> '150.00'"""
    return f"{to_money(value):.2f}"


def format_date(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def format_time(value: Union[time, datetime]) -> str:
    return value.strftime("%H:%M:%S")


def pad_left(value: Optional[str], length: int) -> str:
    """Zero-pad identifiers to their fixed TISS width"""
    return str(value or "").strip().rjust(length, "0")


# =============================================================================
# Element helpers
# =============================================================================

def tag(name: str) -> str:
    return f"{{{TISS_NAMESPACE}}}{name}"


def sub(parent, name: str, text=None):
    element = etree.SubElement(parent, tag(name))
    if text is not None:
        element.text = str(text)
    return element


def sub_optional(parent, name: str, text) -> None:
    if text is None or text == "":
        return
    sub(parent, name, text)


def compute_hash(root) -> str:
    """
    MD5 of the text content of cabecalho and the message body

    Whitespace-only nodes are ignored, so pretty printing does not
    change the hash. The epilogo and an XMLDSig signature are left out.
    """
    parts = []
    for child in root.iterchildren(etree.Element):
        if etree.QName(child).localname in ("epilogo", "Signature"):
            continue
        for element in child.iter(etree.Element):
            if element.text and element.text.strip():
                parts.append(element.text.strip())
    return hashlib.md5("".join(parts).encode("utf-8")).hexdigest()


def serialize(root, options: TissXmlOptions) -> str:
    return etree.tostring(
        root,
        xml_declaration=options.include_declaration,
        encoding="UTF-8",
        pretty_print=options.pretty_print,
    ).decode("utf-8")


def build_message(
    tipo_transacao: str,
    sequencial_transacao: str,
    codigo_prestador: str,
    registro_ans: str,
    options: TissXmlOptions,
):
    """
    Create the mensagemTISS root with its cabecalho

    Returns:
        (root, prestadorParaOperadora element)
    """
    registro = options.data_registro or datetime.now()

    root = etree.Element(tag("mensagemTISS"), nsmap=NSMAP)
    cabecalho = sub(root, "cabecalho")
    transacao = sub(cabecalho, "identificacaoTransacao")
    sub(transacao, "tipoTransacao", tipo_transacao)
    sub(transacao, "sequencialTransacao", options.sequencial_transacao or sequencial_transacao)
    sub(transacao, "dataRegistroTransacao", format_date(registro))
    sub(transacao, "horaRegistroTransacao", format_time(registro))

    origem = sub(cabecalho, "origem")
    prestador = sub(origem, "identificacaoPrestador")
    sub(prestador, "codigoPrestadorNaOperadora", options.codigo_prestador or codigo_prestador)

    destino = sub(cabecalho, "destino")
    sub(destino, "registroANS", pad_left(registro_ans, 6))
    sub(cabecalho, "versaoPadrao", TISS_VERSION)

    corpo = sub(root, "prestadorParaOperadora")
    return root, corpo


def finish_message(root, options: TissXmlOptions) -> str:
    """Append the epilogo hash and serialize"""
    epilogo = sub(root, "epilogo")
    sub(epilogo, "hash", compute_hash(root))
    return serialize(root, options)


# =============================================================================
# Guia blocks
# =============================================================================

def _beneficiario(parent, dados: DadosBeneficiario) -> None:
    element = sub(parent, "dadosBeneficiario")
    sub(element, "numeroCarteira", pad_left(dados.numero_carteira, 17))
    if dados.validade_carteira:
        sub(element, "validadeCarteira", format_date(dados.validade_carteira))
    sub(element, "atendimentoRN", "S" if dados.atendimento_rn else "N")
    sub(element, "nomeBeneficiario", dados.nome_beneficiario.strip())
    if dados.cns:
        sub(element, "cns", pad_left(dados.cns, 15))


def _contratado(parent, name: str, dados: DadosContratado) -> None:
    element = sub(parent, name)
    sub(element, "codigoPrestadorNaOperadora", dados.codigo_prestador_na_operadora)
    sub(element, "nomeContratado", dados.nome_contratado)
    if dados.cnes:
        sub(element, "CNES", pad_left(dados.cnes, 7))


def _profissional(parent, name: str, dados: DadosProfissional) -> None:
    element = sub(parent, name)
    sub(element, "nomeProfissional", dados.nome_profissional)
    sub(element, "conselhoProfissional", dados.conselho_profissional)
    sub(element, "numeroConselhoProfissional", dados.numero_conselho_profissional)
    sub(element, "UF", dados.uf.upper())
    sub(element, "CBOS", dados.cbos)


def _solicitante(parent, guia: Union[GuiaConsulta, GuiaSADT]) -> None:
    element = sub(parent, "dadosSolicitante")
    _contratado(element, "contratadoSolicitante", guia.contratado_solicitante)
    _profissional(element, "profissionalSolicitante", guia.profissional_solicitante)


def build_guia_consulta(parent, guia: GuiaConsulta) -> None:
    element = sub(parent, "guiaConsulta")

    cabecalho = sub(element, "cabecalhoConsulta")
    sub(cabecalho, "registroANS", pad_left(guia.registro_ans, 6))
    sub(cabecalho, "numeroGuiaPrestador", guia.numero_guia_prestador)
    sub_optional(cabecalho, "numeroGuiaOperadora", guia.numero_guia_operadora)
    if guia.data_autorizacao:
        sub(cabecalho, "dataAutorizacao", format_date(guia.data_autorizacao))
    sub_optional(cabecalho, "senha", guia.senha)
    if guia.data_validade_senha:
        sub(cabecalho, "dataValidadeSenha", format_date(guia.data_validade_senha))

    _beneficiario(element, guia.dados_beneficiario)
    _solicitante(element, guia)

    atendimento = sub(element, "dadosAtendimento")
    sub(atendimento, "tipoConsulta", guia.tipo_consulta)
    sub_optional(atendimento, "indicacaoClinica", guia.indicacao_clinica)
    sub(atendimento, "dataAtendimento", format_date(guia.data_atendimento))
    sub(atendimento, "codigoTabela", guia.codigo_tabela)
    sub(atendimento, "codigoProcedimento", pad_left(guia.codigo_procedimento, 10))
    sub(atendimento, "valorProcedimento", format_money(guia.valor_procedimento))

    sub_optional(element, "observacao", guia.observacao)


def build_guia_sadt(parent, guia: GuiaSADT) -> None:
    element = sub(parent, "guiaSP-SADT")

    cabecalho = sub(element, "cabecalhoGuia")
    sub(cabecalho, "registroANS", pad_left(guia.registro_ans, 6))
    sub(cabecalho, "numeroGuiaPrestador", guia.numero_guia_prestador)
    if guia.data_autorizacao:
        sub(cabecalho, "dataAutorizacao", format_date(guia.data_autorizacao))
    sub_optional(cabecalho, "senha", guia.senha)
    if guia.data_validade_senha:
        sub(cabecalho, "dataValidadeSenha", format_date(guia.data_validade_senha))
    sub_optional(cabecalho, "numeroGuiaOperadora", guia.numero_guia_operadora)

    _beneficiario(element, guia.dados_beneficiario)
    _solicitante(element, guia)

    executante = sub(element, "dadosExecutante")
    _contratado(executante, "contratadoExecutante", guia.contratado_executante)
    _profissional(executante, "profissionalExecutante", guia.profissional_executante)

    solicitacao = sub(element, "dadosSolicitacao")
    sub(solicitacao, "caraterAtendimento", guia.carater_atendimento)
    sub(solicitacao, "dataSolicitacao", format_date(guia.data_solicitacao))
    sub_optional(solicitacao, "indicacaoClinica", guia.indicacao_clinica)

    realizados = sub(element, "procedimentosRealizados")
    for procedimento in guia.procedimentos_realizados:
        item = sub(realizados, "procedimentoRealizado")
        sub(item, "sequencialItem", procedimento.sequencial_item)
        sub(item, "dataRealizacao", format_date(procedimento.data_realizacao))
        if procedimento.hora_inicial:
            sub(item, "horaInicial", format_time(procedimento.hora_inicial))
        if procedimento.hora_final:
            sub(item, "horaFinal", format_time(procedimento.hora_final))
        sub(item, "codigoTabela", procedimento.codigo_tabela)
        sub(item, "codigoProcedimento", pad_left(procedimento.codigo_procedimento, 10))
        sub(item, "descricaoProcedimento", procedimento.descricao_procedimento)
        sub(item, "quantidadeRealizada", procedimento.quantidade_realizada)
        sub(item, "valorUnitario", format_money(procedimento.valor_unitario))
        sub(item, "valorTotal", format_money(procedimento.valor_total))
        sub_optional(item, "viaAcesso", procedimento.via_acesso)
        sub_optional(item, "tecnicaUtilizada", procedimento.tecnica_utilizada)

    totais = sub(element, "valorTotal")
    sub(totais, "valorProcedimentos", format_money(guia.valor_total_procedimentos))
    for name, value in (
        ("valorTaxasAlugueis", guia.valor_total_taxas),
        ("valorMateriais", guia.valor_total_materiais),
        ("valorMedicamentos", guia.valor_total_medicamentos),
        ("valorOPME", guia.valor_total_opme),
    ):
        if to_money(value) > 0:
            sub(totais, name, format_money(value))
    sub(totais, "valorTotalGeral", format_money(guia.valor_total_geral))

    sub_optional(element, "observacao", guia.observacao)


def build_guia(parent, guia: Union[GuiaConsulta, GuiaSADT]) -> None:
    if guia.tipo == "consulta":
        build_guia_consulta(parent, guia)
    else:
        build_guia_sadt(parent, guia)


# =============================================================================
# Public API
# =============================================================================

def generate_xml_lote(
    guias: Sequence[Union[GuiaConsulta, GuiaSADT]],
    numero_lote: str,
    options: Optional[TissXmlOptions] = None,
) -> str:
    """
    Generate an ENVIO_LOTE_GUIAS message holding every guia in order

    Args:
        guias: Guias of a single operator
        numero_lote: Batch number written to loteGuias
        options: Serialization options

    Returns:
        XML document as a string
    """
    if not guias:
        raise ValueError("Lote XML requires at least one guia")

    options = options or TissXmlOptions()
    first = guias[0]
    root, corpo = build_message(
        TIPO_TRANSACAO_LOTE,
        sequencial_transacao=numero_lote,
        codigo_prestador=first.contratado_solicitante.codigo_prestador_na_operadora,
        registro_ans=first.registro_ans,
        options=options,
    )
    lote = sub(corpo, "loteGuias")
    sub(lote, "numeroLote", numero_lote)
    guias_tiss = sub(lote, "guiasTISS")
    for guia in guias:
        build_guia(guias_tiss, guia)

    return finish_message(root, options)


def generate_xml_consulta(guia: GuiaConsulta, options: Optional[TissXmlOptions] = None) -> str:
    """Generate the XML for a single guia de consulta"""
    options = options or TissXmlOptions()
    return generate_xml_lote([guia], options.numero_lote or guia.numero_guia_prestador, options)


def generate_xml_sadt(guia: GuiaSADT, options: Optional[TissXmlOptions] = None) -> str:
    """Generate the XML for a single guia SP/SADT"""
    options = options or TissXmlOptions()
    return generate_xml_lote([guia], options.numero_lote or guia.numero_guia_prestador, options)


def generate_xml_guia(guia: Union[GuiaConsulta, GuiaSADT], options: Optional[TissXmlOptions] = None) -> str:
    if guia.tipo == "consulta":
        return generate_xml_consulta(guia, options)
    return generate_xml_sadt(guia, options)


def extract_hash(xml: str) -> Optional[str]:
    """Read the epilogo hash of a generated document"""
    root = etree.fromstring(xml.encode("utf-8"))
    found: List = root.findall(f"{tag('epilogo')}/{tag('hash')}")
    return found[0].text if found else None
