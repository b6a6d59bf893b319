"""
TISS XML Validator
Structural, format and arithmetic checks for mensagemTISS documents,
plus optional XSD validation
"""

import logging
import re
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional, Union

from lxml import etree

from app.schemas.tiss import TissValidationResult, ValidationIssue
from app.services.tiss.xml_generator import (
    TIPO_TRANSACAO_LOTE,
    TIPO_TRANSACAO_RECURSO,
    TISS_NAMESPACE,
    TISS_VERSION,
    compute_hash,
)
from config import settings

logger = logging.getLogger(__name__)

MONEY_PATTERN = re.compile(r"^\d+\.\d{2}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}:\d{2}$")

NS = {"ans": TISS_NAMESPACE}

CABECALHO_REQUIRED = [
    "identificacaoTransacao/tipoTransacao",
    "identificacaoTransacao/sequencialTransacao",
    "identificacaoTransacao/dataRegistroTransacao",
    "identificacaoTransacao/horaRegistroTransacao",
    "origem/identificacaoPrestador/codigoPrestadorNaOperadora",
    "destino/registroANS",
    "versaoPadrao",
]

BENEFICIARIO_REQUIRED = [
    "dadosBeneficiario/numeroCarteira",
    "dadosBeneficiario/nomeBeneficiario",
]

CONSULTA_REQUIRED = [
    "cabecalhoConsulta/registroANS",
    "cabecalhoConsulta/numeroGuiaPrestador",
    *BENEFICIARIO_REQUIRED,
    "dadosAtendimento/tipoConsulta",
    "dadosAtendimento/dataAtendimento",
    "dadosAtendimento/codigoTabela",
    "dadosAtendimento/codigoProcedimento",
    "dadosAtendimento/valorProcedimento",
]

SADT_REQUIRED = [
    "cabecalhoGuia/registroANS",
    "cabecalhoGuia/numeroGuiaPrestador",
    *BENEFICIARIO_REQUIRED,
    "dadosExecutante/contratadoExecutante/codigoPrestadorNaOperadora",
    "dadosSolicitacao/caraterAtendimento",
    "dadosSolicitacao/dataSolicitacao",
    "valorTotal/valorTotalGeral",
]

PROCEDIMENTO_REQUIRED = [
    "sequencialItem",
    "dataRealizacao",
    "codigoTabela",
    "codigoProcedimento",
    "descricaoProcedimento",
    "quantidadeRealizada",
    "valorUnitario",
    "valorTotal",
]

RECURSO_REQUIRED = [
    "registroANS",
    "numeroGuiaRecursoGlosa",
    "objetoRecurso/numeroGuiaPrestador",
    "justificativaRecurso",
]

CATEGORIA_TOTAIS = [
    "valorProcedimentos",
    "valorTaxasAlugueis",
    "valorMateriais",
    "valorMedicamentos",
    "valorOPME",
]


def _localname(element) -> str:
    return etree.QName(element).localname


def element_path(element) -> str:
    """XPath-like location of an element, indexed when siblings share a name"""
    parts = []
    while element is not None:
        name = _localname(element)
        parent = element.getparent()
        if parent is not None:
            same = [child for child in parent if isinstance(child.tag, str) and _localname(child) == name]
            if len(same) > 1:
                name = f"{name}[{same.index(element) + 1}]"
        parts.append(name)
        element = parent
    return "/" + "/".join(reversed(parts))


def _relative_xpath(relative: str) -> str:
    return "/".join(f"ans:{part}" for part in relative.split("/"))


class _Collector:
    """Accumulates issues while walking a document"""

    def __init__(self):
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []

    def error(self, path: str, message: str) -> None:
        self.errors.append(ValidationIssue(path=path, message=message, severity="error"))

    def warning(self, path: str, message: str) -> None:
        self.warnings.append(ValidationIssue(path=path, message=message, severity="warning"))

    def result(self) -> TissValidationResult:
        return TissValidationResult(valid=not self.errors, errors=self.errors, warnings=self.warnings)


def _find(element, relative: str):
    found = element.xpath(_relative_xpath(relative), namespaces=NS)
    return found[0] if found else None


def _text(element, relative: str) -> Optional[str]:
    found = _find(element, relative)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def _require(collector: _Collector, element, fields: List[str]) -> None:
    for relative in fields:
        found = _find(element, relative)
        if found is None or not (found.text or "").strip():
            collector.error(f"{element_path(element)}/{relative}", f"Campo obrigatório ausente: {relative.split('/')[-1]}")


def _decimal(element, relative: str) -> Optional[Decimal]:
    text = _text(element, relative)
    if text is None or not MONEY_PATTERN.match(text):
        return None
    return Decimal(text)


def _check_formats(collector: _Collector, root) -> None:
    """Money, date and time formats for every leaf element"""
    for element in root.iter():
        if not isinstance(element.tag, str) or len(element):
            continue
        name = _localname(element)
        text = (element.text or "").strip()
        if not text:
            continue
        if name.startswith("valor"):
            if not MONEY_PATTERN.match(text):
                collector.error(element_path(element), f"Valor monetário inválido '{text}', use o formato 0.00")
        elif name.startswith("data") or name.startswith("validade"):
            if not DATE_PATTERN.match(text):
                collector.error(element_path(element), f"Data inválida '{text}', use o formato AAAA-MM-DD")
            else:
                try:
                    date.fromisoformat(text)
                except ValueError:
                    collector.error(element_path(element), f"Data inexistente '{text}'")
        elif name.startswith("hora"):
            if not TIME_PATTERN.match(text):
                collector.error(element_path(element), f"Hora inválida '{text}', use o formato HH:MM:SS")


def _check_high_value(collector: _Collector, element, relative: str, limite: Decimal) -> None:
    valor = _decimal(element, relative)
    if valor is not None and valor > limite:
        collector.warning(
            f"{element_path(element)}/{relative}",
            f"Valor {valor} acima do limite de alerta {limite}, confirme antes do envio",
        )


def _validate_consulta(collector: _Collector, guia, limite: Decimal) -> None:
    _require(collector, guia, CONSULTA_REQUIRED)
    _check_high_value(collector, guia, "dadosAtendimento/valorProcedimento", limite)


def _validate_sadt(collector: _Collector, guia, limite: Decimal) -> None:
    _require(collector, guia, SADT_REQUIRED)
    procedimentos = guia.xpath("ans:procedimentosRealizados/ans:procedimentoRealizado", namespaces=NS)
    if not procedimentos:
        collector.error(
            f"{element_path(guia)}/procedimentosRealizados",
            "Guia SP/SADT deve conter ao menos um procedimento realizado",
        )
        return

    soma_linhas = Decimal("0.00")
    linhas_validas = True
    for procedimento in procedimentos:
        _require(collector, procedimento, PROCEDIMENTO_REQUIRED)
        quantidade_text = _text(procedimento, "quantidadeRealizada")
        unitario = _decimal(procedimento, "valorUnitario")
        total = _decimal(procedimento, "valorTotal")
        if quantidade_text is None or not quantidade_text.isdigit() or unitario is None or total is None:
            linhas_validas = False
            continue
        esperado = (Decimal(quantidade_text) * unitario).quantize(Decimal("0.01"))
        if esperado != total:
            collector.error(
                f"{element_path(procedimento)}/valorTotal",
                f"valorTotal {total} difere de quantidade x valorUnitario ({esperado})",
            )
        soma_linhas += total

    geral = _decimal(guia, "valorTotal/valorTotalGeral")
    if geral is None:
        return
    if linhas_validas and soma_linhas != geral:
        collector.error(
            f"{element_path(guia)}/valorTotal/valorTotalGeral",
            f"valorTotalGeral {geral} difere da soma dos procedimentos ({soma_linhas})",
        )

    soma_categorias = Decimal("0.00")
    for name in CATEGORIA_TOTAIS:
        valor = _decimal(guia, f"valorTotal/{name}")
        if valor is not None:
            soma_categorias += valor
    if soma_categorias != geral:
        collector.error(
            f"{element_path(guia)}/valorTotal/valorTotalGeral",
            f"valorTotalGeral {geral} difere da soma das categorias ({soma_categorias})",
        )

    _check_high_value(collector, guia, "valorTotal/valorTotalGeral", limite)


def _validate_lote(collector: _Collector, corpo, limite: Decimal) -> None:
    lote = _find(corpo, "loteGuias")
    if lote is None:
        collector.error(f"{element_path(corpo)}/loteGuias", "Elemento loteGuias ausente")
        return
    _require(collector, lote, ["numeroLote"])

    guias = lote.xpath("ans:guiasTISS/*", namespaces=NS)
    if not guias:
        collector.error(f"{element_path(lote)}/guiasTISS", "Lote sem guias")
        return

    for guia in guias:
        name = _localname(guia)
        if name == "guiaConsulta":
            _validate_consulta(collector, guia, limite)
        elif name == "guiaSP-SADT":
            _validate_sadt(collector, guia, limite)
        else:
            collector.error(element_path(guia), f"Tipo de guia não suportado: {name}")


def _validate_recurso(collector: _Collector, corpo) -> None:
    recursos = corpo.xpath("ans:recursoGlosa/ans:guiaRecursoGlosa", namespaces=NS)
    if not recursos:
        collector.error(f"{element_path(corpo)}/recursoGlosa/guiaRecursoGlosa", "Elemento guiaRecursoGlosa ausente")
        return
    for recurso in recursos:
        _require(collector, recurso, RECURSO_REQUIRED)
        itens = recurso.xpath("ans:objetoRecurso/ans:itemRecurso", namespaces=NS)
        if not itens:
            collector.error(f"{element_path(recurso)}/objetoRecurso/itemRecurso", "Recurso sem itens contestados")
        for item in itens:
            _require(collector, item, ["sequencialItem", "valorRecursado", "justificativa"])


@lru_cache(maxsize=4)
def load_xsd_schema(xsd_path: str) -> etree.XMLSchema:
    """Parse and cache an XSD schema file"""
    logger.info(f"Loading TISS XSD schema from {xsd_path}")
    return etree.XMLSchema(etree.parse(xsd_path))


def validate_xsd(collector: _Collector, document, xsd_path: str) -> None:
    schema = load_xsd_schema(xsd_path)
    if schema.validate(document):
        return
    for error in schema.error_log:
        collector.error(error.path or f"line {error.line}", f"XSD: {error.message}")


def validate_xml(
    xml_content: Union[str, bytes],
    xsd_path: Optional[str] = None,
    valor_alto_alerta: Optional[Decimal] = None,
) -> TissValidationResult:
    """
    Validate a mensagemTISS document

    Args:
        xml_content: XML document
        xsd_path: XSD file to validate against (defaults to TISS_XSD_PATH, skipped when unset)
        valor_alto_alerta: Values above this produce a warning (defaults to TISS_VALOR_ALTO_ALERTA)

    Returns:
        TissValidationResult with every error and warning found
    """
    collector = _Collector()
    limite = valor_alto_alerta if valor_alto_alerta is not None else settings.TISS_VALOR_ALTO_ALERTA
    xsd_path = xsd_path or settings.TISS_XSD_PATH

    if isinstance(xml_content, str):
        xml_content = xml_content.encode("utf-8")

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(xml_content, parser)
    except etree.XMLSyntaxError as e:
        collector.error("/", f"XML mal formado: {e}")
        return collector.result()

    if root.tag != f"{{{TISS_NAMESPACE}}}mensagemTISS":
        collector.error(element_path(root), "Elemento raiz deve ser ans:mensagemTISS")
        return collector.result()

    cabecalho = _find(root, "cabecalho")
    if cabecalho is None:
        collector.error("/mensagemTISS/cabecalho", "Cabeçalho ausente")
    else:
        _require(collector, cabecalho, CABECALHO_REQUIRED)
        versao = _text(cabecalho, "versaoPadrao")
        if versao and versao != TISS_VERSION:
            collector.warning(
                f"{element_path(cabecalho)}/versaoPadrao",
                f"Versão {versao} difere da versão vigente {TISS_VERSION}",
            )

    _check_formats(collector, root)

    corpo = _find(root, "prestadorParaOperadora")
    tipo_transacao = _text(cabecalho, "identificacaoTransacao/tipoTransacao") if cabecalho is not None else None
    if corpo is None:
        collector.error("/mensagemTISS/prestadorParaOperadora", "Corpo da mensagem ausente")
    elif tipo_transacao == TIPO_TRANSACAO_RECURSO:
        _validate_recurso(collector, corpo)
    elif tipo_transacao == TIPO_TRANSACAO_LOTE:
        _validate_lote(collector, corpo, limite)
    elif tipo_transacao:
        collector.error(
            "/mensagemTISS/cabecalho/identificacaoTransacao/tipoTransacao",
            f"Tipo de transação não suportado: {tipo_transacao}",
        )

    hash_element = _find(root, "epilogo/hash")
    if hash_element is None or not (hash_element.text or "").strip():
        collector.error("/mensagemTISS/epilogo/hash", "Hash do epílogo ausente")
    elif hash_element.text.strip() != compute_hash(root):
        collector.error("/mensagemTISS/epilogo/hash", "Hash do epílogo não confere com o conteúdo")

    if xsd_path:
        validate_xsd(collector, root, xsd_path)

    result = collector.result()
    if not result.valid:
        logger.info(f"TISS XML validation found {len(result.errors)} error(s)")
    return result
