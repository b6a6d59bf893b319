"""
TISS Glosa Parser
Extracts denial data from operator demonstrativo XML responses
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from lxml import etree
from pydantic import BaseModel

from app.core.error_handling import ValidationException
from app.schemas.tiss import MotivoGlosa, to_money

logger = logging.getLogger(__name__)


class GlosaXmlItem(BaseModel):
    sequencial_item: Optional[int] = None
    codigo_procedimento: str = ""
    descricao_procedimento: Optional[str] = None
    valor_glosado: Decimal
    codigo_glosa: MotivoGlosa = MotivoGlosa.OUTROS
    descricao_glosa: Optional[str] = None


class GlosaXmlData(BaseModel):
    numero_guia_prestador: str
    numero_guia_operadora: Optional[str] = None
    tipo_guia: str
    data_recebimento: date
    valor_original: Decimal
    valor_glosado: Decimal
    itens: List[GlosaXmlItem]
    observacao_operadora: Optional[str] = None


def _first_text(element, *names: str) -> Optional[str]:
    """Text of the first descendant with one of the given local names, any namespace"""
    for name in names:
        found = element.xpath(f".//*[local-name()='{name}']")
        if found and found[0].text and found[0].text.strip():
            return found[0].text.strip()
    return None


def _parse_decimal(value: Optional[str]) -> Decimal:
    if not value:
        return Decimal("0.00")
    try:
        return to_money(Decimal(value.replace(",", ".")))
    except InvalidOperation:
        raise ValidationException(f"Valor inválido no demonstrativo: {value}")


def _parse_date(value: Optional[str]) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationException(f"Data inválida no demonstrativo: {value}")


def _parse_motivo(value: Optional[str]) -> MotivoGlosa:
    try:
        return MotivoGlosa(value) if value else MotivoGlosa.OUTROS
    except ValueError:
        logger.warning(f"Unknown glosa code '{value}', using 'outros'")
        return MotivoGlosa.OUTROS


def _detect_tipo_guia(root) -> str:
    names = {etree.QName(element).localname for element in root.iter(etree.Element)}
    if "guiaConsulta" in names or "guiaDeConsulta" in names:
        return "consulta"
    if "guiaSP-SADT" in names or "guiaSADT" in names:
        return "sadt"
    return "consulta"


def parse_glosa_xml(xml_content: Union[str, bytes]) -> GlosaXmlData:
    """
    Parse an operator denial statement

    Items come from itemGlosado elements; a statement without items but
    with a denied total becomes a single item.

    Raises:
        ValidationException: malformed XML or missing guia number
    """
    if isinstance(xml_content, str):
        xml_content = xml_content.encode("utf-8")

    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(xml_content, parser)
    except etree.XMLSyntaxError as e:
        raise ValidationException(f"XML de glosa mal formado: {e}")

    numero_guia = _first_text(root, "numeroGuiaPrestador")
    if not numero_guia:
        raise ValidationException("numeroGuiaPrestador ausente no demonstrativo")

    itens = []
    for element in root.xpath(".//*[local-name()='itemGlosado']"):
        sequencial = _first_text(element, "sequencialItem")
        codigo = _parse_motivo(_first_text(element, "codigoGlosa"))
        itens.append(GlosaXmlItem(
            sequencial_item=int(sequencial) if sequencial and sequencial.isdigit() else None,
            codigo_procedimento=(_first_text(element, "codigoProcedimento") or "").lstrip("0"),
            descricao_procedimento=_first_text(element, "descricaoProcedimento"),
            valor_glosado=_parse_decimal(_first_text(element, "valorGlosa", "valorGlosado")),
            codigo_glosa=codigo,
            descricao_glosa=_first_text(element, "descricaoGlosa"),
        ))

    valor_glosado = _parse_decimal(_first_text(root, "valorTotalGlosado", "valorGlosado"))
    if itens:
        valor_glosado = to_money(sum((item.valor_glosado for item in itens), Decimal("0")))
    elif valor_glosado > 0:
        itens.append(GlosaXmlItem(
            sequencial_item=1,
            codigo_procedimento=(_first_text(root, "codigoProcedimento") or "").lstrip("0"),
            descricao_procedimento=_first_text(root, "descricaoProcedimento"),
            valor_glosado=valor_glosado,
            codigo_glosa=_parse_motivo(_first_text(root, "codigoGlosa")),
        ))

    data = GlosaXmlData(
        numero_guia_prestador=numero_guia,
        numero_guia_operadora=_first_text(root, "numeroGuiaOperadora"),
        tipo_guia=_detect_tipo_guia(root),
        data_recebimento=_parse_date(_first_text(root, "dataRecebimento", "dataProcessamento")),
        valor_original=_parse_decimal(_first_text(root, "valorInformado", "valorTotal")),
        valor_glosado=valor_glosado,
        itens=itens,
        observacao_operadora=_first_text(root, "observacao"),
    )
    logger.info(f"Parsed glosa for guia {data.numero_guia_prestador} with {len(itens)} item(s)")
    return data
