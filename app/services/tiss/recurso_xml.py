"""
TISS Recurso XML
Renders a RECURSO_GLOSA message for an appeal
"""

from typing import List, Optional

from app.schemas.tiss import ItemContestado, TissXmlOptions
from app.services.tiss.xml_generator import (
    TIPO_TRANSACAO_RECURSO,
    build_message,
    finish_message,
    format_money,
    pad_left,
    sub,
    sub_optional,
)


def generate_xml_recurso(
    registro_ans: str,
    codigo_prestador: str,
    numero_recurso: str,
    numero_guia_prestador: str,
    itens: List[ItemContestado],
    justificativa_geral: str,
    numero_guia_operadora: Optional[str] = None,
    options: Optional[TissXmlOptions] = None,
) -> str:
    """
    Generate the RECURSO_GLOSA message for one appeal

    Args:
        registro_ans: Operator ANS registry
        codigo_prestador: Clinic code at the operator
        numero_recurso: Appeal number
        numero_guia_prestador: Appealed guia
        itens: Contested items with their justification
        justificativa_geral: Appeal-level justification

    Returns:
        XML document as a string
    """
    options = options or TissXmlOptions()
    root, corpo = build_message(
        TIPO_TRANSACAO_RECURSO,
        sequencial_transacao=numero_recurso,
        codigo_prestador=codigo_prestador,
        registro_ans=registro_ans,
        options=options,
    )

    recurso = sub(sub(corpo, "recursoGlosa"), "guiaRecursoGlosa")
    sub(recurso, "registroANS", pad_left(registro_ans, 6))
    sub(recurso, "numeroGuiaRecursoGlosa", numero_recurso)

    objeto = sub(recurso, "objetoRecurso")
    sub(objeto, "numeroGuiaPrestador", numero_guia_prestador)
    sub_optional(objeto, "numeroGuiaOperadora", numero_guia_operadora)
    for item in itens:
        element = sub(objeto, "itemRecurso")
        sub(element, "sequencialItem", item.sequencial_item)
        if item.codigo_procedimento:
            sub(element, "codigoProcedimento", pad_left(item.codigo_procedimento, 10))
        sub(element, "codigoGlosa", item.codigo_glosa)
        sub(element, "valorRecursado", format_money(item.valor_glosado))
        sub(element, "justificativa", item.justificativa)

    sub(recurso, "justificativaRecurso", justificativa_geral)

    return finish_message(root, options)
