"""
Tests for TISS XML generation and validation
"""
import pytest
from datetime import date, datetime
from decimal import Decimal

from lxml import etree

from app.schemas.tiss import (
    GuiaConsulta,
    GuiaSADT,
    ItemContestado,
    ProcedimentoRealizado,
    TissXmlOptions,
)
from app.services.tiss.recurso_xml import generate_xml_recurso
from app.services.tiss.xml_generator import (
    TISS_NAMESPACE,
    extract_hash,
    format_money,
    generate_xml_guia,
    generate_xml_lote,
    pad_left,
)
from app.services.tiss.xml_validator import validate_xml

NS = {"ans": TISS_NAMESPACE}
FIXED = TissXmlOptions(data_registro=datetime(2024, 6, 15, 10, 30, 0))


@pytest.fixture
def consulta(beneficiario, contratado, profissional):
    return GuiaConsulta(
        registro_ans="123456",
        numero_guia_prestador="000000000001",
        dados_beneficiario=beneficiario,
        contratado_solicitante=contratado,
        profissional_solicitante=profissional,
        data_atendimento=date(2024, 6, 10),
        codigo_procedimento="10101012",
        valor_procedimento=Decimal("150.00"),
    )


@pytest.fixture
def sadt(beneficiario, contratado, profissional):
    linhas = [
        ProcedimentoRealizado(
            sequencial_item=1,
            data_realizacao=date(2024, 6, 10),
            codigo_tabela="22",
            codigo_procedimento="40301117",
            descricao_procedimento="Hemograma completo",
            quantidade_realizada=2,
            valor_unitario=Decimal("15.00"),
            valor_total=Decimal("30.00"),
            categoria="procedimentos",
        ),
        ProcedimentoRealizado(
            sequencial_item=2,
            data_realizacao=date(2024, 6, 10),
            codigo_tabela="22",
            codigo_procedimento="40302016",
            descricao_procedimento="Colesterol total",
            quantidade_realizada=1,
            valor_unitario=Decimal("8.00"),
            valor_total=Decimal("8.00"),
            categoria="procedimentos",
        ),
    ]
    return GuiaSADT(
        registro_ans="123456",
        numero_guia_prestador="000000000002",
        dados_beneficiario=beneficiario,
        contratado_solicitante=contratado,
        profissional_solicitante=profissional,
        contratado_executante=contratado,
        profissional_executante=profissional,
        data_solicitacao=date(2024, 6, 9),
        procedimentos_realizados=linhas,
        valor_total_procedimentos=Decimal("38.00"),
        valor_total_geral=Decimal("38.00"),
    )


def _root(xml: str):
    return etree.fromstring(xml.encode("utf-8"))


@pytest.mark.unit
class TestFormatting:
    def test_money(self):
        assert format_money(150) == "150.00"
        assert format_money(Decimal("0.005")) == "0.01"
        assert format_money(None) == "0.00"

    def test_pad_left(self):
        assert pad_left("12345", 6) == "012345"
        assert pad_left(None, 3) == "000"


@pytest.mark.unit
class TestGenerator:
    def test_consulta_document(self, consulta):
        root = _root(generate_xml_guia(consulta, FIXED))

        assert root.tag == f"{{{TISS_NAMESPACE}}}mensagemTISS"
        assert root.findtext("ans:cabecalho/ans:identificacaoTransacao/ans:tipoTransacao", namespaces=NS) == "ENVIO_LOTE_GUIAS"
        assert root.findtext("ans:cabecalho/ans:identificacaoTransacao/ans:dataRegistroTransacao", namespaces=NS) == "2024-06-15"
        assert root.findtext("ans:cabecalho/ans:versaoPadrao", namespaces=NS) == "4.02.00"

        guia = root.find("ans:prestadorParaOperadora/ans:loteGuias/ans:guiasTISS/ans:guiaConsulta", namespaces=NS)
        assert guia is not None
        assert guia.findtext("ans:dadosBeneficiario/ans:numeroCarteira", namespaces=NS) == "00000000012345678"
        assert guia.findtext("ans:dadosAtendimento/ans:codigoProcedimento", namespaces=NS) == "0010101012"
        assert guia.findtext("ans:dadosAtendimento/ans:valorProcedimento", namespaces=NS) == "150.00"

    def test_single_guia_lote_number_defaults_to_guia_number(self, consulta):
        root = _root(generate_xml_guia(consulta, FIXED))
        assert root.findtext("ans:prestadorParaOperadora/ans:loteGuias/ans:numeroLote", namespaces=NS) == "000000000001"

    def test_sadt_lines_and_totals(self, sadt):
        root = _root(generate_xml_guia(sadt, FIXED))
        guia = root.find(".//ans:guiaSP-SADT", namespaces=NS)
        linhas = guia.findall("ans:procedimentosRealizados/ans:procedimentoRealizado", namespaces=NS)

        assert [l.findtext("ans:sequencialItem", namespaces=NS) for l in linhas] == ["1", "2"]
        assert linhas[0].findtext("ans:valorTotal", namespaces=NS) == "30.00"
        assert guia.findtext("ans:valorTotal/ans:valorTotalGeral", namespaces=NS) == "38.00"
        assert guia.find("ans:valorTotal/ans:valorMateriais", namespaces=NS) is None

    def test_lote_keeps_guia_order(self, consulta, sadt):
        root = _root(generate_xml_lote([sadt, consulta], "202406150001", FIXED))
        guias = root.findall(".//ans:guiasTISS/*", namespaces=NS)

        assert [etree.QName(g).localname for g in guias] == ["guiaSP-SADT", "guiaConsulta"]
        assert root.findtext(".//ans:numeroLote", namespaces=NS) == "202406150001"

    def test_empty_lote_is_refused(self):
        with pytest.raises(ValueError):
            generate_xml_lote([], "1", FIXED)

    def test_deterministic_with_fixed_timestamp(self, consulta):
        assert generate_xml_guia(consulta, FIXED) == generate_xml_guia(consulta, FIXED)

    def test_hash_ignores_pretty_printing(self, consulta):
        compact = generate_xml_guia(consulta, FIXED)
        pretty = generate_xml_guia(consulta, FIXED.model_copy(update={"pretty_print": True}))

        assert compact != pretty
        assert extract_hash(compact) == extract_hash(pretty)
        assert len(extract_hash(compact)) == 32

    def test_declaration_optional(self, consulta):
        with_declaration = generate_xml_guia(consulta, FIXED)
        without = generate_xml_guia(consulta, FIXED.model_copy(update={"include_declaration": False}))

        assert with_declaration.startswith("<?xml")
        assert without.startswith("<ans:mensagemTISS")

    def test_recurso_document(self):
        item = ItemContestado(
            sequencial_item=1,
            codigo_procedimento="40301117",
            codigo_glosa="A7",
            valor_glosado=Decimal("100.00"),
            justificativa="Valor conforme contrato vigente",
        )
        xml = generate_xml_recurso(
            registro_ans="123456",
            codigo_prestador="PREST001",
            numero_recurso="REC20240620000001",
            numero_guia_prestador="000000000002",
            itens=[item],
            justificativa_geral="Cobrança dentro da tabela contratada",
            options=FIXED,
        )
        root = _root(xml)

        assert root.findtext(".//ans:tipoTransacao", namespaces=NS) == "RECURSO_GLOSA"
        assert root.findtext(".//ans:itemRecurso/ans:valorRecursado", namespaces=NS) == "100.00"
        assert validate_xml(xml).valid


@pytest.mark.unit
class TestValidator:
    def test_generated_documents_are_valid(self, consulta, sadt):
        assert validate_xml(generate_xml_guia(consulta, FIXED)).valid
        assert validate_xml(generate_xml_guia(sadt, FIXED)).valid
        assert validate_xml(generate_xml_lote([consulta, sadt], "1", FIXED)).valid

    def test_signed_document_is_valid(self, consulta, sadt, signer):
        signed = signer.sign(generate_xml_lote([consulta, sadt], "1", FIXED))

        assert validate_xml(signed).valid

    def test_malformed(self):
        result = validate_xml("<mensagemTISS>")
        assert not result.valid
        assert result.errors[0].path == "/"

    def test_wrong_root(self):
        result = validate_xml("<outro/>")
        assert not result.valid

    def test_reports_every_error(self, sadt):
        xml = generate_xml_guia(sadt, FIXED)
        tampered = xml.replace(
            "<ans:valorTotal>30.00</ans:valorTotal>", "<ans:valorTotal>31.00</ans:valorTotal>"
        ).replace(
            "<ans:dataSolicitacao>2024-06-09</ans:dataSolicitacao>", "<ans:dataSolicitacao>09/06/2024</ans:dataSolicitacao>"
        )
        result = validate_xml(tampered)
        messages = " | ".join(e.message for e in result.errors)

        assert not result.valid
        assert "difere de quantidade x valorUnitario" in messages
        assert "difere da soma dos procedimentos" in messages
        assert "Data inválida" in messages
        assert "Hash do epílogo não confere" in messages

    def test_error_paths_locate_the_line(self, sadt):
        xml = generate_xml_guia(sadt, FIXED).replace(
            "<ans:valorTotal>8.00</ans:valorTotal>", "<ans:valorTotal>9.00</ans:valorTotal>"
        )
        result = validate_xml(xml)
        paths = [e.path for e in result.errors]

        assert any(p.endswith("procedimentoRealizado[2]/valorTotal") for p in paths)

    def test_missing_required_field(self, consulta):
        xml = generate_xml_guia(consulta, FIXED).replace(
            "<ans:nomeBeneficiario>Maria da Silva</ans:nomeBeneficiario>", ""
        )
        result = validate_xml(xml)
        assert any("nomeBeneficiario" in e.message for e in result.errors)

    def test_high_value_is_a_warning(self, consulta):
        consulta = consulta.model_copy(update={"valor_procedimento": Decimal("15000.00")})
        result = validate_xml(generate_xml_guia(consulta, FIXED))

        assert result.valid
        assert len(result.warnings) == 1
        assert "limite de alerta" in result.warnings[0].message

    def test_custom_high_value_limit(self, consulta):
        result = validate_xml(generate_xml_guia(consulta, FIXED), valor_alto_alerta=Decimal("100.00"))
        assert result.valid
        assert result.warnings
