"""
Tests for glosa import and the recurso workflow
"""
import asyncio
import pytest
from datetime import date
from decimal import Decimal

from pydantic import ValidationError

from app.core.error_handling import (
    AppealWindowExpired,
    ClaimNotSubmitted,
    ConflictException,
    GlosaNotPending,
    InvalidStatusTransition,
    TransmissionFailed,
    ValidationException,
)
from app.schemas.tiss import (
    GlosaCreate,
    ItemGlosadoInput,
    ItemRecursoInput,
    RecursoCreate,
    RecursoResolve,
    TransportResult,
    WebServiceConfig,
)
from app.services.tiss.glosa_service import GlosaService
from app.services.tiss.security import verify_xml_signature
from app.services.tiss.xml_validator import validate_xml

CLINIC = "clinic-1"
RECEBIMENTO = date(2024, 7, 1)
CONFIG = WebServiceConfig(url="https://operadora.example/tiss", timeout=1, max_tentativas=1)

DEMONSTRATIVO = """<?xml version="1.0" encoding="UTF-8"?>
<ans:mensagemTISS xmlns:ans="http://www.ans.gov.br/padroes/tiss/schemas">
  <ans:operadoraParaPrestador>
    <ans:demonstrativoAnaliseConta>
      <ans:dataRecebimento>2024-07-01</ans:dataRecebimento>
      <ans:guiaSP-SADT>
        <ans:numeroGuiaPrestador>000000000001</ans:numeroGuiaPrestador>
        <ans:numeroGuiaOperadora>OP-778899</ans:numeroGuiaOperadora>
        <ans:itemGlosado>
          <ans:codigoProcedimento>0040302016</ans:codigoProcedimento>
          <ans:valorGlosa>20,00</ans:valorGlosa>
          <ans:codigoGlosa>A9</ans:codigoGlosa>
        </ans:itemGlosado>
        <ans:itemGlosado>
          <ans:sequencialItem>1</ans:sequencialItem>
          <ans:valorGlosa>0.00</ans:valorGlosa>
          <ans:codigoGlosa>A1</ans:codigoGlosa>
        </ans:itemGlosado>
      </ans:guiaSP-SADT>
    </ans:demonstrativoAnaliseConta>
  </ans:operadoraParaPrestador>
</ans:mensagemTISS>
"""


def _glosa(*itens, **kwargs):
    return GlosaCreate(
        data_recebimento=kwargs.pop("data_recebimento", RECEBIMENTO),
        itens=[ItemGlosadoInput(sequencial_item=seq, codigo_glosa=codigo, valor_glosado=Decimal(valor))
               for seq, codigo, valor in itens],
        **kwargs,
    )


def _recurso(*sequenciais):
    return RecursoCreate(
        itens=[ItemRecursoInput(sequencial_item=seq, justificativa="Valor conforme tabela contratada") for seq in sequenciais],
        justificativa_geral="Procedimento realizado conforme contrato",
    )


@pytest.fixture
def service(db_session):
    return GlosaService(db_session)


@pytest.fixture
def glosa_pendente(service, sent_sadt):
    """Guia of 200.00 with 100.00 denied on line 1"""
    async def _make():
        guia = await sent_sadt()
        glosa = await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "100.00")))
        return guia, glosa
    return _make


@pytest.mark.asyncio
@pytest.mark.integration
class TestImportGlosa:
    async def test_partial_denial(self, glosa_pendente):
        guia, glosa = await glosa_pendente()

        assert glosa.status == "pendente"
        assert glosa.valor_original == Decimal("200.00")
        assert glosa.valor_glosado == Decimal("100.00")
        assert glosa.valor_aprovado == Decimal("100.00")
        assert glosa.prazo_recurso == date(2024, 7, 31)
        assert glosa.itens_glosados[0]["codigo_procedimento"] == "40301117"
        assert glosa.itens_glosados[0]["descricao_glosa"] == "Valor acima do contratado"
        assert guia.status == "glosada_parcial"
        assert guia.valor_glosado == Decimal("100.00")
        assert guia.valor_pago == Decimal("100.00")

    async def test_full_denial(self, service, sent_sadt):
        guia = await sent_sadt()
        await service.import_glosa(CLINIC, guia.id, _glosa((1, "A2", "150.00"), (2, "A2", "50.00")))

        assert guia.status == "glosada_total"
        assert guia.valor_pago == Decimal("0.00")

    async def test_explicit_deadline(self, service, sent_sadt):
        guia = await sent_sadt()
        glosa = await service.import_glosa(CLINIC, guia.id, _glosa((2, "B2", "10.00"), prazo_recurso=date(2024, 7, 15)))
        assert glosa.prazo_recurso == date(2024, 7, 15)

    async def test_draft_guia(self, service, builder, sadt_input):
        guia_id = await builder.create_guia_sadt(CLINIC, sadt_input())
        with pytest.raises(ClaimNotSubmitted):
            await service.import_glosa(CLINIC, guia_id, _glosa((1, "A7", "10.00")))

    async def test_paid_guia(self, service, builder, sent_sadt):
        guia = await sent_sadt()
        await builder.update_guia_status(CLINIC, guia.id, "autorizada")
        await builder.update_guia_status(CLINIC, guia.id, "paga")

        with pytest.raises(InvalidStatusTransition):
            await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "10.00")))

    async def test_unknown_item(self, service, sent_sadt):
        guia = await sent_sadt()
        with pytest.raises(ValidationException) as exc_info:
            await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "10.00"), (9, "A7", "10.00")))
        assert exc_info.value.details["line_index"] == 1

    async def test_cumulative_denial_above_line_value(self, service, glosa_pendente):
        guia, _ = await glosa_pendente()
        with pytest.raises(ValidationException) as exc_info:
            await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "60.00")))
        assert exc_info.value.details["valor_glosado"] == "160.00"

    async def test_second_glosa_accumulates(self, service, glosa_pendente):
        guia, _ = await glosa_pendente()
        await service.import_glosa(CLINIC, guia.id, _glosa((2, "A9", "50.00")))

        assert guia.valor_glosado == Decimal("150.00")
        assert guia.valor_pago == Decimal("50.00")
        assert len(await service.list_glosas(CLINIC, guia_id=guia.id)) == 2

    async def test_import_from_demonstrativo(self, service, sent_sadt):
        guia = await sent_sadt()
        glosa = await service.import_glosa_xml(CLINIC, DEMONSTRATIVO)

        assert glosa.guia_id == guia.id
        assert len(glosa.itens_glosados) == 1
        item = glosa.itens_glosados[0]
        assert item["sequencial_item"] == 2
        assert item["codigo_glosa"] == "A9"
        assert item["descricao_glosa"] == "Documentação incompleta"
        assert glosa.valor_glosado == Decimal("20.00")
        assert guia.numero_guia_operadora == "OP-778899"
        assert guia.status == "glosada_parcial"

    async def test_malformed_demonstrativo(self, service):
        with pytest.raises(ValidationException):
            await service.import_glosa_xml(CLINIC, "<ans:mensagemTISS")

    async def test_line_denied_twice_in_one_glosa(self):
        with pytest.raises(ValidationError):
            _glosa((1, "A7", "60.00"), (1, "A9", "40.00"))

    async def test_demonstrativo_with_line_denied_twice(self, service, sent_sadt):
        guia = await sent_sadt()
        repetido = DEMONSTRATIVO.replace(
            "<ans:valorGlosa>0.00</ans:valorGlosa>",
            "<ans:valorGlosa>5.00</ans:valorGlosa>",
        ).replace(
            "<ans:sequencialItem>1</ans:sequencialItem>",
            "<ans:sequencialItem>2</ans:sequencialItem>",
        )

        with pytest.raises(ValidationException) as exc_info:
            await service.import_glosa_xml(CLINIC, repetido)

        assert exc_info.value.details["sequencial_item"] == 2
        assert await service.list_glosas(CLINIC, guia_id=guia.id) == []


@pytest.mark.asyncio
@pytest.mark.integration
class TestRecurso:
    async def test_partial_recovery_pays_guia(self, service, glosa_pendente):
        guia, glosa = await glosa_pendente()

        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        assert recurso.status == "enviado"
        assert recurso.numero_recurso == f"REC20240710{glosa.id:06d}"
        assert recurso.valor_contestado == Decimal("100.00")
        assert recurso.data_envio == date(2024, 7, 10)
        assert validate_xml(recurso.xml_content).valid
        assert glosa.status == "em_recurso"
        assert glosa.itens_glosados[0]["justificativa_recurso"] == "Valor conforme tabela contratada"
        assert guia.status == "recurso"

        recurso = await service.resolve_recurso(
            CLINIC, recurso.id,
            RecursoResolve(status="aceito_parcial", valor_recuperado=Decimal("50.00"), data_resposta=date(2024, 8, 5)),
        )

        assert recurso.status == "aceito_parcial"
        assert recurso.valor_recuperado == Decimal("50.00")
        assert recurso.data_resposta == date(2024, 8, 5)
        assert glosa.status == "resolvida"
        assert glosa.valor_recuperado == Decimal("50.00")
        assert guia.status == "paga"
        assert guia.valor_glosado == Decimal("50.00")
        assert guia.valor_pago == Decimal("150.00")
        assert glosa.itens_glosados[0]["status_recurso"] == "aceito"
        assert glosa.itens_glosados[0]["valor_recuperado"] == "50.00"

    async def test_contested_value_covers_every_denied_item(self, service, sent_sadt):
        guia = await sent_sadt()
        glosa = await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "60.00"), (2, "A9", "40.00")))
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1, 2), data_referencia=date(2024, 7, 10))

        assert recurso.valor_contestado == glosa.valor_glosado == Decimal("100.00")

        await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="aceito"))
        assert guia.valor_glosado == Decimal("0.00")
        assert guia.valor_pago == Decimal("200.00")

    async def test_partial_recovery_is_spread_in_order(self, service, sent_sadt):
        guia = await sent_sadt()
        glosa = await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "100.00"), (2, "A9", "50.00")))
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1, 2), data_referencia=date(2024, 7, 10))

        await service.resolve_recurso(
            CLINIC, recurso.id, RecursoResolve(status="aceito_parcial", valor_recuperado=Decimal("80.00"))
        )

        primeiro, segundo = glosa.itens_glosados
        assert (primeiro["status_recurso"], primeiro["valor_recuperado"]) == ("aceito", "80.00")
        assert (segundo["status_recurso"], segundo["valor_recuperado"]) == ("negado", "0.00")
        assert guia.valor_glosado + guia.valor_pago == guia.valor_total

    async def test_accepted_recovers_contested_value(self, service, glosa_pendente):
        guia, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="aceito"))

        assert glosa.itens_glosados[0]["status_recurso"] == "aceito"
        assert guia.status == "paga"
        assert guia.valor_pago == Decimal("200.00")

    async def test_denied_keeps_denial(self, service, glosa_pendente):
        guia, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="negado"))

        assert glosa.itens_glosados[0]["status_recurso"] == "negado"
        assert glosa.valor_recuperado == Decimal("0.00")
        assert guia.valor_pago == Decimal("100.00")

    async def test_denied_with_value(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        with pytest.raises(ValidationException):
            await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="negado", valor_recuperado=Decimal("1")))

    async def test_partial_requires_value_within_contested(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        with pytest.raises(ValidationException):
            await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="aceito_parcial"))
        with pytest.raises(ValidationException) as exc_info:
            await service.resolve_recurso(
                CLINIC, recurso.id, RecursoResolve(status="aceito_parcial", valor_recuperado=Decimal("100.01"))
            )
        assert exc_info.value.details["valor_contestado"] == "100.00"

    async def test_analysis_then_answer(self, service, glosa_pendente):
        guia, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        recurso = await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="em_analise"))
        assert recurso.status == "em_analise"
        assert guia.status == "recurso"

        await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="aceito"))
        assert guia.status == "paga"

    async def test_answered_recurso_is_final(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))
        await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="negado"))

        with pytest.raises(InvalidStatusTransition):
            await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="aceito"))

    async def test_deadline_is_inclusive(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 31))
        assert recurso.status == "enviado"

    async def test_expired_deadline(self, service, glosa_pendente):
        guia, glosa = await glosa_pendente()

        with pytest.raises(AppealWindowExpired) as exc_info:
            await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 8, 1))

        assert exc_info.value.details["prazo_recurso"] == "2024-07-31"
        assert glosa.status == "pendente"
        assert guia.status == "glosada_parcial"

    async def test_glosa_not_pending(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        with pytest.raises(GlosaNotPending):
            await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

    async def test_item_not_denied(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        with pytest.raises(ValidationException):
            await service.create_recurso(CLINIC, glosa.id, _recurso(2), data_referencia=date(2024, 7, 10))

    async def test_duplicated_items_rejected_by_schema(self):
        with pytest.raises(ValueError):
            _recurso(1, 1)

    async def test_queries(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()
        recurso = await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))

        assert [g.id for g in await service.list_glosas(CLINIC, status="em_recurso")] == [glosa.id]
        assert [r.id for r in await service.list_recursos(CLINIC, glosa_id=glosa.id)] == [recurso.id]
        assert await service.list_recursos("clinic-2") == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_interpret_glosa(service, glosa_pendente):
    _, glosa = await glosa_pendente()

    result = await service.interpret_glosa(CLINIC, glosa.id, data_referencia=date(2024, 7, 21))

    assert result["denials"][0]["codigo"] == "A7"
    assert result["denials"][0]["category"] == "valor"
    assert result["summary"]["total_denials"] == 1
    assert result["dias_para_recurso"] == 10
    assert result["dentro_do_prazo"] is True
    assert result["prazo_recurso"] == "2024-07-31"


class FakeTransport:
    def __init__(self, result=None, delay=0):
        self.result = result or TransportResult(success=True, protocolo="PROT-REC-001")
        self.delay = delay
        self.sent = []

    async def send(self, xml_content, config):
        self.sent.append(xml_content)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


@pytest.fixture
def recurso_enviado(service, glosa_pendente):
    async def _make():
        _, glosa = await glosa_pendente()
        return await service.create_recurso(CLINIC, glosa.id, _recurso(1), data_referencia=date(2024, 7, 10))
    return _make


@pytest.mark.asyncio
@pytest.mark.integration
class TestTransmitRecurso:
    async def test_signed_and_sent(self, service, recurso_enviado, signer):
        recurso = await recurso_enviado()
        transport = FakeTransport()

        recurso = await service.transmit_recurso(CLINIC, recurso.id, transport, CONFIG, signer=signer)

        assert recurso.protocolo == "PROT-REC-001"
        assert recurso.data_transmissao is not None
        assert recurso.tentativas_envio == 1
        assert recurso.status == "enviado"
        assert transport.sent == [recurso.xml_content]
        assert verify_xml_signature(recurso.xml_content)
        assert validate_xml(recurso.xml_content).valid

    async def test_unsigned_without_certificate(self, service, recurso_enviado):
        recurso = await recurso_enviado()
        xml_content = recurso.xml_content
        transport = FakeTransport()

        recurso = await service.transmit_recurso(CLINIC, recurso.id, transport, CONFIG)

        assert transport.sent == [xml_content]
        assert recurso.xml_content == xml_content

    async def test_sent_only_once(self, service, recurso_enviado):
        recurso = await recurso_enviado()
        await service.transmit_recurso(CLINIC, recurso.id, FakeTransport(), CONFIG)

        with pytest.raises(ConflictException):
            await service.transmit_recurso(CLINIC, recurso.id, FakeTransport(), CONFIG)

    async def test_answered_recurso_is_not_sent(self, service, recurso_enviado):
        recurso = await recurso_enviado()
        await service.resolve_recurso(CLINIC, recurso.id, RecursoResolve(status="em_analise"))

        with pytest.raises(ConflictException):
            await service.transmit_recurso(CLINIC, recurso.id, FakeTransport(), CONFIG)

    async def test_refused_can_be_retried(self, service, recurso_enviado):
        recurso = await recurso_enviado()
        refused = FakeTransport(TransportResult(success=False, codigo="5001", mensagem="Prestador não habilitado"))

        with pytest.raises(TransmissionFailed) as exc:
            await service.transmit_recurso(CLINIC, recurso.id, refused, CONFIG)
        assert exc.value.status_code == 502
        assert exc.value.details["codigo"] == "5001"
        assert recurso.protocolo is None

        recurso = await service.transmit_recurso(CLINIC, recurso.id, FakeTransport(), CONFIG)
        assert recurso.protocolo == "PROT-REC-001"
        assert recurso.tentativas_envio == 2

    async def test_timeout(self, service, recurso_enviado):
        recurso = await recurso_enviado()

        with pytest.raises(TransmissionFailed) as exc:
            await service.transmit_recurso(CLINIC, recurso.id, FakeTransport(delay=5), CONFIG)
        assert exc.value.details["codigo"] == "TIMEOUT"


@pytest.mark.asyncio
@pytest.mark.integration
class TestPrazos:
    async def test_pending_glosas_within_window(self, service, sent_sadt):
        guia = await sent_sadt()
        proxima = await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "10.00")))
        distante = await service.import_glosa(
            CLINIC, guia.id, _glosa((2, "A9", "10.00"), data_recebimento=date(2024, 7, 20))
        )

        # prazos 2024-07-31 and 2024-08-19
        alertas = await service.list_glosas_near_deadline(CLINIC, dias=7, data_referencia=date(2024, 7, 28))

        assert [a.id for a in alertas] == [proxima.id]
        assert alertas[0].dias_restantes == 3
        assert alertas[0].prazo_recurso == date(2024, 7, 31)

        alertas = await service.list_glosas_near_deadline(CLINIC, dias=30, data_referencia=date(2024, 7, 28))
        assert [a.id for a in alertas] == [proxima.id, distante.id]

    async def test_expired_and_appealed_are_left_out(self, service, glosa_pendente, sent_sadt):
        _, appealed = await glosa_pendente()
        await service.create_recurso(CLINIC, appealed.id, _recurso(1), data_referencia=date(2024, 7, 10))
        guia = await sent_sadt()
        await service.import_glosa(CLINIC, guia.id, _glosa((1, "A7", "10.00")))

        assert await service.list_glosas_near_deadline(CLINIC, dias=7, data_referencia=date(2024, 8, 1)) == []
        assert await service.list_glosas_near_deadline(CLINIC, dias=30, data_referencia=date(2024, 7, 1)) != []
        assert await service.list_glosas_near_deadline("clinic-2", dias=30, data_referencia=date(2024, 7, 1)) == []

    async def test_deadline_day_is_included(self, service, glosa_pendente):
        _, glosa = await glosa_pendente()

        alertas = await service.list_glosas_near_deadline(CLINIC, dias=0, data_referencia=date(2024, 7, 31))

        assert [a.id for a in alertas] == [glosa.id]
        assert alertas[0].dias_restantes == 0
