"""
TISS Billing Reports
Read-only billing and denial projections over a period
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.error_handling import ValidationException
from app.schemas.tiss import (
    AnaliseGlosas,
    EstatisticasGlosas,
    FaturamentoOperadora,
    GlosasPorMotivo,
    GlosasPorOperadora,
    Periodo,
    ResumoFaturamento,
    to_money,
)
from app.services.tiss.denial_interpreter import DenialInterpreter
from app.services.tiss.repository import TISSRepository
from app.services.tiss.status_machine import StatusGuia
from config import settings

logger = logging.getLogger(__name__)

TIPOS_GUIA = ("consulta", "sadt")

PERIODOS_ESTATISTICA = {"mes": 30, "trimestre": 90, "ano": 365}


def percentual(parte: Decimal, total: Decimal) -> Decimal:
    """parte / total as a 2-place percentage, 0 when total is 0"""
    if not total:
        return Decimal("0.00")
    return to_money(Decimal(parte) * 100 / Decimal(total))


class BillingReportService:
    """Service for billing summaries and glosa analysis"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = TISSRepository(db)
        self.interpreter = DenialInterpreter()

    @staticmethod
    def _check_periodo(inicio: date, fim: date) -> Periodo:
        if fim < inicio:
            raise ValidationException("Data final anterior à data inicial", {"inicio": str(inicio), "fim": str(fim)})
        return Periodo(inicio=inicio, fim=fim)

    async def get_resumo_faturamento(self, clinic_id: str, inicio: date, fim: date) -> ResumoFaturamento:
        """
        Billing summary of the guias attended in [inicio, fim]

        Args:
            clinic_id: Tenant
            inicio: First attendance date
            fim: Last attendance date
        """
        periodo = self._check_periodo(inicio, fim)
        guias = await self.repository.list_guias(clinic_id, data_inicio=inicio, data_fim=fim)

        por_tipo = {tipo: 0 for tipo in TIPOS_GUIA}
        por_status = {status.value: 0 for status in StatusGuia}
        por_operadora: Dict[str, FaturamentoOperadora] = {}
        faturado = glosado = recebido = Decimal("0.00")

        for guia in guias:
            por_tipo[guia.tipo] = por_tipo.get(guia.tipo, 0) + 1
            por_status[guia.status] = por_status.get(guia.status, 0) + 1

            valor_total = to_money(guia.valor_total)
            valor_glosado = to_money(guia.valor_glosado)
            valor_pago = to_money(guia.valor_pago)
            faturado += valor_total
            glosado += valor_glosado
            recebido += valor_pago

            operadora = por_operadora.setdefault(
                guia.registro_ans,
                FaturamentoOperadora(registro_ans=guia.registro_ans, nome_operadora=guia.nome_operadora),
            )
            operadora.quantidade_guias += 1
            operadora.valor_faturado += valor_total
            operadora.valor_glosado += valor_glosado
            operadora.valor_recebido += valor_pago

        logger.info(f"Billing summary for clinic {clinic_id} {inicio}..{fim}: {len(guias)} guia(s)")
        return ResumoFaturamento(
            periodo=periodo,
            total_guias=len(guias),
            guias_por_tipo=por_tipo,
            guias_por_status=por_status,
            valor_total_faturado=faturado,
            valor_total_glosado=glosado,
            valor_total_recebido=recebido,
            taxa_glosa=percentual(glosado, faturado),
            por_operadora=sorted(por_operadora.values(), key=lambda o: o.registro_ans),
        )

    async def get_analise_glosas(self, clinic_id: str, inicio: date, fim: date) -> AnaliseGlosas:
        """Denials of the guias attended in [inicio, fim], by reason and by operator"""
        periodo = self._check_periodo(inicio, fim)
        glosas = await self.repository.list_glosas(clinic_id, atendimento_inicio=inicio, atendimento_fim=fim)

        por_motivo: Dict[str, Dict] = {}
        por_operadora: Dict[str, GlosasPorOperadora] = {}
        valor_glosado = valor_recuperado = Decimal("0.00")

        for glosa in glosas:
            valor_glosado += to_money(glosa.valor_glosado)
            if glosa.status == "resolvida":
                valor_recuperado += to_money(glosa.valor_recuperado)

            for item in glosa.itens_glosados:
                motivo = por_motivo.setdefault(item["codigo_glosa"], {
                    "motivo": item["codigo_glosa"],
                    "descricao": self.interpreter.describe(item["codigo_glosa"]),
                    "quantidade": 0,
                    "valor": Decimal("0.00"),
                })
                motivo["quantidade"] += 1
                motivo["valor"] += to_money(item["valor_glosado"])

            operadora = por_operadora.setdefault(
                glosa.registro_ans,
                GlosasPorOperadora(
                    registro_ans=glosa.registro_ans,
                    nome_operadora=glosa.nome_operadora,
                    quantidade=0,
                    valor=Decimal("0.00"),
                ),
            )
            operadora.quantidade += 1
            operadora.valor += to_money(glosa.valor_glosado)

        total_motivos = sum((m["valor"] for m in por_motivo.values()), Decimal("0.00"))
        return AnaliseGlosas(
            periodo=periodo,
            total_glosas=len(glosas),
            valor_total_glosado=valor_glosado,
            valor_recuperado=valor_recuperado,
            taxa_recuperacao=percentual(valor_recuperado, valor_glosado),
            por_motivo=[
                GlosasPorMotivo(**m, percentual=percentual(m["valor"], total_motivos))
                for m in sorted(por_motivo.values(), key=lambda m: m["valor"], reverse=True)
            ],
            por_operadora=sorted(por_operadora.values(), key=lambda o: o.registro_ans),
        )

    async def get_estatisticas_glosas(
        self,
        clinic_id: str,
        periodo: str = "mes",
        data_referencia: Optional[date] = None,
    ) -> EstatisticasGlosas:
        """
        Glosas received in the last month, quarter or year

        Besides totals by status and the five costliest reasons, counts the
        pending glosas whose appeal deadline is near or already past.
        """
        if periodo not in PERIODOS_ESTATISTICA:
            raise ValidationException(
                "Período inválido",
                {"periodo": periodo, "permitidos": sorted(PERIODOS_ESTATISTICA)},
            )
        fim = data_referencia or date.today()
        inicio = fim - timedelta(days=PERIODOS_ESTATISTICA[periodo])
        glosas = await self.repository.list_glosas(clinic_id, data_inicio=inicio, data_fim=fim)

        por_status = {"pendente": 0, "em_recurso": 0, "resolvida": 0}
        por_motivo: Dict[str, Dict] = {}
        valor_glosado = valor_recuperado = Decimal("0.00")
        prazos_proximos = prazos_vencidos = 0
        limite_alerta = fim + timedelta(days=settings.TISS_ALERTA_PRAZO_DIAS)

        for glosa in glosas:
            por_status[glosa.status] = por_status.get(glosa.status, 0) + 1
            valor_glosado += to_money(glosa.valor_glosado)
            valor_recuperado += to_money(glosa.valor_recuperado)

            if glosa.status == "pendente":
                if glosa.prazo_recurso < fim:
                    prazos_vencidos += 1
                elif glosa.prazo_recurso <= limite_alerta:
                    prazos_proximos += 1

            for item in glosa.itens_glosados:
                motivo = por_motivo.setdefault(item["codigo_glosa"], {
                    "motivo": item["codigo_glosa"],
                    "descricao": self.interpreter.describe(item["codigo_glosa"]),
                    "quantidade": 0,
                    "valor": Decimal("0.00"),
                })
                motivo["quantidade"] += 1
                motivo["valor"] += to_money(item["valor_glosado"])

        principais = sorted(por_motivo.values(), key=lambda m: (-m["valor"], m["motivo"]))[:5]
        return EstatisticasGlosas(
            periodo=Periodo(inicio=inicio, fim=fim),
            total_glosas=len(glosas),
            valor_total_glosado=valor_glosado,
            valor_recuperado=valor_recuperado,
            taxa_recuperacao=percentual(valor_recuperado, valor_glosado),
            glosas_por_status=por_status,
            principais_motivos=[GlosasPorMotivo(**m, percentual=percentual(m["valor"], valor_glosado)) for m in principais],
            prazos_proximos=prazos_proximos,
            prazos_vencidos=prazos_vencidos,
        )
