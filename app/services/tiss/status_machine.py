"""
TISS Status Machines
Allowed status transitions for guias (claims) and lotes (batches)
"""

import enum
from typing import Dict, FrozenSet

from app.core.error_handling import InvalidStatusTransition


class StatusGuia(str, enum.Enum):
    """Claim lifecycle status"""
    RASCUNHO = "rascunho"
    ENVIADA = "enviada"
    EM_ANALISE = "em_analise"
    AUTORIZADA = "autorizada"
    GLOSADA_PARCIAL = "glosada_parcial"
    GLOSADA_TOTAL = "glosada_total"
    PAGA = "paga"
    RECURSO = "recurso"


class StatusLote(str, enum.Enum):
    """Batch lifecycle status"""
    RASCUNHO = "rascunho"
    VALIDANDO = "validando"
    PRONTO = "pronto"
    ENVIANDO = "enviando"
    ENVIADO = "enviado"
    ERRO = "erro"
    PROCESSADO = "processado"


GUIA_TRANSITIONS: Dict[StatusGuia, FrozenSet[StatusGuia]] = {
    StatusGuia.RASCUNHO: frozenset({StatusGuia.ENVIADA}),
    StatusGuia.ENVIADA: frozenset({
        StatusGuia.EM_ANALISE,
        StatusGuia.AUTORIZADA,
        StatusGuia.GLOSADA_PARCIAL,
        StatusGuia.GLOSADA_TOTAL,
    }),
    StatusGuia.EM_ANALISE: frozenset({
        StatusGuia.AUTORIZADA,
        StatusGuia.GLOSADA_PARCIAL,
        StatusGuia.GLOSADA_TOTAL,
    }),
    StatusGuia.AUTORIZADA: frozenset({
        StatusGuia.PAGA,
        StatusGuia.GLOSADA_PARCIAL,
        StatusGuia.GLOSADA_TOTAL,
    }),
    StatusGuia.GLOSADA_PARCIAL: frozenset({
        StatusGuia.RECURSO,
        StatusGuia.GLOSADA_TOTAL,
        StatusGuia.PAGA,
    }),
    StatusGuia.GLOSADA_TOTAL: frozenset({StatusGuia.RECURSO, StatusGuia.PAGA}),
    StatusGuia.RECURSO: frozenset({
        StatusGuia.PAGA,
        StatusGuia.GLOSADA_PARCIAL,
        StatusGuia.GLOSADA_TOTAL,
    }),
    StatusGuia.PAGA: frozenset(),
}

LOTE_TRANSITIONS: Dict[StatusLote, FrozenSet[StatusLote]] = {
    StatusLote.RASCUNHO: frozenset({StatusLote.VALIDANDO}),
    StatusLote.VALIDANDO: frozenset({StatusLote.PRONTO, StatusLote.RASCUNHO}),
    StatusLote.PRONTO: frozenset({StatusLote.ENVIANDO}),
    StatusLote.ENVIANDO: frozenset({StatusLote.ENVIADO, StatusLote.ERRO}),
    StatusLote.ERRO: frozenset({StatusLote.ENVIANDO, StatusLote.PROCESSADO}),
    StatusLote.ENVIADO: frozenset({StatusLote.PROCESSADO}),
    StatusLote.PROCESSADO: frozenset(),
}

# Claims in these states may receive a denial statement
GLOSAVEL_GUIA_STATUSES = frozenset({
    StatusGuia.ENVIADA,
    StatusGuia.EM_ANALISE,
    StatusGuia.AUTORIZADA,
    StatusGuia.GLOSADA_PARCIAL,
})

# A lote in one of these states may be deleted, releasing its guias
CANCELAVEL_LOTE_STATUSES = frozenset({StatusLote.RASCUNHO, StatusLote.PRONTO, StatusLote.ERRO})


def status_value(status) -> str:
    """Plain string value of a status given as enum or str"""
    return status.value if isinstance(status, enum.Enum) else str(status)


def can_transition_guia(current: str, new: str) -> bool:
    try:
        return StatusGuia(new) in GUIA_TRANSITIONS[StatusGuia(current)]
    except ValueError:
        return False


def can_transition_lote(current: str, new: str) -> bool:
    try:
        return StatusLote(new) in LOTE_TRANSITIONS[StatusLote(current)]
    except ValueError:
        return False


def ensure_guia_transition(guia_id, current: str, new: str) -> StatusGuia:
    """
    Check a claim transition against the state machine

    Raises:
        InvalidStatusTransition: naming both the current and attempted status
    """
    if not can_transition_guia(current, new):
        raise InvalidStatusTransition("guia", guia_id, status_value(current), status_value(new))
    return StatusGuia(new)


def ensure_lote_transition(lote_id, current: str, new: str) -> StatusLote:
    """Check a batch transition against the state machine"""
    if not can_transition_lote(current, new):
        raise InvalidStatusTransition("lote", lote_id, status_value(current), status_value(new))
    return StatusLote(new)
