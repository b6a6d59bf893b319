"""
Tests for the guia and lote status machines
"""
import pytest

from app.core.error_handling import InvalidStatusTransition
from app.services.tiss.status_machine import (
    GUIA_TRANSITIONS,
    StatusGuia,
    StatusLote,
    can_transition_guia,
    can_transition_lote,
    ensure_guia_transition,
    ensure_lote_transition,
)


@pytest.mark.unit
class TestGuiaTransitions:
    @pytest.mark.parametrize("current,new", [
        ("rascunho", "enviada"),
        ("enviada", "em_analise"),
        ("enviada", "glosada_total"),
        ("em_analise", "autorizada"),
        ("autorizada", "paga"),
        ("glosada_parcial", "recurso"),
        ("glosada_total", "recurso"),
        ("recurso", "paga"),
        ("recurso", "glosada_parcial"),
    ])
    def test_allowed(self, current, new):
        assert can_transition_guia(current, new)

    @pytest.mark.parametrize("current,new", [
        ("rascunho", "paga"),
        ("enviada", "rascunho"),
        ("enviada", "paga"),
        ("paga", "recurso"),
        ("autorizada", "recurso"),
        ("rascunho", "inexistente"),
    ])
    def test_refused(self, current, new):
        assert not can_transition_guia(current, new)

    def test_paga_is_terminal(self):
        assert GUIA_TRANSITIONS[StatusGuia.PAGA] == frozenset()

    def test_ensure_raises_with_both_statuses(self):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            ensure_guia_transition(7, "rascunho", "paga")

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["current_status"] == "rascunho"
        assert exc_info.value.details["attempted_status"] == "paga"

    def test_ensure_accepts_enum(self):
        assert ensure_guia_transition(1, StatusGuia.RASCUNHO, StatusGuia.ENVIADA) == StatusGuia.ENVIADA


@pytest.mark.unit
class TestLoteTransitions:
    def test_happy_path(self):
        path = ["rascunho", "validando", "pronto", "enviando", "enviado", "processado"]
        for current, new in zip(path, path[1:]):
            assert can_transition_lote(current, new)

    def test_retry_after_error(self):
        assert can_transition_lote("enviando", "erro")
        assert can_transition_lote("erro", "enviando")

    def test_validation_failure_returns_to_rascunho(self):
        assert can_transition_lote("validando", "rascunho")

    def test_cannot_skip_validation(self):
        with pytest.raises(InvalidStatusTransition):
            ensure_lote_transition(3, "rascunho", "enviando")

    def test_processado_is_terminal(self):
        for status in StatusLote:
            assert not can_transition_lote("processado", status.value)
