"""
Tests for the TUSS catalog
"""
import pytest
from datetime import date
from decimal import Decimal

from app.schemas.tiss import CodigoTUSS
from app.services.tiss.tuss_catalog import TUSSCatalog, get_tuss_catalog


def _code(codigo, descricao, **kwargs):
    data = {
        "codigo": codigo,
        "descricao": descricao,
        "grupo": "Teste",
        "valor_referencia": Decimal("10.00"),
        "vigencia_inicio": date(2024, 1, 1),
    }
    data.update(kwargs)
    return CodigoTUSS(**data)


@pytest.fixture
def catalog():
    return TUSSCatalog([
        _code("30000002", "Procedimento B"),
        _code("30000001", "Procedimento A"),
        _code("30000003", "Procedimento inativo", ativo=False),
        _code("30000004", "Procedimento encerrado", vigencia_fim=date(2024, 3, 31)),
        _code("30000005", "Procedimento futuro", vigencia_inicio=date(2025, 1, 1)),
    ])


@pytest.mark.unit
class TestTUSSCatalog:
    def test_search_by_description_is_case_insensitive_and_ordered(self, catalog):
        results = catalog.search_tuss_codes("procedimento", data_referencia=date(2024, 6, 1))
        assert [c.codigo for c in results] == ["30000001", "30000002"]

    def test_search_by_code_fragment(self, catalog):
        results = catalog.search_tuss_codes("0002", data_referencia=date(2024, 6, 1))
        assert [c.codigo for c in results] == ["30000002"]

    def test_search_respects_limit(self, catalog):
        results = catalog.search_tuss_codes("procedimento", limit=1, data_referencia=date(2024, 6, 1))
        assert len(results) == 1

    def test_search_hides_inactive_unless_requested(self, catalog):
        hidden = catalog.search_tuss_codes("inativo", data_referencia=date(2024, 6, 1))
        shown = catalog.search_tuss_codes("inativo", include_inactive=True)
        assert hidden == []
        assert [c.codigo for c in shown] == ["30000003"]

    def test_search_ignores_accents(self):
        catalog = TUSSCatalog([_code("10101020", "Consulta em domicílio")])
        results = catalog.search_tuss_codes("DOMICILIO", data_referencia=date(2024, 6, 1))
        assert [c.codigo for c in results] == ["10101020"]

    def test_validity_window(self, catalog):
        assert catalog.get_tuss_code_by_code("30000004", data_referencia=date(2024, 3, 31)) is not None
        assert catalog.get_tuss_code_by_code("30000004", data_referencia=date(2024, 4, 1)) is None
        assert catalog.get_tuss_code_by_code("30000005", data_referencia=date(2024, 12, 31)) is None
        assert catalog.get_tuss_code_by_code("30000005", data_referencia=date(2025, 1, 1)) is not None

    def test_unknown_code(self, catalog):
        assert catalog.get_tuss_code_by_code("99999999") is None
        assert catalog.is_valid("99999999") is False

    def test_groups(self, catalog):
        assert catalog.get_groups() == ["Teste"]
        assert len(catalog.get_by_group("Teste", include_inactive=True)) == 5


@pytest.mark.unit
def test_default_catalog_has_reference_values():
    catalog = get_tuss_catalog()
    consulta = catalog.get_tuss_code_by_code("10101012", data_referencia=date(2024, 6, 10))

    assert consulta is not None
    assert consulta.valor_referencia == Decimal("150.00")
    assert "Procedimentos clínicos" in catalog.get_groups()
    assert get_tuss_catalog() is catalog
