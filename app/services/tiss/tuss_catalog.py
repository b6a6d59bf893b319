"""
TUSS Catalog
Read-only lookup and search over TUSS procedure codes
"""

import logging
import unicodedata
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from app.schemas.tiss import CodigoTUSS
from app.services.tiss.tuss_data import TUSS_CODES

logger = logging.getLogger(__name__)


def _normalize(text: str) -> str:
    """Lowercase and strip accents so 'domicilio' matches 'Domicílio'"""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


class TUSSCatalog:
    """
    Immutable TUSS code table

    The catalog is built once and injected into the services that price
    procedures, so tests and tenants can supply their own table.
    """

    def __init__(self, codes: Iterable[CodigoTUSS]):
        by_code: Dict[str, CodigoTUSS] = {}
        for code in codes:
            by_code[code.codigo] = code
        self._codes = dict(sorted(by_code.items()))

    @classmethod
    def default(cls) -> "TUSSCatalog":
        """Catalog with the bundled reference table"""
        return cls(
            CodigoTUSS(
                codigo=codigo,
                descricao=descricao,
                grupo=grupo,
                subgrupo=subgrupo,
                valor_referencia=Decimal(valor),
                vigencia_inicio=date.fromisoformat(vigencia),
                ativo=ativo,
            )
            for codigo, descricao, grupo, subgrupo, valor, vigencia, ativo in TUSS_CODES
        )

    def __len__(self) -> int:
        return len(self._codes)

    def _is_visible(self, code: CodigoTUSS, include_inactive: bool, data_referencia: Optional[date]) -> bool:
        if include_inactive:
            return True
        return code.is_vigente(data_referencia or date.today())

    def search_tuss_codes(
        self,
        query: str,
        limit: int = 50,
        include_inactive: bool = False,
        data_referencia: Optional[date] = None,
    ) -> List[CodigoTUSS]:
        """
        Search TUSS codes by description or code

        Args:
            query: Case-insensitive text matched against description and code
            limit: Maximum number of results
            include_inactive: Also return inactive or expired codes
            data_referencia: Date used for the validity window (default today)

        Returns:
            Matching codes ordered by ascending code
        """
        term = _normalize(query.strip())
        results = []
        for code in self._codes.values():
            if not self._is_visible(code, include_inactive, data_referencia):
                continue
            if term in code.codigo or term in _normalize(code.descricao):
                results.append(code)
                if len(results) >= limit:
                    break
        return results

    def get_tuss_code_by_code(
        self,
        codigo: str,
        include_inactive: bool = False,
        data_referencia: Optional[date] = None,
    ) -> Optional[CodigoTUSS]:
        """Get a TUSS code, None when unknown or not valid at data_referencia"""
        code = self._codes.get(codigo.strip())
        if code is None or not self._is_visible(code, include_inactive, data_referencia):
            return None
        return code

    def is_valid(self, codigo: str, data_referencia: Optional[date] = None) -> bool:
        return self.get_tuss_code_by_code(codigo, data_referencia=data_referencia) is not None

    def get_groups(self) -> List[str]:
        return sorted({code.grupo for code in self._codes.values()})

    def get_by_group(self, grupo: str, include_inactive: bool = False) -> List[CodigoTUSS]:
        return [
            code for code in self._codes.values()
            if code.grupo == grupo and self._is_visible(code, include_inactive, None)
        ]


_default_catalog: Optional[TUSSCatalog] = None


def get_tuss_catalog() -> TUSSCatalog:
    """Shared default catalog, usable as a FastAPI dependency"""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = TUSSCatalog.default()
        logger.info(f"TUSS catalog loaded with {len(_default_catalog)} codes")
    return _default_catalog
