"""
TISS Services
Claims, batches, denials and billing reports
"""

from .tuss_catalog import TUSSCatalog, get_tuss_catalog
from .guide_builder import GuideBuilderService
from .batch_assembler import BatchAssemblerService
from .glosa_service import GlosaService
from .operator_service import OperatorService
from .reports import BillingReportService
from .denial_interpreter import DenialInterpreter
from .transport import SOAPTransport

__all__ = [
    'TUSSCatalog',
    'get_tuss_catalog',
    'GuideBuilderService',
    'BatchAssemblerService',
    'GlosaService',
    'OperatorService',
    'BillingReportService',
    'DenialInterpreter',
    'SOAPTransport',
]
