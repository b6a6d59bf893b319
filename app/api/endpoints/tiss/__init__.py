"""
TISS API Endpoints
"""

from .guides import router as guides_router
from .batch import router as batch_router
from .glosas import router as glosas_router
from .tuss import router as tuss_router
from .reports import router as reports_router
from .operators import router as operators_router

__all__ = [
    'guides_router',
    'batch_router',
    'glosas_router',
    'tuss_router',
    'reports_router',
    'operators_router',
]
