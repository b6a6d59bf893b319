"""
TISS Database Models
SQLAlchemy models for TISS module tables
"""

from .guide import TISSGuide
from .batch import TISSBatch
from .glosa import TISSGlosa, TISSRecurso
from .operator import TISSOperator

__all__ = [
    'TISSGuide',
    'TISSBatch',
    'TISSGlosa',
    'TISSRecurso',
    'TISSOperator',
]
