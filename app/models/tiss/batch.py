"""
TISS Batch Model
Stores batch (lote) data for TISS submissions
"""

from sqlalchemy import Column, Integer, String, Numeric, Text, DateTime, JSON, Index, UniqueConstraint
from database import Base, utcnow


class TISSBatch(Base):
    """TISS Batch - Lote de Guias"""
    __tablename__ = "tiss_lotes"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(String(50), nullable=False, index=True)

    # Batch identification
    numero_lote = Column(String(20), nullable=False)
    registro_ans = Column(String(6), nullable=False)
    nome_operadora = Column(String(200), nullable=True)

    # Guides in batch, in submission order
    guia_ids = Column(JSON, nullable=False)
    quantidade_guias = Column(Integer, nullable=False, default=0)
    valor_total = Column(Numeric(12, 2), nullable=False, default=0)

    # Batch content
    xml_content = Column(Text, nullable=True)
    xml_hash = Column(String(64), nullable=True)

    # Submission tracking
    status = Column(String(20), nullable=False, default="rascunho", index=True)
    protocolo = Column(String(100), nullable=True)
    erros = Column(JSON, nullable=False, default=list)  # [{guia_id, codigo, mensagem, campo}]
    tentativas_envio = Column(Integer, nullable=False, default=0)
    versao_tiss = Column(String(20), nullable=False, default="4.02.00")

    version = Column(Integer, nullable=False)

    # Timestamps
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
    data_envio = Column(DateTime(timezone=True), nullable=True)
    data_processamento = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('clinic_id', 'numero_lote', name='uq_tiss_lotes_clinic_numero'),
        Index('ix_tiss_lotes_clinic_status', 'clinic_id', 'status'),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<TISSBatch(id={self.id}, numero_lote='{self.numero_lote}', status='{self.status}')>"
