"""
TISS Guide Model
Stores consulta and SP/SADT guias (claims) with their financial state
"""

from sqlalchemy import Column, Integer, ForeignKey, String, Date, Numeric, Text, DateTime, JSON, Index, UniqueConstraint
from database import Base, utcnow


class TISSGuide(Base):
    """TISS Guide - Guia de Consulta ou SP/SADT"""
    __tablename__ = "tiss_guias"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(String(50), nullable=False, index=True)
    patient_id = Column(Integer, nullable=True, index=True)
    appointment_id = Column(Integer, nullable=True)

    # Identification
    tipo = Column(String(20), nullable=False)  # 'consulta', 'sadt'
    status = Column(String(20), nullable=False, default="rascunho", index=True)
    numero_guia_prestador = Column(String(20), nullable=False)
    numero_guia_operadora = Column(String(20), nullable=True)

    # Operator
    registro_ans = Column(String(6), nullable=False, index=True)
    nome_operadora = Column(String(200), nullable=True)

    data_atendimento = Column(Date, nullable=False)

    # Financial
    valor_total = Column(Numeric(12, 2), nullable=False, default=0)
    valor_glosado = Column(Numeric(12, 2), nullable=False, default=0)
    valor_pago = Column(Numeric(12, 2), nullable=False, default=0)

    # Content: JSON of GuiaConsulta / GuiaSADT, tagged by 'tipo'
    dados_guia = Column(JSON, nullable=False)
    xml_content = Column(Text, nullable=True)

    # Current non-terminal lote holding this guia
    lote_id = Column(Integer, ForeignKey("tiss_lotes.id", ondelete="SET NULL"), nullable=True, index=True)

    version = Column(Integer, nullable=False)

    # Audit
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('clinic_id', 'numero_guia_prestador', name='uq_tiss_guias_clinic_numero'),
        Index('ix_tiss_guias_clinic_status', 'clinic_id', 'status'),
        Index('ix_tiss_guias_clinic_data', 'clinic_id', 'data_atendimento'),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<TISSGuide(id={self.id}, numero='{self.numero_guia_prestador}', status='{self.status}')>"
