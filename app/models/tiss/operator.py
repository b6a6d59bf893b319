"""
TISS Operator Model
Health insurance operators a clinic bills, with their webservice endpoint
"""

from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, UniqueConstraint
from database import Base, utcnow


class TISSOperator(Base):
    """Operadora de plano de saúde"""
    __tablename__ = "tiss_operadoras"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(String(50), nullable=False, index=True)

    registro_ans = Column(String(6), nullable=False)
    nome = Column(String(200), nullable=False)
    codigo_prestador = Column(String(20), nullable=True)  # clinic code at this operator

    # Webservice
    webservice_url = Column(String(500), nullable=True)
    auth_type = Column(String(20), nullable=False, default="none")  # none, basic, bearer
    username = Column(String(100), nullable=True)
    password_encrypted = Column(Text, nullable=True)
    token_encrypted = Column(Text, nullable=True)
    timeout = Column(Integer, nullable=True)
    max_tentativas = Column(Integer, nullable=True)

    ativo = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('clinic_id', 'registro_ans', name='uq_tiss_operadoras_clinic_ans'),
    )

    def __repr__(self):
        return f"<TISSOperator(id={self.id}, registro_ans='{self.registro_ans}', nome='{self.nome}')>"
