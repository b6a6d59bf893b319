"""
TISS Glosa and Recurso Models
Denials received from operators and the appeals filed against them
"""

from sqlalchemy import Column, Integer, ForeignKey, String, Date, Numeric, Text, DateTime, JSON, Index
from database import Base, utcnow


class TISSGlosa(Base):
    """TISS Glosa - denial statement for one guia"""
    __tablename__ = "tiss_glosas"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(String(50), nullable=False, index=True)
    guia_id = Column(Integer, ForeignKey("tiss_guias.id", ondelete="CASCADE"), nullable=False, index=True)

    # Denormalized from the guia for reporting
    numero_guia_prestador = Column(String(20), nullable=False)
    tipo_guia = Column(String(20), nullable=False)
    registro_ans = Column(String(6), nullable=False)
    nome_operadora = Column(String(200), nullable=True)

    data_recebimento = Column(Date, nullable=False)
    prazo_recurso = Column(Date, nullable=False)

    # Financial
    valor_original = Column(Numeric(12, 2), nullable=False)
    valor_glosado = Column(Numeric(12, 2), nullable=False)
    valor_aprovado = Column(Numeric(12, 2), nullable=False)
    valor_recuperado = Column(Numeric(12, 2), nullable=False, default=0)

    itens_glosados = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="pendente", index=True)  # pendente, em_recurso, resolvida
    observacao_operadora = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    __table_args__ = (
        Index('ix_tiss_glosas_clinic_recebimento', 'clinic_id', 'data_recebimento'),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<TISSGlosa(id={self.id}, guia_id={self.guia_id}, status='{self.status}')>"


class TISSRecurso(Base):
    """TISS Recurso de Glosa - appeal against a glosa"""
    __tablename__ = "tiss_recursos"

    id = Column(Integer, primary_key=True, index=True)
    clinic_id = Column(String(50), nullable=False, index=True)
    glosa_id = Column(Integer, ForeignKey("tiss_glosas.id", ondelete="CASCADE"), nullable=False, index=True)
    guia_id = Column(Integer, ForeignKey("tiss_guias.id", ondelete="CASCADE"), nullable=False, index=True)

    numero_recurso = Column(String(30), nullable=False)
    itens_contestados = Column(JSON, nullable=False)
    justificativa_geral = Column(Text, nullable=False)
    valor_contestado = Column(Numeric(12, 2), nullable=False)

    status = Column(String(20), nullable=False, default="enviado", index=True)  # enviado, em_analise, aceito, negado, aceito_parcial
    resposta_operadora = Column(Text, nullable=True)
    data_envio = Column(Date, nullable=False)
    data_resposta = Column(Date, nullable=True)
    valor_recuperado = Column(Numeric(12, 2), nullable=True)

    xml_content = Column(Text, nullable=True)

    # Webservice transmission
    protocolo = Column(String(100), nullable=True)
    data_transmissao = Column(DateTime(timezone=True), nullable=True)
    tentativas_envio = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<TISSRecurso(id={self.id}, numero='{self.numero_recurso}', status='{self.status}')>"
