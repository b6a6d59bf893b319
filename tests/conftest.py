"""
Pytest configuration and fixtures
"""
import os

# Must be set before database.py is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from database import Base
import app.models.tiss  # noqa: F401  registers the TISS tables
from app.schemas.tiss import (
    DadosBeneficiario,
    DadosContratado,
    DadosProfissional,
    GuiaConsultaCreate,
    GuiaSADTCreate,
    ProcedimentoInput,
)
from app.services.tiss.guide_builder import GuideBuilderService
from app.services.tiss.security import XMLSigner

# Test database URL (use in-memory SQLite for testing)
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///:memory:"
)

CLINIC_ID = "clinic-1"
REGISTRO_ANS = "123456"


@pytest.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False} if "sqlite" in TEST_DATABASE_URL else {},
        poolclass=StaticPool if "sqlite" in TEST_DATABASE_URL else None,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session
    """
    async_session_maker = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
def clinic_id() -> str:
    return CLINIC_ID


@pytest.fixture
def beneficiario() -> DadosBeneficiario:
    return DadosBeneficiario(
        numero_carteira="0012345678",
        nome_beneficiario="Maria da Silva",
        validade_carteira=date(2026, 12, 31),
    )


@pytest.fixture
def contratado() -> DadosContratado:
    return DadosContratado(
        codigo_prestador_na_operadora="PREST001",
        nome_contratado="Clínica Exemplo",
        cnes="1234567",
    )


@pytest.fixture
def profissional() -> DadosProfissional:
    return DadosProfissional(
        nome_profissional="Dr. João Souza",
        numero_conselho_profissional="123456",
        uf="SP",
        cbos="225125",
    )


@pytest.fixture
def consulta_input(beneficiario, contratado, profissional):
    """Factory of guia de consulta requests"""
    def _make(**overrides) -> GuiaConsultaCreate:
        data = {
            "registro_ans": REGISTRO_ANS,
            "nome_operadora": "Operadora Teste",
            "dados_beneficiario": beneficiario,
            "contratado_solicitante": contratado,
            "profissional_solicitante": profissional,
            "data_atendimento": date(2024, 6, 10),
            "codigo_procedimento": "10101012",
        }
        data.update(overrides)
        return GuiaConsultaCreate(**data)
    return _make


@pytest.fixture
def sadt_input(beneficiario, contratado, profissional):
    """Factory of guia SP/SADT requests, by default 150.00 + 50.00"""
    def _make(procedimentos=None, **overrides) -> GuiaSADTCreate:
        if procedimentos is None:
            procedimentos = [
                ProcedimentoInput(
                    data_realizacao=date(2024, 6, 10),
                    codigo_procedimento="40301117",
                    quantidade_realizada=2,
                    valor_unitario=Decimal("75.00"),
                ),
                ProcedimentoInput(
                    data_realizacao=date(2024, 6, 11),
                    codigo_procedimento="40302016",
                    valor_unitario=Decimal("50.00"),
                ),
            ]
        data = {
            "registro_ans": REGISTRO_ANS,
            "nome_operadora": "Operadora Teste",
            "dados_beneficiario": beneficiario,
            "contratado_solicitante": contratado,
            "profissional_solicitante": profissional,
            "contratado_executante": contratado,
            "profissional_executante": profissional,
            "data_solicitacao": date(2024, 6, 9),
            "procedimentos": procedimentos,
        }
        data.update(overrides)
        return GuiaSADTCreate(**data)
    return _make


@pytest.fixture
def builder(db_session) -> GuideBuilderService:
    return GuideBuilderService(db_session)


@pytest.fixture
def sent_sadt(builder, sadt_input):
    """Factory of SP/SADT guias already in 'enviada'"""
    async def _make(**overrides):
        guia_id = await builder.create_guia_sadt(CLINIC_ID, sadt_input(**overrides))
        return await builder.update_guia_status(CLINIC_ID, guia_id, "enviada")
    return _make


def make_certificate(private_key, valid_from=None, valid_until=None, common_name="CLINICA TESTE:12345678000190"):
    """Self-signed e-CNPJ style certificate"""
    now = datetime.now(timezone.utc)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(valid_from or now - timedelta(days=1))
        .not_valid_after(valid_until or now + timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def signer(signing_key) -> XMLSigner:
    return XMLSigner(signing_key, make_certificate(signing_key))


@pytest.fixture
def certificate_factory():
    return make_certificate
