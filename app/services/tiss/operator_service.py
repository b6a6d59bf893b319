"""
TISS Operator Service
Registry of operators billed by a clinic and their webservice settings
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.error_handling import NotFoundException, ValidationException
from app.models.tiss.operator import TISSOperator
from app.schemas.tiss import OperatorCreate, WebServiceConfig
from app.services.tiss.repository import TISSRepository
from app.services.tiss.security import CredentialCipher, get_credential_cipher
from config import settings

logger = logging.getLogger(__name__)


class OperatorService:
    """Service for operator registration and webservice configuration"""

    def __init__(self, db: AsyncSession, cipher: Optional[CredentialCipher] = None):
        self.db = db
        self.repository = TISSRepository(db)
        self.cipher = cipher or get_credential_cipher()

    async def save_operator(self, clinic_id: str, data: OperatorCreate) -> TISSOperator:
        """Create or update the operator identified by registro_ans"""
        operator = await self.repository.get_operator(clinic_id, data.registro_ans)
        if operator is None:
            operator = TISSOperator(clinic_id=clinic_id, registro_ans=data.registro_ans)
            self.repository.add(operator)

        operator.nome = data.nome
        operator.codigo_prestador = data.codigo_prestador
        operator.webservice_url = data.webservice_url
        operator.auth_type = data.auth_type
        operator.username = data.username
        operator.timeout = data.timeout
        operator.max_tentativas = data.max_tentativas
        operator.ativo = True
        if data.password is not None:
            operator.password_encrypted = self.cipher.encrypt(data.password)
        if data.token is not None:
            operator.token_encrypted = self.cipher.encrypt(data.token)

        await self.repository.flush("operadora", data.registro_ans)
        logger.info(f"Saved operator {data.registro_ans} for clinic {clinic_id}")
        return operator

    async def list_operators(self, clinic_id: str) -> List[TISSOperator]:
        return await self.repository.list_operators(clinic_id)

    async def get_webservice_config(self, clinic_id: str, registro_ans: str) -> WebServiceConfig:
        """
        Build the transport configuration for an operator

        Raises:
            NotFoundException: operator not registered for the clinic
            ValidationException: operator has no webservice URL
        """
        operator = await self.repository.get_operator(clinic_id, registro_ans)
        if operator is None or not operator.ativo:
            raise NotFoundException("Operadora não cadastrada", {"registro_ans": registro_ans})
        if not operator.webservice_url:
            raise ValidationException(
                "Operadora sem webservice configurado",
                {"registro_ans": registro_ans, "field": "webservice_url"},
            )

        return WebServiceConfig(
            url=operator.webservice_url,
            versao_tiss=settings.TISS_VERSAO,
            timeout=operator.timeout or settings.TISS_WEBSERVICE_TIMEOUT,
            auth_type=operator.auth_type,
            username=operator.username,
            password=self.cipher.decrypt(operator.password_encrypted),
            token=self.cipher.decrypt(operator.token_encrypted),
            max_tentativas=operator.max_tentativas or settings.TISS_WEBSERVICE_MAX_TENTATIVAS,
        )
