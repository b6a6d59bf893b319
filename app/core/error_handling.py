"""
Error handling and logging utilities
Application exception hierarchy, TISS domain errors and FastAPI handlers
"""
import logging
import os
import traceback
from typing import Optional, Dict, Any, List
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import sentry_sdk

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception"""
    def __init__(self, message: str, status_code: int = 500, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(AppException):
    """Validation error exception"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


class NotFoundException(AppException):
    """Resource not found exception"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=404, details=details)


class ConflictException(AppException):
    """Resource conflict exception"""
    def __init__(self, message: str = "Resource conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=409, details=details)


# TISS domain errors

class InvalidProcedureCode(ValidationException):
    """Procedure code unknown, inactive or outside its validity window"""
    def __init__(self, codigo: str, line_index: Optional[int] = None, data_referencia: Optional[str] = None):
        details = {"codigo_procedimento": codigo}
        if line_index is not None:
            details["line_index"] = line_index
        if data_referencia:
            details["data_referencia"] = data_referencia
        super().__init__(f"Código TUSS inválido ou inativo: {codigo}", details)


class EmptyProcedureList(ValidationException):
    def __init__(self):
        super().__init__(
            "Guia SP/SADT deve conter ao menos um procedimento",
            {"field": "procedimentos_realizados"},
        )


class IncompleteBeneficiary(ValidationException):
    def __init__(self, field: str):
        super().__init__(
            f"Dados do beneficiário incompletos: {field}",
            {"field": f"dados_beneficiario.{field}"},
        )


class InvalidStatusTransition(ConflictException):
    """Status change not allowed by the claim or batch state machine"""
    def __init__(self, entity: str, entity_id: Any, current: str, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Transição de status inválida para {entity} {entity_id}: {current} -> {attempted}",
            {"entity": entity, "id": entity_id, "current_status": current, "attempted_status": attempted},
        )


class ClaimLocked(ConflictException):
    def __init__(self, guia_id: int, reason: str):
        super().__init__(
            f"Guia {guia_id} não pode ser alterada: {reason}",
            {"guia_id": guia_id, "reason": reason},
        )


class ClaimAlreadyBatched(ConflictException):
    def __init__(self, guia_ids: List[int]):
        super().__init__(
            "Guia(s) já incluída(s) em outro lote ou fora do status rascunho",
            {"guia_ids": guia_ids},
        )


class MixedOperatorBatch(ValidationException):
    def __init__(self, registros_ans: List[str]):
        super().__init__(
            "Todas as guias de um lote devem ser da mesma operadora",
            {"registros_ans": sorted(registros_ans)},
        )


class ClaimNotSubmitted(ConflictException):
    def __init__(self, guia_id: int, current: str):
        super().__init__(
            f"Guia {guia_id} ainda não foi enviada à operadora",
            {"guia_id": guia_id, "current_status": current},
        )


class GlosaNotPending(ConflictException):
    def __init__(self, glosa_id: int, current: str):
        super().__init__(
            f"Glosa {glosa_id} não está pendente",
            {"glosa_id": glosa_id, "current_status": current},
        )


class AppealWindowExpired(ConflictException):
    def __init__(self, glosa_id: int, prazo: str):
        super().__init__(
            f"Prazo para recurso da glosa {glosa_id} expirado em {prazo}",
            {"glosa_id": glosa_id, "prazo_recurso": prazo},
        )


class TransmissionFailed(AppException):
    """Operator webservice refused or did not answer"""
    def __init__(self, entity: str, entity_id: Any, codigo: str, mensagem: str):
        super().__init__(
            f"Envio de {entity} {entity_id} falhou: {mensagem}",
            status_code=502,
            details={"entity": entity, "id": entity_id, "codigo": codigo},
        )


class XmlValidationFailed(ValidationException):
    """Raised with every validation issue found, not only the first"""
    def __init__(self, errors: List[Dict[str, Any]], lote_id: Optional[int] = None):
        self.errors = errors
        details: Dict[str, Any] = {"errors": errors}
        if lote_id is not None:
            details["lote_id"] = lote_id
        super().__init__(f"Validação XML falhou com {len(errors)} erro(s)", details)


class ConcurrentModification(ConflictException):
    def __init__(self, entity: str, entity_id: Any, expected_version: Optional[int] = None,
                 current_version: Optional[int] = None):
        details = {"entity": entity, "id": entity_id}
        if expected_version is not None:
            details["expected_version"] = expected_version
            details["current_version"] = current_version
        super().__init__(f"{entity} {entity_id} foi modificado por outra operação", details)


def log_error(error: Exception, request: Optional[Request] = None, context: Optional[Dict[str, Any]] = None):
    """
    Log error with context and send to Sentry if configured
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if request:
        error_context.update({
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else None,
        })

    if context:
        error_context.update(context)

    if isinstance(error, RequestValidationError) or (isinstance(error, AppException) and error.status_code < 500):
        logger.warning(f"Request rejected: {error_context}")
        return

    error_context["traceback"] = traceback.format_exc()
    logger.error(f"Error occurred: {error_context}")

    # No-op when Sentry was not initialized
    sentry_sdk.capture_exception(error, contexts={"custom": error_context})


async def app_exception_handler(request: Request, exc: AppException):
    """Handle application exceptions"""
    log_error(exc, request)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "type": type(exc).__name__,
                "details": exc.details,
            }
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation exceptions with better formatting"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    log_error(exc, request, {"validation_errors": errors})

    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "message": "Validation error",
                "type": "ValidationError",
                "details": {
                    "errors": errors
                }
            }
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    log_error(exc, request)

    # Don't expose internal errors in production
    is_development = os.getenv("ENVIRONMENT", "development") == "development"

    error_detail = {
        "message": str(exc) if is_development else "Internal server error",
        "type": type(exc).__name__,
    }

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": error_detail
        }
    )
