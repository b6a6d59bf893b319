from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import uvicorn
import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file FIRST, before any other imports
load_dotenv()

# Set SQLAlchemy engine logging to WARNING level to reduce query log noise
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

from config import settings
from app.api.endpoints.tiss import (
    guides_router,
    batch_router,
    glosas_router,
    tuss_router,
    reports_router,
    operators_router,
)
from app.core.error_handling import (
    AppException,
    app_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from app.core.monitoring import init_sentry

logger = logging.getLogger(__name__)


def get_cors_origins():
    """Get CORS origins from environment variable or use defaults"""
    cors_env = os.getenv("BACKEND_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
    default_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    return list(set(origins + default_origins))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info(f"{settings.APP_NAME} starting up (TISS {settings.TISS_VERSAO})")

    if init_sentry():
        logger.info("Sentry monitoring initialized")

    yield

    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="TISS claims, batch and denial management API",
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,  # Cache preflight requests for 1 hour
)

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# API Version 1 - All endpoints under /api/v1
app.include_router(guides_router, prefix=settings.API_V1_PREFIX)
app.include_router(batch_router, prefix=settings.API_V1_PREFIX)
app.include_router(glosas_router, prefix=settings.API_V1_PREFIX)
app.include_router(tuss_router, prefix=settings.API_V1_PREFIX)
app.include_router(reports_router, prefix=settings.API_V1_PREFIX)
app.include_router(operators_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "tiss_version": settings.TISS_VERSAO,
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
