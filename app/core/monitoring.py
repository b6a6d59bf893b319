"""
Application monitoring and error tracking with Sentry
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.asyncio import AsyncioIntegration

from config import settings


def init_sentry() -> bool:
    """
    Initialize Sentry for error tracking when SENTRY_DSN is configured
    """
    if not settings.SENTRY_DSN:
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            AsyncioIntegration(),
        ],
        # Sample every transaction while developing, 10% in production
        traces_sample_rate=1.0 if settings.ENVIRONMENT == "development" else 0.1,
        release=settings.APP_VERSION,
    )
    return True
