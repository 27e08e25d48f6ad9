"""
Error tracking and reporting.

Reports go to Sentry when SENTRY_ENABLED and SENTRY_DSN are set;
otherwise they are logged locally with full context.
"""

from typing import Any

import structlog

from tenancy.config import settings

logger = structlog.get_logger(__name__)


class ErrorTracker:
    """
    Error tracking interface.

    The provisioning saga reports tenants it could not reconcile here;
    sweeps report rows they had to skip.
    """

    def __init__(self, enabled: bool = False, dsn: str | None = None):
        self.enabled = bool(enabled and dsn)
        self.dsn = dsn

        if self.enabled:
            self._init_sentry(dsn)

    def _init_sentry(self, dsn: str) -> None:
        """Initialize Sentry SDK."""
        try:
            import sentry_sdk
            from sentry_sdk.integrations.asyncio import AsyncioIntegration
            from sentry_sdk.integrations.celery import CeleryIntegration
            from sentry_sdk.integrations.fastapi import FastApiIntegration
            from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

            sentry_sdk.init(
                dsn=dsn,
                environment=settings.environment,
                release=settings.app_version,
                traces_sample_rate=settings.sentry_traces_sample_rate,
                send_default_pii=False,
                integrations=[
                    FastApiIntegration(),
                    SqlalchemyIntegration(),
                    AsyncioIntegration(),
                    CeleryIntegration(),
                ],
            )

            logger.info("sentry_initialized")

        except ImportError:
            self.enabled = False
            logger.warning("sentry_sdk_not_installed")

    def capture_exception(
        self,
        exception: Exception,
        context: dict[str, Any] | None = None,
    ) -> str | None:
        """
        Capture and report an exception.

        Args:
            exception: The exception to report
            context: Additional context (tenant, sweep, request, etc.)

        Returns:
            Event ID from error tracker (or None)
        """
        if not self.enabled:
            logger.error(
                "exception_captured",
                exception=str(exception),
                exception_type=type(exception).__name__,
                context=context,
            )
            return None

        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            for key, value in (context or {}).items():
                scope.set_tag(key, str(value))
            return sentry_sdk.capture_exception(exception)

    def capture_message(
        self,
        message: str,
        level: str = "info",
        context: dict[str, Any] | None = None,
    ) -> str | None:
        """Capture a non-exception event, e.g. a tenant left INCOMPLETE."""
        if not self.enabled:
            logger.warning("message_captured", message=message, level=level, context=context)
            return None

        import sentry_sdk

        with sentry_sdk.new_scope() as scope:
            for key, value in (context or {}).items():
                scope.set_tag(key, str(value))
            return sentry_sdk.capture_message(message, level=level)


# Global error tracker instance
error_tracker = ErrorTracker(
    enabled=settings.sentry_enabled,
    dsn=settings.sentry_dsn,
)
