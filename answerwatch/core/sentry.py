"""Sentry error tracking for the API process and the Celery worker.

Enabled only when SENTRY_DSN is set. Events are tagged with the process role,
and provider credentials are stripped before anything leaves the process:
platform API keys are decrypted in memory for each provider call and can
surface in exception messages, request headers and breadcrumbs.
"""

import logging

from answerwatch.core.config import settings
from answerwatch.core.logging import REDACTED, redact_secrets

logger = logging.getLogger(__name__)

CREDENTIAL_HEADERS = frozenset({"authorization", "x-api-key", "x-goog-api-key"})


def _scrub_headers(headers: dict) -> None:
    for name in list(headers):
        if name.lower() in CREDENTIAL_HEADERS:
            headers[name] = REDACTED


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """before_send hook: mask provider keys in exception values, headers, messages and breadcrumbs."""
    for exc in (event.get("exception") or {}).get("values") or []:
        if isinstance(exc.get("value"), str):
            exc["value"] = redact_secrets(exc["value"])

    request = event.get("request") or {}
    if isinstance(request.get("headers"), dict):
        _scrub_headers(request["headers"])

    logentry = event.get("logentry") or {}
    if isinstance(logentry.get("message"), str):
        logentry["message"] = redact_secrets(logentry["message"])

    for crumb in (event.get("breadcrumbs") or {}).get("values") or []:
        if isinstance(crumb.get("message"), str):
            crumb["message"] = redact_secrets(crumb["message"])
        data = crumb.get("data")
        if isinstance(data, dict) and isinstance(data.get("url"), str):
            data["url"] = redact_secrets(data["url"])
    return event


def init_sentry(role: str = "api") -> None:
    """Initialize Sentry for *role* (``api`` or ``worker``) if SENTRY_DSN is configured."""
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            CeleryIntegration(),
        ],
    )
    sentry_sdk.set_tag("process", role)
    logger.info("Sentry initialized (env=%s, process=%s)", settings.app_env, role)
