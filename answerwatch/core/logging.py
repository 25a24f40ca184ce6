"""Logging for the API process and the Celery worker.

Both processes log to stdout. Every record is tagged with the process role
(``api`` or ``worker``) so interleaved container logs can be told apart. With
LOG_JSON set, each record is one JSON object that also carries the job it is
about when the caller passes ``extra=job_context(...)``. That lets one
(business, prompt, platform) execution be followed from the run-now request
to the worker that called the provider.

Provider API keys can leak into log text through exception messages and
request URLs, so they are masked before any record is written.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone

from answerwatch.core.config import settings

JOB_CONTEXT_FIELDS = ("business_id", "prompt_id", "platform", "execution_id", "task_id")

_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"((?:x-api-key|x-goog-api-key)['\"]?\s*[:=]\s*['\"]?)[A-Za-z0-9._\-]+", re.IGNORECASE),
    re.compile(r"([?&]key=)[^&\s'\"]+"),
    re.compile(r"()\b(?:sk|xai|pplx)-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"()\bAIza[0-9A-Za-z_\-]{20,}"),
)
REDACTED = "***"


def redact_secrets(text: str) -> str:
    """Mask provider credentials (bearer tokens, key headers, ?key= params, raw keys)."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


def job_context(
    business_id: int,
    prompt_id: int | None = None,
    platform: str | None = None,
    execution_id: int | None = None,
) -> dict:
    """``extra=`` payload identifying the execution a log line is about."""
    context = {"business_id": business_id, "prompt_id": prompt_id, "platform": platform, "execution_id": execution_id}
    return {k: v for k, v in context.items() if v is not None}


class ProcessContextFilter(logging.Filter):
    """Stamps the process role on each record and masks credentials in its message."""

    def __init__(self, role: str):
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.process_role = self.role
        message = record.getMessage()
        masked = redact_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with job context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "process": getattr(record, "process_role", None),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = redact_secrets(self.formatException(record.exc_info))
        for key in JOB_CONTEXT_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        return json.dumps(log_data, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    def __init__(self):
        super().__init__(
            "%(asctime)s | %(levelname)-8s | %(process_role)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def formatException(self, ei) -> str:
        return redact_secrets(super().formatException(ei))


def setup_logging(role: str = "api") -> None:
    """Send all logs to stdout for *role* (``api`` or ``worker``), replacing existing handlers."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(ProcessContextFilter(role))
    handler.setFormatter(JSONFormatter() if settings.log_json else TextFormatter())
    root.addHandler(handler)

    # httpx logs every provider and page-metadata request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING if not settings.app_debug else level)
    logging.getLogger("celery").setLevel(level if role == "worker" else logging.WARNING)
