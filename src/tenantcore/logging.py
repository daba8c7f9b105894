"""Centralized logging utilities for tenantcore consumers.

This module provides:
- Logging configuration from SharedConfig
- Safe preview utilities for record payloads
- Secret redaction
- Structured logging with propagation run and tenant context
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional
from uuid import UUID

from .config import LogLevel, SharedConfig


# Patterns for detecting secrets (common patterns to redact)
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|key|api[_-]?key|auth[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=]+)',
    r'(?i)(?:sk_live_|sk_test_|pk_live_|pk_test_)[a-zA-Z0-9]{16,}',
    r'(?i)(?:x-api-key|x-auth-token|x-access-token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'[a-f0-9]{32,}',
]

# Record attributes owned by logging itself; never copied as extra fields.
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "run_id", "tenant_id",
})


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a safe, length-bounded preview of a value for logging.

    Converts any value to a single line, normalizes whitespace and
    truncates to ``limit`` characters.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A safe, truncated string representation
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"

    return s


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Redact secret patterns from text.

    Covers API keys, tokens, passwords, bearer/basic credentials, payment
    gateway keys and long hex strings that might be keys.

    Args:
        text: The text to redact
        replacement: String to replace secrets with (default: "[REDACTED]")

    Returns:
        Text with secrets redacted
    """
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)

    return result


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """Create a safe log value with preview and optional redaction.

    This is the function to use when logging record payloads copied
    between tenants. It combines safe_preview() and redact_secrets().
    """
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


class TenantCoreFormatter(logging.Formatter):
    """Formatter that includes run/tenant context and optional JSON output.

    This formatter:
    - Extracts run_id and tenant_id from log records (if available)
    - Formats logs as JSON for structured logging
    - Includes safe previews of extra fields
    - Redacts secrets automatically
    """

    def __init__(
        self,
        include_context: bool = True,
        json_format: bool = True,
        redact_secrets: bool = True,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.include_context = include_context
        self.json_format = json_format
        self.redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record."""
        run_id = getattr(record, "run_id", None)
        tenant_id = getattr(record, "tenant_id", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_context:
            if run_id:
                log_data["run_id"] = str(run_id) if isinstance(run_id, UUID) else run_id
            if tenant_id:
                log_data["tenant_id"] = tenant_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = safe_log_value(value, redact=self.redact_secrets)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            f"{log_data['level']}",
            f"{log_data['logger']}",
        ]
        if run_id and self.include_context:
            parts.append(f"run_id={log_data['run_id']}")
        if tenant_id and self.include_context:
            parts.append(f"tenant_id={log_data['tenant_id']}")
        parts.append(f": {log_data['message']}")
        return " ".join(parts)


class TenantCoreLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds run_id and tenant_id to log records.

    Usage:
        logger = get_logger(__name__, run_id=run.id)
        logger.warning("Target failed", tenant_id="t-007")
    """

    def __init__(
        self,
        logger: logging.Logger,
        run_id: Optional[UUID | str] = None,
        tenant_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.run_id = run_id
        self.tenant_id = tenant_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Move run/tenant context from kwargs into ``extra``."""
        run_id = kwargs.pop("run_id", self.run_id)
        tenant_id = kwargs.pop("tenant_id", self.tenant_id)

        extra = kwargs.get("extra", {})
        if run_id:
            extra["run_id"] = run_id
        if tenant_id:
            extra["tenant_id"] = tenant_id
        kwargs["extra"] = extra

        return msg, kwargs

    def bind(self, **context: Any) -> "TenantCoreLoggerAdapter":
        """Return a new adapter with updated run/tenant context."""
        return TenantCoreLoggerAdapter(
            self.logger,
            run_id=context.get("run_id", self.run_id),
            tenant_id=context.get("tenant_id", self.tenant_id),
        )


def setup_logging(
    config: Optional[SharedConfig] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
    service_name: Optional[str] = None,
) -> None:
    """Configure the root logger for a tenantcore consumer.

    Args:
        config: SharedConfig instance (if None, loads from environment)
        json_format: Whether to use JSON format (default: ``config.log_json``)
        redact_secrets: Whether to redact secrets (default: True)
        service_name: Optional service name for logger identification
    """
    if config is None:
        from .config import load_shared_config_from_env
        config = load_shared_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(LogLevel(config.log_level), logging.INFO)
    if json_format is None:
        json_format = config.log_json

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        TenantCoreFormatter(
            include_context=True,
            json_format=json_format,
            redact_secrets=redact_secrets,
        )
    )
    root_logger.addHandler(console_handler)

    service_name = service_name or config.service_name
    if service_name:
        logging.getLogger(service_name).setLevel(log_level)


def get_logger(
    name: str,
    run_id: Optional[UUID | str] = None,
    tenant_id: Optional[str] = None,
) -> TenantCoreLoggerAdapter:
    """Get a logger adapter carrying propagation context.

    Args:
        name: Logger name (typically __name__)
        run_id: Optional propagation run id to include in all logs
        tenant_id: Optional tenant id to include in all logs

    Example:
        logger = get_logger(__name__)
        logger.info("Run started", run_id=run.id)
    """
    return TenantCoreLoggerAdapter(logging.getLogger(name), run_id=run_id, tenant_id=tenant_id)


__all__ = [
    "safe_preview",
    "redact_secrets",
    "safe_log_value",
    "TenantCoreFormatter",
    "TenantCoreLoggerAdapter",
    "setup_logging",
    "get_logger",
]
