"""
Structured logging for the Vault CRD operator.

Every refresh pass and every kopf handler invocation runs under its own
correlation ID, so all log lines of one pass can be grouped. In JSON mode
each record becomes one JSON object per line carrying the refresh context
(resource, namespace, credential type, outcome).
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Access log lines for these paths are dropped
HEALTH_PROBE_PATHS = frozenset({"/healthz", "/metrics"})

# Third-party loggers that only log at WARNING and above
NOISY_LOGGERS = ("kopf", "httpx", "kubernetes", "aiohttp.access")

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PLAIN_FORMAT_WITH_ID = (
    "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    """Bind a correlation ID to the current task context."""
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get()


class HealthProbeFilter(logging.Filter):
    """Drops access log lines of health probes and metric scrapes."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(path in message for path in HEALTH_PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Stamps records with the correlation ID of the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or set_correlation_id(
            generate_correlation_id()
        )
        return True


class StructuredFormatter(logging.Formatter):
    """Renders a record as a single JSON line."""

    context_fields = (
        "resource_name",
        "namespace",
        "vault_type",
        "vault_path",
        "operation",
        "outcome",
        "duration",
        "error_type",
        "http_status",
        "response_body",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        entry.update(
            (name, getattr(record, name))
            for name in self.context_fields
            if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _build_formatter(json_lines: bool, with_correlation_id: bool) -> logging.Formatter:
    if json_lines:
        return StructuredFormatter()
    return logging.Formatter(
        PLAIN_FORMAT_WITH_ID if with_correlation_id else PLAIN_FORMAT
    )


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
) -> None:
    """
    Replace the root handlers with a single configured stream handler.

    Args:
        log_level: Name of the root log level
        enable_json_formatting: Emit JSON lines instead of plain text
        correlation_id_enabled: Stamp records with a correlation ID
    """
    handler = logging.StreamHandler()
    handler.setFormatter(
        _build_formatter(enable_json_formatting, correlation_id_enabled)
    )
    handler.addFilter(HealthProbeFilter())
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class OperatorLogger:
    """Logs the lifecycle of a refresh with the binding as structured context."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    @staticmethod
    def _context(
        resource_name: str, namespace: str, vault_type: str, operation: str, **more
    ) -> dict[str, Any]:
        return {
            "resource_name": resource_name,
            "namespace": namespace,
            "vault_type": str(vault_type),
            "operation": operation,
            **more,
        }

    def log_refresh_start(
        self, resource_name: str, namespace: str, vault_type: str, operation: str
    ) -> None:
        self.logger.info(
            f"Starting {operation} of secret {namespace}/{resource_name}",
            extra=self._context(resource_name, namespace, vault_type, operation),
        )

    def log_refresh_success(
        self,
        resource_name: str,
        namespace: str,
        vault_type: str,
        operation: str,
        duration: float,
    ) -> None:
        self.logger.info(
            f"Finished {operation} of secret {namespace}/{resource_name} "
            f"in {duration:.3f}s",
            extra=self._context(
                resource_name,
                namespace,
                vault_type,
                operation,
                outcome="success",
                duration=duration,
            ),
        )

    def log_refresh_error(
        self,
        resource_name: str,
        namespace: str,
        vault_type: str,
        operation: str,
        error: Exception,
    ) -> None:
        """Log a failed refresh together with the traceback of ``error``."""
        self.logger.error(
            f"{operation.capitalize()} of secret {resource_name} in namespace "
            f"{namespace} failed with exception: {error}",
            extra=self._context(
                resource_name,
                namespace,
                vault_type,
                operation,
                outcome="failed",
                error_type=type(error).__name__,
            ),
            exc_info=error,
        )
