from __future__ import annotations

import json
import logging
import os
import re
import signal
import threading
from collections.abc import Sequence
from typing import Any

from syncer.src.config import load_config
from syncer.src.errors import BootstrapError, ConfigError
from syncer.src.health import start_health_server
from syncer.src.kube import build_core_client, load_kube_configuration
from syncer.src.metrics import METRICS
from syncer.src.supervisor import build_supervisor

RUNTIME_VERSION = "0.1.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
)
_CONTEXT_FIELDS = ("key", "outcome", "members", "resource_version", "pid", "signal")


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation.

    Sync context passed through ``extra`` (see ``_CONTEXT_FIELDS``) is
    lifted into top-level fields so passes can be filtered without parsing
    ``msg``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging() -> None:
    """Configure structured JSON logging with a level from ``LOG_LEVEL`` env var."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.root.handlers.clear()
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))


def main(argv: Sequence[str] | None = None) -> int:
    """Syncer entrypoint.

    Returns ``0`` after a SIGTERM/SIGINT-triggered shutdown and ``1`` when
    configuration or Kubernetes bootstrap fails, or when the namespace watch
    ends on its own (for example after an RBAC denial).
    """
    configure_logging()
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        config = load_config(argv)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        load_kube_configuration()
        core_api = build_core_client()
    except BootstrapError:
        logger.exception("Failed to initialize Kubernetes client")
        return 1

    logger.info(
        "Syncing namespaces matching %r into ConfigMap %s/%s key %s",
        config.label_selector,
        config.configmap_namespace,
        config.configmap_name,
        config.watch_key,
    )
    supervisor = build_supervisor(config, core_api)
    health_server = (
        start_health_server(
            ready=supervisor.ready, port=config.health_port, status=supervisor.status
        )
        if config.health_enabled
        else None
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        requested = supervisor.run(shutdown_event)
    finally:
        if health_server is not None:
            health_server.shutdown()

    logger.info("Syncer stopped")
    return 0 if requested else 1


if __name__ == "__main__":
    raise SystemExit(main())
