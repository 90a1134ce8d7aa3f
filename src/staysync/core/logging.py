"""Structured logging for StaySync.

Every module logs through ``logging.getLogger(__name__)``; structlog's
``ProcessorFormatter`` renders those records either as coloured console
lines (``text``) or JSON lines (``json``). Log lines emitted while a feed is
being reconciled carry ``property_id`` and ``source_id``, and lines inside an
OpenTelemetry span carry ``trace_id`` / ``span_id``.

With ``log_root`` set, JSON copies are also written to::

    {log_root}/staysync/{log_name}.log   application records
    {log_root}/http/{log_name}.log       uvicorn and httpx transport records
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog
from opentelemetry import trace

TRANSPORT_LOGGERS = ("uvicorn.access", "uvicorn.error", "httpx", "httpcore")

_SYNC_KEYS = ("property_id", "source_id")


@contextmanager
def sync_context(*, property_id: str | None, source_id: str | None = None) -> Iterator[None]:
    """Tag every log record emitted inside the block with the feed being synced."""
    bound = {
        key: value
        for key, value in zip(_SYNC_KEYS, (property_id, source_id), strict=True)
        if value is not None
    }
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    span_context = trace.get_current_span().get_span_context()
    if span_context and span_context.trace_id:
        event_dict["trace_id"] = format(span_context.trace_id, "032x")
        event_dict["span_id"] = format(span_context.span_id, "016x")
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt),
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor, pre_chain: list[structlog.types.Processor]
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _json_file(path: Path) -> logging.FileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), _pre_chain("iso")))
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    log_name: str = "staysync",
) -> None:
    """Install the console handler (and optional JSON files) on the root logger.

    Safe to call repeatedly: existing root handlers are replaced.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(renderer, pre_chain))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    transport_file = None
    if log_root is not None:
        root_dir = Path(log_root)
        root.addHandler(_json_file(root_dir / "staysync" / f"{log_name}.log"))
        transport_file = _json_file(root_dir / "http" / f"{log_name}.log")

    for name in TRANSPORT_LOGGERS:
        transport_logger = logging.getLogger(name)
        transport_logger.setLevel(logging.WARNING)
        if transport_file is not None:
            transport_logger.addHandler(transport_file)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
