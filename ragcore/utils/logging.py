"""structlog configuration for ragcore.

Every module logs named events (``chunking_complete``, ``ingestion_failed``)
through a module-level ``structlog`` logger.  :func:`configure_logging`
installs one processor chain for both structlog and standard-library
loggers, so records from chromadb, openai and aiosqlite render the same
way as ragcore's own.  Output goes to stderr; stdout is reserved for CLI
results.

Rendering is JSON when ``APP_ENV`` is ``"production"`` (or ``json_output``
is set) and a console renderer otherwise.

Ingestion runs bind ``job_id`` and ``source_id`` with :func:`job_context`,
so every event emitted while a job is active (by the embedding generator,
the vector store or the registry) carries the job it belongs to, including
events from concurrent jobs in ``ingest_batch``.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS: tuple[str, ...] = ("chromadb", "httpx", "httpcore", "openai", "aiosqlite")

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer(use_json: bool) -> structlog.types.Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Install the ragcore processor chain for structlog and stdlib logging.

    Parameters
    ----------
    log_level:
        ``DEBUG``, ``INFO``, ``WARNING`` or ``ERROR``.  Case-insensitive.
    json_output:
        Force JSON rendering.  JSON is also used when ``APP_ENV`` is
        ``"production"``.
    """
    level = logging.getLevelName(log_level.upper())
    use_json = json_output or os.environ.get("APP_ENV", "development") == "production"
    renderer = _renderer(use_json)

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[structlog.stdlib.add_logger_name],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *_SHARED_PROCESSORS,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Only let library noise through when ragcore itself is at DEBUG.
    quiet_level = level if level == logging.DEBUG else max(level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a named logger, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


@contextmanager
def job_context(job_id: str, source_id: str) -> Iterator[None]:
    """Bind ``job_id`` and ``source_id`` to every event logged inside the block.

    The binding lives in a context variable, so it follows the current task
    and any task it creates, and is undone on exit.
    """
    with structlog.contextvars.bound_contextvars(job_id=job_id, source_id=source_id):
        yield
