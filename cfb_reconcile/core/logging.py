"""
Structured logging for reconciliation runs.

Every line written during a batch carries the batch's run_id, which is also
part of the audit report filename, so a report and its log lines can be
joined. Scripts call configure_logging() once; library modules only use
logging.getLogger(__name__).
"""
import logging
import json
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Iterator

# Copied into asyncio tasks and to_thread workers, so concurrent lookups of
# one batch log under the same id
run_id_var: ContextVar[str] = ContextVar("run_id", default="")

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line: timestamp, level, logger, message, run_id,
    plus exception text and any `extra=` fields when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": run_id_var.get(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Readable console output for local runs, run_id appended when set."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        line = f"{color}[{record.levelname}]{self.RESET} {record.name}: {record.getMessage()}"

        run_id = run_id_var.get()
        if run_id:
            line += f" | run_id={run_id}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    handler: logging.Handler | None = None,
) -> None:
    """
    Replace the root handlers with a single formatted handler.

    Args:
        level: Logging level name; unknown names fall back to INFO
        json_output: JSON lines when True, colored console output otherwise
        handler: Handler to install; defaults to a stdout StreamHandler
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)

    handler.setFormatter(JSONFormatter() if json_output else ColoredFormatter())
    root_logger.addHandler(handler)

    # Per-statement SQL logging drowns the run summary
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@contextmanager
def run_scope(run_id: str) -> Iterator[str]:
    """Tag every log line inside the block with run_id; nested scopes restore the outer id."""
    token = run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        run_id_var.reset(token)
