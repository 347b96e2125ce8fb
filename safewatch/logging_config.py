"""Process-wide logging for the API server and the RQ workers.

Call ``setup_logging("Server")`` or ``setup_logging(f"Worker-{pid}")`` once at
startup. Pipeline code wraps each unit of work in ``log_context`` so every
line it emits carries the subject and chat it belongs to::

    with log_context(subject_id=subject.id, chat_id=chat.id):
        logger.info("Tier-1 complete")

    2026-02-17 14:30:01 [Worker-9821][Subject 1a2b3c4d][Chat 9f8e7d6c][INFO] services.small_agent:88 - Tier-1 complete
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

STREAM_HANDLER_NAME = "_safewatch_stream"
FILE_HANDLER_NAME = "_safewatch_file"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "openai", "anthropic")
UVICORN_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")

subject_id_var: ContextVar[str] = ContextVar("subject_id_var", default="")
chat_id_var: ContextVar[str] = ContextVar("chat_id_var", default="")


@contextmanager
def log_context(subject_id: str = "", chat_id: str = ""):
    """Bind subject/chat ids to every log line emitted inside the block."""
    subject_token = subject_id_var.set(subject_id or "")
    chat_token = chat_id_var.set(chat_id or "")
    try:
        yield
    finally:
        chat_id_var.reset(chat_token)
        subject_id_var.reset(subject_token)


class ContextFilter(logging.Filter):
    """Copies the process role and the bound subject/chat ids onto each record."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role  # type: ignore[attr-defined]
        record.subject_id = subject_id_var.get()  # type: ignore[attr-defined]
        record.chat_id = chat_id_var.get()  # type: ignore[attr-defined]
        return True


def _bracketed(record: logging.LogRecord) -> str:
    role = getattr(record, "role", "")
    subject_id = getattr(record, "subject_id", "")
    chat_id = getattr(record, "chat_id", "")

    tags = []
    if role:
        tags.append(role)
    if subject_id:
        tags.append(f"Subject {subject_id[:8]}")
    if chat_id:
        tags.append(f"Chat {chat_id[:8]}")
    tags.append(record.levelname)
    return "".join(f"[{tag}]" for tag in tags)


class ContextFormatter(logging.Formatter):
    """``<time> [Role][Subject xxxxxxxx][Chat xxxxxxxx][LEVEL] logger:line - message``"""

    def __init__(self, datefmt: str | None = DATE_FORMAT) -> None:
        super().__init__(datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{self.formatTime(record, self.datefmt)} {_bracketed(record)} "
            f"{record.name}:{record.lineno} - {record.getMessage()}"
        )
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        extras = [text for text in (record.exc_text, record.stack_info) if text]
        return "\n".join([line, *extras])


def _attach(root: logging.Logger, handler: logging.Handler, name: str, role: str) -> None:
    handler.name = name
    handler.addFilter(ContextFilter(role))
    handler.setFormatter(ContextFormatter())
    root.addHandler(handler)


def setup_logging(role: str) -> None:
    """Install the stderr handler (and the rotating file handler when
    ``LOG_FILE`` is set) on the root logger.

    A second call in the same process is a no-op. For the server role the
    uvicorn loggers are routed through root so they share the format.
    """
    from config import settings

    root = logging.getLogger()
    if any(getattr(h, "name", None) == STREAM_HANDLER_NAME for h in root.handlers):
        return

    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _attach(root, logging.StreamHandler(sys.stderr), STREAM_HANDLER_NAME, role)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        _attach(root, rotating, FILE_HANDLER_NAME, role)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if "server" in role.lower():
        for name in UVICORN_LOGGERS:
            uv_logger = logging.getLogger(name)
            uv_logger.handlers.clear()
            uv_logger.propagate = True
