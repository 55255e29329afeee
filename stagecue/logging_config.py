"""
Structured logging configuration.

Emits both human-readable and JSON logs. JSON logs include:
- Timestamp
- Level
- Subsystem
- Assistant state
- Trigger type and priority
- Any extra fields passed to the structured helpers

Registered secrets and Authorization header values are redacted from every
record before it reaches a handler.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, List, Optional

_AUTH_HEADER = re.compile(r"(Authorization:\s*(?:Bearer\s+)?)\S+", re.IGNORECASE)

_secret_fragments: List[str] = []
_secret_pattern: Optional[re.Pattern] = None


def register_secret(secret: str) -> None:
    """Redact this value from all log output. Short values are ignored."""
    global _secret_pattern
    if secret and len(secret) >= 8:
        _secret_fragments.append(re.escape(secret))
        _secret_pattern = re.compile("|".join(_secret_fragments))


def redact(message: str) -> str:
    message = _AUTH_HEADER.sub(r"\1[REDACTED]", message)
    if _secret_pattern is not None:
        message = _secret_pattern.sub("[REDACTED]", message)
    return message


class RedactingFilter(logging.Filter):
    """Rewrites the record message with secrets removed."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(record.getMessage())
        record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "subsystem", None):
            log_data["subsystem"] = record.subsystem
        if getattr(record, "state", None):
            log_data["state"] = record.state
        if getattr(record, "trigger_type", None):
            log_data["trigger"] = record.trigger_type
        if getattr(record, "priority", None) is not None:
            log_data["priority"] = record.priority
        if getattr(record, "extra_data", None):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable format with colors."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = record.levelname[:4]

        prefix_parts = [f"{timestamp} {level}"]
        subsystem = getattr(record, "subsystem", None)
        if subsystem and subsystem != "general":
            prefix_parts.append(f"[{subsystem}]")
        if getattr(record, "state", None):
            prefix_parts.append(f"state={record.state}")
        if getattr(record, "priority", None) is not None:
            prefix_parts.append(f"P{record.priority}")

        line = f"{' '.join(prefix_parts)}: {record.getMessage()}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            line = f"{color}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


class StructuredLogger(logging.Logger):
    """Logger with structured logging methods."""

    def _log_structured(
        self,
        level: int,
        msg: str,
        subsystem: str = "general",
        state: Optional[str] = None,
        trigger_type: Optional[str] = None,
        priority: Optional[int] = None,
        **extra: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        record = self.makeRecord(self.name, level, "", 0, msg, (), None)
        record.subsystem = subsystem
        record.state = state
        record.trigger_type = trigger_type
        record.priority = priority
        record.extra_data = extra
        self.handle(record)

    def trigger(
        self,
        trigger_type: str,
        priority: int,
        msg: str,
        **kwargs: Any,
    ) -> None:
        """Log a classified trigger."""
        self._log_structured(
            logging.INFO,
            msg,
            subsystem="triggers",
            trigger_type=trigger_type,
            priority=priority,
            **kwargs,
        )

    def transition(self, old: str, new: str, reason: str, **kwargs: Any) -> None:
        """Log an assistant state transition."""
        self._log_structured(
            logging.INFO,
            f"{old} -> {new} ({reason})",
            subsystem="lifecycle",
            state=new,
            **kwargs,
        )


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    json_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        json_file: Path for JSON logs (in log_dir if relative)
        max_bytes: Max size per log file
        backup_count: Number of backup files to keep
    """
    logging.setLoggerClass(StructuredLogger)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    redactor = RedactingFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(HumanFormatter())
    console.addFilter(redactor)
    root_logger.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        human_handler = RotatingFileHandler(
            os.path.join(log_dir, "stagecue.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        human_handler.setFormatter(HumanFormatter(use_colors=False))
        human_handler.addFilter(redactor)
        root_logger.addHandler(human_handler)

        json_path = json_file or os.path.join(log_dir, "stagecue.json.log")
        if not os.path.isabs(json_path):
            json_path = os.path.join(log_dir, json_path)

        json_handler = RotatingFileHandler(
            json_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        json_handler.setFormatter(JSONFormatter())
        json_handler.addFilter(redactor)
        root_logger.addHandler(json_handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger."""
    logging.setLoggerClass(StructuredLogger)
    return logging.getLogger(name)  # type: ignore
