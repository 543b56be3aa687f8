# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Logging configuration for SteadyBrowser.

All components log through the ``steadybrowser`` logger or one of its
children (``steadybrowser.session``, ``steadybrowser.vision`` ...), so a
single call to :func:`configure_logging` controls the whole engine.

Environment variables:
    STEADYBROWSER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL
    STEADYBROWSER_LOG_FORMAT: json (default), human or text
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "logger",
    "get_logger",
    "setup_logger",
    "configure_logging",
    "LogFormat",
]

ROOT_LOGGER_NAME = "steadybrowser"

# LogRecord attributes that are never copied into the JSON "extra" block
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "message", "taskName",
    "thread", "threadName",
})


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"              # Structured JSON format (default)
    HUMAN = "human"            # Human-readable colored format
    TEXT = "text"              # Plain text format


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs one JSON object per line. Records emitted by a child logger
    carry a ``component`` field with the child suffix (``session``,
    ``vision`` ...).
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.name.startswith(ROOT_LOGGER_NAME + "."):
            log_data["component"] = record.name[len(ROOT_LOGGER_NAME) + 1:]

        if record.pathname and record.lineno:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-readable log formatter with colors.

    Colors are only emitted when stdout is a TTY.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human readability."""
        timestamp = datetime.now().strftime("%H:%M:%S")
        level = record.levelname
        component = ""
        if record.name.startswith(ROOT_LOGGER_NAME + "."):
            component = f"{record.name[len(ROOT_LOGGER_NAME) + 1:]}: "

        if self.use_colors:
            color = self.COLORS.get(level, "")
            level_str = f"{color}{self.BOLD}[{level:>8}]{self.RESET}"
            time_str = f"{self.DIM}{timestamp}{self.RESET}"
        else:
            level_str = f"[{level:>8}]"
            time_str = timestamp

        output = f"{time_str} {level_str} {component}{record.getMessage()}"

        if record.exc_info:
            exc_text = self.formatException(record.exc_info)
            if self.use_colors:
                exc_text = f"{self.COLORS['ERROR']}{exc_text}{self.RESET}"
            output += f"\n{exc_text}"

        return output


class TextFormatter(logging.Formatter):
    """Plain text log formatter."""

    def __init__(self):
        super().__init__(fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def get_log_level(level_str: str) -> int:
    """
    Convert log level string to logging constant.

    Args:
        level_str: Log level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Logging level constant, INFO for unknown names
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def get_formatter(log_format: LogFormat, use_colors: bool = True) -> logging.Formatter:
    """Get the formatter for a log format."""
    if log_format == LogFormat.JSON:
        return JsonFormatter()
    elif log_format == LogFormat.HUMAN:
        return HumanFormatter(use_colors=use_colors)
    return TextFormatter()


def configure_logging(
    level: str = "INFO",
    log_format: LogFormat = LogFormat.JSON,
    human_readable: bool = False,
) -> None:
    """
    Reconfigure the package logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format type (JSON, HUMAN, TEXT)
        human_readable: If True, forces human-readable format regardless of log_format
    """
    if human_readable:
        log_format = LogFormat.HUMAN

    log_level = get_log_level(level)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(get_formatter(log_format))
    logger.addHandler(handler)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: int = logging.INFO,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Setup and configure the package logger.

    Environment variables take precedence over the ``level`` argument.

    Args:
        name: Logger name
        level: Logging level
        format_string: Custom format string for log messages

    Returns:
        Configured logger instance
    """
    log = logging.getLogger(name)
    log.setLevel(level)
    log.handlers.clear()
    log.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    env_format = os.environ.get("STEADYBROWSER_LOG_FORMAT", "json").lower()
    env_level = os.environ.get("STEADYBROWSER_LOG_LEVEL", "")

    if env_level:
        level = get_log_level(env_level)
        log.setLevel(level)
        handler.setLevel(level)

    if format_string is not None:
        formatter = logging.Formatter(format_string)
    else:
        try:
            formatter = get_formatter(LogFormat(env_format))
        except ValueError:
            formatter = JsonFormatter()

    handler.setFormatter(formatter)
    log.addHandler(handler)
    return log


def get_logger(component: str) -> logging.Logger:
    """
    Get a child logger for an engine component.

    Args:
        component: Component suffix, e.g. ``"session"``

    Returns:
        Logger named ``steadybrowser.<component>`` sharing the root handlers
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")


# Default logger instance
logger = setup_logger()
