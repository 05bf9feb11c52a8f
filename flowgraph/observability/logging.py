"""
Structured logging with automatic trace context propagation.

Key Features:
- Standard logger.info() calls get the execution context automatically
- ContextVar-based propagation: safe across concurrent splitter branches
- Dual output modes: JSON for production, human-readable for development
- Per-event node_id and event fields passed through `extra`

Architecture:
    GraphExecutor.execute() → sets execution_id and graph_id once
        ↓ (automatic propagation via ContextVar)
    GraphExecutor.run() / splitter / conditional → logger.info(..., extra={"node_id": ...})
        ↓
    StructuredFormatter → {"level", "node_id", "message", "event", "execution_id", ...}
"""

import json
import logging
import os
import re
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Any

# Context variable for trace propagation
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# ANSI escape code pattern (matches \033[...m or \x1b[...m)
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Produces machine-parseable log entries with:
    - Standard fields (timestamp, level, logger, message)
    - Trace context (execution_id, graph_id, ...)
    - node_id and event from the record's extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        context = trace_context.get() or {}

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }

        log_entry.update(context)

        node_id = getattr(record, "node_id", None)
        if node_id is not None:
            log_entry["node_id"] = node_id

        event = getattr(record, "event", None)
        if event is not None:
            log_entry["event"] = strip_ansi_codes(str(event))

        latency_ms = getattr(record, "latency_ms", None)
        if latency_ms is not None:
            log_entry["latency_ms"] = latency_ms

        if record.exc_info:
            exception_text = self.formatException(record.exc_info)
            log_entry["exception"] = strip_ansi_codes(exception_text)

        return json.dumps(log_entry)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Colorized level, execution prefix and the emitting node.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string."""
        context = trace_context.get() or {}
        execution_id = context.get("execution_id", "")
        graph_id = context.get("graph_id", "")

        prefix_parts = []
        if execution_id:
            prefix_parts.append(f"exec:{execution_id[-8:]}")
        if graph_id:
            prefix_parts.append(f"graph:{graph_id}")
        node_id = getattr(record, "node_id", None)
        if node_id is not None:
            prefix_parts.append(f"node:{node_id}")

        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        return f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure structured logging for the application.

    Call once at application startup or in test fixtures.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format:
            - "json": Machine-parseable JSON (for production)
            - "human": Human-readable with colors (for development)
            - "auto": JSON if LOG_FORMAT=json or ENV=production, else human
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        _disable_third_party_colors()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route model-client loggers through the root handler so they share the format
    if format == "json":
        for logger_name in ("LiteLLM", "httpcore", "httpx", "openai"):
            logger = logging.getLogger(logger_name)
            logger.handlers.clear()
            logger.propagate = True


def _disable_third_party_colors() -> None:
    """Disable color output in third-party libraries for clean JSON logging."""
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

    import litellm

    if hasattr(litellm, "suppress_debug_info"):
        litellm.suppress_debug_info = True


def set_trace_context(**kwargs: Any) -> Token:
    """
    Set trace context for the current execution.

    Context lives in a ContextVar, so it follows the execution into every
    awaited call and every task spawned for parallel splitter branches.

    Args:
        **kwargs: Context fields (execution_id, graph_id, ...)

    Returns:
        Token for reset_trace_context() to restore the previous context
    """
    current = trace_context.get() or {}
    return trace_context.set({**current, **kwargs})


def reset_trace_context(token: Token) -> None:
    """Restore the trace context that was active before set_trace_context()."""
    trace_context.reset(token)


def get_trace_context() -> dict:
    """Get a copy of the current trace context (empty dict if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear trace context (useful between test runs)."""
    trace_context.set(None)
