"""
CodeStream - Centralized Logging Configuration
Supports both development (plain text) and production (JSON structured) logging
"""

import logging
import sys
import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from contextvars import ContextVar

from codestream.core.config import settings


# Context variables for generation tracing
generation_id_var: ContextVar[str] = ContextVar('generation_id', default='')
batch_index_var: ContextVar[int] = ContextVar('batch_index', default=0)


def get_generation_id() -> str:
    """Get current generation ID from context"""
    return generation_id_var.get() or ''


def set_generation_id(generation_id: str) -> None:
    """Set generation ID in context"""
    generation_id_var.set(generation_id)


def get_batch_index() -> int:
    """Get current continuation batch index from context"""
    return batch_index_var.get()


def set_batch_index(batch_index: int) -> None:
    """Set continuation batch index in context"""
    batch_index_var.set(batch_index)


def generate_generation_id() -> str:
    """Generate a short unique generation ID"""
    return str(uuid.uuid4())[:8]


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName', 'generation_id', 'batch_index',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production
    Outputs logs in a format easily parsed by log aggregation tools
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        generation_id = get_generation_id()
        if generation_id:
            log_data["generation_id"] = generation_id

        batch_index = get_batch_index()
        if batch_index:
            log_data["batch_index"] = batch_index

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        # Add extra fields from record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    """
    Formatter that includes the generation context (generation_id, batch_index)
    Used for development with readable output
    """

    def format(self, record: logging.LogRecord) -> str:
        record.generation_id = get_generation_id() or '-'
        record.batch_index = get_batch_index()
        return super().format(record)


class CodeStreamLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_stream_event(self, event: str, chars: int = 0, chunks: int = 0,
                         files_detected: int = 0, **kwargs) -> None:
        """Log a Stream Orchestrator milestone"""
        self.info(
            f"[Stream] {event} ({chars} chars, {chunks} chunks, {files_detected} files)",
            extra={
                "event_type": "stream",
                "stream_event": event,
                "chars": chars,
                "chunks": chunks,
                "files_detected": files_detected,
                **kwargs
            }
        )

    def log_recovery_event(self, action: str, recovered: int = 0,
                           missing: int = 0, **kwargs) -> None:
        """Log a truncation recovery decision"""
        level = logging.WARNING if action == "none" else logging.INFO
        self.log(
            level,
            f"[Recovery] outcome={action} recovered={recovered} missing={missing}",
            extra={
                "event_type": "recovery",
                "recovery_action": action,
                "recovered_files": recovered,
                "missing_files": missing,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: Optional[str] = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )

    def log_performance(self, operation: str, duration_ms: float,
                        threshold_ms: float = 1000, **kwargs) -> None:
        """Log performance metrics, warn if over threshold"""
        level = logging.WARNING if duration_ms > threshold_ms else logging.DEBUG
        self.log(
            level,
            f"Performance: {operation} took {duration_ms:.2f}ms" +
            (f" (threshold: {threshold_ms}ms)" if duration_ms > threshold_ms else ""),
            extra={
                "event_type": "performance",
                "operation": operation,
                "duration_ms": duration_ms,
                "threshold_ms": threshold_ms,
                "exceeded_threshold": duration_ms > threshold_ms,
                **kwargs
            }
        )


def setup_logging() -> CodeStreamLogger:
    """Setup logging configuration based on environment"""

    logging.setLoggerClass(CodeStreamLogger)

    logger = logging.getLogger("codestream")
    logger.__class__ = CodeStreamLogger  # Ensure it's our custom class
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Clear existing handlers
    logger.handlers.clear()

    is_production = settings.is_production

    if is_production:
        # Production: JSON formatted logs for log aggregation
        json_formatter = JSONFormatter()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(json_formatter)
        logger.addHandler(console_handler)

        if settings.LOG_FILE:
            log_file = Path(settings.LOG_FILE)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(json_formatter)
            logger.addHandler(file_handler)

    else:
        # Development: Human-readable format
        detailed_format = (
            "%(asctime)s | %(levelname)-8s | "
            "[%(generation_id)s#%(batch_index)s] | "
            "%(funcName)s:%(lineno)d | %(message)s"
        )
        simple_format = "%(levelname)-8s | %(message)s"

        detailed_formatter = ContextualFormatter(detailed_format)
        simple_formatter = ContextualFormatter(simple_format)

        # Console handler - simple format, stderr so CLI output stays clean
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(simple_formatter)
        logger.addHandler(console_handler)

        if settings.LOG_FILE:
            log_file = Path(settings.LOG_FILE)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10485760,  # 10MB
                backupCount=5
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(detailed_formatter)
            logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)

    logger.debug(
        "Logging initialized",
        extra={
            "environment": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "json_logging": is_production
        }
    )

    return logger


# Create logger instance
logger: CodeStreamLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'get_generation_id',
    'set_generation_id',
    'get_batch_index',
    'set_batch_index',
    'generate_generation_id',
    'CodeStreamLogger',
]
