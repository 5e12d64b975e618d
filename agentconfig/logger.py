import json
import os
import sys
import threading
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from loguru import logger as _logger


# Context variable for the configuration operation in progress
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

_sensitive_fields = {
    "password",
    "keystore-password",
    "token",
    "secret",
    "credential",
    "api_key",
    "private_key",
}


class StructuredLogger:
    """Logger emitting JSON payloads with operation context and redacted secrets"""

    def __init__(self, logger_instance):
        self._logger = logger_instance
        self.log_counts = {
            "debug": 0,
            "info": 0,
            "warning": 0,
            "error": 0,
        }

    def _get_context(self) -> Dict[str, Any]:
        return {
            "operation": operation_var.get(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "process_id": os.getpid(),
            "thread": threading.current_thread().name,
        }

    def _sanitize_data(self, data: Any) -> Any:
        """Remove secret values from log data"""
        if isinstance(data, dict):
            sanitized = {}
            for key, value in data.items():
                key_lower = str(key).lower()
                if any(sensitive in key_lower for sensitive in _sensitive_fields):
                    sanitized[key] = "[REDACTED]"
                else:
                    sanitized[key] = self._sanitize_data(value)
            return sanitized
        elif isinstance(data, (list, tuple)):
            return [self._sanitize_data(item) for item in data]
        elif isinstance(data, str) and len(data) > 1000:
            return data[:997] + "..."
        return data

    def _format_message(
        self, message: str, extra: Optional[Dict[str, Any]] = None, level: str = "info"
    ) -> str:
        log_data = {"message": message, "level": level, "context": self._get_context()}
        if extra:
            log_data["extra"] = self._sanitize_data(extra)
        return json.dumps(log_data, default=str)

    def _count(self, level: str):
        self.log_counts[level] = self.log_counts.get(level, 0) + 1

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._count("debug")
        self._logger.debug(self._format_message(message, extra, "debug"))

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._count("info")
        self._logger.info(self._format_message(message, extra, "info"))

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self._count("warning")
        self._logger.warning(self._format_message(message, extra, "warning"))

    def error(
        self,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
        exc_info: bool = False,
    ):
        """Log error message, with the active traceback when exc_info is set"""
        self._count("error")
        payload = self._format_message(message, extra, "error")
        if exc_info:
            self._logger.opt(exception=True).error(payload)
        else:
            self._logger.error(payload)

    def add_sink(self, sink, level: str = "DEBUG") -> int:
        """Attach an extra loguru sink, returning its handler id"""
        return self._logger.add(sink, level=level)

    def remove_sink(self, handler_id: int):
        self._logger.remove(handler_id)

    def get_log_statistics(self) -> Dict[str, Any]:
        return {
            "log_counts": self.log_counts.copy(),
            "total_logs": sum(self.log_counts.values()),
        }


class LoggingContext:
    """Context manager tagging log records with the current operation"""

    def __init__(self, operation: Optional[str] = None):
        self.operation = operation
        self._token = None

    def __enter__(self):
        self._token = operation_var.set(self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        operation_var.reset(self._token)


def define_log_level(
    print_level: str = "INFO",
    logfile_level: str = "DEBUG",
    log_dir: Optional[Union[str, Path]] = None,
    name: Optional[str] = None,
) -> StructuredLogger:
    """Reset loguru sinks: stderr at print_level plus an optional log file"""
    _logger.remove()
    _logger.add(sys.stderr, level=print_level)

    if log_dir is not None:
        formatted_date = datetime.now().strftime("%Y%m%d%H%M%S")
        log_name = f"{name}_{formatted_date}" if name else formatted_date
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(logs_dir / f"{log_name}.log", level=logfile_level)

    return StructuredLogger(_logger)


logger = define_log_level()


__all__ = [
    "logger",
    "StructuredLogger",
    "LoggingContext",
    "define_log_level",
]
