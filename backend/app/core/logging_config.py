"""
Structured JSON logging

- JSON output (python-json-logger) for machine parsing
- Request and tenant correlation via contextvars
- Optional rotating files when LOG_DIR is configured
"""
import logging
import logging.handlers
import os
import contextvars
from datetime import datetime, timezone
from typing import Optional
from pythonjsonlogger import jsonlogger

from app.core.config import settings

request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'request_id', default=None
)
tenant_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'tenant_id', default=None
)

_CONTROL_CHARS = str.maketrans({'\r': ' ', '\n': ' '})


class ContextFilter(logging.Filter):
    """Attach the current request id and tenant id unless the call passed them in extra."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = getattr(record, "request_id", None) or request_id_var.get() or "-"
        record.tenant_id = getattr(record, "tenant_id", None) or tenant_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """Strip CR/LF from messages and string args to prevent forged log lines."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = record.msg.translate(_CONTROL_CHARS)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                arg.translate(_CONTROL_CHARS) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with the standard fields used across the service.

    {
        "timestamp": "2026-01-12T10:30:00+00:00",
        "level": "INFO",
        "logger": "app.services.template_worker",
        "message": "Enrollment record enrolled",
        "request_id": "-",
        "tenant_id": "tenant-1",
        ...extra fields...
    }
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno
        log_record['request_id'] = getattr(record, 'request_id', '-')
        log_record['tenant_id'] = getattr(record, 'tenant_id', '-')


def _build_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    handler.addFilter(SanitizingFilter())
    return handler


def setup_logging(log_level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        log_level: Override log level (default settings.LOG_LEVEL)
        log_dir: Directory for rotating log files (default settings.LOG_DIR;
            console-only when neither is set)

    Returns:
        The configured root logger
    """
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    directory = log_dir or settings.LOG_DIR

    formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_logger.addHandler(_build_handler(logging.StreamHandler(), level, formatter))

    if directory:
        os.makedirs(directory, exist_ok=True)
        root_logger.addHandler(_build_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(directory, 'app.log'),
                maxBytes=100 * 1024 * 1024,
                backupCount=7,
                encoding='utf-8',
            ),
            level,
            formatter,
        ))
        root_logger.addHandler(_build_handler(
            logging.handlers.RotatingFileHandler(
                os.path.join(directory, 'error.log'),
                maxBytes=50 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
            ),
            logging.ERROR,
            formatter,
        ))

    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_id(request_id: Optional[str]) -> contextvars.Token:
    return request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id(token: contextvars.Token) -> None:
    request_id_var.reset(token)


def set_tenant_id(tenant_id: Optional[str]) -> contextvars.Token:
    """Bind the tenant id of the current request to the logging context."""
    return tenant_id_var.set(tenant_id)


def get_tenant_id() -> Optional[str]:
    return tenant_id_var.get()


def clear_tenant_id(token: contextvars.Token) -> None:
    tenant_id_var.reset(token)
