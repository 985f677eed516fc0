"""
Logging setup for the API.

Development gets a readable console format. Production emits one JSON object
per record, to the console and to ``logs/infra24.log``, with the request id,
user and tenant of the request being served.
"""

import json
import logging
import logging.config
import os
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from infra24.app.core import config as _config

request_id_var: ContextVar[str] = ContextVar('request_id', default='')
user_id_var: ContextVar[str] = ContextVar('user_id', default='')
tenant_id_var: ContextVar[str] = ContextVar('tenant_id', default='')

_CONTEXT = (
    ('request_id', request_id_var),
    ('user_id', user_id_var),
    ('tenant_id', tenant_id_var),
)

APP_LOGGERS = ('api', 'auth', 'cache', 'database', 'email', 'infra24')
LOG_DIR = 'logs'
SLOW_QUERY_MS = 1000


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        for name, var in _CONTEXT:
            value = var.get('')
            if value:
                entry[name] = value
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        entry.update(getattr(record, 'extra_fields', None) or {})
        return json.dumps(entry, default=str)


def _is_production() -> bool:
    return _config.settings.ENVIRONMENT.lower() == 'production'


def get_logging_config() -> Dict[str, Any]:
    level = _config.settings.LOG_LEVEL.upper()
    structured = _is_production()

    handlers: Dict[str, Dict[str, Any]] = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'structured' if structured else 'readable',
            'level': level,
        },
    }
    if structured:
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': os.path.join(LOG_DIR, 'infra24.log'),
            'maxBytes': 10 * 1024 * 1024,
            'backupCount': 5,
            'formatter': 'structured',
            'level': level,
        }
    names: List[str] = list(handlers)

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'structured': {'()': StructuredFormatter},
            'readable': {
                'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
        },
        'handlers': handlers,
        'loggers': {
            name: {'handlers': names, 'level': level, 'propagate': False}
            for name in APP_LOGGERS
        },
        'root': {'handlers': ['console'], 'level': level},
    }


def setup_logging():
    if _is_production():
        os.makedirs(LOG_DIR, exist_ok=True)
    logging.config.dictConfig(get_logging_config())

    # third-party chatter
    for noisy in ('uvicorn.access', 'sqlalchemy.engine', 'httpx'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: str, user_id: str = '', tenant_id: str = ''):
    request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)
    if tenant_id:
        tenant_id_var.set(tenant_id)


def clear_request_context():
    for _, var in _CONTEXT:
        var.set('')


def generate_request_id() -> str:
    return str(uuid.uuid4())


def _emit(logger_name: str, level: int, message: str, event_type: str, **fields: Any):
    fields = {k: v for k, v in fields.items() if v is not None}
    fields['event_type'] = event_type
    logging.getLogger(logger_name).log(level, message, extra={'extra_fields': fields})


def log_request_started(method: str, path: str, query_params: Optional[Dict[str, Any]] = None,
                        client_ip: Optional[str] = None, user_agent: Optional[str] = None,
                        body_size: Optional[int] = None):
    _emit('api.request', logging.INFO, f"{method} {path} started", 'request_started',
          http_method=method, path=path, query_params=query_params or None,
          client_ip=client_ip, user_agent=user_agent, body_size_bytes=body_size)


def log_request_completed(method: str, path: str, status_code: int, response_time_ms: float):
    """Log the outcome of a request; 4xx as warnings, 5xx as errors."""
    if status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    _emit('api.response', level, f"{method} {path} -> {status_code}", 'request_completed',
          status_code=status_code, response_time_ms=round(response_time_ms, 2))


def log_permission_check(resource: str, action: str, user_id: str, tenant_id: str, allowed: bool):
    """Record an access decision. Denials are logged at warning level."""
    _emit('auth.permissions', logging.DEBUG if allowed else logging.WARNING,
          f"Permission {'granted' if allowed else 'denied'}: {action} {resource}",
          'permission_check', resource=resource, action=action, user_id=user_id,
          tenant_id=tenant_id, allowed=allowed)


def log_database_operation(operation: str, table: str, duration_ms: float, record_count: int = 1):
    slow = duration_ms > SLOW_QUERY_MS
    _emit('database.operations', logging.WARNING if slow else logging.DEBUG,
          f"{'Slow ' if slow else ''}{operation} on {table}", 'database_operation',
          operation=operation, table=table, duration_ms=round(duration_ms, 2),
          record_count=record_count)


def log_cache_operation(operation: str, key: str, hit: Optional[bool] = None,
                        duration_ms: Optional[float] = None):
    _emit('cache.operations', logging.DEBUG, f"Cache {operation}", 'cache_operation',
          operation=operation, cache_key=key[:100] if key else None, cache_hit=hit,
          duration_ms=round(duration_ms, 2) if duration_ms is not None else None)


def log_email_event(event_type: str, template: str, recipient: str, organization_id: str,
                    success: bool, duration_ms: Optional[float] = None, error: Optional[str] = None):
    """Log an outbound email attempt. The message body is never logged."""
    _emit('email.delivery', logging.INFO if success else logging.WARNING,
          f"Email {template} {'sent' if success else 'failed'}", event_type,
          template=template, recipient=recipient, organization_id=organization_id,
          success=success, error_message=error or None,
          duration_ms=round(duration_ms, 2) if duration_ms is not None else None)
