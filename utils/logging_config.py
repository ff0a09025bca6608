"""
Logging setup for the fleet back-office

Console logging for every process (web app and management CLI), an
error file and a ledger file when file logging is enabled, and a JSON
line format for production log shipping. Web requests are tagged with
a correlation id and the acting admin or driver.
"""

import os
import sys
import json
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from flask import has_request_context, request, g
from flask_login import current_user

VALID_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s%(actor_tag)s: %(message)s'
SLOW_REQUEST_SECONDS = 3.0

# Money-moving services; their records also land in ledger.log
LEDGER_LOGGERS = (
    'services.ledger_service',
    'services.adjustment_service',
    'services.report_service',
    'services.driver_service',
    'services.audit_service',
)

_STANDARD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
    'message', 'asctime', 'actor', 'actor_tag', 'correlation_id',
}


def _request_actor() -> Optional[str]:
    """`admin:<id>` for session users, `driver:<id>` for app tokens."""
    actor = getattr(g, 'actor', None)
    if actor:
        return actor
    # user loader may be unavailable while a request is being torn down
    try:
        if current_user.is_authenticated:
            return f"{current_user.role.value}:{current_user.id}"
    except (AttributeError, RuntimeError):
        return None
    return None


class RequestContextFilter(logging.Filter):
    """Stamp records with the correlation id and acting user of the current request"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = None
        record.actor = None
        if has_request_context():
            record.correlation_id = getattr(g, 'correlation_id', None)
            record.actor = _request_actor()
        record.actor_tag = f" [{record.actor}]" if record.actor else ''
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; `extra=` fields are kept under `context`"""

    def __init__(self, service_name: str = 'fleet_backoffice'):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get('FLASK_ENV', 'development')

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'service': self.service_name,
            'env': self.environment,
        }
        for field in ('correlation_id', 'actor'):
            value = getattr(record, field, None)
            if value:
                payload[field] = value

        if has_request_context():
            payload['http'] = {'method': request.method, 'path': request.path}

        context = {key: value for key, value in vars(record).items()
                   if key not in _STANDARD_ATTRS}
        if context:
            payload['context'] = context

        if record.exc_info:
            payload['error'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'detail': str(record.exc_info[1]),
                'stack': self.formatException(record.exc_info),
            }
        elif record.levelno >= logging.ERROR:
            payload['source'] = f"{record.pathname}:{record.lineno} ({record.funcName})"

        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(value: Optional[str]) -> str:
    level = (value or 'INFO').upper()
    return level if level in VALID_LEVELS else 'INFO'


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())
    return handler


def setup_logging(app=None) -> logging.Logger:
    """
    Configure the root logger from LOG_LEVEL, USE_JSON_LOGGING, LOG_DIR
    and DISABLE_FILE_LOGGING. Safe to call once per create_app; existing
    root handlers are replaced.
    """
    level = _resolve_level(os.environ.get('LOG_LEVEL'))
    production = os.environ.get('FLASK_ENV') == 'production'
    as_json = os.environ.get('USE_JSON_LOGGING', 'false').lower() == 'true' or production

    formatter = JSONFormatter() if as_json else logging.Formatter(TEXT_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    console.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(console)

    if os.environ.get('DISABLE_FILE_LOGGING', 'false').lower() != 'true':
        log_dir = os.environ.get('LOG_DIR', 'logs')
        os.makedirs(log_dir, exist_ok=True)
        root.addHandler(_file_handler(os.path.join(log_dir, 'error.log'), logging.ERROR, formatter))

        ledger_handler = _file_handler(os.path.join(log_dir, 'ledger.log'), logging.INFO, formatter)
        for name in LEDGER_LOGGERS:
            ledger_logger = logging.getLogger(name)
            ledger_logger.handlers = [ledger_handler]

    if production:
        for noisy in ('werkzeug', 'sqlalchemy.engine', 'urllib3'):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    if app is not None:
        app.logger.info(f"Logging configured: level={level}, json={as_json}")
    return root


def log_request_start():
    """before_request hook: start the clock and pick up or mint a correlation id"""
    g.request_started = time.monotonic()
    g.correlation_id = request.headers.get('X-Correlation-ID') or uuid.uuid4().hex


def log_request_end(response):
    """after_request hook: one summary line per API call"""
    started = getattr(g, 'request_started', None)
    if started is None:
        return response

    elapsed = time.monotonic() - started
    if response.status_code >= 500:
        level = logging.ERROR
    elif response.status_code >= 400 or elapsed > SLOW_REQUEST_SECONDS:
        level = logging.WARNING
    else:
        level = logging.INFO

    # health probes are polled constantly
    if request.path != '/health' or level > logging.INFO:
        logging.getLogger('requests').log(
            level, f"{request.method} {request.path} -> {response.status_code}",
            extra={'status_code': response.status_code, 'duration_ms': round(elapsed * 1000, 1)},
        )
    response.headers['X-Correlation-ID'] = g.correlation_id
    return response
