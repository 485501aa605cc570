import json
import logging
import re
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
endpoint_var: ContextVar[Optional[str]] = ContextVar('endpoint', default=None)
panel_var: ContextVar[Optional[str]] = ContextVar('panel', default=None)

_CORRELATION = (
    ('requestId', request_id_var),
    ('endpoint', endpoint_var),
    ('panel', panel_var),
)

# (label group, secret group) regexes; the secret keeps 4 characters at each end
_SECRET_PATTERNS = (
    # Generic credential assignments
    r'(?i)(token|key|secret|password|auth)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{10,})["\']?',
    # Client-credentials secret and the bearer token it buys
    r'(?i)(client_secret|access_token)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{20,})["\']?',
    # YouTube Data API key as a query parameter
    r'(?i)(api_key|youtube_api_key)\s*[:=]\s*["\']?([A-Za-z0-9\-_.]{20,})["\']?',
    # Authorization headers
    r'(?i)(bearer|basic)\s+([A-Za-z0-9\-_.=+/]{20,})',
)


def _obscure(secret: str) -> str:
    if len(secret) <= 8:
        return '*' * len(secret)
    return f"{secret[:4]}{'*' * (len(secret) - 8)}{secret[-4:]}"


class SecretMasker:
    """Hides credentials in log messages and structured fields."""

    def __init__(self):
        self.compiled_patterns = [re.compile(p) for p in _SECRET_PATTERNS]

    @staticmethod
    def _replace(match: 're.Match') -> str:
        return f"{match.group(1)}: {_obscure(match.group(2))}"

    def mask_secrets(self, text: str) -> str:
        """Return ``text`` with every recognised credential obscured."""
        if not text:
            return text
        for pattern in self.compiled_patterns:
            text = pattern.sub(self._replace, text)
        return text

    def _mask_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.mask_secrets(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_value(item) for item in value]
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask string values at any depth of ``data``."""
        if not data:
            return data
        return {key: self._mask_value(value) for key, value in data.items()}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with request correlation and masked secrets."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        for name, var in _CORRELATION:
            value = var.get()
            if value:
                entry[name] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        fields = getattr(record, 'fields', None)
        if fields:
            entry['fields'] = self.masker.mask_dict(fields)
        return json.dumps(entry, ensure_ascii=False, default=str)


class CorrelationContext:
    """Binds request id, endpoint and panel to every record logged inside the block.

    Values left as None keep whatever an outer context set.
    """

    def __init__(self, request_id: Optional[str] = None,
                 endpoint: Optional[str] = None,
                 panel: Optional[str] = None):
        self._values = ((request_id_var, request_id), (endpoint_var, endpoint), (panel_var, panel))
        self._tokens = []

    def __enter__(self):
        self._tokens = [(var, var.set(value)) for var, value in self._values if value is not None]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None) -> logging.Logger:
    """Route the ``mashfinder`` logger through the JSON formatter.

    Calling it again replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger('mashfinder')
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    formatter = StructuredFormatter()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def get_logger(name: str = 'mashfinder') -> logging.Logger:
    """Get logger with structured formatting."""
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs):
    """Log message with additional fields."""
    level_no = getattr(logging, level.upper())
    if not logger.isEnabledFor(level_no):
        return
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(level_no, message, exc_info=exc_info, extra={'fields': merged} if merged else None)


def log_request_start(logger: logging.Logger, endpoint: str, **kwargs):
    """Log an incoming API request."""
    log_with_fields(logger, 'INFO', 'Request started', {'endpoint': endpoint, **kwargs})


def log_request_complete(logger: logging.Logger, endpoint: str, result_count: int,
                         source: str, duration_ms: int, **kwargs):
    """Log request completion."""
    log_with_fields(logger, 'INFO', 'Request completed', {
        'endpoint': endpoint,
        'result_count': result_count,
        'source': source,
        'duration_ms': duration_ms,
        **kwargs
    })


def log_fallback(logger: logging.Logger, provider: str, error: Exception, **kwargs):
    """Log a provider failure that was answered with fallback data."""
    log_with_fields(logger, 'WARNING', f'{provider} unavailable, serving fallback data', {
        'provider': provider,
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
