import json
import logging
import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
source_var: ContextVar[Optional[str]] = ContextVar('source', default=None)
destination_var: ContextVar[Optional[str]] = ContextVar('destination', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)

_CONTEXT_FIELDS = (
    ('source', source_var),
    ('destination', destination_var),
    ('stage', stage_var),
    ('playlistId', playlist_id_var),
)

# Longest names first so "music_user_token" wins over "token"
_SENSITIVE_NAMES = (
    'music_user_token',
    'user_token',
    'access_token',
    'refresh_token',
    'client_secret',
    'replaylist.sid',
    'token',
    'secret',
    'password',
    'code',
)


def mask_value(value: str) -> str:
    """Keep the first and last 4 characters of long values, hide the rest."""
    if len(value) > 8:
        return value[:4] + '*' * (len(value) - 8) + value[-4:]
    return '*' * len(value)


def current_context() -> Dict[str, str]:
    """Correlation fields bound in the current context."""
    return {name: var.get() for name, var in _CONTEXT_FIELDS if var.get()}


class SecretMasker:
    """Masks Apple user tokens, OAuth codes and session cookies in log output."""

    def __init__(self):
        names = '|'.join(re.escape(name) for name in _SENSITIVE_NAMES)
        # name, separator, optional quote, value; values stop at '&' so query strings stay readable
        self.pattern = re.compile(
            rf'(?i)(?<![A-Za-z0-9])({names})(\s*[:=]\s*)(["\']?)([A-Za-z0-9\-_.+/=%]{{8,}})\3'
        )

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text
        return self.pattern.sub(
            lambda m: f"{m.group(1)}{m.group(2)}{m.group(3)}{mask_value(m.group(4))}{m.group(3)}", text
        )

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask values of structured log fields; whole values under secret-looking keys."""
        if not data:
            return data
        return {key: self._mask_field(key, value) for key, value in data.items()}

    def _mask_field(self, key: str, value: Any) -> Any:
        if isinstance(value, dict):
            return self.mask_dict(value)
        if isinstance(value, (list, tuple)):
            return [self._mask_field(key, item) for item in value]
        if isinstance(value, str):
            if _is_sensitive_key(key):
                return mask_value(value)
            return self.mask_secrets(value)
        return value


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return 'token' in lowered or lowered in ('code', 'client_secret', 'cookie', 'session_cookie')


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with correlation context and masked secrets."""

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'ts': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'where': f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(current_context())

        fields = getattr(record, 'fields', None)
        if fields:
            entry['fields'] = self.masker.mask_dict(fields)
        if record.exc_info:
            entry['exception'] = self.masker.mask_secrets(self.formatException(record.exc_info))

        return json.dumps(entry, ensure_ascii=False)


class CorrelationContext:
    """Context manager binding the provider pair and stage to log records."""

    def __init__(self, source: Optional[str] = None,
                 destination: Optional[str] = None,
                 stage: Optional[str] = None,
                 playlist_id: Optional[str] = None):
        self._values = {
            source_var: source,
            destination_var: destination,
            stage_var: stage,
            playlist_id_var: playlist_id,
        }
        self._tokens = []

    def __enter__(self):
        for var, value in self._values.items():
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  structured: bool = True) -> logging.Logger:
    """Configure the ``replaylist`` logger hierarchy. Safe to call repeatedly."""
    logger = logging.getLogger('replaylist')
    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers.clear()

    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str = 'replaylist') -> logging.Logger:
    return logging.getLogger(name)


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, **kwargs):
    """Log message with additional structured fields."""
    merged = dict(fields or {})
    merged.update(kwargs)
    logger.log(getattr(logging, level.upper()), message, extra={'fields': merged} if merged else None)
