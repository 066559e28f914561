"""Secret redaction for log output."""

import logging
import os
import re

# Env vars whose values must never appear in output
_SECRET_ENV_VARS = [
    "HCLOUD_TOKEN",
    "AZURE_CLIENT_SECRET",
    "AZURE_MGMT_CLIENT_SECRET",
    "ENTRA_MGMT_CLIENT_SECRET",
]

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives

_patterns: list[re.Pattern] | None = None
_extra_values: set[str] = set()


def _collect_secret_values() -> set[str]:
    values = {v for v in _extra_values if len(v) >= _MIN_SECRET_LENGTH}
    for var in _SECRET_ENV_VARS:
        val = os.environ.get(var, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
    return values


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        # Longest first so a secret containing another is fully masked
        values = sorted(_collect_secret_values(), key=len, reverse=True)
        _patterns = [re.compile(re.escape(v)) for v in values]
    return _patterns


def register_secret(value):
    """Redact *value* too, e.g. a client secret passed on the command line."""
    global _patterns
    if value and len(value) >= _MIN_SECRET_LENGTH:
        _extra_values.add(value)
        _patterns = None


def reset():
    """Forget cached patterns and registered values (env changes take effect)."""
    global _patterns
    _patterns = None
    _extra_values.clear()


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    for pattern in _get_patterns():
        text = pattern.sub("***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Logging filter that masks secret values in log records.

    Handles both f-string messages (msg is pre-formatted) and %-style
    messages (msg + args).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not _get_patterns():
            return True
        record.msg = redact_secrets(str(record.msg))
        if isinstance(record.args, dict):
            record.args = {k: redact_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True
