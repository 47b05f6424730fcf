"""Strip terminal control sequences from log output."""

from __future__ import annotations

import logging
import re

# CSI (ESC [ ... final), OSC (ESC ] ... BEL/ST) and two-character ESC sequences.
ANSI_ESCAPE_PATTERN = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)?"
    r"|\x1b[@-Z\\-_]"
)
# C0 controls except tab/newline, DEL, and C1 controls.
CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

_TRACEBACK_FORMATTER = logging.Formatter()


def sanitize_text(value: str) -> str:
    if not value:
        return value
    cleaned = ANSI_ESCAPE_PATTERN.sub("", value)
    return CONTROL_CHAR_PATTERN.sub("", cleaned)


class SanitizingFilter(logging.Filter):
    """Render the record message once and replace it with a sanitized copy.

    Upstream feed text ends up in log arguments, so the filter works on the
    fully formatted message rather than the format string.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:  # noqa: BLE001
            return True
        record.msg = sanitize_text(message)
        record.args = None
        # Handlers reuse a cached exc_text, so render the traceback here and clean it.
        if record.exc_info and not record.exc_text:
            record.exc_text = _TRACEBACK_FORMATTER.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = sanitize_text(record.exc_text)
        if record.stack_info:
            record.stack_info = sanitize_text(record.stack_info)
        return True


def install_sanitizer(logger: logging.Logger | None = None) -> SanitizingFilter:
    """Attach a `SanitizingFilter` to every handler on the given (default: root) logger."""
    target = logger or logging.getLogger()
    log_filter = SanitizingFilter()
    for handler in target.handlers:
        if not any(isinstance(existing, SanitizingFilter) for existing in handler.filters):
            handler.addFilter(log_filter)
    return log_filter
