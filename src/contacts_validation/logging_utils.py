from __future__ import annotations

import logging
import os
import re
from typing import Any, Optional

from .config_loader import EngineConfig

_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+\-']{1,64})@([A-Za-z0-9.\-]+)")
_DIGIT_RUN_RE = re.compile(r"\+?\d[\d\s().\-]{5,}\d")


def _resolve_level(level_name: str) -> int:
    """
    Convert a case-insensitive logging level string to its numeric value.

    Falls back to logging.INFO when the provided string is not a valid level.
    """
    normalized = (level_name or "INFO").upper()
    if normalized.isdigit():
        return int(normalized)
    return getattr(logging, normalized, logging.INFO)


def mask_value(value: Any) -> str:
    """
    Shorten a personal value for log output.

    Emails keep the first character of the local part and the domain,
    digit runs keep their last two digits, anything else keeps its first
    character and length.
    """
    text = "" if value is None else str(value)
    if not text:
        return ""
    if _EMAIL_RE.search(text):
        return _EMAIL_RE.sub(lambda m: f"{m.group(1)[:1]}***@{m.group(2)}", text)
    if _DIGIT_RUN_RE.search(text):
        return _DIGIT_RUN_RE.sub(lambda m: f"***{re.sub(r'[^0-9]', '', m.group(0))[-2:]}", text)
    return f"{text[:1]}***({len(text)})"


class PIIMaskingFilter(logging.Filter):
    """Masks emails and phone-like digit runs in rendered log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _EMAIL_RE.sub(lambda m: f"{m.group(1)[:1]}***@{m.group(2)}", message)
        masked = _DIGIT_RUN_RE.sub(
            lambda m: f"***{re.sub(r'[^0-9]', '', m.group(0))[-2:]}", masked
        )
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(config: EngineConfig, level_override: Optional[str] = None) -> None:
    """
    Configure the root logger according to precedence:

    1. ``CONTACTS_VALIDATION_LOG_LEVEL`` environment variable (if set)
    2. ``level_override`` provided by the caller (e.g., CLI flag)
    3. ``config.logging.level`` from ``config.yaml``
    4. Default ``WARNING`` level

    Every root handler gets a :class:`PIIMaskingFilter`.
    """
    env_level = os.getenv("CONTACTS_VALIDATION_LOG_LEVEL")
    effective_level_name = env_level or level_override or config.logging.level or "WARNING"
    level_value = _resolve_level(effective_level_name)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value)
    for handler in root_logger.handlers:
        if not any(isinstance(f, PIIMaskingFilter) for f in handler.filters):
            handler.addFilter(PIIMaskingFilter())
