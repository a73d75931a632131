# store_service/app/logging_config.py
"""
Centralized logging configuration.

One stream handler on the root logger, plus a filter that keeps tokens,
password hashes and passwords out of the logs.
"""

import logging
import re
from typing import Pattern

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecretMaskingFilter(logging.Filter):
    """Replaces credentials in log records with [REDACTED_*] markers."""

    PATTERNS: list[tuple[Pattern, str]] = [
        # JWTs (header.payload.signature)
        (re.compile(r'\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+'), '[REDACTED_TOKEN]'),
        (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?)([^\s"\',]+)', re.IGNORECASE), r'\1[REDACTED_AUTHORIZATION]'),
        # bcrypt hashes
        (re.compile(r'\$2[aby]?\$\d{2}\$[./A-Za-z0-9]{53}'), '[REDACTED_HASH]'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\',]+)', re.IGNORECASE), r'\1[REDACTED_PASSWORD]'),
    ]

    def mask(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            record.msg = record.getMessage()
            record.args = None
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        return True


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)

    # Idempotent: create_app may run more than once per process (tests)
    for handler in root.handlers:
        if getattr(handler, "_store_handler", False):
            return

    handler = logging.StreamHandler()
    handler._store_handler = True
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SecretMaskingFilter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").addFilter(SecretMaskingFilter())
