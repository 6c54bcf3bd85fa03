# Input sanitization
# utils/security.py
"""Security utilities for message sanitization and identifier validation"""

import re
from typing import Optional
import structlog


logger = structlog.get_logger()


UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE
)


def is_valid_uuid(value: Optional[str]) -> bool:
    """Check for a well-formed RFC 4122 UUID (versions 1-5)"""
    if not value or not isinstance(value, str):
        return False
    return bool(UUID_PATTERN.match(value))


class MessageSanitizer:
    """
    Strips markup and control characters from chat messages before they
    reach a provider or the prompt assembler.
    """

    MAX_LINES = 500
    MAX_LENGTH = 50000

    def __init__(self):
        self.logger = logger.bind(component="MessageSanitizer")

        self.dangerous_patterns = [
            re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE),
            re.compile(r'javascript:', re.IGNORECASE),
            re.compile(r'on\w+\s*=', re.IGNORECASE),
            re.compile(r'data:\s*text/html', re.IGNORECASE),
            re.compile(r'vbscript:', re.IGNORECASE),
        ]

        # Everything below 0x20 except \t \n \r, plus DEL
        self.control_chars = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')

    def sanitize(self, content: Optional[str]) -> str:
        """Return the cleaned message, possibly empty"""

        if not content:
            return ""

        sanitized = self.control_chars.sub("", content)

        for pattern in self.dangerous_patterns:
            sanitized = pattern.sub("", sanitized)

        sanitized = sanitized.replace("\r\n", "\n").replace("\r", "\n")

        lines = sanitized.split("\n")
        if len(lines) > self.MAX_LINES:
            self.logger.info("Truncating message lines", line_count=len(lines))
            sanitized = "\n".join(lines[:self.MAX_LINES])

        if len(sanitized) > self.MAX_LENGTH:
            self.logger.info("Truncating message length", length=len(sanitized))
            sanitized = sanitized[:self.MAX_LENGTH]

        return sanitized.strip()


def truncate(text: str, max_chars: int) -> str:
    """Cut diagnostic text down to size for logs and the ledger"""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."
