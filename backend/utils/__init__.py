# Utils package
# utils/__init__.py
"""Utility functions and helpers"""

from .security import MessageSanitizer, is_valid_uuid, truncate
from .errors import ErrorKind, InferenceError
from .config import settings

__all__ = [
    'MessageSanitizer', 'is_valid_uuid', 'truncate',
    'ErrorKind', 'InferenceError',
    'settings'
]
