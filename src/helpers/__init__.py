"""Shared helper modules for services and tasks.

Database sessions, per-key locks, validation and the error taxonomy.
"""

from .database import create_session_factory, init_models
from .errors import (
    NewsletterLearningError,
    NotFoundError,
    StateConflictError,
    VerificationExpiredError,
)
from .keyed_lock import KeyedLock
from .validation import (
    clamp_unit,
    normalize_email_address,
    validate_identifier,
    validate_unit_interval,
)

__all__ = [
    # Database helpers
    "create_session_factory",
    "init_models",
    # Errors
    "NewsletterLearningError",
    "NotFoundError",
    "StateConflictError",
    "VerificationExpiredError",
    # Concurrency
    "KeyedLock",
    # Validation helpers
    "clamp_unit",
    "normalize_email_address",
    "validate_identifier",
    "validate_unit_interval",
]
