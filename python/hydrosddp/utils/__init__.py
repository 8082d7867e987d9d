"""Shared helpers: input validation and iteration logging."""

from .logger import IterationLogger, console_logging
from .validation import check_finite, validate_probabilities, validate_state

__all__ = [
    "IterationLogger",
    "console_logging",
    "check_finite",
    "validate_probabilities",
    "validate_state",
]
