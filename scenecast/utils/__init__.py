"""
Shared utilities: input coercion, log formatting and log rotation.
"""

from .coerce import as_entity_id, as_finite_float, as_text
from .log_rotation import LogRotator
from .logging_utils import AppTimeFormatter, create_app_time_formatter

__all__ = [
    "AppTimeFormatter",
    "LogRotator",
    "as_entity_id",
    "as_finite_float",
    "as_text",
    "create_app_time_formatter",
]
