"""
实用工具模块
"""

from .logger import get_logger, LogContext, setup_logging
from .errors import (
    ReconcileError, InvalidPrecondition, InvariantViolation,
    StorageError, ConsistencyDrift, ExternalServiceError
)

__all__ = [
    "get_logger",
    "LogContext",
    "setup_logging",
    "ReconcileError",
    "InvalidPrecondition",
    "InvariantViolation",
    "StorageError",
    "ConsistencyDrift",
    "ExternalServiceError",
]
