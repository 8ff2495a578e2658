"""ACP Core - errors, configuration and logging shared by every layer."""

from .config import ACPSettings, clear_config_cache, get_config
from .exceptions import (
    ACPException,
    CommitmentMismatchError,
    ConfigException,
    ErrorCategory,
    NotFoundError,
    ProtocolError,
    RejectReason,
    RetriesExhaustedError,
    TransientKind,
    TransientLedgerError,
    ValidationException,
    classify,
    is_retryable,
)
from .logging import (
    OperationLogger,
    configure_logging,
    correlation_context,
    get_logger,
    operation_logger,
)

__all__ = [
    "ACPException",
    "ACPSettings",
    "CommitmentMismatchError",
    "ConfigException",
    "ErrorCategory",
    "NotFoundError",
    "OperationLogger",
    "ProtocolError",
    "RejectReason",
    "RetriesExhaustedError",
    "TransientKind",
    "TransientLedgerError",
    "ValidationException",
    "classify",
    "clear_config_cache",
    "configure_logging",
    "correlation_context",
    "get_config",
    "get_logger",
    "is_retryable",
    "operation_logger",
]
