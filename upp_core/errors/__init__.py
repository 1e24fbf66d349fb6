# =============================================================================
# upp_core/errors/__init__.py
# Centralized Error Handling for the UPP offline layer
# =============================================================================

from .exceptions import (
    UppError,
    StorageError,
    StorageQuotaError,
    StorageUnavailableError,
    RemoteOperationError,
    PayloadValidationError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "UppError",
    "StorageError",
    "StorageQuotaError",
    "StorageUnavailableError",
    "RemoteOperationError",
    "PayloadValidationError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
]
