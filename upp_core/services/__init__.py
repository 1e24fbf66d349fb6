# =============================================================================
# upp_core/services/__init__.py
# Service Layer for the UPP offline layer
# =============================================================================

from .base_service import BaseService, ServiceResult

__all__ = ["BaseService", "ServiceResult"]
