# =============================================================================
# upp_core/data/__init__.py
# Table-specific data APIs built on the offline layer
# =============================================================================

from .rental_inventory import (
    RentalInventoryService,
    RentalItem,
    ALLOWED_CATEGORIES,
    sanitize_category,
    normalize_counts,
)

__all__ = [
    "RentalInventoryService",
    "RentalItem",
    "ALLOWED_CATEGORIES",
    "sanitize_category",
    "normalize_counts",
]
