"""
Domain models for the visitor ingest feature.
"""

from .models import (
    BatchResult,
    ImportJob,
    NormalizedContact,
    OwnerScope,
    PixelForSync,
    SkippedItem,
    SyncResult,
    VisitorProfile,
)

__all__ = [
    "BatchResult",
    "ImportJob",
    "NormalizedContact",
    "OwnerScope",
    "PixelForSync",
    "SkippedItem",
    "SyncResult",
    "VisitorProfile",
]
