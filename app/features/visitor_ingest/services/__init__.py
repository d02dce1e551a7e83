"""
Service layer for the visitor ingest feature.
"""

from .api_keys import ApiKeyProvider, ApiKeyRepository
from .sync_service import VisitorSyncService

__all__ = ["ApiKeyProvider", "ApiKeyRepository", "VisitorSyncService"]
