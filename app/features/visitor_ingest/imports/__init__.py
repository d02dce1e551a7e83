"""
Chunked audience imports from an enrichment API URL.
"""

from .contact_store import BlobContactStore, ContactStore, TableContactStore, contact_key
from .repository import AudienceRepository
from .service import ImportService
from .state_machine import (
    ChunkImported,
    ImportFinalized,
    ImportInitialized,
    ImportReset,
    advance,
)

__all__ = [
    "AudienceRepository",
    "BlobContactStore",
    "ChunkImported",
    "ContactStore",
    "ImportFinalized",
    "ImportInitialized",
    "ImportReset",
    "ImportService",
    "TableContactStore",
    "advance",
    "contact_key",
]
