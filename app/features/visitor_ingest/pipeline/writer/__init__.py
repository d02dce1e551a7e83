"""
Batch persistence of aggregated visitor profiles.
"""

from .repository import VisitorRepository
from .service import VisitorWriter

__all__ = ["VisitorRepository", "VisitorWriter"]
