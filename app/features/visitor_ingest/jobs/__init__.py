"""
Job runners for the visitor ingest feature.
"""

from .sync_job import run_visitor_sync

__all__ = ["run_visitor_sync"]
