"""
HTTP routes for the visitor ingest feature.
"""

from .router import admin_router, cron_router, pixel_router

__all__ = ["admin_router", "cron_router", "pixel_router"]
