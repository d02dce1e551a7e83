"""
Visitor ingest feature package.

Pulls contact and event records from the enrichment API, normalizes and
aggregates them into visitor profiles, and runs chunked audience imports.
Every layer of the flow (domain models, pipeline, imports, services, API
routers) lives here so the feature can be read top to bottom.
"""

# Re-export the primary building blocks for easy access.
from .api.router import admin_router, cron_router, pixel_router  # noqa: F401
from .imports.service import ImportService  # noqa: F401
from .services.sync_service import VisitorSyncService  # noqa: F401
from .domain.models import ImportJob, NormalizedContact, VisitorProfile  # noqa: F401
