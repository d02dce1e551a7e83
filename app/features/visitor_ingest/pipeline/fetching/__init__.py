"""
Paginated enrichment API fetching.
"""

from .client import EnrichmentApiClient, FirstPage, PageRangeResult, build_headers, page_url

__all__ = ["EnrichmentApiClient", "FirstPage", "PageRangeResult", "build_headers", "page_url"]
