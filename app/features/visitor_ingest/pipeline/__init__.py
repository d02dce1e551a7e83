"""
Pipeline components for visitor ingest.

Fetching, normalization, aggregation and batch writing. Subpackages expose
the primary services that other layers use.
"""

__all__ = ["aggregation", "fetching", "normalize", "writer"]
