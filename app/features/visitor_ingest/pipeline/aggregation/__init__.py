"""
Aggregation package for visitor ingest.

Turns raw enrichment event records into one VisitorProfile per visitor.
"""

from .service import VisitorAggregationService, compute_lead_score, visitor_aggregation_service

__all__ = ["VisitorAggregationService", "compute_lead_score", "visitor_aggregation_service"]
