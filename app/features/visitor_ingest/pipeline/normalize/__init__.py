"""
Field normalization for upstream contact records.
"""

from .service import clean_record, first_value, lookup_space, normalize, resolve_visitor_id

__all__ = ["clean_record", "first_value", "lookup_space", "normalize", "resolve_visitor_id"]
