"""
Candidate source keys per canonical contact attribute.

Order is precedence: the first candidate holding a non-empty value wins.
Each candidate is written once in its canonical spelling; the naming
variants (UPPER_SNAKE, lower_snake, camelCase, PascalCase) are expanded
from it at import time, verbatim spelling first.
"""

from __future__ import annotations

import re

IDENTITY_CANDIDATES = ("UUID", "EDID", "ID")

ATTRIBUTE_CANDIDATES: dict[str, tuple[str, ...]] = {
    "email": (
        "PERSONAL_VERIFIED_EMAILS",
        "BUSINESS_VERIFIED_EMAILS",
        "PERSONAL_EMAILS",
        "BUSINESS_EMAIL",
        "EMAIL",
    ),
    "business_email": ("BUSINESS_EMAIL",),
    "verified_email": ("PERSONAL_VERIFIED_EMAILS", "BUSINESS_VERIFIED_EMAILS"),
    "first_name": ("FIRST_NAME",),
    "last_name": ("LAST_NAME",),
    "company": ("COMPANY_NAME", "COMPANY"),
    "company_domain": ("COMPANY_DOMAIN", "WEBSITE"),
    "company_description": ("COMPANY_DESCRIPTION",),
    "company_revenue": ("COMPANY_REVENUE", "REVENUE"),
    "company_phone": ("COMPANY_PHONE",),
    "job_title": ("JOB_TITLE", "HEADLINE", "TITLE"),
    "seniority": ("SENIORITY_LEVEL", "SENIORITY"),
    "department": ("DEPARTMENT",),
    "phone": (
        "MOBILE_PHONE",
        "ALL_MOBILES",
        "DIRECT_NUMBER",
        "PHONE",
        "PERSONAL_PHONE",
        "ALL_LANDLINES",
    ),
    "mobile_phone": ("MOBILE_PHONE",),
    "direct_number": ("DIRECT_NUMBER",),
    "linkedin_url": (
        "INDIVIDUAL_LINKEDIN_URL",
        "LINKEDIN_URL",
        "COMPANY_LINKEDIN_URL",
    ),
    "city": ("PERSONAL_CITY", "CITY"),
    "state": ("PERSONAL_STATE", "STATE"),
    "country": ("COUNTRY",),
    "gender": ("GENDER",),
    "age_range": ("AGE_RANGE",),
    "income_range": ("INCOME_RANGE",),
    "url": ("URL", "FULL_URL", "PAGE_URL"),
    "ip_address": ("IP_ADDRESS",),
    "event_type": ("EVENT_TYPE",),
    "referrer_url": ("REFERRER_URL",),
}

# Comma-separated upstream lists; only the first entry is kept
MULTI_VALUE_ATTRIBUTES = frozenset(
    {"email", "business_email", "verified_email", "phone", "mobile_phone", "direct_number"}
)

# Event fields read by the aggregator
EVENT_DATA_CANDIDATES = ("EVENT_DATA",)
ACTIVITY_START_CANDIDATES = ("ACTIVITY_START_DATE", "EVENT_DATE")
ACTIVITY_END_CANDIDATES = ("ACTIVITY_END_DATE",)

RESOLUTION_KEYS = ("resolution", "Resolution")

_WORD_SPLIT = re.compile(r"_|(?<=[a-z0-9])(?=[A-Z])")


def key_variants(candidate: str) -> tuple[str, ...]:
    """
    Spellings of one candidate key, verbatim first.

    >>> key_variants("FIRST_NAME")
    ('FIRST_NAME', 'first_name', 'firstName', 'FirstName')
    """
    words = [word.lower() for word in _WORD_SPLIT.split(candidate) if word]
    if not words:
        return (candidate,)

    spellings = [
        candidate,
        "_".join(word.upper() for word in words),
        "_".join(words),
        words[0] + "".join(word.capitalize() for word in words[1:]),
        "".join(word.capitalize() for word in words),
    ]
    ordered: list[str] = []
    for spelling in spellings:
        if spelling not in ordered:
            ordered.append(spelling)
    return tuple(ordered)


def expand_candidates(candidates: tuple[str, ...]) -> tuple[str, ...]:
    expanded: list[str] = []
    for candidate in candidates:
        for spelling in key_variants(candidate):
            if spelling not in expanded:
                expanded.append(spelling)
    return tuple(expanded)


EXPANDED_IDENTITY = expand_candidates(IDENTITY_CANDIDATES)
EXPANDED_ATTRIBUTES: dict[str, tuple[str, ...]] = {
    attribute: expand_candidates(candidates)
    for attribute, candidates in ATTRIBUTE_CANDIDATES.items()
}
EXPANDED_EVENT_DATA = expand_candidates(EVENT_DATA_CANDIDATES)
EXPANDED_ACTIVITY_START = expand_candidates(ACTIVITY_START_CANDIDATES)
EXPANDED_ACTIVITY_END = expand_candidates(ACTIVITY_END_CANDIDATES)

CLAIMED_KEYS = frozenset(
    spelling
    for spellings in (EXPANDED_IDENTITY, *EXPANDED_ATTRIBUTES.values())
    for spelling in spellings
)
