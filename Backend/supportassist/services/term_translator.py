"""
Rewrites internal telecom jargon into customer-friendly wording.

Only customer-facing drafts go through this; internal notes keep the jargon.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class CustomerTerm:
    internal: str
    customer_friendly: str
    plural_friendly: Optional[str] = None


CUSTOMER_FRIENDLY_TERMS: List[CustomerTerm] = [
    # Mobile Station International Subscriber Directory Number
    CustomerTerm(internal="MSISDN", customer_friendly="phone number", plural_friendly="phone numbers"),
]


def _compile(term: CustomerTerm):
    singular = term.customer_friendly.strip()
    plural = (term.plural_friendly or "").strip() or f"{singular}s"
    # Word boundaries keep "CMSISDN" untouched; trailing "s" marks the plural.
    pattern = re.compile(rf"\b{re.escape(term.internal.strip())}s?\b", re.IGNORECASE)

    def _apply(match: re.Match) -> str:
        return plural if match.group(0).lower().endswith("s") else singular

    return pattern, _apply


_COMPILED = [
    _compile(term) for term in CUSTOMER_FRIENDLY_TERMS
    if term.internal.strip() and term.customer_friendly.strip()
]


def translate_terms(text: Optional[str]) -> str:
    if not isinstance(text, str) or not text:
        return text if isinstance(text, str) else ""
    for pattern, apply in _COMPILED:
        text = pattern.sub(apply, text)
    return text
