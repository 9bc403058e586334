"""
=============================================================================
CONTENT NEGOTIATION
=============================================================================

Picks the response MIME type from the request's Accept header (RFC 7231
section 5.3.2) among the types the server can produce.

    Accept: text/html;q=0.9, application/*;q=0.8, */*;q=0.1
            └──────┬─────┘   └───────┬───────┘    └──┬───┘
               exact             type/*             */*

=============================================================================
SELECTION RULES
=============================================================================

Each offer (in the order the server prefers them) takes the q of the
most specific media range that matches it:

    exact  >  type/*  >  */*

    Accept: application/xml;q=0, */*
        application/xml   q=0 (the exact range wins over */*)
        application/json  q=1

Then:

    1. q=0 means "not acceptable": the offer is never selected.
    2. A higher q always wins.
    3. At equal q the offer matched by the more specific range wins.
    4. At equal q and specificity the earlier offer wins.

Malformed ranges (no "/", empty parts, bad q) are dropped one by one; the
rest of the header is still used. If nothing is acceptable, or the header
is missing or empty, the default type is returned. The result is always
one of the offers or the default.

=============================================================================
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class MediaRange:
    type: str
    subtype: str
    q: float = 1.0

    @property
    def value(self) -> str:
        return f"{self.type}/{self.subtype}"


def _parse_q(raw: str) -> Optional[float]:
    try:
        q = float(raw)
    except ValueError:
        return None
    if not 0.0 <= q <= 1.0:
        return None
    return q


def parse_media_range(text: str) -> Optional[MediaRange]:
    """Parse one media range; None when malformed."""
    value, *params = text.split(";")
    value = value.strip().lower()

    media_type, sep, subtype = value.partition("/")
    media_type, subtype = media_type.strip(), subtype.strip()
    if not sep or not media_type or not subtype or "/" in subtype:
        return None
    if media_type == "*" and subtype != "*":
        return None

    q = 1.0
    for param in params:
        key, sep, raw = param.partition("=")
        if key.strip().lower() != "q":
            continue
        if not sep:
            return None
        parsed = _parse_q(raw.strip())
        if parsed is None:
            return None
        q = parsed

    return MediaRange(media_type, subtype, q)


def parse_accept(header: Optional[str]) -> List[MediaRange]:
    """Parse an Accept header, dropping malformed ranges."""
    if not header:
        return []

    ranges = []
    for part in header.split(","):
        if not part.strip():
            continue
        media_range = parse_media_range(part)
        if media_range is not None:
            ranges.append(media_range)
    return ranges


# Specificity ranks, lower is better
_EXACT, _SUBTYPE_WILDCARD, _FULL_WILDCARD, _NONE = 0, 1, 2, 3


def _offer_quality(offer: str, ranges: Sequence[MediaRange]) -> Tuple[float, int]:
    """q and specificity rank of the most specific range matching offer."""
    offer_type, _, offer_subtype = offer.lower().partition("/")

    q, rank = 0.0, _NONE
    for media_range in ranges:
        if media_range.type == "*":
            candidate = _FULL_WILDCARD
        elif media_range.type != offer_type:
            continue
        elif media_range.subtype == "*":
            candidate = _SUBTYPE_WILDCARD
        elif media_range.subtype == offer_subtype:
            candidate = _EXACT
        else:
            continue

        # equally specific duplicates: the highest q counts
        if candidate < rank or (candidate == rank and media_range.q > q):
            q, rank = media_range.q, candidate

    return q, rank


def negotiate_content_type(
    accept: Optional[str],
    offers: Sequence[str],
    default: str,
) -> str:
    """Return the best offer for an Accept header, or default."""
    ranges = parse_accept(accept)

    best_offer = default
    best_q = 0.0
    best_rank = _NONE

    for offer in offers:
        q, rank = _offer_quality(offer, ranges)
        if q == 0.0:
            continue
        if q > best_q or (q == best_q and rank < best_rank):
            best_offer, best_q, best_rank = offer, q, rank

    return best_offer
