"""Credit pricing policies.

Two independent policies exist: a flat fee per operation (configured in
PipelineConfig) and a content-length tier used by the video analysis
endpoint. The tier boundaries are fixed segment counts.
"""

from decimal import Decimal
from enum import Enum


class ContentTier(str, Enum):
    MICRO = "micro"
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    EXTENDED = "extended"
    MARATHON = "marathon"


TIER_CREDITS: dict[ContentTier, Decimal] = {
    ContentTier.MICRO: Decimal("1"),
    ContentTier.SHORT: Decimal("2"),
    ContentTier.MEDIUM: Decimal("3"),
    ContentTier.LONG: Decimal("4"),
    ContentTier.EXTENDED: Decimal("6"),
    ContentTier.MARATHON: Decimal("8"),
}

# (inclusive upper bound on segment count, tier)
_TIER_BOUNDS: list[tuple[int, ContentTier]] = [
    (100, ContentTier.MICRO),
    (400, ContentTier.SHORT),
    (800, ContentTier.MEDIUM),
    (1200, ContentTier.LONG),
    (2000, ContentTier.EXTENDED),
]

DEFAULT_TIER = ContentTier.MEDIUM


def tier_for_segments(segment_count: int) -> ContentTier:
    """Map a transcript segment count to its pricing tier.

    Examples:
        >>> tier_for_segments(350)
        <ContentTier.SHORT: 'short'>
    """
    for upper, tier in _TIER_BOUNDS:
        if segment_count <= upper:
            return tier
    return ContentTier.MARATHON


def credits_for_segments(segment_count: int) -> Decimal:
    return TIER_CREDITS[tier_for_segments(segment_count)]


def initial_tier_charge(requested_tier: str | None) -> tuple[ContentTier, Decimal]:
    """Charge taken before the transcript length is known.

    A recognised tier name from the client is honoured; anything else falls
    back to the medium tier.
    """
    try:
        tier = ContentTier(requested_tier) if requested_tier else DEFAULT_TIER
    except ValueError:
        tier = DEFAULT_TIER
    return tier, TIER_CREDITS[tier]


def adjustment_delta(charged: Decimal, segment_count: int) -> Decimal:
    """Signed amount still owed once the real length is known.

    Positive means the user owes more; negative means part of the initial
    charge is returned.
    """
    return credits_for_segments(segment_count) - charged
