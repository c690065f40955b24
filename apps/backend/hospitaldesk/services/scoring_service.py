"""
Hospital scoring

Score is derived from the manual star rating only:
- manual_rating: 0-5 stars set by the outreach team
- score: manual_rating * 20, so 0-100, rounded to 2 decimals

There is no way to set a score on its own. Any patch that carries a rating
gets its score recomputed; a bare score is dropped.
"""

from typing import Any, Dict, Optional

MAX_RATING = 5
RATING_WEIGHT = 20

# Statuses counted as "closed" in the KPIs. 'reached' is a legacy value.
STATUS_NEW = "new"
STATUS_CLOSED = "closed"
CLOSED_STATUSES = ("closed", "reached")


def score_from_rating(manual_rating: Optional[float]) -> Optional[float]:
    """
    Convert a 0-5 manual rating into a 0-100 score.

    Args:
        manual_rating: Star rating, or None when unrated

    Returns:
        float: Score clamped to 0-100 and rounded to 2 decimals, None when unrated
    """
    if manual_rating is None:
        return None
    score = float(manual_rating) * RATING_WEIGHT
    return round(max(0.0, min(100.0, score)), 2)


def with_derived_score(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``patch`` whose score follows its manual_rating."""
    patch = dict(patch)
    patch.pop("score", None)
    if "manual_rating" in patch:
        patch["score"] = score_from_rating(patch["manual_rating"])
    return patch


def is_closed(status: Optional[str]) -> bool:
    return status in CLOSED_STATUSES


def next_status(current: Optional[str]) -> str:
    """Single-row toggle: closed reopens to new, anything else (legacy reached included) closes."""
    return STATUS_NEW if current == STATUS_CLOSED else STATUS_CLOSED


def validate_rating(value: Any) -> int:
    """
    Coerce user input to a 0-5 integer rating.

    Accepts ints and whole-number strings or floats ("4", "4.0", 4.0).

    Raises:
        ValueError: when the value is not a finite whole number in range
    """
    if isinstance(value, bool):
        raise ValueError(f"Rating must be a whole number, got {value!r}")
    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"Rating must be a whole number, got {value!r}")
    # inf and nan are never integral
    if not number.is_integer():
        raise ValueError(f"Rating must be a whole number, got {value!r}")
    rating = int(number)
    if not 0 <= rating <= MAX_RATING:
        raise ValueError(f"Rating must be between 0 and {MAX_RATING}, got {rating}")
    return rating
