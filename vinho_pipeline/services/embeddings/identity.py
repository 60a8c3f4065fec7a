"""
Wine identity text.

A wine's identity text is the string its identity embedding is computed
from, in the form ``Producer | Wine Name | Region, Country | Varietals``.
Empty segments are kept so the four positions stay stable.
"""

UNKNOWN_PRODUCER = "Unknown Producer"
SEGMENT_SEPARATOR = " | "
SEGMENT_WEIGHT = 0.25


def build_identity_text(
    producer: str | None,
    wine_name: str | None,
    region: str | None = None,
    country: str | None = None,
    varietals: list[str] | None = None,
) -> str:
    """
    Build the identity text for a wine.

    Args:
        producer: Producer name; a placeholder is used when missing.
        wine_name: Wine name or cuvée.
        region: Region or appellation.
        country: Country of origin.
        varietals: Grape varietals, in label order.

    Returns:
        The pipe-separated identity text.
    """
    location = ", ".join(part.strip() for part in (region, country) if part and part.strip())
    grapes = ", ".join(v.strip() for v in varietals or [] if v and v.strip())
    segments = [
        (producer or "").strip() or UNKNOWN_PRODUCER,
        (wine_name or "").strip(),
        location,
        grapes,
    ]
    return SEGMENT_SEPARATOR.join(segments)


def completeness_score(identity_text: str) -> float:
    """
    Score how much of the identity is known, in steps of 0.25.

    One step each for a real producer, a wine name, a location and
    varietals. The producer placeholder does not count.
    """
    parts = identity_text.split(SEGMENT_SEPARATOR)
    score = 0.0
    if parts and parts[0].strip() and parts[0].strip() != UNKNOWN_PRODUCER:
        score += SEGMENT_WEIGHT
    for part in parts[1:4]:
        if part.strip():
            score += SEGMENT_WEIGHT
    return min(score, 1.0)
