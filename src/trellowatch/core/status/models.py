"""
Readiness status taxonomy and the glyphs shown on Trello cards.
"""

from enum import Enum


class Status(str, Enum):
    """Coarse readiness of a watched resource."""

    CURRENT = "Current"
    FAILED = "Failed"
    IN_PROGRESS = "InProgress"
    NOT_FOUND = "NotFound"
    TERMINATING = "Terminating"
    UNKNOWN = "Unknown"


GLYPH_READY = "✅"
GLYPH_FAILED = "❌"
GLYPH_PENDING = "⌛"

STATUS_GLYPHS: dict[Status, str] = {
    Status.CURRENT: GLYPH_READY,
    Status.FAILED: GLYPH_FAILED,
    Status.NOT_FOUND: GLYPH_FAILED,
    Status.TERMINATING: GLYPH_FAILED,
    Status.IN_PROGRESS: GLYPH_PENDING,
    Status.UNKNOWN: GLYPH_PENDING,
}


def glyph_for(status: Status | str | None) -> str:
    """
    Map a status to its card glyph.

    Total over any input: values outside the taxonomy map to the pending
    glyph rather than raising.

    Example:
        >>> glyph_for(Status.CURRENT)
        '✅'
        >>> glyph_for("Bogus")
        '⌛'
    """
    try:
        return STATUS_GLYPHS[Status(status)]
    except (KeyError, ValueError):
        return GLYPH_PENDING
