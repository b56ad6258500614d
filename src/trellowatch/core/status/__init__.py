"""
Readiness evaluation and the status glyph taxonomy.
"""

from .compute import compute_status
from .models import GLYPH_FAILED, GLYPH_PENDING, GLYPH_READY, STATUS_GLYPHS, Status, glyph_for

__all__ = [
    "GLYPH_FAILED",
    "GLYPH_PENDING",
    "GLYPH_READY",
    "STATUS_GLYPHS",
    "Status",
    "compute_status",
    "glyph_for",
]
