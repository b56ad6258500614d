"""
trello-watch - Mirror Kubernetes resource readiness onto Trello cards.

A controller that watches TrelloConfig resources and, for each one, runs a
loop keeping one Trello card per watched object in sync with its status.
"""

__version__ = "0.1.0"

# Re-export core models for convenience
from trellowatch.core.models import Credentials, ObjectKey, TargetRef, TrelloConfig
from trellowatch.core.status import Status, compute_status, glyph_for

__all__ = [
    "Credentials",
    "ObjectKey",
    "Status",
    "TargetRef",
    "TrelloConfig",
    "compute_status",
    "glyph_for",
    "__version__",
]
