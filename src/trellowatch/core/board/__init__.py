"""
Trello board access: card model, REST client and retry helpers.
"""

from .client import DEFAULT_BASE_URL, BoardClient, TrelloClient
from .models import Card, card_name, card_prefix, find_cards

__all__ = [
    "DEFAULT_BASE_URL",
    "BoardClient",
    "Card",
    "TrelloClient",
    "card_name",
    "card_prefix",
    "find_cards",
]
