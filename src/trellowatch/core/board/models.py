"""
Trello card model and the card-name convention used for correlation.

A card belongs to a watched object when its name starts with
``"<namespace>/<name> "``. The trailing space keeps ``ns/a`` from matching
``ns/ab``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from trellowatch.core.models import ObjectKey


class Card(BaseModel):
    """
    A card on a Trello list.

    ``id`` is None for a card synthesized locally that has not been created
    on the board yet.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    name: str
    id_list: str = Field(..., alias="idList")

    @property
    def is_persisted(self) -> bool:
        return bool(self.id)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Card:
        """Create a Card from a Trello API response."""
        return cls(id=data.get("id"), name=data.get("name") or "", idList=data.get("idList") or "")


def card_prefix(key: ObjectKey) -> str:
    """Name prefix identifying the card of ``key``, trailing space included."""
    return f"{key} "


def card_name(key: ObjectKey, glyph: str) -> str:
    """Full card name for ``key`` showing ``glyph``."""
    return f"{card_prefix(key)}{glyph}"


def find_cards(cards: list[Card], key: ObjectKey) -> list[Card]:
    """Return every card belonging to ``key``, in list order."""
    prefix = card_prefix(key)
    return [card for card in cards if card.name.startswith(prefix)]
