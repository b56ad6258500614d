"""
Card reconciliation for one watched object.

Keeps exactly one Trello card per watched object, named
``"<namespace>/<name> <glyph>"`` where the glyph reflects the object's
computed readiness. The object carries a finalizer so its card can be
removed before the object disappears.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from trellowatch.core.board.client import BoardClient
from trellowatch.core.board.models import Card, card_name, card_prefix, find_cards
from trellowatch.core.controller import Result
from trellowatch.core.errors import ReadinessError
from trellowatch.core.models import (
    FINALIZER_NAME,
    TARGET_FIELD_MANAGER,
    ObjectKey,
    TargetRef,
    add_finalizer,
    get_finalizers,
    has_finalizer,
    is_deleting,
    remove_finalizer,
)
from trellowatch.core.status import Status, compute_status, glyph_for

if TYPE_CHECKING:
    from trellowatch.core.cluster.client import ClusterClient

logger = logging.getLogger(__name__)

StatusFunc = Callable[[Mapping[str, Any]], Status]


class CardReconciler:
    """
    Reconciles one watched object into its Trello card.

    Args:
        cluster: Cluster access for the watched kind
        board: Trello client owned by the enclosing loop
        target: Watched kind
        list_id: Trello list holding the cards
        status_func: Readiness evaluator
    """

    def __init__(
        self,
        cluster: ClusterClient,
        board: BoardClient,
        target: TargetRef,
        list_id: str,
        status_func: StatusFunc = compute_status,
    ) -> None:
        self.cluster = cluster
        self.board = board
        self.target = target
        self.list_id = list_id
        self.status_func = status_func

    def reconcile(self, key: ObjectKey) -> Result:
        log_prefix = f"[{self.target.kind.lower()}] resource={key}"

        obj = self.cluster.get(self.target, key)
        if obj is None:
            return Result()

        if not has_finalizer(obj):
            if is_deleting(obj):
                # Never got our finalizer, so we never created a card for it.
                return Result()
            self.cluster.patch_finalizers(
                self.target, obj, add_finalizer(get_finalizers(obj)), TARGET_FIELD_MANAGER
            )
            logger.info(f"{log_prefix} added finalizer, requeueing")
            return Result(requeue=True)

        card = self._find_card(key, log_prefix)

        if is_deleting(obj):
            return self._reconcile_delete(obj, card, log_prefix)

        if card is None:
            logger.info(f"{log_prefix} card with prefix {card_prefix(key)!r} not found")
            card = Card(name=card_prefix(key), id_list=self.list_id)

        try:
            status = self.status_func(obj)
        except ReadinessError as e:
            raise ReadinessError(f"failed checking ready state: {e}", resource=str(key)) from e

        name = card_name(key, glyph_for(status))

        if card.is_persisted:
            if card.name == name:
                logger.debug(f"{log_prefix} card up to date")
                return Result()
            logger.info(f"{log_prefix} updating card name={name!r}")
            self.board.update_card(card.id, name)
        else:
            logger.info(f"{log_prefix} creating new card name={name!r}")
            self.board.create_card(card.model_copy(update={"name": name}))

        logger.info(f"{log_prefix} done")
        return Result()

    def _find_card(self, key: ObjectKey, log_prefix: str) -> Card | None:
        matches = find_cards(self.board.list_cards(self.list_id), key)
        if len(matches) > 1:
            logger.warning(
                f"{log_prefix} {len(matches)} cards match; using {matches[0].id}, "
                f"ignoring {[c.id for c in matches[1:]]}"
            )
        return matches[0] if matches else None

    def _reconcile_delete(
        self, obj: dict[str, Any], card: Card | None, log_prefix: str
    ) -> Result:
        # No card means an earlier attempt already deleted it.
        if card is not None and card.id:
            logger.info(f"{log_prefix} deleting card {card.id}")
            self.board.delete_card(card.id)

        self.cluster.patch_finalizers(
            self.target,
            obj,
            remove_finalizer(get_finalizers(obj), FINALIZER_NAME),
            TARGET_FIELD_MANAGER,
        )
        logger.info(f"{log_prefix} removed finalizer")
        return Result()
