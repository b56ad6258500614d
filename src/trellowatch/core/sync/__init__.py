"""
Watch-sync loops: mirror watched objects onto Trello cards.
"""

from .loop import BoardFactory, WatchSyncLoop, trello_board_factory
from .reconciler import CardReconciler

__all__ = [
    "BoardFactory",
    "CardReconciler",
    "WatchSyncLoop",
    "trello_board_factory",
]
