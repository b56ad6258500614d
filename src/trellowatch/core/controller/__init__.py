"""
Minimal reconcile machinery: work queue, event sources and controller.
"""

from .controller import Controller, Reconcile, Result
from .queue import WorkQueue
from .source import Source, WatchSource

__all__ = [
    "Controller",
    "Reconcile",
    "Result",
    "Source",
    "WatchSource",
    "WorkQueue",
]
