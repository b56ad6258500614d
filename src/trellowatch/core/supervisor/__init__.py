"""
Supervision of watch-sync loops, one per TrelloConfig.
"""

from .reconciler import ConfigReconciler, LoopFactory
from .registry import LoopRegistry
from .runner import LoopRunner, RestartPolicy
from .scope import ExecutionScope

__all__ = [
    "ConfigReconciler",
    "ExecutionScope",
    "LoopFactory",
    "LoopRegistry",
    "LoopRunner",
    "RestartPolicy",
]
