# Progress Engine: goal tree store, aggregation, mutations and view projection.

from core.progress_engine.aggregator import compute_progress
from core.progress_engine.models import ChecklistLeaf, EntityKind, GoalNode, StreakLeaf
from core.progress_engine.mutations import MutationEngine
from core.progress_engine.store import NodeStore
from core.progress_engine.view import ViewProjector

__all__ = [
    "ChecklistLeaf",
    "EntityKind",
    "GoalNode",
    "MutationEngine",
    "NodeStore",
    "StreakLeaf",
    "ViewProjector",
    "compute_progress",
]
