"""
Base Sync Gateway for Progress Tree.

Defines the narrow interface between the core and the persistence/API
collaborator. Implementations raise NotFoundError, UnauthorizedError,
ConcurrencyConflictError or GatewayError; they never touch the NodeStore.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from core.progress_engine.models import Entity, EntityKind, GoalNode


class SyncGateway(ABC):
    """Base class for all sync gateways."""

    @abstractmethod
    def load_tree(self, root_scope: Optional[str] = None) -> List[GoalNode]:
        """
        Fetch the caller's goals.

        Args:
            root_scope: id of a root goal to restrict to, or None for all roots.

        Returns:
            Goal payload; may list nested goals again at top level.
        """
        pass

    @abstractmethod
    def persist_add(self, parent_id: Optional[str], entity: Entity) -> Dict[str, Any]:
        """Create `entity` under `parent_id`; returns the stored wire dict (with assigned id)."""
        pass

    @abstractmethod
    def persist_edit(self, entity: Entity) -> Dict[str, Any]:
        """Store field edits of `entity`; returns the stored wire dict."""
        pass

    @abstractmethod
    def persist_delete(self, entity_id: str, kind: EntityKind = EntityKind.GOAL) -> None:
        """Delete an entity; goals cascade to their subtree."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Return the gateway name."""
        pass
