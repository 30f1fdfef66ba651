"""
Local Sync Gateway for Progress Tree.

In-process gateway backed by ProgressRepository. Performs the
owner-or-admin check for the injected identity; the REST routers reuse its
wire-level methods so both paths enforce the same rules.
"""
from typing import Any, Dict, List, Optional

from core.progress_engine.models import Entity, EntityKind, GoalNode, entity_to_dict, node_from_dict
from core.progress_engine.repository import Identity, ProgressRepository
from interface.gateways.base import SyncGateway


class LocalSyncGateway(SyncGateway):
    """Talk to a ProgressRepository directly, as `identity`."""

    def __init__(self, repository: ProgressRepository, identity: Identity):
        self.repository = repository
        self.identity = identity

    # ------------------------------------------------------------------
    # Wire-level operations (camelCase dicts)
    # ------------------------------------------------------------------
    def list_wire(self, root_scope: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.repository.list_tree(self.identity.user_id, root_scope)

    def add_wire(
        self,
        kind: EntityKind,
        parent_id: Optional[str],
        payload: Dict[str, Any],
        entity_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if parent_id is not None:
            self.repository.authorize(self.repository.require(parent_id, EntityKind.GOAL), self.identity)
        record = self.repository.create(kind, self.identity.user_id, parent_id, payload, entity_id=entity_id)
        return self.repository.to_wire(record)

    def edit_wire(
        self,
        entity_id: str,
        payload: Dict[str, Any],
        expected_revision: Optional[int] = None,
        kind: Optional[EntityKind] = None,
    ) -> Dict[str, Any]:
        record = self.repository.require(entity_id, kind)
        self.repository.authorize(record, self.identity)
        new_parent = payload.get("parentGoalId")
        if (
            record["kind"] == EntityKind.GOAL.value
            and "parentGoalId" in payload
            and new_parent is not None
            and new_parent != record.get("parent_id")
        ):
            self.repository.authorize(self.repository.require(new_parent, EntityKind.GOAL), self.identity)
        updated = self.repository.update(entity_id, payload, expected_revision=expected_revision)
        return self.repository.to_wire(updated)

    def delete_wire(self, entity_id: str, kind: Optional[EntityKind] = None) -> List[str]:
        record = self.repository.require(entity_id, kind)
        self.repository.authorize(record, self.identity)
        return self.repository.delete(entity_id)

    # ------------------------------------------------------------------
    # SyncGateway
    # ------------------------------------------------------------------
    def load_tree(self, root_scope: Optional[str] = None) -> List[GoalNode]:
        return [node_from_dict(d) for d in self.list_wire(root_scope)]

    def persist_add(self, parent_id: Optional[str], entity: Entity) -> Dict[str, Any]:
        return self.add_wire(entity.kind, parent_id, entity_to_dict(entity), entity_id=entity.id)

    def persist_edit(self, entity: Entity) -> Dict[str, Any]:
        return self.edit_wire(entity.id, entity_to_dict(entity), expected_revision=entity.revision)

    def persist_delete(self, entity_id: str, kind: EntityKind = EntityKind.GOAL) -> None:
        self.delete_wire(entity_id, kind)

    def get_name(self) -> str:
        return "local"
