"""
MutationEngine: structural edits of the goal tree.

Policy: optimistic local apply, then persist through the gateway, then
rollback if the gateway fails. While a persist is in flight the touched
entities (a whole subtree for deletes and moves) are pending; any other
mutation touching them raises ConcurrencyConflictError instead of queueing
a lost update.

Authorization is not checked here. The gateway collaborator rejects callers
that are neither owner nor admin.
"""
import uuid
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.config_manager import config
from core.exceptions import (
    ConcurrencyConflictError,
    InvariantViolationError,
    ValidationError,
)
from core.logger import get_logger
from core.progress_engine.models import (
    ChecklistLeaf,
    Entity,
    EntityKind,
    GoalNode,
    StreakLeaf,
    parse_date,
)
from core.progress_engine.store import NodeStore
from interface.gateways.base import SyncGateway

logger = get_logger("mutations")


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def _clean_label(label: Any) -> str:
    text = str(label or "").strip()
    if not text:
        raise ValidationError("Label must not be blank")
    return text


def _check_target_days(target_days: Any) -> int:
    if isinstance(target_days, bool) or not isinstance(target_days, int) or target_days < 0:
        raise ValidationError(f"target_days must be a non-negative integer, got {target_days!r}")
    return target_days


def _check_start_date(start_date: Any) -> date:
    try:
        return parse_date(start_date)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


class MutationEngine:
    """Applies add/edit/move/delete requests to a NodeStore and persists them."""

    def __init__(
        self,
        store: NodeStore,
        gateway: SyncGateway,
        id_factory: Callable[[str], str] = _new_id,
        on_removed: Optional[Callable[[List[str]], None]] = None,
    ):
        self.store = store
        self.gateway = gateway
        self._id_factory = id_factory
        self._on_removed = on_removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _allocate_id(self, prefix: str) -> str:
        entity_id = self._id_factory(prefix)
        while self.store.contains(entity_id):
            entity_id = self._id_factory(prefix)
        return entity_id

    def _guard(self, ids: Iterable[str]) -> None:
        blocked = self.store.first_pending(ids)
        if blocked is not None:
            raise ConcurrencyConflictError(
                f"A change to {blocked} is still being saved", entity_id=blocked
            )

    def _finish(
        self,
        action: str,
        target_id: str,
        pending: List[str],
        generation: int,
        persist: Callable[[], Optional[Dict[str, Any]]],
        undo: Callable[[], None],
        merge: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        """
        Run the gateway call outside the lock; roll back the local change on failure.

        A forced reload during the call replaces the tree; the local change is
        then already gone, so neither undo nor merge touches the new tree.
        """
        try:
            stored = persist()
        except Exception as exc:
            with self.store.write():
                if self.store.generation == generation:
                    undo()
                    self.store.clear_pending(pending)
                    logger.warning("%s %s rolled back: %s", action, target_id, exc)
                else:
                    logger.warning("%s %s failed after a reload: %s", action, target_id, exc)
            raise
        with self.store.write():
            if self.store.generation == generation:
                self.store.clear_pending(pending)
                if merge is not None and stored:
                    merge(stored)
        logger.info("%s %s", action, target_id)

    def _merge_revision(self, entity: Entity) -> Callable[[Dict[str, Any]], None]:
        def merge(stored: Dict[str, Any]) -> None:
            entity.revision = stored.get("revision", entity.revision)
        return merge

    def _merge_added(self, entity: Entity) -> Callable[[Dict[str, Any]], None]:
        def merge(stored: Dict[str, Any]) -> None:
            assigned = stored.get("goalId")
            if assigned and assigned != entity.id:
                self.store.rekey(entity.id, assigned)
            entity.revision = stored.get("revision", entity.revision)
        return merge

    # ------------------------------------------------------------------
    # Adds
    # ------------------------------------------------------------------
    def _add_node(self, action: str, parent_id: Optional[str], label: Any) -> GoalNode:
        text = _clean_label(label)
        with self.store.write():
            if parent_id is not None:
                self.store.require_node(parent_id)
                self._guard([parent_id])
            node = GoalNode(id=self._allocate_id(config.ID_PREFIX_GOAL), label=text, parent_id=parent_id)
            self.store.attach_node(node)
            pending = [node.id, *([parent_id] if parent_id else [])]
            generation = self.store.mark_pending(pending)

        self._finish(
            action,
            node.id,
            pending,
            generation,
            lambda: self.gateway.persist_add(parent_id, node),
            lambda: self.store.detach_node(node.id),
            self._merge_added(node),
        )
        return node

    def add_root_goal(self, label: str) -> GoalNode:
        return self._add_node("add_root_goal", None, label)

    def add_child_goal(self, parent_id: str, label: str) -> GoalNode:
        return self._add_node("add_child_goal", parent_id, label)

    def _add_leaf(self, action: str, leaf) -> None:
        with self.store.write():
            self.store.require_node(leaf.parent_id)
            self._guard([leaf.parent_id])
            prefix = config.ID_PREFIX_CHECKBOX if leaf.kind == EntityKind.CHECKLIST else config.ID_PREFIX_STREAK
            leaf.id = self._allocate_id(prefix)
            self.store.attach_leaf(leaf)
            pending = [leaf.id, leaf.parent_id]
            generation = self.store.mark_pending(pending)

        self._finish(
            action,
            leaf.id,
            pending,
            generation,
            lambda: self.gateway.persist_add(leaf.parent_id, leaf),
            lambda: self.store.detach_leaf(leaf.id),
            self._merge_added(leaf),
        )

    def add_checklist_item(self, parent_id: str, label: str) -> ChecklistLeaf:
        leaf = ChecklistLeaf(id="", label=_clean_label(label), parent_id=parent_id)
        self._add_leaf("add_checklist_item", leaf)
        return leaf

    def add_streak_leaf(
        self,
        parent_id: str,
        label: str,
        start_date: Any,
        target_days: int,
    ) -> StreakLeaf:
        leaf = StreakLeaf(
            id="",
            label=_clean_label(label),
            start_date=_check_start_date(start_date),
            target_days=_check_target_days(target_days),
            parent_id=parent_id,
        )
        self._add_leaf("add_streak_leaf", leaf)
        return leaf

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    def _edit(self, entity: Entity, changes: Dict[str, Any]) -> Tuple[Callable[[], None], int]:
        """Apply attribute changes under the write lock; returns the undo action and generation."""
        previous = {name: getattr(entity, name) for name in changes}
        for name, value in changes.items():
            setattr(entity, name, value)
        generation = self.store.mark_pending([entity.id])

        def undo() -> None:
            for name, value in previous.items():
                setattr(entity, name, value)
        return undo, generation

    def _persist_edit(self, action: str, entity: Entity, undo: Callable[[], None], generation: int) -> None:
        self._finish(
            action,
            entity.id,
            [entity.id],
            generation,
            lambda: self.gateway.persist_edit(entity),
            undo,
            self._merge_revision(entity),
        )

    def edit_goal(self, node_id: str, label: str) -> GoalNode:
        text = _clean_label(label)
        with self.store.write():
            node = self.store.require_node(node_id)
            self._guard([node_id])
            undo, generation = self._edit(node, {"label": text})
        self._persist_edit("edit_goal", node, undo, generation)
        return node

    def edit_checklist_item(self, item_id: str, label: str) -> ChecklistLeaf:
        text = _clean_label(label)
        with self.store.write():
            leaf = self.store.require_leaf(item_id, EntityKind.CHECKLIST)
            self._guard([item_id])
            undo, generation = self._edit(leaf, {"label": text})
        self._persist_edit("edit_checklist_item", leaf, undo, generation)
        return leaf

    def toggle_checklist_item(self, item_id: str) -> ChecklistLeaf:
        with self.store.write():
            leaf = self.store.require_leaf(item_id, EntityKind.CHECKLIST)
            self._guard([item_id])
            undo, generation = self._edit(leaf, {"checked": not leaf.checked})
        self._persist_edit("toggle_checklist_item", leaf, undo, generation)
        return leaf

    def edit_streak_leaf(
        self,
        leaf_id: str,
        target_days: Optional[int] = None,
        start_date: Any = None,
        label: Optional[str] = None,
    ) -> StreakLeaf:
        changes: Dict[str, Any] = {}
        if target_days is not None:
            changes["target_days"] = _check_target_days(target_days)
        if start_date is not None:
            changes["start_date"] = _check_start_date(start_date)
        if label is not None:
            changes["label"] = _clean_label(label)
        if not changes:
            raise ValidationError("Nothing to change")

        with self.store.write():
            leaf = self.store.require_leaf(leaf_id, EntityKind.STREAK)
            self._guard([leaf_id])
            undo, generation = self._edit(leaf, changes)
        self._persist_edit("edit_streak_leaf", leaf, undo, generation)
        return leaf

    def move_goal(self, node_id: str, new_parent_id: Optional[str]) -> GoalNode:
        """
        Reparent a goal. A parent equal to or inside the moved subtree is rejected.

        Moving a goal under the parent it already has changes nothing and
        does not call the gateway.
        """
        with self.store.write():
            node = self.store.require_node(node_id)
            if new_parent_id == node.parent_id:
                return node
            if new_parent_id is not None:
                self.store.require_node(new_parent_id)
                if self.store.is_in_subtree(new_parent_id, node_id):
                    raise InvariantViolationError(
                        f"Cannot move {node_id} under {new_parent_id}: it would create a cycle"
                    )
            old_parent_id = node.parent_id
            subtree = self.store.subtree_ids(node_id)
            pending = [*subtree, *(p for p in (old_parent_id, new_parent_id) if p)]
            self._guard(pending)
            _, old_position = self.store.detach_node(node_id)
            node.parent_id = new_parent_id
            self.store.attach_node(node)
            generation = self.store.mark_pending(pending)

        def undo() -> None:
            self.store.detach_node(node.id)
            node.parent_id = old_parent_id
            self.store.attach_node(node, old_position)

        self._finish(
            "move_goal",
            node_id,
            pending,
            generation,
            lambda: self.gateway.persist_edit(node),
            undo,
            self._merge_revision(node),
        )
        return node

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------
    def delete_node(self, node_id: str) -> List[str]:
        """
        Delete a goal with its whole subtree.

        Ids are collected post-order first and removed in one step under the
        write lock, so readers see either the full subtree or none of it.

        Returns:
            The removed ids.
        """
        with self.store.write():
            removed = self.store.subtree_ids(node_id)
            parent_id = self.store.require_node(node_id).parent_id
            pending = [*removed, *([parent_id] if parent_id else [])]
            self._guard(pending)
            node, position = self.store.detach_node(node_id)
            generation = self.store.mark_pending(pending)

        self._finish(
            "delete_node",
            node_id,
            pending,
            generation,
            lambda: self.gateway.persist_delete(node_id, EntityKind.GOAL),
            lambda: self.store.attach_node(node, position),
        )
        if self._on_removed is not None:
            self._on_removed(removed)
        return removed

    def delete_leaf(self, leaf_id: str) -> None:
        with self.store.write():
            pending = [leaf_id, self.store.require_leaf(leaf_id).parent_id]
            self._guard(pending)
            leaf, position = self.store.detach_leaf(leaf_id)
            generation = self.store.mark_pending(pending)

        self._finish(
            "delete_leaf",
            leaf_id,
            pending,
            generation,
            lambda: self.gateway.persist_delete(leaf_id, leaf.kind),
            lambda: self.store.attach_leaf(leaf, position),
        )
        if self._on_removed is not None:
            self._on_removed([leaf_id])
