"""
NodeStore: canonical in-memory goal tree, the only writer of tree state.

Nodes and leaves share one id space. Query helpers never lock; callers that
need a consistent multi-step view wrap them in `read()` or `write()`.
Mutating helpers assume the caller holds `write()`.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from core.exceptions import ConcurrencyConflictError, InvariantViolationError, NotFoundError
from core.logger import get_logger
from core.progress_engine.models import (
    ChecklistLeaf,
    Entity,
    EntityKind,
    GoalNode,
    StreakLeaf,
    entity_to_dict,
)

logger = get_logger("node_store")

Leaf = Union[ChecklistLeaf, StreakLeaf]


class ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _leaf_collection(owner: GoalNode, leaf: Leaf) -> list:
    if leaf.kind == EntityKind.CHECKLIST:
        return owner.checklist_items
    return owner.streak_leaves


class _TreeIndex:
    """Id index built while materializing a payload, swapped in as a whole."""

    def __init__(self):
        self.roots: List[GoalNode] = []
        self.nodes: Dict[str, GoalNode] = {}
        self.leaves: Dict[str, Leaf] = {}

    def has(self, entity_id: str) -> bool:
        return entity_id in self.nodes or entity_id in self.leaves

    def register_subtree(self, node: GoalNode) -> None:
        """Index `node` and everything below it, fixing up missing parent pointers."""
        if self.has(node.id):
            raise InvariantViolationError(f"Duplicate id in tree: {node.id}")
        self.nodes[node.id] = node
        for leaf in node.leaves():
            if self.has(leaf.id):
                raise InvariantViolationError(f"Duplicate id in tree: {leaf.id}")
            if leaf.parent_id is None:
                leaf.parent_id = node.id
            elif leaf.parent_id != node.id:
                raise InvariantViolationError(
                    f"Leaf {leaf.id} claims parent {leaf.parent_id} but is owned by {node.id}"
                )
            self.leaves[leaf.id] = leaf
        for child in node.child_bars:
            if child.parent_id is None:
                child.parent_id = node.id
            elif child.parent_id != node.id:
                raise InvariantViolationError(
                    f"Goal {child.id} claims parent {child.parent_id} but is nested under {node.id}"
                )
            self.register_subtree(child)


class NodeStore:
    """In-memory goal tree guarded by a readers/writer lock."""

    def __init__(self, roots: Optional[Iterable[GoalNode]] = None):
        self._lock = ReadWriteLock()
        self._index = _TreeIndex()
        self._pending: Set[str] = set()
        self._generation = 0
        if roots is not None:
            self.load(roots)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------
    def read(self):
        return self._lock.read()

    def write(self):
        return self._lock.write()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load(self, nodes: Iterable[GoalNode], force: bool = False) -> None:
        """
        Materialize a fetched payload and replace the current tree.

        The payload may list a nested goal both inside its parent's child_bars
        and again at top level; such duplicates are dropped. A top-level goal
        whose parent is not nested anywhere is attached to that parent.

        While a persist is in flight the tree is locked: loading raises
        ConcurrencyConflictError unless `force` is set, in which case the
        pending persists lose their rollback (see `generation`).
        """
        index = _TreeIndex()
        detached: List[GoalNode] = []
        for node in nodes:
            if node.parent_id is None:
                index.register_subtree(node)
                index.roots.append(node)
            else:
                detached.append(node)

        while detached:
            remaining = []
            for node in detached:
                if node.id in index.nodes:
                    continue
                parent = index.nodes.get(node.parent_id)
                if parent is None:
                    remaining.append(node)
                    continue
                index.register_subtree(node)
                parent.child_bars.append(node)
            if len(remaining) == len(detached):
                missing = ", ".join(f"{n.id}->{n.parent_id}" for n in remaining)
                raise InvariantViolationError(f"Dangling parent pointers: {missing}")
            detached = remaining

        with self.write():
            if self._pending and not force:
                blocked = sorted(self._pending)[0]
                raise ConcurrencyConflictError(
                    f"Cannot reload while a change to {blocked} is still being saved", entity_id=blocked
                )
            if self._pending:
                logger.warning("Forced reload drops %d pending id(s)", len(self._pending))
            self._index = index
            self._pending.clear()
            self._generation += 1
        logger.info("Loaded tree: %d goals, %d leaves", len(index.nodes), len(index.leaves))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        """Bumped on every load; rollbacks from an older generation are skipped."""
        return self._generation

    @property
    def roots(self) -> List[GoalNode]:
        return list(self._index.roots)

    def all_nodes(self) -> List[GoalNode]:
        return list(self._index.nodes.values())

    def contains(self, entity_id: str) -> bool:
        return self._index.has(entity_id)

    def get_node(self, node_id: str) -> Optional[GoalNode]:
        return self._index.nodes.get(node_id)

    def require_node(self, node_id: str) -> GoalNode:
        node = self.get_node(node_id)
        if node is None:
            raise NotFoundError(node_id, kind="Goal")
        return node

    def get_leaf(self, leaf_id: str) -> Optional[Leaf]:
        return self._index.leaves.get(leaf_id)

    def require_leaf(self, leaf_id: str, kind: Optional[EntityKind] = None) -> Leaf:
        leaf = self.get_leaf(leaf_id)
        if leaf is None or (kind is not None and leaf.kind != kind):
            label = "Checkbox" if kind == EntityKind.CHECKLIST else "Day counter" if kind else "Leaf"
            raise NotFoundError(leaf_id, kind=label)
        return leaf

    def resolve(self, entity_id: str) -> Entity:
        entity = self.get_node(entity_id) or self.get_leaf(entity_id)
        if entity is None:
            raise NotFoundError(entity_id)
        return entity

    def ancestors(self, entity_id: str) -> List[str]:
        """Ids from the direct parent up to the root."""
        chain = []
        parent_id = self.resolve(entity_id).parent_id
        while parent_id is not None:
            chain.append(parent_id)
            parent_id = self.require_node(parent_id).parent_id
        return chain

    def subtree_ids(self, node_id: str) -> List[str]:
        """Post-order ids of the subtree rooted at node_id (leaves, then children, then the node)."""
        ordered: List[str] = []

        def visit(node: GoalNode) -> None:
            for child in node.child_bars:
                visit(child)
            ordered.extend(leaf.id for leaf in node.leaves())
            ordered.append(node.id)

        visit(self.require_node(node_id))
        return ordered

    def is_in_subtree(self, candidate_id: str, root_id: str) -> bool:
        current: Optional[str] = candidate_id
        while current is not None:
            if current == root_id:
                return True
            node = self.get_node(current)
            if node is None:
                return False
            current = node.parent_id
        return False

    def snapshot(self) -> List[dict]:
        return [entity_to_dict(root) for root in self._index.roots]

    # ------------------------------------------------------------------
    # Pending persists
    # ------------------------------------------------------------------
    def first_pending(self, ids: Iterable[str]) -> Optional[str]:
        for entity_id in ids:
            if entity_id in self._pending:
                return entity_id
        return None

    def mark_pending(self, ids: Iterable[str]) -> int:
        """Lock `ids` against other mutations; returns the current generation."""
        self._pending.update(ids)
        return self._generation

    def clear_pending(self, ids: Iterable[str]) -> None:
        self._pending.difference_update(ids)

    # ------------------------------------------------------------------
    # Mutations (caller holds write())
    # ------------------------------------------------------------------
    def _siblings(self, parent_id: Optional[str]) -> List[GoalNode]:
        if parent_id is None:
            return self._index.roots
        return self.require_node(parent_id).child_bars

    def attach_node(self, node: GoalNode, position: Optional[int] = None) -> None:
        siblings = self._siblings(node.parent_id)
        staged = _TreeIndex()
        staged.register_subtree(node)
        clashes = [i for i in (*staged.nodes, *staged.leaves) if self._index.has(i)]
        if clashes:
            raise InvariantViolationError(f"Duplicate id in tree: {clashes[0]}")
        self._index.nodes.update(staged.nodes)
        self._index.leaves.update(staged.leaves)
        if position is None:
            siblings.append(node)
        else:
            siblings.insert(position, node)

    def detach_node(self, node_id: str) -> Tuple[GoalNode, int]:
        """Remove a goal and its whole subtree; returns the node and its former position."""
        node = self.require_node(node_id)
        doomed = self.subtree_ids(node_id)
        siblings = self._siblings(node.parent_id)
        position = siblings.index(node)
        del siblings[position]
        for entity_id in doomed:
            self._index.nodes.pop(entity_id, None)
            self._index.leaves.pop(entity_id, None)
        return node, position

    def attach_leaf(self, leaf: Leaf, position: Optional[int] = None) -> None:
        owner = self.require_node(leaf.parent_id)
        if self._index.has(leaf.id):
            raise InvariantViolationError(f"Duplicate id in tree: {leaf.id}")
        collection = _leaf_collection(owner, leaf)
        if position is None:
            collection.append(leaf)
        else:
            collection.insert(position, leaf)
        self._index.leaves[leaf.id] = leaf

    def detach_leaf(self, leaf_id: str) -> Tuple[Leaf, int]:
        leaf = self.require_leaf(leaf_id)
        collection = _leaf_collection(self.require_node(leaf.parent_id), leaf)
        position = collection.index(leaf)
        del collection[position]
        del self._index.leaves[leaf_id]
        return leaf, position

    def rekey(self, old_id: str, new_id: str) -> None:
        """Give a freshly added childless entity the id assigned by the collaborator."""
        if old_id == new_id:
            return
        if self._index.has(new_id):
            raise InvariantViolationError(f"Duplicate id in tree: {new_id}")
        if old_id in self._index.nodes:
            node = self._index.nodes.pop(old_id)
            node.id = new_id
            self._index.nodes[new_id] = node
            for child in node.child_bars:
                child.parent_id = new_id
            for leaf in node.leaves():
                leaf.parent_id = new_id
        else:
            leaf = self._index.leaves.pop(old_id)
            leaf.id = new_id
            self._index.leaves[new_id] = leaf
