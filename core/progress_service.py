"""
Progress tree session service.

Wires gateway -> store -> engine -> projector for one owner session:
load the tree, answer progress queries, render, and reload after a
ConcurrencyConflictError.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.logger import get_logger
from core.progress_engine.aggregator import Clock, compute_progress, system_clock
from core.progress_engine.models import GoalNode
from core.progress_engine.mutations import MutationEngine
from core.progress_engine.store import NodeStore
from core.progress_engine.view import TreeRenderer, ViewProjector
from interface.gateways.base import SyncGateway

logger = get_logger("progress_service")


class ProgressTreeService:
    """Application service for one tree instance."""

    def __init__(
        self,
        gateway: SyncGateway,
        root_scope: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        self.gateway = gateway
        self.root_scope = root_scope
        self.clock = clock or system_clock
        self.store = NodeStore()
        self.projector = ViewProjector()
        self.engine = MutationEngine(self.store, gateway, on_removed=self.projector.forget)

    def load(self, force: bool = False) -> List[GoalNode]:
        self.store.load(self.gateway.load_tree(self.root_scope), force=force)
        logger.info("Loaded tree via %s gateway (scope=%s)", self.gateway.get_name(), self.root_scope)
        return self.store.roots

    def reload(self, force: bool = False) -> List[GoalNode]:
        """
        Re-fetch after a conflict; UI state of ids that vanished is dropped.

        Raises ConcurrencyConflictError while a change is still being saved,
        unless `force` discards the pending changes.
        """
        roots = self.load(force=force)
        stale = [i for i in self.projector.known_ids() if not self.store.contains(i)]
        self.projector.forget(stale)
        return roots

    def roots(self) -> List[GoalNode]:
        return self.store.roots

    def now(self) -> datetime:
        return self.clock()

    def progress(self, node_id: str) -> int:
        with self.store.read():
            return compute_progress(self.store.require_node(node_id), self.now())

    def views(self) -> List[Dict[str, Any]]:
        with self.store.read():
            return self.projector.project_all(self.store.roots, None, self.now())

    def render(self, renderer: TreeRenderer) -> List[Dict[str, Any]]:
        with self.store.read():
            return self.projector.render(self.store.roots, renderer, None, self.now())
