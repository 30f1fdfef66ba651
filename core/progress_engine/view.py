"""
ViewProjector: turns the goal tree plus UI-only state into render dicts.

Expansion and menu flags live in a map keyed by node id, never on the
domain entities. Each node's flags are independent of its siblings and
descendants.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from core.progress_engine.aggregator import (
    compute_progress,
    elapsed_days,
    is_streak_complete,
    system_clock,
)
from core.progress_engine.models import GoalNode


@dataclass
class NodeViewState:
    expanded: bool = False
    menu_open: bool = False


class TreeRenderer(Protocol):
    """Render collaborator: receives projected root views."""

    def render(self, views: List[Dict[str, Any]]) -> None:
        ...


class ViewProjector:
    def __init__(self):
        self._states: Dict[str, NodeViewState] = {}

    def _state(self, node_id: str) -> NodeViewState:
        return self._states.get(node_id) or NodeViewState()

    def _mutable_state(self, node_id: str) -> NodeViewState:
        return self._states.setdefault(node_id, NodeViewState())

    # ------------------------------------------------------------------
    # UI state
    # ------------------------------------------------------------------
    def is_expanded(self, node_id: str) -> bool:
        return self._state(node_id).expanded

    def set_expanded(self, node_id: str, expanded: bool) -> None:
        self._mutable_state(node_id).expanded = expanded

    def toggle_expanded(self, node_id: str) -> bool:
        state = self._mutable_state(node_id)
        state.expanded = not state.expanded
        return state.expanded

    def is_menu_open(self, node_id: str) -> bool:
        return self._state(node_id).menu_open

    def open_menu(self, node_id: str) -> None:
        self._mutable_state(node_id).menu_open = True

    def close_menu(self, node_id: str) -> None:
        self._mutable_state(node_id).menu_open = False

    def click(self, node_id: str) -> bool:
        """Row click: toggles expansion unless the node's menu is open."""
        if self.is_menu_open(node_id):
            return self.is_expanded(node_id)
        return self.toggle_expanded(node_id)

    def forget(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            self._states.pop(node_id, None)

    def known_ids(self) -> List[str]:
        return list(self._states)

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------
    def project(
        self,
        node: GoalNode,
        parent_context: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Render dict for `node`, or None when it does not belong under `parent_context`.

        Root goals (parent_id None) render in any context. Children are only
        projected while the node is expanded.
        """
        if node.parent_id is not None and node.parent_id != parent_context:
            return None
        if now is None:
            now = system_clock()

        state = self._state(node.id)
        view: Dict[str, Any] = {
            "id": node.id,
            "label": node.label,
            "parentId": node.parent_id,
            "progressPercent": compute_progress(node, now),
            "expanded": state.expanded,
            "menuOpen": state.menu_open,
            "children": None,
        }
        if not state.expanded:
            return view

        child_views = [self.project(child, node.id, now) for child in node.child_bars]
        view["children"] = {
            "streakLeaves": [
                {
                    "id": leaf.id,
                    "label": leaf.label,
                    "startDate": leaf.start_date.isoformat(),
                    "targetDays": leaf.target_days,
                    "elapsedDays": elapsed_days(leaf.start_date, now),
                    "complete": is_streak_complete(leaf, now),
                }
                for leaf in node.streak_leaves
            ],
            "checklistItems": [
                {"id": item.id, "label": item.label, "checked": item.checked}
                for item in node.checklist_items
            ],
            "childBars": [v for v in child_views if v is not None],
        }
        return view

    def project_all(
        self,
        nodes: Iterable[GoalNode],
        parent_context: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        views = [self.project(node, parent_context, now) for node in nodes]
        return [v for v in views if v is not None]

    def render(
        self,
        nodes: Iterable[GoalNode],
        renderer: TreeRenderer,
        parent_context: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        views = self.project_all(nodes, parent_context, now)
        renderer.render(views)
        return views
