"""
Progress Engine models: goal tree with checkbox and day-counter leaves.

GoalNode is the only recursive entity. Leaves keep a back-pointer to their
owning goal so the store can resolve them by id alone.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class EntityKind(Enum):
    GOAL = "goal"
    CHECKLIST = "checklist"
    STREAK = "streak"


@dataclass
class ChecklistLeaf:
    """Binary completion unit."""
    id: str
    label: str
    checked: bool = False
    parent_id: Optional[str] = None
    revision: int = 0

    kind = EntityKind.CHECKLIST


@dataclass
class StreakLeaf:
    """Complete once the days elapsed since start_date reach target_days."""
    id: str
    label: str
    start_date: date
    target_days: int = 0
    parent_id: Optional[str] = None
    revision: int = 0

    kind = EntityKind.STREAK


@dataclass
class GoalNode:
    """
    Single goal ("progress bar") in the tree.
    Three ordered child collections; each child counts as one unit of progress.
    """
    id: str
    label: str
    parent_id: Optional[str] = None
    child_bars: List["GoalNode"] = field(default_factory=list)
    checklist_items: List[ChecklistLeaf] = field(default_factory=list)
    streak_leaves: List[StreakLeaf] = field(default_factory=list)
    revision: int = 0

    kind = EntityKind.GOAL

    @property
    def unit_count(self) -> int:
        return len(self.child_bars) + len(self.checklist_items) + len(self.streak_leaves)

    def leaves(self) -> List[Union[ChecklistLeaf, StreakLeaf]]:
        return [*self.checklist_items, *self.streak_leaves]


Entity = Union[GoalNode, ChecklistLeaf, StreakLeaf]


# ---------------------------------------------------------------------------
# Wire format (camelCase, as served by /api/progressBars)
# ---------------------------------------------------------------------------

def parse_date(raw: Any) -> date:
    """Accept a date, a datetime or an ISO string ("2021-03-01" or "2021-03-01T00:00:00")."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and len(raw) >= 10:
        return date.fromisoformat(raw[:10])
    raise ValueError(f"Invalid date: {raw!r}")


def entity_to_dict(entity: Entity) -> Dict[str, Any]:
    if isinstance(entity, GoalNode):
        return {
            "goalId": entity.id,
            "parentGoalId": entity.parent_id,
            "text": entity.label,
            "revision": entity.revision,
            "childBars": [entity_to_dict(c) for c in entity.child_bars],
            "subGoals": [entity_to_dict(c) for c in entity.checklist_items],
            "dayCounters": [entity_to_dict(c) for c in entity.streak_leaves],
        }
    if isinstance(entity, ChecklistLeaf):
        return {
            "goalId": entity.id,
            "parentGoalId": entity.parent_id,
            "text": entity.label,
            "checked": entity.checked,
            "revision": entity.revision,
        }
    return {
        "goalId": entity.id,
        "parentGoalId": entity.parent_id,
        "text": entity.label,
        "startingDate": entity.start_date.isoformat(),
        "dayGoal": entity.target_days,
        "revision": entity.revision,
    }


def checklist_from_dict(d: dict) -> ChecklistLeaf:
    return ChecklistLeaf(
        id=d["goalId"],
        label=d.get("text", ""),
        checked=bool(d.get("checked", False)),
        parent_id=d.get("parentGoalId"),
        revision=d.get("revision", 0),
    )


def streak_from_dict(d: dict) -> StreakLeaf:
    return StreakLeaf(
        id=d["goalId"],
        label=d.get("text", ""),
        start_date=parse_date(d["startingDate"]),
        target_days=int(d.get("dayGoal", 0)),
        parent_id=d.get("parentGoalId"),
        revision=d.get("revision", 0),
    )


def node_from_dict(d: dict) -> GoalNode:
    """Build a GoalNode (and its nested subtree) from a wire payload."""
    node = GoalNode(
        id=d["goalId"],
        label=d.get("text", ""),
        parent_id=d.get("parentGoalId"),
        revision=d.get("revision", 0),
    )
    node.child_bars = [node_from_dict(c) for c in d.get("childBars") or []]
    node.checklist_items = [checklist_from_dict(c) for c in d.get("subGoals") or []]
    node.streak_leaves = [streak_from_dict(c) for c in d.get("dayCounters") or []]
    return node


def entity_from_dict(kind: EntityKind, d: dict) -> Entity:
    if kind == EntityKind.GOAL:
        return node_from_dict(d)
    if kind == EntityKind.CHECKLIST:
        return checklist_from_dict(d)
    return streak_from_dict(d)
