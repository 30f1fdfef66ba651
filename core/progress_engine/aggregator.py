"""
Aggregator: completion percentage of a goal from its children, recursively.

Every child counts as exactly one unit regardless of kind or of how many
descendants it has (a sub-goal with 50 leaves weighs the same as one checkbox).
A sub-goal contributes its own rounded percentage / 100.

Nothing is cached. Streak progress depends on `now`, so the same tree can
report a different value on the next call without any mutation.
"""
from datetime import date, datetime
from fractions import Fraction
from typing import Callable, Optional

from core.progress_engine.models import GoalNode, StreakLeaf

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now()


def elapsed_days(start_date: date, now: datetime) -> int:
    """Whole calendar days from start_date to now (negative if start is in the future)."""
    return (now.date() - start_date).days


def is_streak_complete(leaf: StreakLeaf, now: datetime) -> bool:
    return elapsed_days(leaf.start_date, now) >= leaf.target_days


def round_half_up(value: Fraction) -> int:
    """Round to nearest int, .5 away from zero (12.5 -> 13)."""
    if value < 0:
        return -round_half_up(-value)
    return int(value + Fraction(1, 2))


def compute_progress(node: GoalNode, now: Optional[datetime] = None) -> int:
    """
    Completion percentage of `node` in [0, 100].

    Args:
        node: goal to aggregate
        now: reference time for streak leaves; read from the wall clock when omitted

    Returns:
        100 for a node without children, otherwise round_half_up(100 * completed / total)
    """
    if now is None:
        now = system_clock()

    total = node.unit_count
    if total == 0:
        return 100

    completed = Fraction(0)
    for child in node.child_bars:
        completed += Fraction(compute_progress(child, now), 100)
    completed += sum(1 for item in node.checklist_items if item.checked)
    completed += sum(1 for leaf in node.streak_leaves if is_streak_complete(leaf, now))

    return round_half_up(100 * completed / total)
