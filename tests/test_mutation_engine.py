from datetime import date

import pytest

from core.exceptions import (
    ConcurrencyConflictError,
    GatewayError,
    InvariantViolationError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from core.progress_engine.aggregator import compute_progress
from core.progress_engine.models import ChecklistLeaf, GoalNode, StreakLeaf, node_from_dict
from core.progress_engine.mutations import MutationEngine
from core.progress_engine.store import NodeStore


@pytest.fixture
def store():
    child = GoalNode(
        id="child",
        label="Run a 10k",
        child_bars=[GoalNode(id="gc", label="Warm-up plan", checklist_items=[ChecklistLeaf(id="gc_chk", label="buy shoes")])],
        streak_leaves=[StreakLeaf(id="streak", label="run daily", start_date=date(2026, 3, 1), target_days=10)],
    )
    root = GoalNode(
        id="root",
        label="Get fit",
        child_bars=[child],
        checklist_items=[
            ChecklistLeaf(id="chk_a", label="sign up", checked=True),
            ChecklistLeaf(id="chk_b", label="see doctor"),
        ],
    )
    return NodeStore([root, GoalNode(id="other", label="Learn Go")])


@pytest.fixture
def engine(store, gateway):
    counter = iter(range(1000))
    return MutationEngine(store, gateway, id_factory=lambda prefix: f"{prefix}_{next(counter)}")


def test_add_checklist_item_appends_with_fresh_id(engine, store, gateway):
    leaf = engine.add_checklist_item("root", "  buy gym pass ")

    assert leaf.id == "chk_0"
    assert leaf.label == "buy gym pass"
    assert leaf.parent_id == "root"
    assert store.require_node("root").checklist_items[-1] is leaf
    assert gateway.calls[-1] == ("add", "root", "chk_0")


def test_add_streak_leaf_accepts_iso_date(engine, store):
    leaf = engine.add_streak_leaf("child", "stretch", "2026-03-10", 5)

    assert leaf.start_date == date(2026, 3, 10)
    assert store.require_leaf(leaf.id).target_days == 5


def test_add_child_goal_and_root_goal(engine, store):
    child = engine.add_child_goal("other", "Tour of Go")
    root = engine.add_root_goal("Read more")

    assert child.parent_id == "other"
    assert store.require_node("other").child_bars == [child]
    assert root.parent_id is None
    assert store.roots[-1] is root


def test_add_child_goal_to_missing_parent_leaves_store_unchanged(engine, store, gateway):
    before = store.snapshot()

    with pytest.raises(NotFoundError):
        engine.add_child_goal("nope", "ghost")

    assert store.snapshot() == before
    assert gateway.calls == []


def test_server_assigned_id_is_adopted(engine, store, gateway):
    gateway.assign_ids["bar_0"] = "srv_42"
    node = engine.add_child_goal("root", "Swim")

    assert node.id == "srv_42"
    assert store.get_node("bar_0") is None
    assert store.require_node("srv_42").parent_id == "root"


def test_validation_rejects_bad_input_before_mutation(engine, store):
    before = store.snapshot()

    with pytest.raises(ValidationError):
        engine.add_checklist_item("root", "   ")
    with pytest.raises(ValidationError):
        engine.add_streak_leaf("root", "x", "2026-01-01", -1)
    with pytest.raises(ValidationError):
        engine.add_streak_leaf("root", "x", "not-a-date", 3)
    with pytest.raises(ValidationError):
        engine.edit_streak_leaf("streak")

    assert store.snapshot() == before


def test_edit_goal_keeps_identity_and_parentage(engine, store):
    node = engine.edit_goal("child", "Run a half marathon")

    assert node is store.require_node("child")
    assert node.label == "Run a half marathon"
    assert node.parent_id == "root"
    assert node.revision == 1


def test_toggle_twice_restores_state_and_progress(engine, store, now):
    root = store.require_node("root")
    before = compute_progress(root, now)

    first = engine.toggle_checklist_item("chk_b")
    assert first.checked is True
    assert compute_progress(root, now) != before

    second = engine.toggle_checklist_item("chk_b")
    assert second.checked is False
    assert compute_progress(root, now) == before


def test_toggle_rejects_streak_id(engine):
    with pytest.raises(NotFoundError):
        engine.toggle_checklist_item("streak")


def test_edit_streak_leaf_changes_fields(engine, store, now):
    child = store.require_node("child")
    assert compute_progress(child, now) == 50

    engine.edit_streak_leaf("streak", target_days=14)
    assert compute_progress(child, now) == 50
    engine.edit_streak_leaf("streak", target_days=30, start_date=date(2026, 3, 5), label="run every day")

    leaf = store.require_leaf("streak")
    assert (leaf.target_days, leaf.start_date, leaf.label) == (30, date(2026, 3, 5), "run every day")
    assert compute_progress(child, now) == 0


def test_delete_node_cascades_whole_subtree(engine, store, gateway):
    removed = engine.delete_node("child")

    assert set(removed) == {"child", "gc", "gc_chk", "streak"}
    for gone in removed:
        assert not store.contains(gone)
    reachable = set(store.subtree_ids("root"))
    assert reachable.isdisjoint(removed)
    assert gateway.calls[-1] == ("delete", "child")


def test_delete_node_notifies_listener(store, gateway):
    seen = []
    engine = MutationEngine(store, gateway, on_removed=seen.extend)
    engine.delete_node("gc")
    assert sorted(seen) == ["gc", "gc_chk"]


def test_delete_leaf(engine, store, now):
    engine.delete_leaf("chk_b")

    assert not store.contains("chk_b")
    assert [c.id for c in store.require_node("root").checklist_items] == ["chk_a"]


def test_delete_missing_raises_not_found(engine):
    with pytest.raises(NotFoundError):
        engine.delete_node("nope")
    with pytest.raises(NotFoundError):
        engine.delete_leaf("nope")


@pytest.mark.parametrize("error", [GatewayError("offline"), UnauthorizedError(), ConcurrencyConflictError("stale")])
def test_failed_delete_rolls_back(engine, store, gateway, error):
    before = store.snapshot()
    gateway.fail_with = error

    with pytest.raises(type(error)):
        engine.delete_node("child")

    assert store.snapshot() == before
    assert store.first_pending(store.subtree_ids("root")) is None


def test_failed_add_and_edit_roll_back(engine, store, gateway):
    before = store.snapshot()

    gateway.fail_with = GatewayError("offline")
    with pytest.raises(GatewayError):
        engine.add_checklist_item("root", "new")

    gateway.fail_with = UnauthorizedError()
    with pytest.raises(UnauthorizedError):
        engine.toggle_checklist_item("chk_a")

    gateway.fail_with = ConcurrencyConflictError("stale")
    with pytest.raises(ConcurrencyConflictError):
        engine.move_goal("gc", "other")

    assert store.snapshot() == before


def test_failed_leaf_delete_restores_position(engine, store, gateway):
    gateway.fail_with = GatewayError("offline")
    with pytest.raises(GatewayError):
        engine.delete_leaf("chk_a")
    assert [c.id for c in store.require_node("root").checklist_items] == ["chk_a", "chk_b"]


def test_pending_edit_blocks_delete_of_enclosing_subtree(engine, store, gateway):
    conflicts = []

    def meanwhile():
        try:
            engine.delete_node("child")
        except ConcurrencyConflictError as exc:
            conflicts.append(exc.entity_id)

    gateway.during_persist = meanwhile
    engine.edit_goal("gc", "Warm-up routine")

    assert conflicts == ["gc"]
    assert store.require_node("gc").label == "Warm-up routine"
    assert store.contains("child")


def test_pending_delete_blocks_add_under_parent(engine, store, gateway):
    conflicts = []

    def meanwhile():
        try:
            engine.add_checklist_item("root", "late item")
        except ConcurrencyConflictError as exc:
            conflicts.append(exc.entity_id)

    gateway.during_persist = meanwhile
    engine.delete_node("child")

    assert conflicts == ["root"]
    assert [c.id for c in store.require_node("root").checklist_items] == ["chk_a", "chk_b"]


def test_unrelated_mutation_proceeds_while_persist_pending(engine, store, gateway):
    gateway.during_persist = lambda: engine.toggle_checklist_item("chk_b")
    engine.edit_goal("other", "Learn Rust")

    assert store.require_leaf("chk_b").checked is True
    assert store.require_node("other").label == "Learn Rust"


def test_move_goal_reparents(engine, store):
    engine.move_goal("gc", "other")

    assert store.ancestors("gc_chk") == ["gc", "other"]
    assert store.require_node("child").child_bars == []


def test_move_goal_rejects_cycles_before_mutation(engine, store, gateway):
    before = store.snapshot()

    with pytest.raises(InvariantViolationError):
        engine.move_goal("child", "gc")
    with pytest.raises(InvariantViolationError):
        engine.move_goal("child", "child")

    assert store.snapshot() == before
    assert gateway.calls == []


def test_move_to_current_parent_keeps_order_and_skips_gateway(engine, store, gateway):
    engine.add_child_goal("root", "Swim")
    gateway.calls.clear()
    before = store.snapshot()

    node = engine.move_goal("child", "root")
    engine.move_goal("root", None)

    assert node is store.require_node("child")
    assert [c.id for c in store.require_node("root").child_bars] == ["child", "bar_0"]
    assert [r.id for r in store.roots] == ["root", "other"]
    assert store.snapshot() == before
    assert gateway.calls == []


def test_reload_is_refused_while_persist_pending(engine, store, gateway):
    before = store.snapshot()
    refused = []

    def meanwhile():
        try:
            store.load([node_from_dict(d) for d in before])
        except ConcurrencyConflictError as exc:
            refused.append(exc.entity_id)

    gateway.during_persist = meanwhile
    gateway.fail_with = GatewayError("offline")
    with pytest.raises(GatewayError):
        engine.delete_leaf("chk_b")

    assert refused == ["chk_b"]
    assert store.snapshot() == before
    assert store.first_pending(store.subtree_ids("root")) is None

    store.load([node_from_dict(d) for d in before])
    assert store.contains("chk_b")


@pytest.mark.parametrize(
    "mutation",
    [
        lambda engine: engine.delete_leaf("chk_b"),
        lambda engine: engine.add_child_goal("root", "new"),
        lambda engine: engine.move_goal("gc", "other"),
        lambda engine: engine.toggle_checklist_item("chk_a"),
    ],
)
def test_forced_reload_during_failed_persist_keeps_fetched_tree(engine, store, gateway, mutation):
    fetched = store.snapshot()
    gateway.during_persist = lambda: store.load([node_from_dict(d) for d in fetched], force=True)
    gateway.fail_with = GatewayError("offline")

    with pytest.raises(GatewayError):
        mutation(engine)

    assert store.snapshot() == fetched
    assert store.first_pending(store.subtree_ids("root")) is None
    assert store.first_pending(store.subtree_ids("other")) is None


def test_forced_reload_during_successful_add_skips_merge(engine, store, gateway):
    fetched = store.snapshot()
    gateway.assign_ids["bar_0"] = "srv_1"
    gateway.during_persist = lambda: store.load([node_from_dict(d) for d in fetched], force=True)

    engine.add_child_goal("root", "Swim")

    assert store.snapshot() == fetched
    assert not store.contains("srv_1")
