import threading
import time
from datetime import date

import pytest

from core.exceptions import InvariantViolationError, NotFoundError
from core.progress_engine.models import ChecklistLeaf, EntityKind, GoalNode, StreakLeaf, node_from_dict
from core.progress_engine.store import NodeStore, ReadWriteLock
from core.progress_service import ProgressTreeService


def _tree():
    grandchild = GoalNode(
        id="gc",
        label="grandchild",
        checklist_items=[ChecklistLeaf(id="gc_chk", label="x")],
    )
    child = GoalNode(
        id="child",
        label="child",
        child_bars=[grandchild],
        streak_leaves=[StreakLeaf(id="child_day", label="d", start_date=date(2026, 1, 1), target_days=3)],
    )
    root = GoalNode(id="root", label="root", child_bars=[child], checklist_items=[ChecklistLeaf(id="r_chk", label="r")])
    return root


def test_load_fixes_up_parent_pointers():
    store = NodeStore([_tree()])

    assert store.require_node("child").parent_id == "root"
    assert store.require_node("gc").parent_id == "child"
    assert store.require_leaf("gc_chk").parent_id == "gc"
    assert store.ancestors("gc_chk") == ["gc", "child", "root"]


def test_subtree_ids_are_post_order():
    store = NodeStore([_tree()])
    ids = store.subtree_ids("root")

    assert ids[-1] == "root"
    assert ids.index("gc_chk") < ids.index("gc") < ids.index("child")
    assert set(ids) == {"root", "r_chk", "child", "child_day", "gc", "gc_chk"}


def test_load_deduplicates_flat_and_nested_payload():
    payload = [
        {"goalId": "root", "parentGoalId": None, "text": "root",
         "childBars": [{"goalId": "child", "parentGoalId": "root", "text": "child"}]},
        {"goalId": "child", "parentGoalId": "root", "text": "child"},
    ]
    store = NodeStore([node_from_dict(d) for d in payload])

    assert [r.id for r in store.roots] == ["root"]
    assert len(store.require_node("root").child_bars) == 1


def test_load_attaches_flat_child_to_its_parent():
    payload = [
        {"goalId": "leaf_goal", "parentGoalId": "mid", "text": "leaf goal"},
        {"goalId": "mid", "parentGoalId": "root", "text": "mid"},
        {"goalId": "root", "parentGoalId": None, "text": "root"},
    ]
    store = NodeStore([node_from_dict(d) for d in payload])

    assert store.ancestors("leaf_goal") == ["mid", "root"]


def test_load_rejects_dangling_parent():
    with pytest.raises(InvariantViolationError):
        NodeStore([GoalNode(id="orphan", label="o", parent_id="missing")])


def test_load_rejects_duplicate_ids():
    root = GoalNode(
        id="root",
        label="root",
        checklist_items=[ChecklistLeaf(id="dup", label="a")],
        child_bars=[GoalNode(id="dup", label="b")],
    )
    with pytest.raises(InvariantViolationError):
        NodeStore([root])


def test_failed_load_keeps_previous_tree():
    store = NodeStore([_tree()])
    with pytest.raises(InvariantViolationError):
        store.load([GoalNode(id="orphan", label="o", parent_id="missing")])
    assert store.contains("gc_chk")


def test_detach_node_removes_whole_subtree():
    store = NodeStore([_tree()])
    with store.write():
        node, position = store.detach_node("child")

    assert position == 0
    for gone in ("child", "child_day", "gc", "gc_chk"):
        assert not store.contains(gone)
    assert store.require_node("root").child_bars == []
    assert store.contains("r_chk")

    with store.write():
        store.attach_node(node, position)
    assert store.require_leaf("gc_chk").parent_id == "gc"


def test_require_leaf_checks_kind():
    store = NodeStore([_tree()])

    with pytest.raises(NotFoundError):
        store.require_leaf("child_day", EntityKind.CHECKLIST)
    assert store.require_leaf("child_day", EntityKind.STREAK).target_days == 3


def test_is_in_subtree():
    store = NodeStore([_tree()])
    assert store.is_in_subtree("gc", "root")
    assert store.is_in_subtree("child", "child")
    assert not store.is_in_subtree("root", "child")


def test_snapshot_round_trips_wire_format():
    store = NodeStore([_tree()])
    snapshot = store.snapshot()

    assert snapshot[0]["goalId"] == "root"
    assert snapshot[0]["childBars"][0]["dayCounters"][0]["startingDate"] == "2026-01-01"
    reloaded = NodeStore([node_from_dict(d) for d in snapshot])
    assert set(reloaded.subtree_ids("root")) == set(store.subtree_ids("root"))


def _start(target):
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


def test_reader_blocks_writer():
    lock = ReadWriteLock()
    reading, release, written = threading.Event(), threading.Event(), threading.Event()

    def reader():
        with lock.read():
            reading.set()
            release.wait(5)

    def writer():
        with lock.write():
            written.set()

    r = _start(reader)
    assert reading.wait(2)
    w = _start(writer)
    assert not written.wait(0.2)

    release.set()
    assert written.wait(2)
    r.join(2)
    w.join(2)


def test_readers_overlap():
    lock = ReadWriteLock()
    first_in, second_in, release = threading.Event(), threading.Event(), threading.Event()

    def first():
        with lock.read():
            first_in.set()
            release.wait(5)

    def second():
        with lock.read():
            second_in.set()

    a = _start(first)
    assert first_in.wait(2)
    b = _start(second)
    assert second_in.wait(2)
    assert not release.is_set()

    release.set()
    a.join(2)
    b.join(2)


def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    order = []
    reading, release = threading.Event(), threading.Event()

    def first_reader():
        with lock.read():
            reading.set()
            release.wait(5)

    def writer():
        with lock.write():
            order.append("writer")

    def late_reader():
        with lock.read():
            order.append("reader")

    first = _start(first_reader)
    assert reading.wait(2)
    w = _start(writer)
    assert _wait_until(lambda: lock._waiting_writers == 1)
    r = _start(late_reader)
    time.sleep(0.2)
    assert order == []

    release.set()
    for thread in (first, w, r):
        thread.join(2)
    assert order == ["writer", "reader"]


def test_concurrent_reads_see_whole_subtree_or_none(gateway, now):
    gateway.roots = [_tree()]
    service = ProgressTreeService(gateway, clock=lambda: now)
    service.load()
    doomed = service.store.subtree_ids("child")
    before = service.progress("root")
    seen, percents = [], []
    done = threading.Event()

    def watch():
        while not done.is_set():
            with service.store.read():
                seen.append(tuple(service.store.contains(i) for i in doomed))
            percents.append(service.progress("root"))

    def wait_for_reader_after_delete():
        assert _wait_until(lambda: any(not any(state) for state in list(seen)))

    watcher = _start(watch)
    assert _wait_until(lambda: len(seen) > 0)
    gateway.during_persist = wait_for_reader_after_delete
    service.engine.delete_node("child")
    done.set()
    watcher.join(2)

    after = service.progress("root")
    assert before != after
    assert all(all(state) or not any(state) for state in seen)
    assert set(percents) <= {before, after}
