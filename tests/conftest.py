import sys
from datetime import datetime
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.progress_engine.models import entity_to_dict  # noqa: E402
from interface.gateways.base import SyncGateway  # noqa: E402


class FakeGateway(SyncGateway):
    """Records persist calls; set `fail_with` to make the next persist raise it."""

    def __init__(self, roots=None):
        self.roots = roots or []
        self.calls = []
        self.fail_with = None
        self.assign_ids = {}
        self.during_persist = None

    def _maybe_fail(self):
        if self.during_persist is not None:
            hook, self.during_persist = self.during_persist, None
            hook()
        if self.fail_with is not None:
            exc, self.fail_with = self.fail_with, None
            raise exc

    def load_tree(self, root_scope=None):
        self.calls.append(("load", root_scope))
        return list(self.roots)

    def persist_add(self, parent_id, entity):
        self.calls.append(("add", parent_id, entity.id))
        self._maybe_fail()
        stored = entity_to_dict(entity)
        stored["goalId"] = self.assign_ids.get(entity.id, entity.id)
        return stored

    def persist_edit(self, entity):
        self.calls.append(("edit", entity.id))
        self._maybe_fail()
        stored = entity_to_dict(entity)
        stored["revision"] = entity.revision + 1
        return stored

    def persist_delete(self, entity_id, kind=None):
        self.calls.append(("delete", entity_id))
        self._maybe_fail()

    def get_name(self):
        return "fake"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def now():
    return datetime(2026, 3, 15, 12, 0)
