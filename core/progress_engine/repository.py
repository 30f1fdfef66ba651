"""
ProgressRepository: flat store of goal/checkbox/day-counter records with JSON persistence.
Path: data/progress_bars.json. Backs the REST server and LocalSyncGateway.

Records carry owner_id and a revision counter; a write with a stale
revision raises ConcurrencyConflictError instead of overwriting.
"""
import json
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.config_manager import config
from core.exceptions import (
    ConcurrencyConflictError,
    InvariantViolationError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from core.logger import get_logger, log_corrupt_data_file
from core.paths import REPOSITORY_PATH
from core.progress_engine.models import EntityKind, parse_date

logger = get_logger("repository")

def _id_prefix(kind: EntityKind) -> str:
    if kind == EntityKind.GOAL:
        return config.ID_PREFIX_GOAL
    if kind == EntityKind.CHECKLIST:
        return config.ID_PREFIX_CHECKBOX
    return config.ID_PREFIX_STREAK


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, injected by whoever owns the session."""
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role.lower() == "admin"


def _record_from_wire(kind: EntityKind, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the editable fields of `kind` out of a camelCase payload."""
    fields: Dict[str, Any] = {}
    if "text" in payload:
        text = str(payload["text"] or "").strip()
        if not text:
            raise ValidationError("text must not be blank")
        fields["label"] = text
    if kind == EntityKind.CHECKLIST and "checked" in payload:
        fields["checked"] = bool(payload["checked"])
    if kind == EntityKind.STREAK:
        if "startingDate" in payload:
            try:
                fields["start_date"] = parse_date(payload["startingDate"]).isoformat()
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        if "dayGoal" in payload:
            day_goal = payload["dayGoal"]
            if isinstance(day_goal, bool) or not isinstance(day_goal, int) or day_goal < 0:
                raise ValidationError("dayGoal must be a non-negative integer")
            fields["target_days"] = day_goal
    return fields


class ProgressRepository:
    """In-memory record map with JSON persistence at REPOSITORY_PATH."""

    def __init__(self, path: Optional[Path] = None):
        self._path = path if path is not None else REPOSITORY_PATH
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            log_corrupt_data_file(self._path, str(exc))
            return
        except OSError as exc:
            logger.error("Could not read %s, starting empty: %s", self._path, exc)
            return
        records = data.get("records", []) if isinstance(data, dict) else data
        for record in records or []:
            self._records[record["id"]] = record

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"records": list(self._records.values())}
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        return self._records.get(entity_id)

    def require(self, entity_id: str, kind: Optional[EntityKind] = None) -> Dict[str, Any]:
        record = self.get(entity_id)
        if record is None or (kind is not None and record["kind"] != kind.value):
            raise NotFoundError(entity_id, kind=(kind.value if kind else "entity"))
        return record

    @staticmethod
    def authorize(record: Dict[str, Any], identity: Identity) -> None:
        if identity.is_admin or record.get("owner_id") == identity.user_id:
            return
        raise UnauthorizedError()

    def _children(self, parent_id: str) -> List[Dict[str, Any]]:
        return [r for r in self._records.values() if r.get("parent_id") == parent_id]

    def to_wire(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """camelCase dict; goals include their nested subtree."""
        base = {
            "goalId": record["id"],
            "parentGoalId": record.get("parent_id"),
            "text": record.get("label", ""),
            "revision": record.get("revision", 0),
        }
        kind = EntityKind(record["kind"])
        if kind == EntityKind.CHECKLIST:
            base["checked"] = record.get("checked", False)
            return base
        if kind == EntityKind.STREAK:
            base["startingDate"] = record["start_date"]
            base["dayGoal"] = record.get("target_days", 0)
            return base

        children = self._children(record["id"])
        base["childBars"] = [self.to_wire(c) for c in children if c["kind"] == EntityKind.GOAL.value]
        base["subGoals"] = [self.to_wire(c) for c in children if c["kind"] == EntityKind.CHECKLIST.value]
        base["dayCounters"] = [self.to_wire(c) for c in children if c["kind"] == EntityKind.STREAK.value]
        return base

    def list_tree(self, owner_id: str, scope: Optional[str] = None) -> List[Dict[str, Any]]:
        """Owner's root goals (or the single scoped goal) as nested wire dicts."""
        with self._lock:
            if scope is not None:
                record = self.require(scope, EntityKind.GOAL)
                if record.get("owner_id") != owner_id:
                    raise NotFoundError(scope, kind=EntityKind.GOAL.value)
                return [self.to_wire(record)]
            roots = [
                r for r in self._records.values()
                if r["kind"] == EntityKind.GOAL.value
                and r.get("parent_id") is None
                and r.get("owner_id") == owner_id
            ]
            return [self.to_wire(r) for r in roots]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(
        self,
        kind: EntityKind,
        owner_id: str,
        parent_id: Optional[str],
        payload: Dict[str, Any],
        entity_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        fields = _record_from_wire(kind, payload)
        if "label" not in fields:
            raise ValidationError("text is required")
        if kind == EntityKind.STREAK and "start_date" not in fields:
            raise ValidationError("startingDate is required")
        if kind != EntityKind.GOAL and parent_id is None:
            raise InvariantViolationError("Checkboxes and day counters need a parent goal")

        with self._lock:
            if parent_id is not None:
                owner_id = self.require(parent_id, EntityKind.GOAL).get("owner_id", owner_id)
            if not entity_id or entity_id in self._records:
                entity_id = f"{_id_prefix(kind)}_{uuid.uuid4().hex[:8]}"
            record = {
                "id": entity_id,
                "kind": kind.value,
                "parent_id": parent_id,
                "owner_id": owner_id,
                "label": fields["label"],
                "revision": 0,
            }
            if kind == EntityKind.CHECKLIST:
                record["checked"] = fields.get("checked", False)
            if kind == EntityKind.STREAK:
                record["start_date"] = fields["start_date"]
                record["target_days"] = fields.get("target_days", 0)
            self._records[entity_id] = record
            self.save()
        logger.info("created %s %s under %s", kind.value, entity_id, parent_id)
        return record

    def update(
        self,
        entity_id: str,
        payload: Dict[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            record = self.require(entity_id)
            kind = EntityKind(record["kind"])
            if expected_revision is not None and expected_revision != record.get("revision", 0):
                raise ConcurrencyConflictError(
                    f"{entity_id} changed since revision {expected_revision}", entity_id=entity_id
                )
            fields = _record_from_wire(kind, payload)
            if kind == EntityKind.GOAL and "parentGoalId" in payload:
                fields["parent_id"] = self._checked_new_parent(entity_id, payload["parentGoalId"])
            record.update(fields)
            record["revision"] = record.get("revision", 0) + 1
            self.save()
        return record

    def _checked_new_parent(self, entity_id: str, new_parent_id: Optional[str]) -> Optional[str]:
        current = new_parent_id
        while current is not None:
            if current == entity_id:
                raise InvariantViolationError(f"Moving {entity_id} under {new_parent_id} would create a cycle")
            current = self.require(current, EntityKind.GOAL).get("parent_id")
        return new_parent_id

    def delete(self, entity_id: str) -> List[str]:
        """Remove a record and, for goals, its whole subtree. Returns removed ids."""
        with self._lock:
            self.require(entity_id)
            doomed: List[str] = []
            stack = [entity_id]
            while stack:
                current = stack.pop()
                doomed.append(current)
                stack.extend(r["id"] for r in self._children(current))
            for doomed_id in doomed:
                del self._records[doomed_id]
            self.save()
        logger.info("deleted %s (%d records)", entity_id, len(doomed))
        return doomed
