from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from pydantic import BaseModel, Field

from core.progress_engine.models import EntityKind
from core.progress_engine.repository import Identity
from interface.gateways.local_gateway import LocalSyncGateway

router = APIRouter()


class ProgressBarCreate(BaseModel):
    goalId: Optional[str] = None
    parentGoalId: Optional[str] = None
    text: str


class ProgressBarUpdate(BaseModel):
    text: Optional[str] = None
    parentGoalId: Optional[str] = None
    revision: Optional[int] = None


class CheckBoxCreate(BaseModel):
    goalId: Optional[str] = None
    parentGoalId: str
    text: str
    checked: bool = False


class CheckBoxUpdate(BaseModel):
    text: Optional[str] = None
    checked: Optional[bool] = None
    revision: Optional[int] = None


class DayCounterCreate(BaseModel):
    goalId: Optional[str] = None
    parentGoalId: str
    text: str
    startingDate: date
    dayGoal: int = Field(default=0, ge=0)


class DayCounterUpdate(BaseModel):
    text: Optional[str] = None
    startingDate: Optional[date] = None
    dayGoal: Optional[int] = Field(default=None, ge=0)
    revision: Optional[int] = None


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: str = Header(default="user"),
) -> Identity:
    """Identity is established upstream; we only read what the caller injected."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return Identity(user_id=x_user_id, role=x_user_role)


def get_gateway(request: Request, identity: Identity = Depends(get_identity)) -> LocalSyncGateway:
    return LocalSyncGateway(request.app.state.repository, identity)


def _create(gateway: LocalSyncGateway, kind: EntityKind, body: BaseModel) -> Dict[str, Any]:
    payload = body.model_dump()
    entity_id = payload.pop("goalId", None)
    parent_id = payload.pop("parentGoalId", None)
    return gateway.add_wire(kind, parent_id, payload, entity_id=entity_id)


def _update(gateway: LocalSyncGateway, kind: EntityKind, entity_id: str, body: BaseModel) -> Dict[str, Any]:
    payload = body.model_dump(exclude_unset=True)
    revision = payload.pop("revision", None)
    return gateway.edit_wire(entity_id, payload, expected_revision=revision, kind=kind)


# --- Progress bars (goals) ---

@router.get("/progressBars")
def list_progress_bars(
    scope: Optional[str] = None,
    gateway: LocalSyncGateway = Depends(get_gateway),
) -> List[Dict[str, Any]]:
    return gateway.list_wire(scope)


@router.post("/progressBars", status_code=201)
def create_progress_bar(body: ProgressBarCreate, gateway: LocalSyncGateway = Depends(get_gateway)):
    return _create(gateway, EntityKind.GOAL, body)


@router.put("/progressBars/{goal_id}")
def update_progress_bar(
    goal_id: str,
    body: ProgressBarUpdate,
    gateway: LocalSyncGateway = Depends(get_gateway),
):
    return _update(gateway, EntityKind.GOAL, goal_id, body)


@router.delete("/progressBars/{goal_id}", status_code=204)
def delete_progress_bar(goal_id: str, gateway: LocalSyncGateway = Depends(get_gateway)):
    gateway.delete_wire(goal_id, EntityKind.GOAL)
    return Response(status_code=204)


# --- Checkboxes ---

@router.post("/checkBoxes", status_code=201)
def create_check_box(body: CheckBoxCreate, gateway: LocalSyncGateway = Depends(get_gateway)):
    return _create(gateway, EntityKind.CHECKLIST, body)


@router.put("/checkBoxes/{goal_id}")
def update_check_box(goal_id: str, body: CheckBoxUpdate, gateway: LocalSyncGateway = Depends(get_gateway)):
    return _update(gateway, EntityKind.CHECKLIST, goal_id, body)


@router.delete("/checkBoxes/{goal_id}", status_code=204)
def delete_check_box(goal_id: str, gateway: LocalSyncGateway = Depends(get_gateway)):
    gateway.delete_wire(goal_id, EntityKind.CHECKLIST)
    return Response(status_code=204)


# --- Day counters ---

@router.post("/dayCounters", status_code=201)
def create_day_counter(body: DayCounterCreate, gateway: LocalSyncGateway = Depends(get_gateway)):
    return _create(gateway, EntityKind.STREAK, body)


@router.put("/dayCounters/{goal_id}")
def update_day_counter(goal_id: str, body: DayCounterUpdate, gateway: LocalSyncGateway = Depends(get_gateway)):
    return _update(gateway, EntityKind.STREAK, goal_id, body)


@router.delete("/dayCounters/{goal_id}", status_code=204)
def delete_day_counter(goal_id: str, gateway: LocalSyncGateway = Depends(get_gateway)):
    gateway.delete_wire(goal_id, EntityKind.STREAK)
    return Response(status_code=204)
