"""
HTTP Sync Gateway for Progress Tree.

Talks to the REST collaborator (/progressBars, /checkBoxes, /dayCounters)
and maps HTTP status codes onto the core error kinds.
"""
from contextlib import nullcontext
from typing import Any, Dict, List, Optional

import httpx

from core.config_manager import config
from core.exceptions import (
    ConcurrencyConflictError,
    GatewayError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from core.logger import get_logger
from core.progress_engine.models import Entity, EntityKind, GoalNode, entity_to_dict, node_from_dict
from core.progress_engine.repository import Identity
from interface.gateways.base import SyncGateway

logger = get_logger("http_gateway")

KIND_PATHS = {
    EntityKind.GOAL: "/progressBars",
    EntityKind.CHECKLIST: "/checkBoxes",
    EntityKind.STREAK: "/dayCounters",
}


def _flat_body(entity: Entity) -> Dict[str, Any]:
    """Wire dict without nested children; the server only edits the entity's own fields."""
    body = entity_to_dict(entity)
    for nested in ("childBars", "subGoals", "dayCounters"):
        body.pop(nested, None)
    return body


class HttpSyncGateway(SyncGateway):
    """Sync goals with a remote progress server."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        identity: Optional[Identity] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or config.GATEWAY_BASE_URL).rstrip("/")
        self.timeout = timeout or config.GATEWAY_TIMEOUT_SECONDS
        self._client = client
        self._headers: Dict[str, str] = {}
        if identity is not None:
            self._headers["X-User-Id"] = identity.user_id
            self._headers["X-User-Role"] = identity.role

    def _client_context(self):
        if self._client is not None:
            return nullcontext(self._client)
        return httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def _request(
        self,
        method: str,
        path: str,
        entity_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            with self._client_context() as client:
                response = client.request(method, path, headers=self._headers, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("%s %s timed out after %ss", method, path, self.timeout)
            raise GatewayError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise GatewayError(f"{method} {path} failed: {exc}") from exc

        self._raise_for_status(response, entity_id)
        return response

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and "detail" in body:
            return str(body["detail"])
        return str(body)

    def _raise_for_status(self, response: httpx.Response, entity_id: Optional[str]) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = self._detail(response)
        if status == 404:
            raise NotFoundError(entity_id)
        if status in (401, 403):
            raise UnauthorizedError(detail or "Not authorized", status_code=status)
        if status == 409:
            raise ConcurrencyConflictError(detail, entity_id=entity_id)
        if status in (400, 422):
            raise ValidationError(detail)
        logger.error("Unexpected status %s from progress server: %s", status, detail)
        raise GatewayError(f"Progress server returned {status}: {detail}", status_code=status)

    # ------------------------------------------------------------------
    # SyncGateway
    # ------------------------------------------------------------------
    def load_tree(self, root_scope: Optional[str] = None) -> List[GoalNode]:
        params = {"scope": root_scope} if root_scope else None
        response = self._request("GET", KIND_PATHS[EntityKind.GOAL], entity_id=root_scope, params=params)
        return [node_from_dict(d) for d in response.json()]

    def persist_add(self, parent_id: Optional[str], entity: Entity) -> Dict[str, Any]:
        body = _flat_body(entity)
        body["parentGoalId"] = parent_id
        response = self._request("POST", KIND_PATHS[entity.kind], entity_id=parent_id, json=body)
        return response.json()

    def persist_edit(self, entity: Entity) -> Dict[str, Any]:
        path = f"{KIND_PATHS[entity.kind]}/{entity.id}"
        response = self._request("PUT", path, entity_id=entity.id, json=_flat_body(entity))
        return response.json()

    def persist_delete(self, entity_id: str, kind: EntityKind = EntityKind.GOAL) -> None:
        self._request("DELETE", f"{KIND_PATHS[kind]}/{entity_id}", entity_id=entity_id)

    def get_name(self) -> str:
        return "http"
