"""
Configuration backend client.

Lists spaces and units and persists advisory cost-warning records. This
client never modifies deployable units.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
import structlog

from cost_impact_monitor.errors import TransientBackendError
from cost_impact_monitor.storage.models import Space, Unit

logger = structlog.get_logger()

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ConfigHubClient:
    """HTTP client for the configuration-management backend.

    Every failure (connection error, timeout, non-2xx response, bad JSON)
    surfaces as :class:`TransientBackendError`.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def list_spaces(self) -> List[Space]:
        """List all spaces visible to the monitor."""
        items = self._request("GET", "/space")
        spaces = []
        for item in _as_list(items):
            entity = item.get("Space", item)
            space_id = _first(entity, "id", "SpaceID")
            if not space_id:
                continue
            spaces.append(Space(
                id=str(space_id),
                name=str(_first(entity, "name", "Slug", "slug") or space_id),
            ))
        return spaces

    def list_units(self, space_id: str) -> List[Unit]:
        """List every unit in a space in one consistent read.

        Records that cannot be interpreted as units are logged and skipped.
        """
        items = self._request("GET", f"/space/{space_id}/unit")
        units = []
        for item in _as_list(items):
            entity = item.get("Unit", item)
            if not isinstance(entity, dict) or not _first(entity, "id", "UnitID"):
                continue
            try:
                units.append(_parse_unit(entity, space_id))
            except ValueError as e:
                logger.warning(
                    "invalid_unit_record",
                    space_id=space_id,
                    unit_id=str(_first(entity, "id", "UnitID")),
                    error=str(e),
                )
        return units

    def create_record(self, space_id: str, kind: str, payload: Dict[str, Any]) -> None:
        """Persist an advisory record (e.g. a cost warning) in a space."""
        self._request("POST", f"/space/{space_id}/record", json={"kind": kind, "payload": payload})

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientBackendError(f"{method} {url} failed: {e}")

        if not 200 <= response.status_code < 300:
            raise TransientBackendError(
                f"{method} {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except (ValueError, json.JSONDecodeError) as e:
            raise TransientBackendError(f"{method} {url} returned invalid JSON: {e}")


def _as_list(payload: Any) -> List[Dict[str, Any]]:
    if payload is None:
        return []
    if isinstance(payload, dict):
        payload = payload.get("items", [])
    if not isinstance(payload, list):
        raise TransientBackendError(f"Expected a list response, got {type(payload).__name__}")
    return [item for item in payload if isinstance(item, dict)]


def _first(entity: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if entity.get(key) is not None:
            return entity[key]
    return None


def _parse_unit(entity: Dict[str, Any], space_id: str) -> Unit:
    live_state = entity.get("LiveState") or {}
    if not isinstance(live_state, dict):
        raise ValueError("LiveState must be an object")
    labels = _first(entity, "labels", "Labels") or {}
    if not isinstance(labels, dict):
        raise ValueError("labels must be an object")
    live_status = _first(entity, "live_status") or live_state.get("Status")
    live_revision = _first(entity, "live_revision", "LiveRevisionNum")
    data = _first(entity, "data", "Data") or ""
    if not isinstance(data, str):
        data = json.dumps(data)

    return Unit(
        id=str(_first(entity, "id", "UnitID")),
        space_id=str(_first(entity, "space_id", "SpaceID") or space_id),
        name=str(_first(entity, "name", "Slug", "slug") or ""),
        labels={str(k): str(v) for k, v in labels.items()},
        revision=_revision(_first(entity, "revision", "HeadRevisionNum") or 0),
        updated_at=_parse_time(_first(entity, "updated_at", "UpdatedAt")),
        live_status=str(live_status) if live_status is not None else None,
        live_revision=_revision(live_revision) if live_revision is not None else None,
        data=data,
    )


def _revision(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"invalid revision: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid revision: {value!r}")


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("unparseable_timestamp", value=value)
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
