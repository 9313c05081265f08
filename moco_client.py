"""Minimal client for the MOCO REST API (https://everii-group.github.io/mocoapp-api-docs/)."""

from __future__ import annotations

import json
import socket
from typing import Any, Dict, List, Optional, Sequence
from urllib import error as urlerror, parse as urlparse, request as urlrequest

from moco_common import (
    DEFAULT_TIMEOUT,
    MocoActivity,
    MocoApiError,
    MocoProject,
    MocoTask,
    debug,
)


class MocoClient:
    def __init__(self, domain: str, api_key: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = f"https://{domain}.mocoapp.com/api/v1"
        self.api_key = api_key
        self.timeout = timeout

    def get_assigned_projects(self, active_only: bool = True) -> List[MocoProject]:
        path = "/projects/assigned"
        if active_only:
            path += "?active=true"
        return [MocoProject.from_dict(item) for item in self._request("GET", path)]

    def get_tasks(self, project_id: int) -> List[MocoTask]:
        return [
            MocoTask.from_dict(item)
            for item in self._request("GET", f"/projects/{project_id}/tasks")
        ]

    def get_users(self, active_only: bool = False, internal_only: bool = False) -> List[dict]:
        query = urlparse.urlencode(
            {
                "active": "true" if active_only else "false",
                "internal": "true" if internal_only else "false",
            }
        )
        return self._request("GET", f"/users?{query}")

    def create_activity(self, activity: MocoActivity) -> dict:
        return self._request("POST", "/activities", activity.as_payload())

    def create_activities(self, activities: Sequence[MocoActivity]) -> Any:
        payload = {"activities": [activity.as_payload() for activity in activities]}
        return self._request("POST", "/activities/bulk", payload)

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        headers = {
            "Authorization": f"Token token={self.api_key}",
            "Content-Type": "application/json",
        }
        request_obj = urlrequest.Request(
            self.base_url + path, data=data, headers=headers, method=method
        )
        debug(f"{method} {self.base_url}{path}")

        try:
            with urlrequest.urlopen(request_obj, timeout=float(self.timeout)) as response:
                raw = response.read().decode("utf-8")
        except urlerror.HTTPError as exc:
            raise MocoApiError(f"HTTP error! status: {exc.code}", status=exc.code) from exc
        except (urlerror.URLError, socket.timeout) as exc:
            raise MocoApiError(f"Could not reach {self.base_url}: {exc}") from exc

        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MocoApiError(f"Invalid JSON from {path}") from exc
