from __future__ import annotations

import logging
from typing import Any

import requests

from .config import Settings
from .credentials import CredentialStore
from .errors import ParseError


logger = logging.getLogger(__name__)

BASE_URL = "https://www.strava.com"
API_URL = f"{BASE_URL}/api/v3"


def _json_body(response: requests.Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise ParseError(f"Strava returned malformed JSON for {what}.") from exc


class StravaClient:
    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        *,
        session: requests.Session | None = None,
    ):
        self.credentials = credentials
        self.timeout_seconds = settings.request_timeout_seconds
        self.session = session or requests.Session()

    def _send(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> requests.Response:
        return self.session.request(
            method,
            f"{API_URL}{path}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            params=params,
            json=json_body,
            timeout=self.timeout_seconds,
        )

    def _request(
        self,
        user_id: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> requests.Response:
        record = self.credentials.get_token(user_id)
        response = self._send(method, path, record.access_token, params=params, json_body=json_body)
        if response.status_code == 401:
            logger.warning("Strava rejected token for user %s; forcing refresh.", user_id)
            record = self.credentials.force_refresh(user_id)
            response = self._send(method, path, record.access_token, params=params, json_body=json_body)
        response.raise_for_status()
        return response

    def get_activity(self, user_id: str, activity_id: int | str, *, include_all_efforts: bool = False) -> dict[str, Any]:
        response = self._request(
            user_id,
            "GET",
            f"/activities/{activity_id}",
            params={"include_all_efforts": "true" if include_all_efforts else "false"},
        )
        payload = _json_body(response, f"activity {activity_id}")
        if not isinstance(payload, dict) or "id" not in payload:
            raise ParseError(f"Strava activity {activity_id} payload has no id.")
        return payload

    def list_recent_activities(self, user_id: str, per_page: int = 10) -> list[dict[str, Any]]:
        response = self._request(
            user_id,
            "GET",
            "/athlete/activities",
            params={"per_page": per_page, "page": 1},
        )
        payload = _json_body(response, f"activity list of user {user_id}")
        if not isinstance(payload, list):
            raise ParseError(f"Strava activity list for user {user_id} is not a list.")
        return [item for item in payload if isinstance(item, dict)]

    def update_activity(self, user_id: str, activity_id: int | str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request(user_id, "PUT", f"/activities/{activity_id}", json_body=payload)
        updated = _json_body(response, f"updated activity {activity_id}")
        if not isinstance(updated, dict):
            raise ParseError(f"Strava update response for activity {activity_id} is not an object.")
        return updated
