from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import requests

from .config import Settings
from .errors import CredentialError
from .storage import read_named_json, strip_json_suffix, write_named_json


logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.strava.com/oauth/token"


@dataclass(frozen=True)
class CredentialRecord:
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: int
    athlete: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, *, user_id: str | None = None) -> "CredentialRecord":
        """Build a record from a token response or a stored record.

        The user id falls back to ``athlete.id``, which is how Strava
        identifies the user in an authorization-code response.
        """
        if not isinstance(payload, dict):
            raise CredentialError("Token payload is not a JSON object.")
        if payload.get("errors"):
            raise CredentialError(f"Token endpoint reported errors: {payload.get('errors')}")

        athlete = payload.get("athlete") if isinstance(payload.get("athlete"), dict) else {}
        resolved_user = str(user_id or payload.get("user_id") or athlete.get("id") or "").strip()
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        if not resolved_user:
            raise CredentialError("Token payload does not identify a user.")
        if not isinstance(access_token, str) or not access_token.strip():
            raise CredentialError(f"Token payload for user {resolved_user} is missing access_token.")
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            raise CredentialError(f"Token payload for user {resolved_user} is missing refresh_token.")
        try:
            expires_at = int(payload.get("expires_at"))
        except (TypeError, ValueError):
            raise CredentialError(f"Token payload for user {resolved_user} has no valid expires_at.") from None

        return cls(
            user_id=resolved_user,
            access_token=access_token.strip(),
            refresh_token=refresh_token.strip(),
            expires_at=expires_at,
            athlete=dict(athlete),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "athlete": self.athlete,
        }

    def expires_within(self, seconds: int, *, now: float) -> bool:
        return self.expires_at <= now + seconds


class CredentialStore:
    """Per-user OAuth tokens: memory, then disk, refreshed before expiry.

    Resolution for a user runs under that user's lock, so at most one
    refresh per user is ever in flight and a waiting caller sees the
    refreshed record instead of starting a second exchange.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = settings.strava_client_id
        self.client_secret = settings.strava_client_secret
        self.credentials_dir = settings.credentials_dir
        self.use_compression = settings.use_compression
        self.safety_window_seconds = settings.refresh_safety_window_seconds
        self.timeout_seconds = settings.request_timeout_seconds
        self.session = session or requests.Session()
        self._clock = clock
        self._records: dict[str, CredentialRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    def list_user_ids(self) -> list[str]:
        if not self.credentials_dir.exists():
            return []
        user_ids = set()
        for path in self.credentials_dir.iterdir():
            if not path.is_file():
                continue
            name = strip_json_suffix(path.name)
            if name:
                user_ids.add(name)
        return sorted(user_ids)

    def get_token(self, user_id: str) -> CredentialRecord:
        user_id = str(user_id)
        with self._user_lock(user_id):
            record = self._load(user_id)
            if record.expires_within(self.safety_window_seconds, now=self._clock()):
                logger.info("Access token for user %s expires at %s; refreshing.", user_id, record.expires_at)
                record = self._refresh(record)
            return record

    def force_refresh(self, user_id: str) -> CredentialRecord:
        user_id = str(user_id)
        with self._user_lock(user_id):
            return self._refresh(self._load(user_id))

    def save(self, record: CredentialRecord) -> None:
        with self._user_lock(record.user_id):
            self._store(record)

    def exchange_authorization_code(self, code: str) -> CredentialRecord:
        payload = self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            }
        )
        record = CredentialRecord.from_payload(payload)
        self.save(record)
        logger.info("Stored new Strava credentials for user %s.", record.user_id)
        return record

    def _load(self, user_id: str) -> CredentialRecord:
        cached = self._records.get(user_id)
        if cached is not None:
            return cached
        stored = read_named_json(self.credentials_dir, user_id)
        if stored is None:
            raise CredentialError(f"No stored credentials for user {user_id}.")
        record = CredentialRecord.from_payload(stored, user_id=user_id)
        self._records[user_id] = record
        return record

    def _store(self, record: CredentialRecord) -> None:
        write_named_json(
            self.credentials_dir,
            record.user_id,
            record.to_payload(),
            compressed=self.use_compression,
        )
        self._records[record.user_id] = record

    def _refresh(self, record: CredentialRecord) -> CredentialRecord:
        payload = self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": record.refresh_token,
                "grant_type": "refresh_token",
            }
        )
        if isinstance(payload, dict) and not payload.get("refresh_token"):
            payload = {**payload, "refresh_token": record.refresh_token}
        if isinstance(payload, dict) and not payload.get("athlete"):
            payload = {**payload, "athlete": record.athlete}
        refreshed = CredentialRecord.from_payload(payload, user_id=record.user_id)
        self._store(refreshed)
        logger.info("Strava access token refreshed for user %s.", record.user_id)
        return refreshed

    def _post_token(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.session.post(TOKEN_URL, data=data, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise CredentialError(f"Token request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise CredentialError(f"Token endpoint returned malformed JSON (HTTP {response.status_code}).") from exc

        if isinstance(payload, dict) and payload.get("errors"):
            raise CredentialError(f"Token endpoint reported errors: {payload.get('errors')}")
        if response.status_code >= 400:
            raise CredentialError(f"Token endpoint returned HTTP {response.status_code}.")
        if not isinstance(payload, dict):
            raise CredentialError("Token endpoint returned a non-object payload.")
        return payload
