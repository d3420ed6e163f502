import tempfile
import unittest
from dataclasses import replace
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from stridecast import api_server
from stridecast.credentials import CredentialRecord
from stridecast.errors import CredentialError


class _DummyCredentials:
    def __init__(self, error=None):
        self.error = error
        self.codes = []
        self.users = []

    def exchange_authorization_code(self, code):
        self.codes.append(code)
        if self.error is not None:
            raise self.error
        self.users.append("42")
        return CredentialRecord("42", "access", "refresh", 1_800_000_000, {"id": 42})

    def list_user_ids(self):
        return list(self.users)


class TestApiServer(unittest.TestCase):
    def setUp(self) -> None:
        self.client = api_server.app.test_client()
        self._original_credentials = api_server.credentials
        self.credentials = _DummyCredentials()
        api_server.credentials = self.credentials

    def tearDown(self) -> None:
        api_server.credentials = self._original_credentials

    def test_root_returns_authorize_url(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        url = urlparse(response.get_json()["authorize_url"])
        params = parse_qs(url.query)
        self.assertEqual(url.path, "/oauth/authorize")
        self.assertEqual(params["scope"], ["read,activity:read_all,activity:write"])
        self.assertEqual(params["response_type"], ["code"])

    def test_callback_stores_credentials(self) -> None:
        response = self.client.get("/strava/oauth?code=abc&scope=read,activity:write,activity:read_all")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"status": "connected", "user_id": "42"})
        self.assertEqual(self.credentials.codes, ["abc"])

        health = self.client.get("/health").get_json()
        self.assertEqual(health, {"status": "ok", "users": 1})

    def test_denied_authorization(self) -> None:
        response = self.client.get("/strava/oauth?error=access_denied")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["reason"], "access_denied")
        self.assertEqual(self.credentials.codes, [])

    def test_missing_code(self) -> None:
        response = self.client.get("/strava/oauth?scope=read")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["reason"], "missing_code")

    def test_partial_scope_is_rejected(self) -> None:
        response = self.client.get("/strava/oauth?code=abc&scope=read,activity:read_all")
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload["reason"], "missing_scopes")
        self.assertEqual(payload["missing_scopes"], ["activity:write"])
        self.assertEqual(self.credentials.codes, [])

    def test_exchange_failure_returns_bad_gateway(self) -> None:
        api_server.credentials = _DummyCredentials(error=CredentialError("invalid code"))
        response = self.client.get("/strava/oauth?code=abc&scope=read,activity:read_all,activity:write")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.get_json()["reason"], "token_exchange_failed")

    def test_missing_scopes_helper(self) -> None:
        self.assertEqual(api_server.missing_scopes("READ, activity:read_all ,activity:write"), [])
        self.assertEqual(api_server.missing_scopes(""), list(api_server.REQUIRED_SCOPES))


class TestHealthOnDisk(unittest.TestCase):
    def test_health_counts_stored_users(self) -> None:
        original_settings = api_server.settings
        original_credentials = api_server.credentials
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = replace(original_settings, credentials_dir=Path(tmpdir))
            (Path(tmpdir) / "7.json.gz").write_bytes(b"")
            (Path(tmpdir) / "8.json").write_text("{}", encoding="utf-8")
            api_server.settings = settings
            api_server.credentials = api_server.CredentialStore(settings)
            try:
                response = api_server.app.test_client().get("/health")
                self.assertEqual(response.get_json()["users"], 2)
            finally:
                api_server.settings = original_settings
                api_server.credentials = original_credentials


if __name__ == "__main__":
    unittest.main()
