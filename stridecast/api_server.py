from __future__ import annotations

import logging
from urllib.parse import urlencode

from flask import Flask, request

from .config import Settings
from .credentials import CredentialStore
from .errors import CredentialError


logger = logging.getLogger(__name__)

STRAVA_AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
REQUIRED_SCOPES = ("read", "activity:read_all", "activity:write")
STRAVA_OAUTH_SCOPE = ",".join(REQUIRED_SCOPES)

app = Flask(__name__)
settings = Settings.from_env()
credentials = CredentialStore(settings)


def authorize_url() -> str:
    params = {
        "client_id": settings.strava_client_id,
        "response_type": "code",
        "redirect_uri": settings.oauth_redirect_uri,
        "approval_prompt": "force",
        "scope": STRAVA_OAUTH_SCOPE,
    }
    return f"{STRAVA_AUTHORIZE_URL}?{urlencode(params)}"


def missing_scopes(granted: str) -> list[str]:
    provided = {scope.strip().lower() for scope in granted.split(",") if scope.strip()}
    return [scope for scope in REQUIRED_SCOPES if scope not in provided]


@app.get("/")
def oauth_prompt_get() -> tuple[dict, int]:
    return {"status": "ok", "authorize_url": authorize_url()}, 200


@app.get("/strava/oauth")
def oauth_callback_get() -> tuple[dict, int]:
    error = str(request.args.get("error") or "").strip()
    if error:
        return {"status": "error", "reason": error, "authorize_url": authorize_url()}, 400

    code = str(request.args.get("code") or "").strip()
    scope = str(request.args.get("scope") or "").strip()
    if not code or not scope:
        return {"status": "error", "reason": "missing_code", "authorize_url": authorize_url()}, 400

    missing = missing_scopes(scope)
    if missing:
        return {
            "status": "error",
            "reason": "missing_scopes",
            "missing_scopes": missing,
            "authorize_url": authorize_url(),
        }, 400

    try:
        record = credentials.exchange_authorization_code(code)
    except CredentialError as exc:
        logger.error("Authorization code exchange failed: %s", exc)
        return {"status": "error", "reason": "token_exchange_failed"}, 502

    return {"status": "connected", "user_id": record.user_id}, 200


@app.get("/health")
def health_get() -> tuple[dict, int]:
    return {"status": "ok", "users": len(credentials.list_user_ids())}, 200


def main() -> None:
    settings.ensure_state_paths()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    logger.info("OAuth callback listening on port %s. Authorize at %s", settings.api_port, authorize_url())
    app.run(host="0.0.0.0", port=settings.api_port)


if __name__ == "__main__":
    main()
