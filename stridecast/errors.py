from __future__ import annotations

from typing import Any


class EnrichmentError(RuntimeError):
    """Base class for failures that abandon or degrade a single job."""


class CredentialError(EnrichmentError):
    """No usable token for a user: missing record or failed refresh."""


class ExternalLookupError(EnrichmentError):
    """Geocode or weather lookup failed; nothing was cached."""


class ParseError(EnrichmentError):
    """A remote service answered with a body that is not the JSON we expect."""


class WritebackError(EnrichmentError):
    def __init__(self, message: str, payload: dict[str, Any] | None = None):
        super().__init__(message)
        self.payload = payload
