"""Process-wide Google credentials.

The service account and the credentials built from it are created at most
once per process and never replaced; only the access token they carry is
refreshed.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
import json
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from nano_banana.core.config import get_settings
from nano_banana.core.errors import MissingConfiguration, UnreachableCollaborator


CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

_refresh_lock = Lock()


@lru_cache(maxsize=1)
def load_service_account() -> Dict[str, Any]:
    raw = get_settings().google_service_account_json.strip()
    if not raw:
        raise MissingConfiguration("GOOGLE_SERVICE_ACCOUNT_JSON is required (JSON string or file path).")
    if raw.startswith("{"):
        return json.loads(raw)
    path = Path(raw).expanduser()
    if not path.is_file():
        raise MissingConfiguration(f"Service account file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def get_credentials() -> service_account.Credentials:
    return service_account.Credentials.from_service_account_info(
        load_service_account(),
        scopes=[CLOUD_PLATFORM_SCOPE],
    )


def _refresh_if_needed(credentials: service_account.Credentials) -> None:
    with _refresh_lock:
        if not credentials.valid:
            credentials.refresh(Request())


async def get_access_token() -> str:
    credentials = get_credentials()
    if not credentials.valid:
        try:
            # google-auth refreshes synchronously; keep it off the loop.
            await asyncio.to_thread(_refresh_if_needed, credentials)
        except GoogleAuthError as exc:
            raise UnreachableCollaborator(f"Credential refresh failed: {exc}") from exc
    return str(credentials.token)


def resolve_project_id(override: Optional[str] = None) -> str:
    if override and override.strip():
        return override.strip()
    configured = get_settings().vertex_project_id.strip()
    if configured:
        return configured
    project_id = str(load_service_account().get("project_id") or "").strip()
    if project_id:
        return project_id
    raise MissingConfiguration(
        "Project ID not found. Set VERTEX_PROJECT_ID or include project_id in the service account JSON."
    )


def reset_credentials_for_tests() -> None:
    load_service_account.cache_clear()
    get_credentials.cache_clear()
