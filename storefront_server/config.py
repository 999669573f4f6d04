"""Environment-supplied configuration."""

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_APP_ID = "default-app-id"


class BackendConfig(BaseModel):
    """Connection settings for the hosted backend (the JSON config blob)."""

    api_key: str = Field(alias="apiKey")
    project_id: str = Field(alias="projectId")
    auth_domain: Optional[str] = Field(None, alias="authDomain")
    database_id: str = Field("(default)", alias="databaseId")

    model_config = {"populate_by_name": True}


class Settings(BaseModel):
    """Process-wide settings, read once at start."""

    backend: str = "firestore"
    app_id: str = DEFAULT_APP_ID
    backend_config: Optional[BackendConfig] = None
    config_error: Optional[str] = None
    initial_auth_token: Optional[str] = None
    session_file: Optional[str] = None
    request_timeout: float = 10.0
    retry_attempts: int = 3
    retry_backoff: float = 0.5
    poll_interval: float = 2.0

    @property
    def remote_enabled(self) -> bool:
        """Whether remote features can run at all."""
        if self.backend == "memory":
            return True
        return self.backend_config is not None


def _read_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number, using {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring {name}={raw!r}: must be positive, using {default}")
        return default
    return value


def _read_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer, using {default}")
        return default
    return max(value, 1)


def parse_backend_config(raw: Optional[str]) -> tuple[Optional[BackendConfig], Optional[str]]:
    """
    Parse the backend config blob.

    Returns:
        (config, None) on success, (None, reason) when missing or unparseable
    """
    if not raw:
        return None, "Backend configuration is not available."
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing STOREFRONT_BACKEND_CONFIG: {e}")
        return None, "Backend configuration could not be parsed."
    if not isinstance(data, dict):
        logger.error("STOREFRONT_BACKEND_CONFIG must be a JSON object")
        return None, "Backend configuration could not be parsed."
    try:
        return BackendConfig.model_validate(data), None
    except ValidationError as e:
        logger.error(f"Invalid STOREFRONT_BACKEND_CONFIG: {e}")
        return None, "Backend configuration is incomplete."


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load settings from environment variables.

    Environment variable mapping:
    - STOREFRONT_BACKEND: "firestore" (default) or "memory"
    - STOREFRONT_APP_ID: application namespace id
    - STOREFRONT_BACKEND_CONFIG: backend config JSON (apiKey, projectId, ...)
    - STOREFRONT_AUTH_TOKEN: optional pre-issued session token
    - STOREFRONT_SESSION_FILE: session file path ("" disables persistence)
    - STOREFRONT_REQUEST_TIMEOUT, STOREFRONT_RETRY_ATTEMPTS,
      STOREFRONT_RETRY_BACKOFF, STOREFRONT_POLL_INTERVAL: tuning knobs
    """
    env = os.environ if environ is None else environ

    backend = (env.get("STOREFRONT_BACKEND") or "firestore").strip().lower()
    if backend not in ("firestore", "memory"):
        logger.warning(f"Unknown STOREFRONT_BACKEND={backend!r}, using firestore")
        backend = "firestore"

    backend_config: Optional[BackendConfig] = None
    config_error: Optional[str] = None
    if backend == "firestore":
        backend_config, config_error = parse_backend_config(env.get("STOREFRONT_BACKEND_CONFIG"))

    session_file = env.get("STOREFRONT_SESSION_FILE")
    if session_file is None:
        session_file = str(Path.home() / ".storefront_session.json")

    return Settings(
        backend=backend,
        app_id=env.get("STOREFRONT_APP_ID") or DEFAULT_APP_ID,
        backend_config=backend_config,
        config_error=config_error,
        initial_auth_token=env.get("STOREFRONT_AUTH_TOKEN") or None,
        session_file=session_file or None,
        request_timeout=_read_float(env, "STOREFRONT_REQUEST_TIMEOUT", 10.0),
        retry_attempts=_read_int(env, "STOREFRONT_RETRY_ATTEMPTS", 3),
        retry_backoff=_read_float(env, "STOREFRONT_RETRY_BACKOFF", 0.5),
        poll_interval=_read_float(env, "STOREFRONT_POLL_INTERVAL", 2.0),
    )
