# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Application Configuration Module
Provides Earth Engine and vision model settings for the Geoglyph Scout container app.
Driven by environment variables (optionally loaded from a local .env file).
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Environment loading
_env_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(_env_path):
    load_dotenv(_env_path)
    logger.info(f"Loaded local environment from: {_env_path}")
else:
    logger.info("Using system environment variables")


EARTH_ENGINE_API_URL = "https://earthengine.googleapis.com"
EARTH_ENGINE_READONLY_SCOPE = "https://www.googleapis.com/auth/earthengine.readonly"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
OPENAI_BASE_URL = "https://api.openai.com/v1"
AZURE_OPENAI_API_VERSION = "2024-12-01-preview"

# name@<project>.iam.gserviceaccount.com
_SERVICE_ACCOUNT_PROJECT = re.compile(r"@([a-z][a-z0-9-]+)\.iam\.gserviceaccount\.com$")


@dataclass(frozen=True)
class AppConfig:
    """Configuration for the imagery provider, the vision model and the HTTP surface."""

    # Earth Engine service account
    earth_engine_client_email: Optional[str]
    earth_engine_private_key: Optional[str]
    earth_engine_project: Optional[str]
    earth_engine_api_url: str
    earth_engine_submission_style: str

    # Vision model (OpenAI or Azure OpenAI)
    openai_api_key: Optional[str]
    openai_base_url: str
    openai_model: str
    azure_openai_endpoint: Optional[str]
    azure_openai_api_key: Optional[str]
    azure_openai_deployment: str

    # Transport
    imagery_timeout_seconds: float
    vision_timeout_seconds: float

    # Candidate points table and CORS
    candidates_csv: str
    cors_origins: tuple

    @property
    def earth_engine_configured(self) -> bool:
        return bool(self.earth_engine_client_email and self.earth_engine_private_key)

    @property
    def use_azure_openai(self) -> bool:
        return bool(self.azure_openai_endpoint and self.azure_openai_api_key)

    @property
    def vision_configured(self) -> bool:
        return self.use_azure_openai or bool(self.openai_api_key)


def normalize_private_key(raw_key: Optional[str]) -> Optional[str]:
    """Turn a PEM key stored on one line with literal \\n sequences back into real newlines."""
    if not raw_key:
        return None
    key = raw_key.strip()
    # Keys pasted with surrounding quotes from a .env file
    if len(key) >= 2 and key[0] == key[-1] and key[0] in ("'", '"'):
        key = key[1:-1]
    return key.replace("\\n", "\n")


def project_from_client_email(client_email: Optional[str]) -> Optional[str]:
    if not client_email:
        return None
    match = _SERVICE_ACCOUNT_PROJECT.search(client_email.strip())
    return match.group(1) if match else None


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"[WARN] Ignoring non-numeric {name}={value!r}, using {default}")
        return default


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Resolve configuration from the environment (or an explicit mapping for tests)."""
    env = os.environ if env is None else env

    client_email = _first(env, "EARTH_ENGINE_CLIENT_EMAIL", "GEE_SERVICE_ACCOUNT")
    private_key = normalize_private_key(_first(env, "EARTH_ENGINE_PRIVATE_KEY", "GEE_PRIVATE_KEY"))
    project = _first(env, "EARTH_ENGINE_PROJECT", "GEE_PROJECT_ID") or project_from_client_email(client_email)

    cors_origins_str = env.get("CORS_ORIGINS", "*")
    if cors_origins_str == "*":
        cors_origins = ("*",)
    else:
        cors_origins = tuple(origin.strip() for origin in cors_origins_str.split(",") if origin.strip())

    default_csv = os.path.join(os.path.dirname(__file__), "data", "candidates.csv")

    return AppConfig(
        earth_engine_client_email=client_email.strip() if client_email else None,
        earth_engine_private_key=private_key,
        earth_engine_project=project,
        earth_engine_api_url=env.get("EARTH_ENGINE_API_URL", EARTH_ENGINE_API_URL).rstrip("/"),
        earth_engine_submission_style=env.get("EARTH_ENGINE_SUBMISSION_STYLE", "compute_pixels").strip().lower(),
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_base_url=env.get("OPENAI_BASE_URL", OPENAI_BASE_URL).rstrip("/"),
        openai_model=env.get("OPENAI_MODEL", "gpt-4o"),
        azure_openai_endpoint=env.get("AZURE_OPENAI_ENDPOINT") or None,
        azure_openai_api_key=env.get("AZURE_OPENAI_API_KEY") or None,
        azure_openai_deployment=env.get("AZURE_OPENAI_DEPLOYMENT_NAME", "gpt-4o"),
        imagery_timeout_seconds=_float(env, "IMAGERY_TIMEOUT_SECONDS", 60.0),
        vision_timeout_seconds=_float(env, "VISION_TIMEOUT_SECONDS", 60.0),
        candidates_csv=env.get("CANDIDATES_CSV", default_csv),
        cors_origins=cors_origins,
    )


# Resolved once at import, like the rest of the container app's module-level config
app_cfg: AppConfig = load_config()
