"""
Service-account access tokens for Earth Engine.

ServiceAccountTokenCache owns one google-auth credential and hands out its
bearer token, refreshing it when it is missing or about to expire. It is
injected into EarthEngineClient instead of living as a module-level
"already authenticated" flag, and a lock serialises refreshes so concurrent
first requests exchange the JWT only once.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from app_config import AppConfig, EARTH_ENGINE_READONLY_SCOPE, GOOGLE_TOKEN_URI
from errors import AuthenticationError, ConfigurationError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SKEW = timedelta(seconds=60)


class _TimeoutRequest(Request):
    """google-auth transport with an explicit timeout on the token exchange."""

    def __init__(self, timeout: float):
        super().__init__()
        self._timeout = timeout

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        return super().__call__(
            url, method=method, body=body, headers=headers,
            timeout=timeout or self._timeout, **kwargs
        )


def _utcnow_like(moment: datetime) -> datetime:
    # google-auth reports naive UTC expiries; newer releases may attach tzinfo
    if moment.tzinfo is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now(timezone.utc)


class ServiceAccountTokenCache:
    """Memoised, expiry-aware bearer token for a service account."""

    def __init__(
        self,
        client_email: Optional[str],
        private_key: Optional[str],
        scopes: Sequence[str] = (EARTH_ENGINE_READONLY_SCOPE,),
        token_uri: str = GOOGLE_TOKEN_URI,
        refresh_skew: timedelta = DEFAULT_REFRESH_SKEW,
        timeout: float = 60.0,
        credentials_factory: Optional[Callable[[dict, Sequence[str]], object]] = None,
        request_factory: Optional[Callable[[], Request]] = None,
    ):
        if not client_email or not private_key:
            raise ConfigurationError(
                "Earth Engine credentials not configured: set EARTH_ENGINE_CLIENT_EMAIL and EARTH_ENGINE_PRIVATE_KEY",
                error="Earth Engine credentials not configured",
            )
        if "PRIVATE KEY-----" not in private_key:
            raise ConfigurationError(
                "EARTH_ENGINE_PRIVATE_KEY is not a PEM private key",
                error="Earth Engine credentials malformed",
            )

        self.client_email = client_email
        self._private_key = private_key
        self._scopes = list(scopes)
        self._token_uri = token_uri
        self._refresh_skew = refresh_skew
        self._credentials_factory = credentials_factory or service_account.Credentials.from_service_account_info
        # Shared by every refresh, which always runs under _lock
        self._request = (request_factory or (lambda: _TimeoutRequest(timeout)))()
        self._credentials = None
        self._lock = threading.Lock()
        self.refresh_count = 0

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "ServiceAccountTokenCache":
        return cls(
            cfg.earth_engine_client_email,
            cfg.earth_engine_private_key,
            timeout=cfg.imagery_timeout_seconds,
        )

    def _build_credentials(self):
        info = {
            "type": "service_account",
            "client_email": self.client_email,
            "private_key": self._private_key,
            "token_uri": self._token_uri,
        }
        try:
            return self._credentials_factory(info, scopes=self._scopes)
        except Exception as e:
            # cryptography and rsa backends raise different types for bad PEM data
            raise ConfigurationError(
                f"Could not load service account key for {self.client_email}: {e}",
                error="Earth Engine credentials malformed",
            ) from e

    def _needs_refresh(self) -> bool:
        creds = self._credentials
        if creds is None or not getattr(creds, "token", None):
            return True
        expiry = getattr(creds, "expiry", None)
        if expiry is None:
            return True
        return expiry - _utcnow_like(expiry) <= self._refresh_skew

    def _refresh_locked(self) -> None:
        if self._credentials is None:
            self._credentials = self._build_credentials()

        logger.info(f"[KEY] Exchanging service account assertion for {self.client_email}")
        try:
            self._credentials.refresh(self._request)
        except google_auth_exceptions.RefreshError as e:
            logger.error(f"[FAIL] Earth Engine token exchange rejected: {e}")
            raise AuthenticationError(f"Token exchange rejected: {e}") from e
        except google_auth_exceptions.TransportError as e:
            if isinstance(e.__cause__, requests.exceptions.Timeout):
                raise UpstreamTimeoutError(f"Token exchange timed out: {e}") from e
            raise UpstreamError(f"Token exchange failed: {e}", error="Authentication with imagery provider failed") from e

        if not getattr(self._credentials, "token", None):
            raise AuthenticationError("Token exchange returned no access token")

        self.refresh_count += 1
        logger.info(f"[OK] Earth Engine access token obtained (expires {getattr(self._credentials, 'expiry', None)})")

    def get_token(self) -> str:
        """Return a bearer token valid for at least ``refresh_skew``."""
        with self._lock:
            if self._needs_refresh():
                self._refresh_locked()
            return self._credentials.token

    async def get_token_async(self) -> str:
        # google-auth refreshes with blocking I/O
        return await asyncio.to_thread(self.get_token)

    def invalidate(self) -> None:
        """Forget the current token so the next call performs a fresh exchange."""
        with self._lock:
            if self._credentials is not None:
                self._credentials.token = None
