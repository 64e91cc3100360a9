"""Provider credential resolution with OAuth refresh on expiry."""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import httpx

from .errors import CredentialMissingError, CredentialModeError, CredentialRefreshError

logger = logging.getLogger("Credentials")

OAUTH_PREFIX = "oauth:"
REFRESH_MARGIN_MS = 30_000
DEFAULT_EXPIRES_IN = 3600

ANTHROPIC_TOKEN_URL = "https://console.anthropic.com/v1/oauth/token"
ANTHROPIC_CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
CODEX_TOKEN_URL = "https://auth.openai.com/oauth/token"
CODEX_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"

ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "codex": "OPENAI_API_KEY",
}


class CredentialStore(Protocol):
    def get(self, provider_id: str) -> Optional[str]:
        ...

    def set(self, provider_id: str, secret: str) -> None:
        ...


class MemoryCredentialStore:
    """Dict-backed store used by the CLI and tests."""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets = dict(secrets or {})

    def get(self, provider_id: str) -> Optional[str]:
        return self._secrets.get(provider_id)

    def set(self, provider_id: str, secret: str) -> None:
        self._secrets[provider_id] = secret


class EnvCredentialStore(MemoryCredentialStore):
    """Reads CODELOOP_<PROVIDER>_CREDENTIAL or the vendor key variable; refreshed tokens stay in memory."""

    def get(self, provider_id: str) -> Optional[str]:
        cached = super().get(provider_id)
        if cached:
            return cached
        own = os.getenv(f"CODELOOP_{provider_id.upper()}_CREDENTIAL")
        if own:
            return own.strip()
        vendor_key = ENV_KEYS.get(provider_id)
        value = os.getenv(vendor_key) if vendor_key else None
        return value.strip() if value else None


@dataclass
class OAuthRecord:
    access: str
    refresh: str
    expires: int

    def expires_soon(self, now_ms: int) -> bool:
        return self.expires < now_ms + REFRESH_MARGIN_MS

    def serialize(self) -> str:
        payload = {"type": "oauth", "access": self.access, "refresh": self.refresh, "expires": self.expires}
        return OAUTH_PREFIX + json.dumps(payload)


@dataclass(frozen = True)
class BearerCredential:
    """Resolved secret for one provider. The token never appears in repr."""

    provider_id: str
    token: str
    is_oauth: bool = False

    def __repr__(self) -> str:
        kind = "oauth" if self.is_oauth else "api_key"
        return f"BearerCredential(provider_id={self.provider_id!r}, kind={kind})"

    __str__ = __repr__


def is_oauth_credential(secret: str) -> bool:
    return secret.startswith(OAUTH_PREFIX)


def parse_oauth_credential(provider_id: str, secret: str) -> OAuthRecord:
    try:
        payload = json.loads(secret[len(OAUTH_PREFIX):])
        return OAuthRecord(
            access = str(payload["access"]),
            refresh = str(payload["refresh"]),
            expires = int(payload["expires"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        raise CredentialRefreshError(provider_id, "stored OAuth record is malformed") from exc


def _now_ms() -> int:
    return int(time.time() * 1000)


class CredentialManager:
    """
    Resolve bearer credentials, refreshing OAuth tokens that are about to expire.

    Parameters:
        store: Credential store collaborator.
        transport: Optional httpx transport, used by tests to fake token endpoints.
        clock_ms: Millisecond clock.
        timeout: HTTP timeout for refresh requests.
    """

    def __init__(
        self,
        store: CredentialStore,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock_ms: Callable[[], int] = _now_ms,
        timeout: float = 30.0,
    ):
        self.store = store
        self._transport = transport
        self._clock_ms = clock_ms
        self._timeout = timeout
        self._refresh_locks: Dict[str, asyncio.Lock] = {}

    async def resolve(self, provider_id: str, auth_mode: Optional[str] = None) -> BearerCredential:
        """
        Return the bearer token for a provider, refreshing an OAuth record close to expiry.

        Parameters:
            provider_id: Provider whose secret is read from the store.
            auth_mode: "api_key" or "oauth" to require that kind of secret; None accepts either.
        """
        secret = self.store.get(provider_id)
        if not secret:
            raise CredentialMissingError(provider_id)
        self._check_mode(provider_id, secret, auth_mode)

        if not is_oauth_credential(secret):
            return BearerCredential(provider_id = provider_id, token = secret)

        record = parse_oauth_credential(provider_id, secret)
        if record.expires_soon(self._clock_ms()):
            lock = self._refresh_locks.setdefault(provider_id, asyncio.Lock())
            async with lock:
                # Another resolve may have refreshed while this one waited.
                latest = self.store.get(provider_id) or secret
                self._check_mode(provider_id, latest, auth_mode)
                if not is_oauth_credential(latest):
                    return BearerCredential(provider_id = provider_id, token = latest)
                record = parse_oauth_credential(provider_id, latest)
                if record.expires_soon(self._clock_ms()):
                    logger.info(f"Refreshing {provider_id} OAuth token")
                    record = await self.refresh(provider_id, record)
                    self.store.set(provider_id, record.serialize())
        return BearerCredential(provider_id = provider_id, token = record.access, is_oauth = True)

    @staticmethod
    def _check_mode(provider_id: str, secret: str, auth_mode: Optional[str]) -> None:
        if auth_mode is None:
            return
        found = "oauth" if is_oauth_credential(secret) else "api_key"
        if auth_mode != found:
            raise CredentialModeError(provider_id, auth_mode, "an OAuth record" if found == "oauth" else "an API key")

    async def refresh(self, provider_id: str, record: OAuthRecord) -> OAuthRecord:
        """Exchange the refresh token at the vendor endpoint."""
        try:
            async with httpx.AsyncClient(transport = self._transport, timeout = self._timeout) as client:
                if provider_id == "anthropic":
                    response = await client.post(
                        ANTHROPIC_TOKEN_URL,
                        json = {
                            "grant_type": "refresh_token",
                            "refresh_token": record.refresh,
                            "client_id": ANTHROPIC_CLIENT_ID,
                        },
                    )
                elif provider_id == "codex":
                    response = await client.post(
                        CODEX_TOKEN_URL,
                        data = {
                            "grant_type": "refresh_token",
                            "refresh_token": record.refresh,
                            "client_id": CODEX_CLIENT_ID,
                        },
                    )
                else:
                    raise CredentialRefreshError(provider_id, "provider does not support OAuth")
        except httpx.HTTPError as exc:
            raise CredentialRefreshError(provider_id, str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            raise CredentialRefreshError(provider_id, f"HTTP {response.status_code}")

        try:
            payload = response.json()
            access = str(payload["access_token"])
        except (ValueError, KeyError, TypeError) as exc:
            raise CredentialRefreshError(provider_id, "token response is malformed") from exc

        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN
        return OAuthRecord(
            access = access,
            refresh = str(payload.get("refresh_token") or record.refresh),
            expires = self._clock_ms() + int(expires_in) * 1000,
        )
