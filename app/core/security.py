"""Bearer credential verification against an external identity provider.

Tokens are issued by the provider (Firebase Auth, Keycloak, Auth0, ...) and
signed with keys published as a JSON Web Key Set. This module only verifies
them and extracts the email claim; it never mints tokens.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from app.core.errors import Unauthenticated
from app.core.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VerifiedIdentity:
    """The only trustworthy notion of who is calling."""

    email: str
    subject: str | None = None


def normalize_email(value: str) -> str:
    return value.strip().lower()


class IdentityVerifier:
    """Verify provider-signed JWTs using a cached JWKS document.

    One instance lives for the whole process (see ``app.events``). The JWKS is
    refetched when stale or when a token names an unknown ``kid``.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = config or default_settings
        self._client = http_client or httpx.AsyncClient(
            timeout=self._settings.identity_timeout_seconds
        )
        self._jwks: dict[str, Any] | None = None
        self._fetched_at: float = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _fetch_jwks(self) -> dict[str, Any]:
        try:
            response = await self._client.get(
                self._settings.identity_jwks_url,
                timeout=self._settings.identity_timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("Identity provider timed out fetching JWKS: %s", exc)
            raise Unauthenticated("Identity provider unavailable") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to fetch JWKS from identity provider: %s", exc)
            raise Unauthenticated("Identity provider unavailable") from exc
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            logger.error("Identity provider returned a malformed JWKS document")
            raise Unauthenticated("Identity provider unavailable")
        return data

    async def _get_jwks(self, force_refresh: bool = False) -> dict[str, Any]:
        now = time.monotonic()
        stale = (now - self._fetched_at) > self._settings.identity_jwks_cache_seconds
        if self._jwks is None or force_refresh or stale:
            self._jwks = await self._fetch_jwks()
            self._fetched_at = now
        return self._jwks

    async def _signing_keys(self, token: str) -> list[dict[str, Any]]:
        """Keys worth trying: the one named by ``kid``, or every key when unnamed."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise Unauthenticated("Invalid token") from exc
        kid = header.get("kid")

        for force_refresh in (False, True):
            jwks = await self._get_jwks(force_refresh=force_refresh)
            if kid is None:
                if jwks["keys"]:
                    return list(jwks["keys"])
                continue
            for key in jwks["keys"]:
                if key.get("kid") == kid:
                    return [key]
        # kid not found even after a refresh: rotated out or forged
        raise Unauthenticated("Invalid token")

    def _decode(self, token: str, key: dict[str, Any]) -> dict[str, Any]:
        return jwt.decode(
            token,
            key,
            algorithms=self._settings.identity_algorithms,
            audience=self._settings.identity_audience,
            issuer=self._settings.identity_issuer,
            options={"verify_aud": self._settings.identity_audience is not None},
        )

    async def verify(self, token: str) -> VerifiedIdentity:
        claims = None
        for key in await self._signing_keys(token):
            try:
                claims = self._decode(token, key)
                break
            except ExpiredSignatureError as exc:
                raise Unauthenticated("Token has expired") from exc
            except JWTClaimsError as exc:
                # signature matched this key; the claims themselves are wrong
                raise Unauthenticated("Invalid token") from exc
            except JWTError:
                continue
        if claims is None:
            raise Unauthenticated("Invalid token")

        email = claims.get(self._settings.identity_email_claim)
        if not isinstance(email, str) or "@" not in email:
            raise Unauthenticated("Token carries no email claim")
        if self._settings.identity_require_email_verified and claims.get("email_verified") is not True:
            raise Unauthenticated("Email address is not verified")
        return VerifiedIdentity(email=normalize_email(email), subject=claims.get("sub"))
