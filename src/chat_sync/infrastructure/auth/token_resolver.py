from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping

import httpx
import jwt

from chat_sync.application.dto.credential import Credential
from chat_sync.application.exceptions import AuthError
from chat_sync.config import settings

logger = logging.getLogger(__name__)


def inspect_token(token: str) -> Credential | None:
    """Build a Credential from a raw token, or None if it is unusable.

    The signature is not checked here, the server does that on handshake.
    Expired or not-yet-valid JWTs are unusable; opaque (non-JWT) tokens are
    passed through as-is.
    """
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    except jwt.ExpiredSignatureError:
        logger.info("Stored access token has expired")
        return None
    except jwt.DecodeError:
        return Credential(token=token)
    except jwt.InvalidTokenError:
        logger.info("Stored access token is not valid yet", exc_info=True)
        return None

    exp = claims.get("exp")
    sub = claims.get("sub")
    return Credential(
        token=token,
        role=claims.get("role", claims.get("role_name")),
        subject_id=str(sub) if sub is not None else None,
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
    )


class CookieTokenProvider:
    """Implements application.ports.auth.CredentialProvider.

    Reads the auth cookie first and falls back to the token-exchange
    endpoint when the cookie is missing or unusable.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        cookies: Mapping[str, str] | None = None,
        cookie_name: str = settings.AUTH_COOKIE_NAME,
        exchange_path: str = settings.TOKEN_EXCHANGE_PATH,
    ) -> None:
        self._http = http
        self._cookies = cookies
        self._cookie_name = cookie_name
        self._exchange_path = exchange_path

    async def resolve(self) -> Credential:
        credential = inspect_token(self._from_cookie() or "")
        if credential is not None:
            return credential

        logger.debug("No usable %s cookie, trying token exchange", self._cookie_name)
        credential = inspect_token(await self._exchange() or "")
        if credential is not None:
            return credential

        raise AuthError("No valid access token available")

    def _from_cookie(self) -> str | None:
        if self._cookies is not None:
            return self._cookies.get(self._cookie_name)
        return self._http.cookies.get(self._cookie_name)

    async def _exchange(self) -> str | None:
        try:
            resp = await self._http.get(self._exchange_path)
        except httpx.HTTPError:
            logger.warning("Token exchange request failed", exc_info=True)
            return None
        if resp.status_code != 200:
            logger.info("Token exchange returned HTTP %d", resp.status_code)
            return None
        try:
            data = resp.json()
        except ValueError:
            logger.warning("Token exchange returned a non-JSON body")
            return None
        token = data.get("token") if isinstance(data, dict) else None
        return token if isinstance(token, str) else None
