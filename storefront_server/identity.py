"""Identity providers issuing session identities."""

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

import httpx

from .config import BackendConfig
from .errors import AuthFailure
from .models import SessionData

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Issues opaque session identities."""

    name: str

    async def sign_in_anonymous(self) -> SessionData: ...

    async def sign_in_with_token(self, token: str) -> SessionData: ...

    async def refresh(self, session: SessionData) -> SessionData: ...

    async def close(self) -> None: ...


class LocalIdentityProvider:
    """Offline provider: random anonymous IDs, stable IDs derived from tokens."""

    name = "local"

    async def sign_in_anonymous(self) -> SessionData:
        return SessionData(session_id=uuid.uuid4().hex, anonymous=True, provider=self.name)

    async def sign_in_with_token(self, token: str) -> SessionData:
        if not token.strip():
            raise AuthFailure("Empty sign-in token")
        digest = hashlib.sha256(token.encode()).hexdigest()[:28]
        return SessionData(session_id=digest, anonymous=False, provider=self.name)

    async def refresh(self, session: SessionData) -> SessionData:
        return session

    async def close(self) -> None:
        pass


class FirebaseIdentityClient:
    """Client for the hosted identity toolkit REST API."""

    name = "firebase"

    IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"
    TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

    def __init__(
        self,
        config: BackendConfig,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the identity client.

        Args:
            config: Backend configuration (the API key is taken from here)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.client.post(url, params={"key": self.config.api_key}, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Identity request failed: {e}")
            raise AuthFailure(f"Could not reach the identity provider: {e}") from e

        if response.status_code != 200:
            reason = response.text[:200]
            try:
                reason = response.json().get("error", {}).get("message", reason)
            except ValueError:
                pass
            logger.error(f"Identity provider rejected sign-in: status={response.status_code}, reason={reason}")
            raise AuthFailure(f"Sign-in rejected: {reason}")
        return response.json()

    @staticmethod
    def _expiry(data: dict[str, Any]) -> Optional[datetime]:
        seconds = data.get("expiresIn") or data.get("expires_in")
        if not seconds:
            return None
        # Renew a minute early
        return datetime.now(timezone.utc) + timedelta(seconds=int(seconds) - 60)

    async def sign_in_anonymous(self) -> SessionData:
        logger.info("Signing in anonymously")
        data = await self._post(f"{self.IDENTITY_URL}/accounts:signUp", {"returnSecureToken": True})
        return SessionData(
            session_id=data["localId"],
            id_token=data.get("idToken"),
            refresh_token=data.get("refreshToken"),
            expires_at=self._expiry(data),
            anonymous=True,
            provider=self.name,
        )

    async def sign_in_with_token(self, token: str) -> SessionData:
        logger.info("Signing in with pre-issued token")
        data = await self._post(
            f"{self.IDENTITY_URL}/accounts:signInWithCustomToken",
            {"token": token, "returnSecureToken": True},
        )
        id_token = data.get("idToken")
        if not id_token:
            raise AuthFailure("Sign-in response did not include an ID token")

        # The custom token response carries no user ID; look it up
        lookup = await self._post(f"{self.IDENTITY_URL}/accounts:lookup", {"idToken": id_token})
        users = lookup.get("users") or []
        if not users or not users[0].get("localId"):
            raise AuthFailure("Could not determine the signed-in user")

        return SessionData(
            session_id=users[0]["localId"],
            id_token=id_token,
            refresh_token=data.get("refreshToken"),
            expires_at=self._expiry(data),
            anonymous=False,
            provider=self.name,
        )

    async def refresh(self, session: SessionData) -> SessionData:
        if not session.refresh_token:
            raise AuthFailure("Session has no refresh token")
        logger.info("Refreshing ID token")
        try:
            response = await self.client.post(
                self.TOKEN_URL,
                params={"key": self.config.api_key},
                data={"grant_type": "refresh_token", "refresh_token": session.refresh_token},
            )
        except httpx.HTTPError as e:
            raise AuthFailure(f"Could not reach the identity provider: {e}") from e
        if response.status_code != 200:
            logger.error(f"Token refresh rejected: status={response.status_code}")
            raise AuthFailure("Token refresh rejected")
        data = response.json()
        return session.model_copy(
            update={
                "id_token": data.get("id_token", session.id_token),
                "refresh_token": data.get("refresh_token", session.refresh_token),
                "expires_at": self._expiry(data),
            }
        )

    async def close(self) -> None:
        await self.client.aclose()
