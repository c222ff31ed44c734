"""
Authentication gate for Crewboard.

Sign-up, password sign-in, refresh and sign-out against the hosted auth
service's REST API (GoTrue-compatible). The panel only ever asks one
question of it: is there a valid session right now?

The session is the one piece of client state persisted across restarts.
It lives in a JSON file readable only by the owner.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx
import jwt

from panel.config import settings
from panel.errors import AuthError
from panel.models import Credentials, Session

logger = logging.getLogger(__name__)


def session_from_payload(payload: dict[str, Any]) -> Session:
    """
    Build a Session from an auth response.

    Missing expiry or user id are read from the access token's claims. The
    signature is not verified here: the token is only inspected, the backend
    is what verifies it.
    """
    token = payload.get("access_token")
    if not token:
        raise AuthError("Auth response did not include an access token")

    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        claims = {}

    user = payload.get("user") or {}
    return Session(
        access_token=token,
        refresh_token=payload.get("refresh_token"),
        token_type=payload.get("token_type", "bearer"),
        expires_at=payload.get("expires_at") or claims.get("exp"),
        user_id=user.get("id") or claims.get("sub"),
        email=user.get("email") or claims.get("email"),
    )


class SessionStore:
    """Persists the current session to disk."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings.SESSION_FILE

    def load(self) -> Session | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                return Session.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning("auth: ignoring unreadable session file %s: %s", self.path, e)
            return None

    def save(self, session: Session) -> None:
        """Write with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(session.model_dump(), f, indent=2)
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class AuthClient:
    """HTTP client for the auth service."""

    def __init__(
        self,
        auth_url: str | None = None,
        api_key: str | None = None,
        store: SessionStore | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.auth_url = (auth_url or settings.AUTH_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.SUPABASE_ANON_KEY
        if not self.api_key:
            raise RuntimeError("SUPABASE_ANON_KEY environment variable is required")
        self.store = store or SessionStore()
        self.client = client or httpx.AsyncClient(timeout=settings.AUTH_TIMEOUT_SECONDS)

    def _headers(self, token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self.api_key, "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _post(self, path: str, data: dict[str, Any] | None = None, token: str | None = None) -> dict[str, Any]:
        url = f"{self.auth_url}{path}"
        try:
            res = await self.client.post(url, json=data or {}, headers=self._headers(token))
            res.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AuthError(_error_message(e.response)) from e
        except httpx.HTTPError as e:
            raise AuthError(f"Auth service unreachable: {e}") from e
        if not res.content:
            return {}
        return res.json()

    async def sign_up(self, email: str, password: str) -> Session | None:
        """
        Register a new user.

        Returns None when the service requires email confirmation before
        issuing a session.
        """
        creds = Credentials(email=email, password=password)
        payload = await self._post("/signup", creds.model_dump())
        if not payload.get("access_token"):
            return None
        return self._remember(session_from_payload(payload))

    async def sign_in(self, email: str, password: str) -> Session:
        creds = Credentials(email=email, password=password)
        payload = await self._post("/token?grant_type=password", creds.model_dump())
        return self._remember(session_from_payload(payload))

    async def refresh(self, session: Session) -> Session:
        if not session.refresh_token:
            raise AuthError("Session expired")
        payload = await self._post("/token?grant_type=refresh_token", {"refresh_token": session.refresh_token})
        return self._remember(session_from_payload(payload))

    async def sign_out(self) -> None:
        session = self.store.load()
        try:
            if session is not None:
                await self._post("/logout", token=session.access_token)
        finally:
            self.store.clear()

    async def current_session(self) -> Session | None:
        """The persisted session if still valid, refreshing it once if it has expired."""
        session = self.store.load()
        if session is None:
            return None
        if session.is_valid():
            return session
        if not session.refresh_token:
            self.store.clear()
            return None
        try:
            return await self.refresh(session)
        except AuthError as e:
            logger.warning("auth: session refresh failed: %s", e)
            self.store.clear()
            return None

    def _remember(self, session: Session) -> Session:
        self.store.save(session)
        return session

    async def close(self) -> None:
        await self.client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Auth request failed ({response.status_code})"
    for key in ("error_description", "msg", "message", "error"):
        if isinstance(body, dict) and body.get(key):
            return str(body[key])
    return f"Auth request failed ({response.status_code})"
