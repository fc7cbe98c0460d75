"""Session ownership and proactive refresh for the gateway connection."""

from __future__ import annotations

import asyncio
import base64
import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from loguru import logger

from tamaclient.utils.errors import PreconditionError, RefreshError

if TYPE_CHECKING:
    from tamaclient.utils.transport import GameTransport


def decode_token_claims(token: str) -> Dict[str, Any]:
    """Return the claims of a JWT without verifying its signature."""

    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("session token is not a JWT")
    body = parts[1]
    body += "=" * (-len(body) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(body.encode("ascii")))
    except (ValueError, UnicodeError) as exc:
        raise ValueError(f"session token claims are unreadable: {exc}") from exc
    if not isinstance(claims, dict):
        raise ValueError("session token claims must be an object")
    return claims


@dataclass(frozen=True)
class Session:
    """Authenticated gateway credential. Replaced, never mutated, on refresh."""

    token: str
    refresh_token: str
    expires_at: float
    refresh_expires_at: Optional[float] = None
    user_id: str = ""
    username: str = ""
    created: bool = False

    @classmethod
    def from_tokens(
        cls, token: str, refresh_token: str = "", *, created: bool = False
    ) -> "Session":
        claims = decode_token_claims(token)
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise ValueError("session token has no exp claim")
        refresh_exp: Optional[float] = None
        if refresh_token:
            refresh_claims = decode_token_claims(refresh_token)
            candidate = refresh_claims.get("exp")
            if isinstance(candidate, (int, float)):
                refresh_exp = float(candidate)
        return cls(
            token=token,
            refresh_token=refresh_token,
            expires_at=float(exp),
            refresh_expires_at=refresh_exp,
            user_id=str(claims.get("uid", "")),
            username=str(claims.get("usn", "")),
            created=created,
        )

    def is_expired(self, now: Optional[float] = None, margin: float = 0.0) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at - margin

    def is_refresh_expired(self, now: Optional[float] = None) -> bool:
        if not self.refresh_token:
            return True
        if self.refresh_expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.refresh_expires_at


class SessionGuard:
    """Owns the current session and refreshes it before it expires.

    Readers never observe a partially refreshed session: the guard swaps the
    whole :class:`Session` value once a refresh succeeds. Refreshes are
    serialised so concurrent callers share a single refresh round trip.
    """

    def __init__(
        self,
        transport: "GameTransport",
        *,
        refresh_margin: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transport = transport
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._session: Optional[Session] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def channel_open(self) -> bool:
        return self._transport.channel_open

    async def authenticate(self, email: str, password: str, *, create: bool = True) -> Session:
        """Authenticate by email and open the realtime channel.

        Raises:
            AuthError: If the gateway rejects the credentials
        """
        session = await self._transport.authenticate_email(email, password, create=create)
        self._session = session
        logger.info(
            "Authenticated user={} username={} created={}",
            session.user_id,
            session.username,
            session.created,
        )
        await self._transport.open_channel(session)
        return session

    def require(self) -> Session:
        """Return the current session without touching the network.

        Raises:
            PreconditionError: If there is no session or no open channel
        """
        if self._session is None or not self._transport.channel_open:
            raise PreconditionError("Session or channel not found")
        return self._session

    async def ensure_valid(self) -> Session:
        """Return a session that is valid for at least the refresh margin.

        Raises:
            PreconditionError: If there is no session or no open channel
            RefreshError: If the session expired and could not be refreshed
        """
        session = self.require()
        if not session.is_expired(self._clock(), self._refresh_margin):
            return session

        async with self._refresh_lock:
            current = self.require()
            if current is not session and not current.is_expired(
                self._clock(), self._refresh_margin
            ):
                return current
            return await self._refresh(current)

    async def _refresh(self, session: Session) -> Session:
        logger.info("Session for {} expires at {}, refreshing", session.user_id, session.expires_at)
        if session.is_refresh_expired(self._clock()):
            self._session = None
            raise RefreshError("Session can no longer be refreshed. Must reauthenticate!")
        try:
            refreshed = await self._transport.refresh_session(session)
        except RefreshError:
            self._session = None
            raise
        self._session = refreshed
        return refreshed

    async def close(self) -> None:
        try:
            await self._transport.close_channel()
        finally:
            self._session = None
