"""Persona resolution and idempotent claiming."""

from __future__ import annotations

from typing import Optional

from loguru import logger

from tamaclient.utils.dispatcher import CommandDispatcher
from tamaclient.utils.errors import ClaimError, DispatchError, PreconditionError, RPCError
from tamaclient.utils.messages import Persona, SubmissionRecord

# gRPC NOT_FOUND as surfaced by the gateway, either as HTTP status or error code.
_NOT_FOUND_STATUS = 404
_NOT_FOUND_CODE = "5"


def _is_not_found(exc: RPCError) -> bool:
    return exc.status == _NOT_FOUND_STATUS or exc.code == _NOT_FOUND_CODE


class IdentityResolver:
    """Binds a persona to the authenticated account exactly once.

    Lookups are never cached: every call asks the gateway, so a persona bound
    by another process is observed on the next call.
    """

    def __init__(self, dispatcher: CommandDispatcher) -> None:
        self._dispatcher = dispatcher

    async def resolve(self) -> Optional[Persona]:
        """Return the bound persona, or None if the account has none."""
        try:
            reply = await self._dispatcher.query_optional("show-persona")
        except RPCError as exc:
            if _is_not_found(exc):
                return None
            raise
        return reply  # type: ignore[return-value]

    async def require(self) -> Persona:
        persona = await self.resolve()
        if persona is None:
            raise PreconditionError("Persona not found")
        return persona

    async def claim(self, persona_tag: str) -> Persona:
        """Claim ``persona_tag`` unless a persona is already bound.

        Returns the existing persona when one is bound (no second claim is
        issued), otherwise the gateway's claim acknowledgement. Concurrent
        claims are not serialised here; the loser gets a ClaimError.

        Raises:
            ClaimError: If the claim is rejected, conflicts, cannot be sent or
                is acknowledged with an unreadable reply
        """
        existing = await self.resolve()
        if existing is not None:
            logger.info("Persona {} already bound, skipping claim", existing.persona_tag)
            return existing

        logger.info("Claiming persona {}", persona_tag)
        try:
            reply = await self._dispatcher.query_optional(
                "claim-persona", {"personaTag": persona_tag}
            )
        except RPCError as exc:
            raise ClaimError(persona_tag, exc.detail) from exc
        except DispatchError as exc:
            raise ClaimError(persona_tag, str(exc)) from exc
        if reply is None:
            return Persona(persona_tag=persona_tag, status="pending")
        return reply  # type: ignore[return-value]

    async def player_exists(self, persona_tag: str) -> bool:
        reply = await self._dispatcher.query("player-exist", {"personaTag": persona_tag})
        return reply.exist  # type: ignore[attr-defined]

    async def ensure_player(self) -> Optional[SubmissionRecord]:
        """Create the game-side player for the bound persona if it is missing.

        Returns the submission record of the ``create-player`` transaction, or
        None when the player already exists.
        """
        persona = await self.require()
        if await self.player_exists(persona.persona_tag):
            logger.info("Player {} already exists", persona.persona_tag)
            return None
        return await self._dispatcher.invoke("create-player")
