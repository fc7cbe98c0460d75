"""Game client API for the pet game."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from tamaclient.utils.config import ClientConfig
from tamaclient.utils.confirmation import ConfirmationEngine, ConfirmationResult
from tamaclient.utils.dispatcher import CommandDispatcher
from tamaclient.utils.identity import IdentityResolver
from tamaclient.utils.messages import (
    Item,
    Persona,
    Pet,
    SubmissionRecord,
)
from tamaclient.utils.session import Session, SessionGuard
from tamaclient.utils.transport import GameTransport, NakamaTransport


class AsyncPetClient:
    """Async client for playing the pet game through the Nakama gateway.

    Wires the session guard, dispatcher, identity resolver and confirmation
    engine together. Action methods return the submission record; pass it to
    :meth:`wait_for_receipt` (or use ``confirm=True``) to get the outcome.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        transport: Optional[GameTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection and confirmation settings (defaults to env)
            transport: Network layer; a :class:`NakamaTransport` by default
        """
        self.config = config or ClientConfig.from_env()
        self._transport: GameTransport = transport or NakamaTransport(self.config)
        self.guard = SessionGuard(self._transport, refresh_margin=self.config.refresh_margin)
        self.dispatcher = CommandDispatcher(self.guard, self._transport)
        self.identity = IdentityResolver(self.dispatcher)
        self.dispatcher.set_identity_probe(self.identity.resolve)
        self.engine = ConfirmationEngine(
            self.dispatcher.current_tick,
            self._transport.fetch_receipt_batch,
            required_tick_delta=self.config.required_tick_delta,
            max_poll_rounds=self.config.max_poll_rounds,
            poll_interval=self.config.poll_interval,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        try:
            await self.guard.close()
        finally:
            aclose = getattr(self._transport, "aclose", None)
            if aclose is not None:
                await aclose()

    @property
    def session(self) -> Optional[Session]:
        return self.guard.session

    # ------------------------------------------------------------------
    # Session and identity
    # ------------------------------------------------------------------

    async def authenticate(self, email: str, password: str, *, create: bool = True) -> Session:
        return await self.guard.authenticate(email, password, create=create)

    async def custom_id(self) -> Optional[str]:
        """Return the account's custom id, if the transport exposes accounts."""
        account = getattr(self._transport, "account", None)
        if account is None:
            return None
        session = await self.guard.ensure_valid()
        data = await account(session)
        logger.info("Account {}", (data.get("user") or {}).get("id"))
        return data.get("custom_id")

    async def resolve_persona(self) -> Optional[Persona]:
        return await self.identity.resolve()

    async def claim_persona(self, persona_tag: str) -> Persona:
        return await self.identity.claim(persona_tag)

    async def create_player(self, *, confirm: bool = False):
        """Create the player for the bound persona unless it already exists."""
        record = await self.identity.ensure_player()
        if record is None or not confirm:
            return record
        return await self.wait_for_receipt(record)

    # ------------------------------------------------------------------
    # Generic dispatch
    # ------------------------------------------------------------------

    async def dispatch(
        self, command: str, payload: Optional[Mapping[str, Any]] = None
    ) -> SubmissionRecord:
        return await self.dispatcher.invoke(command, payload)

    async def wait_for_receipt(
        self, submission: SubmissionRecord, **kwargs: Any
    ) -> ConfirmationResult:
        return await self.engine.confirm(submission, **kwargs)

    async def _act(self, command: str, payload: Dict[str, Any], confirm: bool):
        record = await self.dispatcher.invoke(command, payload)
        if not confirm:
            return record
        return await self.engine.confirm(record)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def create_pet(self, nickname: str, *, confirm: bool = False):
        return await self._act("create-pet", {"nickname": nickname}, confirm)

    async def bath_pet(self, target: str, item_name: str, *, confirm: bool = False):
        return await self._act("bath-pet", {"target": target, "item_name": item_name}, confirm)

    async def feed_pet(self, target: str, item_name: str, *, confirm: bool = False):
        return await self._act("feed-pet", {"target": target, "item_name": item_name}, confirm)

    async def cure_pet(self, target: str, item_name: str, *, confirm: bool = False):
        return await self._act("cure-pet", {"target": target, "item_name": item_name}, confirm)

    async def play_pet(self, target: str, item_name: str, *, confirm: bool = False):
        return await self._act("play-pet", {"target": target, "item_name": item_name}, confirm)

    async def sleep_pet(self, target: str, *, confirm: bool = False):
        return await self._act("sleep-pet", {"target": target}, confirm)

    async def breed_pet(
        self, father_name: str, mother_name: str, born_name: str, *, confirm: bool = False
    ):
        payload = {"fatherName": father_name, "motherName": mother_name, "bornName": born_name}
        return await self._act("breed-pet", payload, confirm)

    async def buy_item(self, name: str, *, confirm: bool = False):
        return await self._act("buy-item", {"name": name}, confirm)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def current_tick(self) -> int:
        return await self.dispatcher.current_tick()

    async def pet_energy(self, nickname: str) -> int:
        reply = await self.dispatcher.query("pet-energy", {"Nickname": nickname})
        return reply.energy  # type: ignore[attr-defined]

    async def pet_health(self, nickname: str) -> int:
        reply = await self.dispatcher.query("pet-health", {"Nickname": nickname})
        return reply.hp  # type: ignore[attr-defined]

    async def pets(self) -> List[Pet]:
        reply = await self.dispatcher.query("pets-list")
        return reply.pets  # type: ignore[attr-defined]

    async def player_exists(self, persona_tag: str) -> bool:
        return await self.identity.player_exists(persona_tag)

    async def persona_items(self, persona_tag: str) -> List[Item]:
        reply = await self.dispatcher.query("personaItem-list", {"personaTag": persona_tag})
        return reply.items  # type: ignore[attr-defined]

    async def leaderboard(self) -> List[Pet]:
        reply = await self.dispatcher.query("leaderboard")
        return reply.pets  # type: ignore[attr-defined]

    async def confirm_all(self, submissions: List[SubmissionRecord], **kwargs: Any):
        """Confirm several independent submissions concurrently.

        Each slot holds a :class:`ConfirmationResult`, or the client error that
        ended that confirmation; one failure never discards the others.
        """
        return await self.engine.confirm_many(submissions, **kwargs)

    async def pet_vitals(self, nickname: str) -> Dict[str, int]:
        energy, health = await asyncio.gather(self.pet_energy(nickname), self.pet_health(nickname))
        return {"energy": energy, "health": health}
