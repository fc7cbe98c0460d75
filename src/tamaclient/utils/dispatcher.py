"""Single-round-trip command dispatch through the session guard."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

from loguru import logger

from tamaclient.utils.errors import PreconditionError
from tamaclient.utils.messages import (
    CommandKind,
    CommandSpec,
    SubmissionRecord,
    WireModel,
    build_request,
    decode,
    get_command,
)
from tamaclient.utils.session import SessionGuard

if TYPE_CHECKING:
    from tamaclient.utils.messages import Persona
    from tamaclient.utils.transport import GameTransport


IdentityProbe = Callable[[], Awaitable[Optional["Persona"]]]


class CommandDispatcher:
    """Sends named commands and decodes their replies.

    One call is exactly one gateway round trip; retrying is the caller's job.
    Gameplay commands additionally require a bound persona, checked through
    the identity probe before anything is sent.
    """

    def __init__(
        self,
        guard: SessionGuard,
        transport: "GameTransport",
        *,
        identity_probe: Optional[IdentityProbe] = None,
    ) -> None:
        self._guard = guard
        self._transport = transport
        self._identity_probe = identity_probe

    def set_identity_probe(self, probe: Optional[IdentityProbe]) -> None:
        self._identity_probe = probe

    async def _check_preconditions(self, spec: CommandSpec) -> None:
        self._guard.require()
        if not spec.requires_persona:
            return
        if self._identity_probe is None:
            raise PreconditionError(f"{spec.name} requires a persona but none is configured")
        persona = await self._identity_probe()
        if persona is None:
            raise PreconditionError(f"{spec.name} requires a persona; claim one first")

    async def _call(self, spec: CommandSpec, payload: Optional[Mapping[str, Any]]) -> Any:
        request = build_request(spec, payload)
        await self._check_preconditions(spec)
        session = await self._guard.ensure_valid()
        logger.debug("dispatch {} payload={}", spec.route, request)
        return await self._transport.rpc(session, spec.route, request)

    async def invoke(
        self, command: str, payload: Optional[Mapping[str, Any]] = None
    ) -> SubmissionRecord:
        """Submit a transaction command and return its submission record.

        Raises:
            PreconditionError: If there is no session/channel or no persona
            TransportError: If the gateway is unreachable or rejects the call
            DecodeError: If the reply is not a submission record
        """
        spec = get_command(command)
        if spec.kind is not CommandKind.TRANSACTION:
            raise ValueError(f"{command} is not a transaction command; use query()")
        raw = await self._call(spec, payload)
        record = decode(command, SubmissionRecord, raw)
        logger.info("Submitted {} tx={} tick={}", command, record.tx_hash, record.tick)
        return record

    async def query(self, command: str, payload: Optional[Mapping[str, Any]] = None) -> WireModel:
        """Run a query-only command and return its decoded reply model."""
        spec = get_command(command)
        if spec.kind is CommandKind.TRANSACTION:
            raise ValueError(f"{command} is a transaction command; use invoke()")
        raw = await self._call(spec, payload)
        return decode(command, spec.reply_model, raw)

    async def query_optional(
        self, command: str, payload: Optional[Mapping[str, Any]] = None
    ) -> Optional[WireModel]:
        """Like :meth:`query`, but an empty reply yields None instead of a DecodeError."""
        spec = get_command(command)
        if spec.kind is CommandKind.TRANSACTION:
            raise ValueError(f"{command} is a transaction command; use invoke()")
        raw = await self._call(spec, payload)
        if raw is None or raw == {}:
            return None
        return decode(command, spec.reply_model, raw)

    async def current_tick(self) -> int:
        reply = await self.query("current-tick")
        return reply.current_tick  # type: ignore[attr-defined]
