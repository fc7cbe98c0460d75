"""Error taxonomy for the tamaclient library."""

from typing import Optional


class TamaClientError(RuntimeError):
    """Base class for every error raised by tamaclient."""


class PreconditionError(TamaClientError):
    """Raised when a call is attempted without a session, channel or persona."""


class AuthError(TamaClientError):
    """Raised when authentication with the gateway fails."""


class RefreshError(AuthError):
    """Raised when an expiring session can no longer be refreshed."""


class DispatchError(TamaClientError):
    """Raised when a single command round trip fails."""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"{command}: {message}")
        self.command = command


class TransportError(DispatchError):
    """Raised when the gateway could not be reached or answered garbage."""


class RPCError(TransportError):
    """Raised when the gateway responds with an RPC error frame."""

    def __init__(
        self, command: str, status: int, detail: str, code: Optional[str] = None
    ) -> None:
        super().__init__(command, f"failed with status {status}: {detail}")
        self.status = status
        self.detail = detail
        self.code = code


class DecodeError(DispatchError):
    """Raised when a reply does not match the command's message schema."""


class ClaimError(TamaClientError):
    """Raised when a persona claim is rejected or conflicts with another claim."""

    def __init__(self, persona_tag: str, detail: str) -> None:
        super().__init__(f"claiming persona {persona_tag!r} failed: {detail}")
        self.persona_tag = persona_tag
        self.detail = detail


class QueryError(TamaClientError):
    """Raised when the tick clock cannot be read during a confirmation."""


class FetchError(TamaClientError):
    """Raised when the receipts endpoint cannot be reached or decoded."""

    def __init__(self, start_tick: int, detail: str) -> None:
        super().__init__(f"fetching receipts from tick {start_tick} failed: {detail}")
        self.start_tick = start_tick
        self.detail = detail


class ConfirmationCancelled(TamaClientError):
    """Raised when a caller aborts a confirmation between poll rounds."""
