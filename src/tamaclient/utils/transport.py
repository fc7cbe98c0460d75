"""Wire transport for the Nakama gateway and the Cardinal receipts endpoint."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Mapping, Optional, Protocol
from urllib.parse import urlencode

import httpx
import websockets
from loguru import logger
from pydantic import ValidationError

from tamaclient.utils.config import ClientConfig
from tamaclient.utils.errors import (
    AuthError,
    DecodeError,
    FetchError,
    RefreshError,
    RPCError,
    TransportError,
)
from tamaclient.utils.messages import ReceiptBatch
from tamaclient.utils.session import Session


RECEIPTS_PATH = "/query/receipts/list"


class GameTransport(Protocol):
    """Capabilities the client core consumes from the network layer."""

    @property
    def channel_open(self) -> bool: ...

    async def authenticate_email(
        self, email: str, password: str, *, create: bool = True
    ) -> Session: ...

    async def refresh_session(self, session: Session) -> Session: ...

    async def rpc(self, session: Session, route: str, payload: Mapping[str, Any]) -> Any: ...

    async def fetch_receipt_batch(self, start_tick: int) -> ReceiptBatch: ...

    async def open_channel(self, session: Session) -> None: ...

    async def close_channel(self) -> None: ...


def _error_detail(response: httpx.Response) -> tuple[str, Optional[str]]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase or "Unknown error", None
    if not isinstance(body, Mapping):
        return str(body), None
    detail = body.get("message") or body.get("error") or response.reason_phrase or "Unknown error"
    code = body.get("code")
    return str(detail), (str(code) if code is not None else None)


class NakamaTransport:
    """HTTP + websocket transport for a Nakama gateway fronting a Cardinal shard."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._http = http
        self._ws = None
        self._ws_reader_task: Optional[asyncio.Task] = None

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.timeout)
        return self._http

    @property
    def channel_open(self) -> bool:
        task = self._ws_reader_task
        return self._ws is not None and task is not None and not task.done()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _session_from_response(self, response: httpx.Response, error_cls: type) -> Session:
        if response.is_error:
            detail, _ = _error_detail(response)
            raise error_cls(f"gateway returned {response.status_code}: {detail}")
        try:
            data = response.json()
        except ValueError:
            raise error_cls("gateway returned a non-JSON session") from None
        token = data.get("token") if isinstance(data, Mapping) else None
        if not token:
            raise error_cls("gateway response did not include a session token")
        try:
            return Session.from_tokens(
                token,
                data.get("refresh_token") or "",
                created=bool(data.get("created", False)),
            )
        except ValueError as exc:
            raise error_cls(str(exc)) from exc

    async def authenticate_email(
        self, email: str, password: str, *, create: bool = True
    ) -> Session:
        http = self._ensure_http_client()
        try:
            response = await http.post(
                f"{self.config.gateway_url}/v2/account/authenticate/email",
                params={"create": "true" if create else "false"},
                auth=(self.config.server_key, ""),
                json={"email": email, "password": password},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"gateway unreachable: {exc}") from exc
        return self._session_from_response(response, AuthError)

    async def refresh_session(self, session: Session) -> Session:
        http = self._ensure_http_client()
        try:
            response = await http.post(
                f"{self.config.gateway_url}/v2/account/session/refresh",
                auth=(self.config.server_key, ""),
                json={"token": session.refresh_token},
            )
        except httpx.HTTPError as exc:
            raise RefreshError(f"gateway unreachable: {exc}") from exc
        return self._session_from_response(response, RefreshError)

    async def account(self, session: Session) -> Dict[str, Any]:
        """Return the account record bound to ``session``."""
        http = self._ensure_http_client()
        try:
            response = await http.get(
                f"{self.config.gateway_url}/v2/account",
                headers={"Authorization": f"Bearer {session.token}"},
            )
        except httpx.HTTPError as exc:
            raise TransportError("account", str(exc)) from exc
        if response.is_error:
            detail, code = _error_detail(response)
            raise RPCError("account", response.status_code, detail, code)
        try:
            return response.json()
        except ValueError:
            raise TransportError("account", "non-JSON response") from None

    # ------------------------------------------------------------------
    # RPC
    # ------------------------------------------------------------------

    async def rpc(self, session: Session, route: str, payload: Mapping[str, Any]) -> Any:
        """Invoke a gateway RPC and return its decoded JSON payload.

        The gateway expects the payload as a JSON-encoded string and answers
        with ``{"id": ..., "payload": "<json string>"}``.
        """
        http = self._ensure_http_client()
        try:
            response = await http.post(
                f"{self.config.gateway_url}/v2/rpc/{route}",
                headers={
                    "Authorization": f"Bearer {session.token}",
                    "Content-Type": "application/json",
                },
                content=json.dumps(json.dumps(dict(payload))),
            )
        except httpx.HTTPError as exc:
            raise TransportError(route, f"gateway unreachable: {exc}") from exc

        if response.is_error:
            detail, code = _error_detail(response)
            raise RPCError(route, response.status_code, detail, code)

        try:
            envelope = response.json()
        except ValueError:
            raise TransportError(route, "gateway returned a non-JSON body") from None

        logger.debug("rpc {} -> {}", route, envelope)
        if not isinstance(envelope, Mapping):
            raise DecodeError(route, "RPC envelope is not an object")
        raw = envelope.get("payload")
        if raw is None or raw == "":
            return None
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise DecodeError(route, f"RPC payload is not JSON: {exc}") from exc

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    async def fetch_receipt_batch(self, start_tick: int) -> ReceiptBatch:
        http = self._ensure_http_client()
        try:
            response = await http.post(
                f"{self.config.cardinal_url}{RECEIPTS_PATH}",
                json={"startTick": start_tick},
            )
        except httpx.HTTPError as exc:
            raise FetchError(start_tick, str(exc)) from exc
        if response.is_error:
            detail, _ = _error_detail(response)
            raise FetchError(start_tick, f"status {response.status_code}: {detail}")
        try:
            batch = ReceiptBatch.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise FetchError(start_tick, f"malformed receipt batch: {exc}") from exc
        logger.debug(
            "receipts {}..{}: {} entries", batch.start_tick, batch.end_tick, len(batch.receipts)
        )
        return batch

    # ------------------------------------------------------------------
    # Realtime channel
    # ------------------------------------------------------------------

    async def open_channel(self, session: Session) -> None:
        if self.channel_open:
            return
        # A reader that ended on disconnect leaves its socket for us to close.
        await self.close_channel()
        query = urlencode({"lang": "en", "status": "true", "token": session.token})
        try:
            self._ws = await websockets.connect(f"{self.config.socket_url}?{query}")
        except (OSError, websockets.WebSocketException) as exc:
            raise TransportError("socket", f"could not open channel: {exc}") from exc
        self._ws_reader_task = asyncio.create_task(self._ws_reader(self._ws))
        logger.info("Socket channel opened for {}", session.user_id)

    @staticmethod
    def _handle_frame(msg: Mapping[str, Any]) -> None:
        if "notifications" in msg:
            batch = msg["notifications"]
            notes = batch.get("notifications") if isinstance(batch, Mapping) else None
            if not isinstance(notes, list):
                logger.warning("Malformed notifications frame: {}", batch)
                return
            for note in notes:
                if isinstance(note, Mapping):
                    logger.info("Notification {} received: {}", note.get("id"), note.get("subject"))
        elif "channel_message" in msg:
            message = msg["channel_message"]
            channel = message.get("channel_id") if isinstance(message, Mapping) else None
            logger.info("Message received from channel {}", channel)
        elif "stream_data" in msg:
            logger.info("Received stream {}", msg["stream_data"])
        elif "error" in msg:
            logger.warning("Socket error {}", msg["error"])

    async def _ws_reader(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(msg, Mapping):
                    self._handle_frame(msg)
        except websockets.WebSocketException as exc:
            logger.info("Disconnected: {}", exc)

    async def close_channel(self) -> None:
        task, self._ws_reader_task = self._ws_reader_task, None
        ws, self._ws = self._ws, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        finally:
            if ws is not None:
                await ws.close()

    async def aclose(self) -> None:
        try:
            await self.close_channel()
        finally:
            if self._http is not None:
                http, self._http = self._http, None
                await http.aclose()
