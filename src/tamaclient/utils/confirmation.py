"""Transaction confirmation: wait for tick progress, then fetch and correlate receipts.

A transaction submitted at tick T cannot be reflected before tick T, so the
engine first waits for the backend clock to advance, then reads the receipt
window starting at T and keeps only the receipts carrying the submission's
hash. Waiting is bounded; running out of poll rounds is a soft timeout and
the fetch still happens, since receipts may exist even when the clock query
is flaky.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Union

from loguru import logger

from tamaclient.utils.errors import (
    ConfirmationCancelled,
    DispatchError,
    QueryError,
    TamaClientError,
)
from tamaclient.utils.messages import Receipt, ReceiptBatch, SubmissionRecord

TickSource = Callable[[], Awaitable[int]]
ReceiptSource = Callable[[int], Awaitable[ReceiptBatch]]

DEFAULT_REQUIRED_TICK_DELTA = 2
DEFAULT_MAX_POLL_ROUNDS = 5
DEFAULT_POLL_INTERVAL = 1.0


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    EMPTY = "empty"


@dataclass(frozen=True)
class TickWait:
    """Outcome of a bounded wait for tick progress."""

    start_tick: int
    last_tick: int
    rounds: int
    reached: bool

    @property
    def elapsed(self) -> int:
        return self.last_tick - self.start_tick


@dataclass(frozen=True)
class ConfirmationResult:
    submission: SubmissionRecord
    receipts: List[Receipt] = field(default_factory=list)
    soft_timeout: bool = False
    start_tick: Optional[int] = None
    last_tick: Optional[int] = None
    poll_rounds: int = 0

    @property
    def status(self) -> ConfirmationStatus:
        return ConfirmationStatus.CONFIRMED if self.receipts else ConfirmationStatus.EMPTY

    @property
    def errors(self) -> List[str]:
        return [error for receipt in self.receipts for error in receipt.errors]


ConfirmationOutcome = Union[ConfirmationResult, TamaClientError]


def filter_receipts(receipts: Iterable[Receipt], tx_hash: str) -> List[Receipt]:
    """Return every receipt for ``tx_hash``, preserving batch order."""
    return [receipt for receipt in receipts if receipt.tx_hash == tx_hash]


class ConfirmationEngine:
    """Correlates submission records with their eventual receipts.

    Each :meth:`confirm` call is an independent sequential coroutine; many
    may run concurrently. Nothing here holds locks or shared state.
    """

    def __init__(
        self,
        tick_source: TickSource,
        receipt_source: ReceiptSource,
        *,
        required_tick_delta: int = DEFAULT_REQUIRED_TICK_DELTA,
        max_poll_rounds: int = DEFAULT_MAX_POLL_ROUNDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._tick_source = tick_source
        self._receipt_source = receipt_source
        self.required_tick_delta = required_tick_delta
        self.max_poll_rounds = max_poll_rounds
        self.poll_interval = poll_interval

    async def _read_tick(self) -> int:
        try:
            return await self._tick_source()
        except DispatchError as exc:
            raise QueryError(f"current tick unavailable: {exc}") from exc

    async def _pause(self, interval: float, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await asyncio.sleep(interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return
        raise ConfirmationCancelled("confirmation cancelled while waiting for ticks")

    async def wait_ticks(
        self,
        delta: int,
        *,
        max_poll_rounds: Optional[int] = None,
        poll_interval: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TickWait:
        """Wait until the backend clock has advanced ``delta`` ticks.

        Raises:
            QueryError: If the initial tick cannot be read
            ConfirmationCancelled: If ``cancel_event`` is set between rounds
        """
        rounds_budget = self.max_poll_rounds if max_poll_rounds is None else max_poll_rounds
        interval = self.poll_interval if poll_interval is None else poll_interval
        if delta < 0 or rounds_budget < 0 or interval < 0:
            raise ValueError("delta, max_poll_rounds and poll_interval must be non-negative")

        start = await self._read_tick()
        last = start
        if delta == 0:
            return TickWait(start, last, 0, True)

        rounds = 0
        while rounds < rounds_budget:
            if cancel_event is not None and cancel_event.is_set():
                raise ConfirmationCancelled("confirmation cancelled before poll round")
            rounds += 1
            await self._pause(interval, cancel_event)
            try:
                latest = await self._read_tick()
            except QueryError as exc:
                logger.warning("Tick poll round {} failed: {}", rounds, exc)
                continue
            last = max(last, latest)
            if latest - start >= delta:
                return TickWait(start, last, rounds, True)

        return TickWait(start, last, rounds, False)

    async def collect(self, submission: SubmissionRecord) -> List[Receipt]:
        """Fetch the receipt window at the submission tick and keep its receipts.

        Raises:
            FetchError: If the receipts endpoint is unreachable
        """
        batch = await self._receipt_source(submission.tick)
        return filter_receipts(batch.receipts, submission.tx_hash)

    async def confirm(
        self,
        submission: SubmissionRecord,
        *,
        required_tick_delta: Optional[int] = None,
        max_poll_rounds: Optional[int] = None,
        poll_interval: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConfirmationResult:
        """Wait for tick progress, then return the receipts for ``submission``.

        An empty result is not an error; it means no receipt was observed in
        the fetched window. Calling again with the same record is safe.

        Raises:
            QueryError: If the tick clock cannot be read at all
            FetchError: If the receipt batch cannot be fetched
            ConfirmationCancelled: If ``cancel_event`` is set between rounds
        """
        delta = self.required_tick_delta if required_tick_delta is None else required_tick_delta
        logger.debug("Waiting {} ticks for tx {}", delta, submission.tx_hash)
        wait = await self.wait_ticks(
            delta,
            max_poll_rounds=max_poll_rounds,
            poll_interval=poll_interval,
            cancel_event=cancel_event,
        )
        if not wait.reached:
            logger.warning(
                "Soft timeout for tx {}: {} of {} ticks after {} rounds, fetching anyway",
                submission.tx_hash,
                wait.elapsed,
                delta,
                wait.rounds,
            )

        receipts = await self.collect(submission)
        logger.info(
            "tx {} from tick {}: {} receipt(s)", submission.tx_hash, submission.tick, len(receipts)
        )
        return ConfirmationResult(
            submission=submission,
            receipts=receipts,
            soft_timeout=not wait.reached,
            start_tick=wait.start_tick,
            last_tick=wait.last_tick,
            poll_rounds=wait.rounds,
        )

    async def confirm_many(
        self, submissions: Iterable[SubmissionRecord], **kwargs
    ) -> List[ConfirmationOutcome]:
        """Confirm independent submissions concurrently, in input order.

        Every confirmation runs to completion. A confirmation that fails with
        a client error yields that exception in its slot instead of a result;
        any other exception is re-raised once all confirmations have finished.
        """
        records = list(submissions)
        outcomes = await asyncio.gather(
            *(self.confirm(s, **kwargs) for s in records), return_exceptions=True
        )
        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, TamaClientError):
                logger.warning("Confirmation of tx {} failed: {}", record.tx_hash, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)
