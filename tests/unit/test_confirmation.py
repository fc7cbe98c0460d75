import asyncio

import pytest

from helpers.fake_backend import receipt
from tamaclient.utils.confirmation import (
    ConfirmationEngine,
    ConfirmationStatus,
    filter_receipts,
)
from tamaclient.utils.errors import (
    ConfirmationCancelled,
    FetchError,
    PreconditionError,
    QueryError,
    RPCError,
    TransportError,
)
from tamaclient.utils.messages import ReceiptBatch, SubmissionRecord


class ScriptedShard:
    """Tick clock and receipt window driven by a fixed script."""

    def __init__(self, ticks, receipts=(), fetch_error=None):
        self.ticks = list(ticks)
        self.tick_reads = 0
        self.fetches = []
        self.receipts = list(receipts)
        self.fetch_error = fetch_error

    async def current_tick(self) -> int:
        self.tick_reads += 1
        value = self.ticks.pop(0) if len(self.ticks) > 1 else self.ticks[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch(self, start_tick: int) -> ReceiptBatch:
        self.fetches.append(start_tick)
        if self.fetch_error is not None:
            raise self.fetch_error
        return ReceiptBatch(start_tick=start_tick, end_tick=start_tick + 2, receipts=self.receipts)

    def engine(self, **kwargs) -> ConfirmationEngine:
        kwargs.setdefault("poll_interval", 0.0)
        kwargs.setdefault("max_poll_rounds", 5)
        return ConfirmationEngine(self.current_tick, self.fetch, **kwargs)


def _submission(tx_hash="X", tick=10) -> SubmissionRecord:
    return SubmissionRecord(tx_hash=tx_hash, tick=tick)


def test_filter_receipts_keeps_only_matching_hash_in_order():
    batch = [receipt("A", 10), receipt("B", 10), receipt("C", 11), receipt("B", 12)]
    assert [(r.tx_hash, r.tick) for r in filter_receipts(batch, "B")] == [("B", 10), ("B", 12)]
    assert filter_receipts(batch, "Z") == []


@pytest.mark.asyncio
async def test_confirm_returns_only_the_submissions_receipts():
    shard = ScriptedShard([10, 11, 12], receipts=[receipt("X", 11), receipt("Y", 11)])

    result = await shard.engine().confirm(_submission("X", 10))

    assert [r.tx_hash for r in result.receipts] == ["X"]
    assert result.status is ConfirmationStatus.CONFIRMED
    assert not result.soft_timeout
    assert result.start_tick == 10
    assert result.last_tick == 12
    assert result.poll_rounds == 2
    assert shard.fetches == [10]


@pytest.mark.asyncio
async def test_confirm_fetches_from_submission_tick_not_current_tick():
    shard = ScriptedShard([25, 26, 27], receipts=[receipt("X", 21)])

    result = await shard.engine().confirm(_submission("X", 20))

    assert shard.fetches == [20]
    assert result.receipts[0].tick == 21


@pytest.mark.asyncio
async def test_unreadable_start_tick_fails_without_fetching():
    shard = ScriptedShard([TransportError("query/game/current-tick", "gateway unreachable")])

    with pytest.raises(QueryError):
        await shard.engine().confirm(_submission())

    assert shard.fetches == []


@pytest.mark.asyncio
async def test_precondition_failure_is_not_wrapped():
    shard = ScriptedShard([PreconditionError("Session or channel not found")])

    with pytest.raises(PreconditionError):
        await shard.engine().confirm(_submission())

    assert shard.fetches == []


@pytest.mark.asyncio
async def test_stalled_clock_is_a_soft_timeout_with_one_fetch():
    shard = ScriptedShard([10], receipts=[receipt("X", 10)])

    result = await shard.engine(max_poll_rounds=3).confirm(_submission("X", 10))

    assert result.soft_timeout
    assert result.poll_rounds == 3
    assert shard.tick_reads == 4
    assert shard.fetches == [10]
    assert [r.tx_hash for r in result.receipts] == ["X"]


@pytest.mark.asyncio
async def test_no_matching_receipt_is_an_empty_result():
    shard = ScriptedShard([10, 12], receipts=[receipt("A", 11)])

    result = await shard.engine().confirm(_submission("X", 10))

    assert result.receipts == []
    assert result.status is ConfirmationStatus.EMPTY
    assert result.errors == []


@pytest.mark.asyncio
async def test_failed_receipts_are_returned_with_their_errors():
    shard = ScriptedShard([10, 12], receipts=[receipt("X", 11, result={}, errors=["no sponge"])])

    result = await shard.engine().confirm(_submission("X", 10))

    assert result.status is ConfirmationStatus.CONFIRMED
    assert result.errors == ["no sponge"]
    assert not result.receipts[0].ok


@pytest.mark.asyncio
async def test_confirm_is_idempotent():
    shard = ScriptedShard([10, 12], receipts=[receipt("X", 11), receipt("Y", 11)])
    engine = shard.engine()

    first = await engine.confirm(_submission("X", 10))
    second = await engine.confirm(_submission("X", 10))

    assert first.receipts == second.receipts
    assert shard.fetches == [10, 10]


@pytest.mark.asyncio
async def test_tick_failure_inside_loop_consumes_a_round():
    shard = ScriptedShard(
        [10, RPCError("query/game/current-tick", 503, "busy"), 11, 12],
        receipts=[receipt("X", 11)],
    )

    result = await shard.engine().confirm(_submission("X", 10))

    assert not result.soft_timeout
    assert result.poll_rounds == 3
    assert [r.tx_hash for r in result.receipts] == ["X"]


@pytest.mark.asyncio
async def test_fetch_failure_surfaces_as_fetch_error():
    shard = ScriptedShard([10, 12], fetch_error=FetchError(10, "connection refused"))

    with pytest.raises(FetchError) as exc:
        await shard.engine().confirm(_submission("X", 10))

    assert exc.value.start_tick == 10


@pytest.mark.asyncio
async def test_zero_delta_skips_polling():
    shard = ScriptedShard([10], receipts=[receipt("X", 10)])

    result = await shard.engine().confirm(_submission("X", 10), required_tick_delta=0)

    assert shard.tick_reads == 1
    assert result.poll_rounds == 0
    assert not result.soft_timeout


@pytest.mark.asyncio
async def test_wait_ticks_rejects_negative_inputs():
    shard = ScriptedShard([10])
    engine = shard.engine()

    with pytest.raises(ValueError):
        await engine.wait_ticks(-1)
    with pytest.raises(ValueError):
        await engine.wait_ticks(2, max_poll_rounds=-1)
    assert shard.tick_reads == 0


@pytest.mark.asyncio
async def test_wait_ticks_reports_progress():
    shard = ScriptedShard([4, 5, 5, 7])

    wait = await shard.engine().wait_ticks(3)

    assert wait.reached
    assert wait.elapsed == 3
    assert wait.rounds == 3


@pytest.mark.asyncio
async def test_preset_cancel_event_aborts_before_polling():
    shard = ScriptedShard([10], receipts=[receipt("X", 10)])
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(ConfirmationCancelled):
        await shard.engine().confirm(_submission("X", 10), cancel_event=cancel)

    assert shard.fetches == []


@pytest.mark.asyncio
async def test_cancel_event_interrupts_pause():
    shard = ScriptedShard([10])
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, cancel.set)

    with pytest.raises(ConfirmationCancelled):
        await shard.engine(poll_interval=5.0).confirm(_submission("X", 10), cancel_event=cancel)

    assert shard.tick_reads == 1
    assert shard.fetches == []


@pytest.mark.asyncio
async def test_confirm_many_keeps_input_order():
    shard = ScriptedShard([10, 12], receipts=[receipt("A", 10), receipt("B", 11)])

    results = await shard.engine().confirm_many([_submission("B", 10), _submission("A", 10)])

    assert [r.submission.tx_hash for r in results] == ["B", "A"]
    assert [r.receipts[0].tx_hash for r in results] == ["B", "A"]


class _SplitShard:
    """Receipt window that fails for one start tick and answers late for another."""

    def __init__(self, failure: Exception):
        self.failure = failure
        self.completed = []

    async def current_tick(self) -> int:
        return 30

    async def fetch(self, start_tick: int) -> ReceiptBatch:
        if start_tick == 10:
            raise self.failure
        await asyncio.sleep(0.01)
        self.completed.append(start_tick)
        return ReceiptBatch(start_tick=start_tick, end_tick=start_tick, receipts=[receipt("B", 20)])


@pytest.mark.asyncio
async def test_confirm_many_keeps_siblings_of_a_failed_fetch():
    shard = _SplitShard(FetchError(10, "connection refused"))
    engine = ConfirmationEngine(shard.current_tick, shard.fetch, poll_interval=0.0)

    results = await engine.confirm_many(
        [_submission("A", 10), _submission("B", 20)], required_tick_delta=0
    )

    assert isinstance(results[0], FetchError)
    assert results[0].start_tick == 10
    assert [r.tx_hash for r in results[1].receipts] == ["B"]
    assert shard.completed == [20]


@pytest.mark.asyncio
async def test_confirm_many_reraises_unexpected_errors_after_siblings_finish():
    shard = _SplitShard(RuntimeError("shard client bug"))
    engine = ConfirmationEngine(shard.current_tick, shard.fetch, poll_interval=0.0)

    with pytest.raises(RuntimeError):
        await engine.confirm_many(
            [_submission("A", 10), _submission("B", 20)], required_tick_delta=0
        )

    assert shard.completed == [20]
