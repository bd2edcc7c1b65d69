import asyncio

import pytest

from rtp_audit.core.config import IngestionSettings
from rtp_audit.ingest.ingestor import (
    BatchFailure,
    BatchSuccess,
    FailureReason,
    RoundIngestor,
    extract_round_list,
    parse_batch,
)
from rtp_audit.sim.simulator import SimulatedRoundSupplier


class ScriptedSupplier:
    """Returns (or raises) the scripted responses in order."""

    def __init__(self, *responses, delay=0.0):
        self.responses = list(responses)
        self.delay = delay
        self.requests = []

    async def fetch_batch(self, company, game_id, client_id, bet_amount, spins_requested):
        self.requests.append(spins_requested)
        if self.delay:
            await asyncio.sleep(self.delay)
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def _records(n, game_id="g1"):
    return [{"betAmount": 1.0, "payout": 0.5, "gameId": game_id, "clientId": "c1"} for _ in range(n)]


def test_extract_round_list_envelopes():
    assert extract_round_list([1, 2]) == [1, 2]
    assert extract_round_list({"data": [1]}) == [1]
    assert extract_round_list({"data": {"spins": [1, 2, 3]}}) == [1, 2, 3]
    assert extract_round_list({"results": []}) == []
    assert extract_round_list({"status": "ok"}) is None
    assert extract_round_list("nope") is None


def test_parse_batch_skips_invalid_records(log_messages):
    payload = _records(3) + [{"betAmount": -1, "payout": 0, "gameId": "g", "clientId": "c"}, "junk"]
    res = parse_batch(payload)
    assert isinstance(res, BatchSuccess)
    assert len(res.rounds) == 3
    assert res.received == 5
    assert res.skipped == 2
    assert any("Skipping invalid round record" in m for m in log_messages)


def test_parse_batch_failures():
    assert parse_batch({"unexpected": True}).reason is FailureReason.MALFORMED
    assert parse_batch([]).reason is FailureReason.EMPTY


@pytest.mark.asyncio
async def test_full_ingestion_in_batches():
    supplier = SimulatedRoundSupplier(seed=1)
    ingestor = RoundIngestor(supplier, IngestionSettings(game_id="game-slot-01"))
    result = await ingestor.fetch(250, batch_size=100)
    assert not result.was_partial
    assert len(result) == 250
    assert result.batches_ok == 3
    assert supplier.calls == 3
    assert all(r.game_id == "game-slot-01" for r in result.rounds)


@pytest.mark.asyncio
async def test_partial_ingestion_keeps_collected_rounds(log_messages):
    supplier = SimulatedRoundSupplier(seed=1, fail_after_batches=2)
    ingestor = RoundIngestor(supplier, IngestionSettings(game_id="game-slot-01"))
    result = await ingestor.fetch(500, batch_size=100)
    assert result.was_partial
    assert len(result) == 200
    assert result.failure_reason is FailureReason.NETWORK
    assert result.batches_ok == 2
    assert result.batches_failed == 1
    assert any("Partial ingestion" in m and "200 rounds" in m for m in log_messages)


@pytest.mark.asyncio
async def test_timeout_is_a_batch_failure():
    supplier = ScriptedSupplier(_records(5), delay=0.2)
    ingestor = RoundIngestor(supplier, IngestionSettings(batch_timeout_s=0.01))
    result = await ingestor.fetch(5)
    assert result.was_partial
    assert result.failure_reason is FailureReason.TIMEOUT
    assert len(result) == 0


@pytest.mark.asyncio
async def test_malformed_and_empty_responses_stop_the_run():
    ingestor = RoundIngestor(ScriptedSupplier(_records(10), {"error": "bad"}), IngestionSettings())
    result = await ingestor.fetch(30, batch_size=10)
    assert len(result) == 10
    assert result.failure_reason is FailureReason.MALFORMED

    ingestor = RoundIngestor(ScriptedSupplier([]), IngestionSettings())
    result = await ingestor.fetch(30, batch_size=10)
    assert result.failure_reason is FailureReason.EMPTY


@pytest.mark.asyncio
async def test_last_batch_is_truncated():
    supplier = ScriptedSupplier(_records(100), _records(100), _records(50))
    result = await RoundIngestor(supplier).fetch(250, batch_size=100)
    assert supplier.requests == [100, 100, 50]
    assert len(result) == 250


@pytest.mark.asyncio
async def test_skipped_records_count_toward_progress():
    bad = [{"betAmount": "x"}] * 10
    supplier = ScriptedSupplier(bad)
    result = await RoundIngestor(supplier).fetch(10, batch_size=10)
    assert not result.was_partial
    assert len(result) == 0
    assert result.skipped == 10
    assert supplier.requests == [10]


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_error():
    supplier = ScriptedSupplier(ConnectionError("reset"), _records(10))
    ingestor = RoundIngestor(supplier, IngestionSettings(max_retries=1))
    result = await ingestor.fetch(10, batch_size=10)
    assert not result.was_partial
    assert len(result) == 10
    assert len(supplier.requests) == 2


@pytest.mark.asyncio
async def test_stop_event_cancels_between_batches():
    stop = asyncio.Event()
    supplier = ScriptedSupplier(_records(10), _records(10), _records(10))
    seen = []

    def on_batch(batch):
        seen.append(len(batch))
        stop.set()

    result = await RoundIngestor(supplier).fetch(30, batch_size=10, on_batch=on_batch, stop_event=stop)
    assert result.was_partial
    assert result.failure_reason is FailureReason.CANCELLED
    assert result.batches_failed == 0
    assert seen == [10]
    assert len(result) == 10


@pytest.mark.asyncio
async def test_invalid_request_sizes():
    ingestor = RoundIngestor(ScriptedSupplier())
    with pytest.raises(ValueError):
        await ingestor.fetch(0)
    with pytest.raises(ValueError):
        await ingestor.fetch(10, batch_size=-1)
    with pytest.raises(ValueError):
        await ingestor.fetch(10, batch_size=0)
    assert ingestor.supplier.requests == []


@pytest.mark.asyncio
async def test_fetch_one_wraps_supplier_errors():
    res = await RoundIngestor(ScriptedSupplier(RuntimeError("500"))).fetch_one(5)
    assert isinstance(res, BatchFailure)
    assert res.reason is FailureReason.NETWORK
    assert "RuntimeError" in res.detail
