"""Batched, partial-failure-tolerant round ingestion.

`RoundIngestor.fetch` requests `min(batch_size, remaining)` rounds at a time
from a `RoundSupplier`. Each request is folded into a typed result:

- BatchSuccess: rounds parsed from the response (invalid records skipped)
- BatchFailure: network error, timeout, malformed/empty response, or
  cancellation

The first failure (after optional bounded retries) stops the loop. Rounds
collected before it are returned as a normal, partial `IngestResult`; no
exception reaches the caller.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from loguru import logger
from pydantic import ValidationError

from rtp_audit.core.config import IngestionSettings
from rtp_audit.core.custom_types import GameRound

# keys under which gaming APIs wrap the round list
_ENVELOPE_KEYS = ('data', 'rounds', 'spins', 'results')


class FailureReason(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    EMPTY = "empty"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BatchSuccess:
    rounds: Tuple[GameRound, ...]
    # records returned by the supplier, valid or not
    received: int
    skipped: int = 0


@dataclass(frozen=True)
class BatchFailure:
    reason: FailureReason
    detail: str = ""


BatchResult = Union[BatchSuccess, BatchFailure]


@dataclass(frozen=True)
class IngestResult:
    rounds: Tuple[GameRound, ...]
    was_partial: bool
    failure_reason: Optional[FailureReason] = None
    failure_detail: Optional[str] = None
    batches_ok: int = 0
    batches_failed: int = 0
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.rounds)


class RoundSupplier(Protocol):
    async def fetch_batch(self, company: str, game_id: Optional[str], client_id: str,
                          bet_amount: float, spins_requested: int) -> Any: ...


def extract_round_list(payload: Any) -> Optional[List[Any]]:
    """Find the round list in a supplier response; None when there is none."""
    if isinstance(payload, (list, tuple)):
        return list(payload)
    if isinstance(payload, Mapping):
        for key in _ENVELOPE_KEYS:
            inner = payload.get(key)
            if isinstance(inner, (list, tuple)):
                return list(inner)
            if isinstance(inner, Mapping):
                nested = extract_round_list(inner)
                if nested is not None:
                    return nested
    return None


def parse_batch(payload: Any) -> BatchResult:
    records = extract_round_list(payload)
    if records is None:
        return BatchFailure(FailureReason.MALFORMED, f"response has no round list ({type(payload).__name__})")
    if not records:
        return BatchFailure(FailureReason.EMPTY, "supplier returned no rounds")
    rounds: List[GameRound] = []
    skipped = 0
    for raw in records:
        try:
            rounds.append(GameRound.from_raw(raw))
        except (ValidationError, TypeError) as e:
            skipped += 1
            logger.warning(f"Skipping invalid round record {raw!r}: {e}")
    return BatchSuccess(tuple(rounds), received=len(records), skipped=skipped)


class RoundIngestor:
    """Pulls rounds from one supplier with the identity fields in `settings`."""

    def __init__(self, supplier: RoundSupplier, settings: Optional[IngestionSettings] = None):
        self.supplier = supplier
        self.settings = settings or IngestionSettings()
        self._cancelled = False

    def cancel(self) -> None:
        """Stop before the next batch; collected rounds are kept."""
        self._cancelled = True

    async def fetch_one(self, spins_requested: int) -> BatchResult:
        cfg = self.settings
        try:
            payload = await asyncio.wait_for(
                self.supplier.fetch_batch(cfg.company, cfg.game_id, cfg.client_id, cfg.bet_amount, spins_requested),
                timeout=cfg.batch_timeout_s,
            )
        except asyncio.TimeoutError:
            return BatchFailure(FailureReason.TIMEOUT, f"no response within {cfg.batch_timeout_s}s")
        except Exception as e:
            return BatchFailure(FailureReason.NETWORK, f"{type(e).__name__}: {e}")
        return parse_batch(payload)

    async def _fetch_with_retry(self, spins_requested: int) -> BatchResult:
        attempts = self.settings.max_retries + 1
        result: BatchResult = BatchFailure(FailureReason.NETWORK, "not attempted")
        for attempt in range(1, attempts + 1):
            result = await self.fetch_one(spins_requested)
            if isinstance(result, BatchSuccess):
                return result
            if attempt < attempts:
                logger.warning(f"Batch attempt {attempt}/{attempts} failed ({result.reason.value}: {result.detail}), retrying")
                if self.settings.retry_backoff_ms:
                    await asyncio.sleep(self.settings.retry_backoff_ms / 1000.0)
        return result

    async def fetch(
        self,
        total_requested: int,
        batch_size: Optional[int] = None,
        *,
        on_batch: Optional[Callable[[Sequence[GameRound]], None]] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> IngestResult:
        """Collect up to `total_requested` rounds in batches of `batch_size`.

        Args:
            total_requested: number of rounds to request overall.
            batch_size: rounds per request; defaults to the configured size.
            on_batch: called with every successful batch as it arrives.
            stop_event: when set, the run stops before the next batch.

        Returns:
            IngestResult with `was_partial=True` and the failure reason when
            the run stopped early.
        """
        if total_requested <= 0:
            raise ValueError("total_requested must be positive")
        size = self.settings.batch_size if batch_size is None else batch_size
        if size <= 0:
            raise ValueError("batch_size must be positive")

        self._cancelled = False
        collected: List[GameRound] = []
        accounted = 0
        ok = 0
        skipped = 0
        failure: Optional[BatchFailure] = None

        while accounted < total_requested:
            if self._cancelled or (stop_event is not None and stop_event.is_set()):
                failure = BatchFailure(FailureReason.CANCELLED, "ingestion cancelled between batches")
                break
            want = min(size, total_requested - accounted)
            result = await self._fetch_with_retry(want)
            if isinstance(result, BatchFailure):
                failure = result
                break
            ok += 1
            accounted += result.received
            skipped += result.skipped
            collected.extend(result.rounds)
            logger.debug(f"Batch {ok}: +{len(result.rounds)} rounds ({len(collected)}/{total_requested})")
            if on_batch is not None and result.rounds:
                on_batch(result.rounds)

        if failure is not None:
            logger.warning(
                f"Partial ingestion for game={self.settings.game_id}: stopped at {len(collected)} rounds "
                f"after {ok} batch(es), reason={failure.reason.value} ({failure.detail})"
            )
            return IngestResult(
                rounds=tuple(collected),
                was_partial=True,
                failure_reason=failure.reason,
                failure_detail=failure.detail,
                batches_ok=ok,
                batches_failed=0 if failure.reason is FailureReason.CANCELLED else 1,
                skipped=skipped,
            )
        logger.info(f"Ingested {len(collected)} rounds in {ok} batch(es) for game={self.settings.game_id}")
        return IngestResult(rounds=tuple(collected), was_partial=False, batches_ok=ok, skipped=skipped)


__all__ = [
    'FailureReason',
    'BatchSuccess',
    'BatchFailure',
    'BatchResult',
    'IngestResult',
    'RoundSupplier',
    'RoundIngestor',
    'extract_round_list',
    'parse_batch',
]
