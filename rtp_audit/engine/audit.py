"""
RTP audit engine.

Wires the components together along the audit data flow:

    ingestor -> add_round (aggregator + streak tracker, one atomic step)
             -> periodic snapshot (deviation validator)
             -> anomaly log
             -> generate_report / publish_report

State machine per run: UNINITIALIZED -> ACCUMULATING on the first accepted
round, ACCUMULATING on every further round, back to UNINITIALIZED on
`reset()`. Reads (`get_snapshot`, `generate_report`) never change state.
"""
from __future__ import annotations

import asyncio
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger
from pydantic import ValidationError

from rtp_audit.anomaly.log import AnomalyLog
from rtp_audit.core.config import AuditSettings, RTPSettings
from rtp_audit.core.custom_types import (
    AnomalyKind,
    AnomalyRecord,
    EngineState,
    GameRound,
    OVERALL_SCOPE,
    RTPSnapshot,
    ScopeId,
    ScopeType,
    ValidationResult,
)
from rtp_audit.ingest.ingestor import IngestResult, RoundIngestor
from rtp_audit.report.generator import Report, ReportGenerator
from rtp_audit.report.sinks import ReportSink
from rtp_audit.stats.aggregator import ScopeStatistics, StreamingAggregator
from rtp_audit.stats.streaks import EndedStreak, StreakTracker
from rtp_audit.validation.deviation import DeviationValidator


class RTPAuditEngine:
    def __init__(self, settings: Union[RTPSettings, AuditSettings, None] = None,
                 anomaly_log: Optional[AnomalyLog] = None, *, auto_snapshot: bool = False):
        """
        Args:
            settings: RTP thresholds (or the full AuditSettings).
            anomaly_log: shared log; a private one is created when omitted.
            auto_snapshot: snapshot every `snapshot_interval` accepted rounds
                from `add_round` itself.
        """
        if isinstance(settings, AuditSettings):
            settings = settings.rtp
        self.settings: RTPSettings = settings or RTPSettings()
        self.aggregator = StreamingAggregator()
        self.anomaly_log = anomaly_log or AnomalyLog()
        self.streaks = StreakTracker(self.aggregator, self.settings.max_losing_streak,
                                     self.settings.flag_game_streaks)
        self.validator = DeviationValidator(self.settings)
        self.history: List[RTPSnapshot] = []
        self.reporter = ReportGenerator(self.aggregator, self.anomaly_log, self.settings, self.history)
        self.auto_snapshot = auto_snapshot
        self.skipped_rounds = 0
        self._state = EngineState.UNINITIALIZED

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def total_rounds(self) -> int:
        return self.aggregator.total_rounds

    # ingestion ---------------------------------------------------------
    def add_round(self, rnd: Union[GameRound, Mapping[str, Any]]) -> bool:
        """Fold one round into every scope; False if the record was skipped."""
        if not isinstance(rnd, GameRound):
            try:
                rnd = GameRound.from_raw(rnd)
            except (ValidationError, TypeError) as e:
                with self.aggregator.lock:
                    self.skipped_rounds += 1
                logger.warning(f"Invalid or incomplete game round skipped: {e}")
                return False
        with self.aggregator.lock:
            self.aggregator.add_round(rnd)
            ended = self.streaks.update(rnd)
            self._state = EngineState.ACCUMULATING
            count = self.aggregator.total_rounds
            for streak in ended:
                self._flag_streak(streak, count)
        if self.auto_snapshot and count % self.settings.snapshot_interval == 0:
            self.snapshot()
        return True

    def add_rounds(self, rounds: Iterable[Union[GameRound, Mapping[str, Any]]]) -> int:
        return sum(1 for r in rounds if self.add_round(r))

    def _flag_streak(self, streak: EndedStreak, count: int) -> None:
        label = "Client" if streak.scope_type is ScopeType.CLIENT else "Game"
        self.anomaly_log.record(AnomalyRecord(
            kind=AnomalyKind.LOSING_STREAK,
            scope_id=streak.scope_id,
            scope_type=streak.scope_type,
            message=(f"Losing Streak Anomaly for {label} '{streak.scope_id}': {streak.length} consecutive losses, "
                     f"at or above max allowed ({self.streaks.max_losing_streak})"),
            round_count_at_detection=count,
            value=float(streak.length),
            threshold=float(self.streaks.max_losing_streak),
        ))

    # validation --------------------------------------------------------
    def snapshot(self) -> Optional[RTPSnapshot]:
        """Record the overall RTP and validate every eligible scope.

        No-op (returns None) until `min_rounds_for_validation` rounds were seen.
        """
        with self.aggregator.lock:
            count = self.aggregator.total_rounds
            if count < self.settings.min_rounds_for_validation:
                return None
            overall = self.aggregator.get_snapshot(scope_type=ScopeType.OVERALL)
            res = self.validator.check(overall, self.anomaly_log, count)
            snap = RTPSnapshot(
                round_count=count,
                rtp=res.actual_rtp,
                deviation=res.deviation,
                is_within_tolerance=res.is_valid,
            )
            self.history.append(snap)
            for scope_type in (ScopeType.GAME, ScopeType.CLIENT):
                for st in self.aggregator.snapshots(scope_type):
                    self.validator.check(st, self.anomaly_log, count)
        logger.info(f"Round {count}: current RTP = {snap.rtp:.2f}% (target {self.settings.overall_target_rtp:.2f}%)")
        return snap

    def validate_scope(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> Optional[ValidationResult]:
        """Validate a scope without escalating anything."""
        st = self.aggregator.get_snapshot(scope_id, scope_type)
        return self.validator.validate_scope(st) if st is not None else None

    # reads -------------------------------------------------------------
    def get_snapshot(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> Optional[ScopeStatistics]:
        return self.aggregator.get_snapshot(scope_id, scope_type)

    def cumulative_rtp(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> float:
        return self.aggregator.cumulative_rtp(scope_id, scope_type)

    def mean_round_rtp(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> float:
        return self.aggregator.mean_round_rtp(scope_id, scope_type)

    def generate_report(self) -> Report:
        return self.reporter.generate()

    def publish_report(self, sink: ReportSink) -> Report:
        report = self.generate_report()
        sink.emit(report)
        return report

    def clear_scope(self, scope_type: ScopeType, scope_id: ScopeId) -> bool:
        """Forget one game or client scope (e.g. a game withdrawn mid-audit)."""
        return self.aggregator.clear_scope(scope_type, scope_id)

    def reset(self) -> None:
        with self.aggregator.lock:
            self.aggregator.reset()
            self.anomaly_log.clear()
            self.history.clear()
            self.skipped_rounds = 0
            self._state = EngineState.UNINITIALIZED

    # runs --------------------------------------------------------------
    def _commit_batch(self, batch: Sequence[GameRound]) -> None:
        interval = self.settings.snapshot_interval
        for rnd in batch:
            if self.add_round(rnd) and not self.auto_snapshot and self.total_rounds % interval == 0:
                self.snapshot()

    def _final_snapshot(self) -> None:
        if not self.history or self.history[-1].round_count != self.total_rounds:
            self.snapshot()

    async def run(self, ingestor: RoundIngestor, total_rounds: int, batch_size: Optional[int] = None,
                  stop_event: Optional[asyncio.Event] = None) -> Tuple[Report, IngestResult]:
        """Stream `total_rounds` from one ingestor into the engine and report.

        Rounds are committed batch by batch, so a failed or cancelled run keeps
        everything ingested before it stopped.
        """
        logger.info(f"Starting RTP audit run for {total_rounds} rounds (game={ingestor.settings.game_id})")
        result = await ingestor.fetch(total_rounds, batch_size, on_batch=self._commit_batch, stop_event=stop_event)
        self._final_snapshot()
        return self.generate_report(), result

    async def run_concurrently(self, ingestors: Sequence[RoundIngestor], rounds_per_ingestor: int,
                               batch_size: Optional[int] = None) -> Tuple[Report, List[IngestResult]]:
        """Run several ingestors (e.g. one per game) in parallel into this engine."""
        results = await asyncio.gather(*[
            ing.fetch(rounds_per_ingestor, batch_size, on_batch=self._commit_batch) for ing in ingestors
        ])
        self._final_snapshot()
        partial = sum(1 for r in results if r.was_partial)
        if partial:
            logger.warning(f"{partial}/{len(results)} ingestion run(s) ended early")
        return self.generate_report(), list(results)


__all__ = ['RTPAuditEngine']
