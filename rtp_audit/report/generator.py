"""Report generation.

A Report is a point-in-time, read-only projection of the aggregator, the
anomaly log and the snapshot history. Generating one never mutates engine
state; two reports generated with no rounds in between compare equal.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Sequence, Tuple
from datetime import datetime

import pandas as pd

from rtp_audit.anomaly.log import AnomalyLog
from rtp_audit.core.config import RTPSettings
from rtp_audit.core.custom_types import AnomalyRecord, RTPSnapshot, RTPStatus, ScopeType, utcnow
from rtp_audit.stats import confidence
from rtp_audit.stats.aggregator import StreamingAggregator
from rtp_audit.validation.deviation import DeviationValidator


@dataclass(frozen=True)
class GameSummary:
    rounds: int
    actual_rtp: float
    target_rtp: float
    losing_streak: int
    longest_losing_streak: int
    mean_round_rtp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rounds': self.rounds,
            'actualRTP': self.actual_rtp,
            'targetRTP': self.target_rtp,
            'losingStreak': self.losing_streak,
            'longestLosingStreak': self.longest_losing_streak,
            'meanRoundRTP': self.mean_round_rtp,
        }


@dataclass(frozen=True)
class ClientSummary:
    rounds: int
    actual_rtp: float
    losing_streak: int
    longest_losing_streak: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rounds': self.rounds,
            'actualRTP': self.actual_rtp,
            'losingStreak': self.losing_streak,
            'longestLosingStreak': self.longest_losing_streak,
        }


@dataclass(frozen=True)
class Report:
    total_rounds: int
    overall_target_rtp: float
    overall_tolerance: float
    final_actual_rtp: float
    final_deviation: float
    final_deviation_percent: float
    is_valid: bool
    status: RTPStatus
    critical_error_count: int
    critical_error_details: Tuple[AnomalyRecord, ...]
    history_snapshots: Tuple[RTPSnapshot, ...]
    per_game_summary: Mapping[str, GameSummary]
    per_client_summary: Mapping[str, ClientSummary]
    mean_round_rtp: float
    round_rtp_std_dev: float
    statistical_confidence: float
    confidence_interval_95: Tuple[float, float]
    confidence_label: str
    generated_at: datetime = field(default_factory=utcnow, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """External (camelCase) shape consumed by rendering/alerting collaborators."""
        return {
            'totalRounds': self.total_rounds,
            'overallTargetRTP': self.overall_target_rtp,
            'overallTolerance': self.overall_tolerance,
            'finalActualRTP': self.final_actual_rtp,
            'finalDeviation': self.final_deviation,
            'finalDeviationPercent': self.final_deviation_percent,
            'isValid': self.is_valid,
            'status': self.status.value,
            'criticalErrorCount': self.critical_error_count,
            'criticalErrorDetails': [r.to_dict() for r in self.critical_error_details],
            'historySnapshots': [s.to_dict() for s in self.history_snapshots],
            'perGameSummary': {k: v.to_dict() for k, v in self.per_game_summary.items()},
            'perClientSummary': {k: v.to_dict() for k, v in self.per_client_summary.items()},
            'meanRoundRTP': self.mean_round_rtp,
            'roundRTPStdDev': self.round_rtp_std_dev,
            'statisticalConfidence': self.statistical_confidence,
            'confidenceInterval95': list(self.confidence_interval_95),
            'confidenceLabel': self.confidence_label,
            'generatedAt': self.generated_at.isoformat(),
        }

    def scope_frame(self) -> pd.DataFrame:
        """Per-game and per-client summaries as one DataFrame (one row per scope)."""
        rows = []
        for gid, g in self.per_game_summary.items():
            rows.append({'scope_type': ScopeType.GAME.value, 'scope_id': gid, **g.to_dict()})
        for cid, c in self.per_client_summary.items():
            rows.append({'scope_type': ScopeType.CLIENT.value, 'scope_id': cid, **c.to_dict()})
        return pd.DataFrame(rows)


class ReportGenerator:
    """Assembles Reports from live engine state (read only)."""

    def __init__(self, aggregator: StreamingAggregator, anomaly_log: AnomalyLog, settings: RTPSettings,
                 history: Sequence[RTPSnapshot] = ()):
        self.aggregator = aggregator
        self.anomaly_log = anomaly_log
        self.settings = settings
        self.history = history
        self._validator = DeviationValidator(settings)

    def generate(self) -> Report:
        cfg = self.settings
        with self.aggregator.lock:
            overall = self.aggregator.get_snapshot(scope_type=ScopeType.OVERALL)
            games = list(self.aggregator.snapshots(ScopeType.GAME))
            clients = list(self.aggregator.snapshots(ScopeType.CLIENT))
            history = tuple(self.history)
            anomalies = self.anomaly_log.records()

        res = self._validator.validate_scope(overall)
        per_game = {
            g.scope_id: GameSummary(
                rounds=g.count,
                actual_rtp=g.cumulative_rtp,
                target_rtp=cfg.target_for_game(g.scope_id),
                losing_streak=g.current_losing_streak,
                longest_losing_streak=g.longest_losing_streak,
                mean_round_rtp=g.mean_round_rtp,
            )
            for g in games
        }
        per_client = {
            c.scope_id: ClientSummary(
                rounds=c.count,
                actual_rtp=c.cumulative_rtp,
                losing_streak=c.current_losing_streak,
                longest_losing_streak=c.longest_losing_streak,
            )
            for c in clients
        }
        return Report(
            total_rounds=overall.count,
            overall_target_rtp=cfg.overall_target_rtp,
            overall_tolerance=cfg.overall_tolerance,
            final_actual_rtp=res.actual_rtp,
            final_deviation=res.deviation,
            final_deviation_percent=res.deviation_percent,
            is_valid=res.is_valid,
            status=res.status,
            critical_error_count=len(anomalies),
            critical_error_details=anomalies,
            history_snapshots=history,
            per_game_summary=MappingProxyType(per_game),
            per_client_summary=MappingProxyType(per_client),
            mean_round_rtp=overall.mean_round_rtp,
            round_rtp_std_dev=overall.std_dev,
            statistical_confidence=confidence.statistical_confidence(
                overall.mean_round_rtp, overall.std_dev, overall.rtp_count, cfg.overall_target_rtp),
            confidence_interval_95=confidence.confidence_interval(
                overall.mean_round_rtp, overall.std_dev, overall.rtp_count, 0.95),
            confidence_label=confidence.confidence_label(res.is_valid),
        )


__all__ = ['Report', 'GameSummary', 'ClientSummary', 'ReportGenerator']
