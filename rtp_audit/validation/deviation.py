"""Deviation validation of cumulative RTP against targets.

    deviation   = |actual - target|
    is_valid    = deviation <= tolerance
    is_critical = deviation > tolerance * critical_factor

Game scopes use their per-game profile (target, tolerance, critical factor,
minimum rounds) where configured, the overall settings otherwise. Client
scopes have no target of their own: they are judged against the overall
target with the wider `client_extreme_factor` band.
Escalation into the anomaly log requires the scope to have at least its
minimum number of rounds. `deviation_percent` is the deviation relative to
the target.
"""
from __future__ import annotations
from typing import Optional

from loguru import logger

from rtp_audit.anomaly.log import AnomalyLog
from rtp_audit.core.config import RTPSettings
from rtp_audit.core.custom_types import (
    AnomalyKind,
    AnomalyRecord,
    RTPStatus,
    ScopeId,
    ScopeType,
    ValidationResult,
)
from rtp_audit.stats.aggregator import ScopeStatistics


def validate(
    scope_id: ScopeId,
    actual_rtp: float,
    target_rtp: float,
    tolerance: float,
    critical_factor: float,
    min_sample_size: int = 0,
    round_count: Optional[int] = None,
) -> ValidationResult:
    if tolerance <= 0:
        raise ValueError("tolerance must be positive")
    deviation = abs(actual_rtp - target_rtp)
    deviation_percent = deviation / target_rtp * 100.0 if target_rtp > 0 else 0.0
    is_valid = deviation <= tolerance
    is_critical = deviation > tolerance * critical_factor
    if is_critical:
        status = RTPStatus.CRITICAL
    elif not is_valid:
        status = RTPStatus.WARNING
    else:
        status = RTPStatus.NORMAL
    eligible = round_count is None or round_count >= min_sample_size
    return ValidationResult(
        scope_id=scope_id,
        actual_rtp=actual_rtp,
        target_rtp=target_rtp,
        deviation=deviation,
        deviation_percent=deviation_percent,
        is_valid=is_valid,
        is_critical=is_critical,
        status=status,
        eligible=eligible,
    )


class DeviationValidator:
    def __init__(self, settings: RTPSettings):
        self.settings = settings

    def target_for(self, scope_type: ScopeType, scope_id: ScopeId) -> float:
        if scope_type is ScopeType.GAME:
            return self.settings.target_for_game(scope_id)
        return self.settings.overall_target_rtp

    def tolerance_for(self, scope_type: ScopeType, scope_id: ScopeId) -> float:
        if scope_type is ScopeType.GAME:
            return self.settings.tolerance_for_game(scope_id)
        return self.settings.overall_tolerance

    def critical_factor_for(self, scope_type: ScopeType, scope_id: ScopeId) -> float:
        if scope_type is ScopeType.CLIENT:
            return self.settings.client_extreme_factor
        if scope_type is ScopeType.GAME:
            return self.settings.critical_factor_for_game(scope_id)
        return self.settings.critical_tolerance_factor

    def min_rounds_for(self, scope_type: ScopeType, scope_id: ScopeId) -> int:
        if scope_type is ScopeType.GAME:
            return self.settings.min_rounds_for_game(scope_id)
        return self.settings.min_rounds_for_validation

    def validate_scope(self, st: ScopeStatistics) -> ValidationResult:
        return validate(
            st.scope_id,
            st.cumulative_rtp,
            self.target_for(st.scope_type, st.scope_id),
            self.tolerance_for(st.scope_type, st.scope_id),
            self.critical_factor_for(st.scope_type, st.scope_id),
            self.min_rounds_for(st.scope_type, st.scope_id),
            st.count,
        )

    def check(self, st: ScopeStatistics, anomaly_log: AnomalyLog, round_count_at_detection: int) -> ValidationResult:
        """Validate a scope and record an anomaly when it is critical and eligible."""
        res = self.validate_scope(st)
        if not res.eligible:
            logger.debug(f"[Validator] {st.scope_type.value} '{st.scope_id}' below sample size ({st.count} rounds)")
            return res
        if res.is_critical:
            critical_band = self.tolerance_for(st.scope_type, st.scope_id) * self.critical_factor_for(st.scope_type, st.scope_id)
            anomaly_log.record(AnomalyRecord(
                kind=AnomalyKind.RTP_DEVIATION,
                scope_id=st.scope_id,
                scope_type=st.scope_type,
                message=_deviation_message(st, res),
                round_count_at_detection=round_count_at_detection,
                value=res.actual_rtp,
                threshold=critical_band,
            ))
        return res


def _deviation_message(st: ScopeStatistics, res: ValidationResult) -> str:
    if st.scope_type is ScopeType.OVERALL:
        label = "Overall RTP Deviation"
    elif st.scope_type is ScopeType.GAME:
        label = f"Game RTP Deviation for '{st.scope_id}'"
    else:
        label = f"Client RTP Anomaly for '{st.scope_id}'"
    return (
        f"{label}: actual RTP {res.actual_rtp:.2f}% vs target {res.target_rtp:.2f}% "
        f"(deviation {res.deviation:.2f}%, {res.deviation_percent:.2f}% of target) after {st.count} rounds"
    )


__all__ = ['validate', 'DeviationValidator']
