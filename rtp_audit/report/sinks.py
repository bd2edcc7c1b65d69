from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from loguru import logger

from rtp_audit.report.generator import Report


@runtime_checkable
class ReportSink(Protocol):
    """Receives a finished report (rendering, alerting, persistence...)."""

    def emit(self, report: Report) -> None: ...


class LogReportSink:
    """Writes a human-readable audit summary through loguru."""

    def emit(self, report: Report) -> None:
        log_fn = logger.info if report.is_valid and report.critical_error_count == 0 else logger.warning
        log_fn("--- RTP Audit Final Report ---")
        log_fn(f"Total Rounds: {report.total_rounds}")
        log_fn(f"Target RTP: {report.overall_target_rtp:.2f}% (tolerance {report.overall_tolerance:.2f}%)")
        log_fn(f"Final Actual RTP: {report.final_actual_rtp:.2f}% | Deviation: {report.final_deviation:.2f}% ({report.final_deviation_percent:.2f}% of target) | {report.status.value}")
        log_fn(f"Mean per-round RTP: {report.mean_round_rtp:.2f}% (std {report.round_rtp_std_dev:.2f})")
        log_fn(f"Critical errors: {report.critical_error_count}")
        for i, rec in enumerate(report.critical_error_details, start=1):
            logger.error(f"{i}. round {rec.round_count_at_detection}: {rec.message}")
        for gid, g in report.per_game_summary.items():
            log_fn(f"  game {gid}: {g.rounds} rounds, RTP {g.actual_rtp:.2f}% (target {g.target_rtp:.2f}%), streak {g.losing_streak}")


class CallbackReportSink:
    """Hands the report to a callable, e.g. a test harness assertion hook."""

    def __init__(self, fn: Callable[[Report], None]):
        self._fn = fn

    def emit(self, report: Report) -> None:
        self._fn(report)


__all__ = ['ReportSink', 'LogReportSink', 'CallbackReportSink']
