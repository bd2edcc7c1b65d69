from rtp_audit.anomaly.log import AnomalyLog
from rtp_audit.core.custom_types import AnomalyKind, AnomalyRecord, ScopeType


def _rec(kind=AnomalyKind.OTHER, scope_id="overall", n=1):
    return AnomalyRecord(kind, scope_id, f"note {n}", n)


def test_records_kept_in_detection_order():
    log = AnomalyLog()
    for i in range(5):
        log.record(_rec(n=i))
    assert [r.round_count_at_detection for r in log.records()] == [0, 1, 2, 3, 4]
    assert len(log) == 5


def test_records_view_is_immutable_snapshot():
    log = AnomalyLog()
    log.record(_rec())
    view = log.records()
    log.record(_rec(n=2))
    assert len(view) == 1
    assert isinstance(view, tuple)


def test_by_kind():
    log = AnomalyLog()
    log.record(_rec(AnomalyKind.RTP_DEVIATION))
    log.record(AnomalyRecord(AnomalyKind.LOSING_STREAK, "c1", "streak", 3, scope_type=ScopeType.CLIENT))
    assert len(log.by_kind(AnomalyKind.LOSING_STREAK)) == 1
    assert log.by_kind(AnomalyKind.OTHER) == ()


def test_subscribers_notified_and_isolated(log_messages):
    log = AnomalyLog()
    seen = []

    def broken(rec):
        raise RuntimeError("boom")

    log.subscribe(broken)
    sid = log.subscribe(seen.append)
    rec = log.record(_rec())
    assert seen == [rec]
    assert log.count() == 1
    assert any("subscriber error" in m for m in log_messages)

    log.unsubscribe(sid)
    log.record(_rec(n=2))
    assert len(seen) == 1


def test_record_is_logged_as_error(log_messages):
    log = AnomalyLog()
    log.record(_rec(AnomalyKind.RTP_DEVIATION))
    assert any("[Anomaly] rtp_deviation" in m for m in log_messages)
