"""Append-only anomaly log.

Holds every AnomalyRecord detected during a run, in detection order, and
fans each new record out to subscribers (alerting collaborators).

Usage:
    log = AnomalyLog()
    token = log.subscribe(lambda rec: print(rec.message))
    log.record(AnomalyRecord(AnomalyKind.OTHER, 'overall', 'manual note', 0))
"""
from __future__ import annotations
import threading
from typing import Callable, Dict, List, Tuple

from loguru import logger

from rtp_audit.core.custom_types import AnomalyKind, AnomalyRecord

Subscriber = Callable[[AnomalyRecord], None]


class AnomalyLog:
    def __init__(self):
        self._records: List[AnomalyRecord] = []
        self._subs: Dict[int, Subscriber] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def subscribe(self, cb: Subscriber) -> int:
        with self._lock:
            sid = self._next_id
            self._next_id += 1
            self._subs[sid] = cb
        return sid

    def unsubscribe(self, sid: int) -> None:
        with self._lock:
            self._subs.pop(sid, None)

    def record(self, rec: AnomalyRecord) -> AnomalyRecord:
        with self._lock:
            self._records.append(rec)
            subs = list(self._subs.values())
        logger.error(f"[Anomaly] {rec.kind.value} {rec.scope_type.value}:{rec.scope_id} round={rec.round_count_at_detection} {rec.message}")
        for cb in subs:
            try:
                cb(rec)
            except Exception as e:
                logger.warning(f"[Anomaly] subscriber error {e}")
        return rec

    def records(self) -> Tuple[AnomalyRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def by_kind(self, kind: AnomalyKind) -> Tuple[AnomalyRecord, ...]:
        with self._lock:
            return tuple(r for r in self._records if r.kind is kind)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.count()

    def clear(self) -> None:
        """Drop every record. Only a full engine reset should call this."""
        with self._lock:
            self._records.clear()


__all__ = ['AnomalyLog', 'Subscriber']
