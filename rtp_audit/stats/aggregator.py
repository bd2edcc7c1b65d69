"""Streaming statistics aggregator.

Keeps one `ScopeStatistics` per scope (overall, each game, each client) and
folds every round into it in a single pass: running sums for the
bet-weighted cumulative RTP, and Welford's online mean/variance for the
unweighted per-round RTP distribution. No round history is retained.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Tuple
import math
import threading

from rtp_audit.core.custom_types import GameRound, OVERALL_SCOPE, ScopeId, ScopeType


@dataclass
class ScopeStatistics:
    scope_id: ScopeId
    scope_type: ScopeType
    count: int = 0
    sum_bets: float = 0.0
    sum_payouts: float = 0.0
    # rounds with bet > 0, i.e. the sample size of the per-round RTP distribution
    rtp_count: int = 0
    mean_round_rtp: float = 0.0
    m2: float = 0.0
    min_round_rtp: float = math.inf
    max_round_rtp: float = -math.inf
    current_losing_streak: int = 0
    longest_losing_streak: int = 0

    @property
    def cumulative_rtp(self) -> float:
        """Bet-weighted RTP: sum(payout) / sum(bet) * 100."""
        if self.sum_bets <= 0:
            return 0.0
        return self.sum_payouts / self.sum_bets * 100.0

    @property
    def variance(self) -> float:
        """Sample variance of per-round RTP (0 with fewer than two samples)."""
        if self.rtp_count < 2:
            return 0.0
        return self.m2 / (self.rtp_count - 1)

    @property
    def std_dev(self) -> float:
        return math.sqrt(self.variance)

    @property
    def min_rtp(self) -> float:
        return 0.0 if math.isinf(self.min_round_rtp) else self.min_round_rtp

    @property
    def max_rtp(self) -> float:
        return 0.0 if math.isinf(self.max_round_rtp) else self.max_round_rtp

    def observe(self, rnd: GameRound) -> None:
        self.count += 1
        if rnd.bet_amount <= 0:
            return
        self.sum_bets += rnd.bet_amount
        self.sum_payouts += rnd.payout
        x = rnd.payout / rnd.bet_amount * 100.0
        if x < self.min_round_rtp:
            self.min_round_rtp = x
        if x > self.max_round_rtp:
            self.max_round_rtp = x
        # Welford
        self.rtp_count += 1
        delta = x - self.mean_round_rtp
        self.mean_round_rtp += delta / self.rtp_count
        self.m2 += delta * (x - self.mean_round_rtp)

    def copy(self) -> "ScopeStatistics":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            'scopeId': self.scope_id,
            'scopeType': self.scope_type.value,
            'rounds': self.count,
            'totalBets': self.sum_bets,
            'totalPayouts': self.sum_payouts,
            'cumulativeRTP': self.cumulative_rtp,
            'meanRoundRTP': self.mean_round_rtp,
            'variance': self.variance,
            'standardDeviation': self.std_dev,
            'minRTP': self.min_rtp,
            'maxRTP': self.max_rtp,
            'currentLosingStreak': self.current_losing_streak,
            'longestLosingStreak': self.longest_losing_streak,
        }


class StreamingAggregator:
    """Owns every ScopeStatistics. Mutations are serialised by `lock`."""

    def __init__(self):
        self.lock = threading.RLock()
        self._overall = ScopeStatistics(OVERALL_SCOPE, ScopeType.OVERALL)
        self._games: Dict[ScopeId, ScopeStatistics] = {}
        self._clients: Dict[ScopeId, ScopeStatistics] = {}

    def _scope(self, scope_type: ScopeType, scope_id: ScopeId) -> ScopeStatistics:
        table = self._games if scope_type is ScopeType.GAME else self._clients
        st = table.get(scope_id)
        if st is None:
            st = ScopeStatistics(scope_id, scope_type)
            table[scope_id] = st
        return st

    def add_round(self, rnd: GameRound) -> None:
        with self.lock:
            self._overall.observe(rnd)
            self._scope(ScopeType.GAME, rnd.game_id).observe(rnd)
            self._scope(ScopeType.CLIENT, rnd.client_id).observe(rnd)

    def live_scopes(self, rnd: GameRound) -> Tuple[ScopeStatistics, ScopeStatistics]:
        """(game, client) live statistics for a round; caller must hold `lock`."""
        return self._scope(ScopeType.GAME, rnd.game_id), self._scope(ScopeType.CLIENT, rnd.client_id)

    def _lookup(self, scope_id: ScopeId, scope_type: Optional[ScopeType]) -> Optional[ScopeStatistics]:
        if scope_type is ScopeType.GAME:
            return self._games.get(scope_id)
        if scope_type is ScopeType.CLIENT:
            return self._clients.get(scope_id)
        if scope_type is ScopeType.OVERALL or scope_id == OVERALL_SCOPE:
            return self._overall
        return self._games.get(scope_id) or self._clients.get(scope_id)

    def get_snapshot(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> Optional[ScopeStatistics]:
        """Copy of a scope's statistics, None if never observed.

        Without `scope_type` the lookup order is overall, game, client.
        """
        with self.lock:
            st = self._lookup(scope_id, scope_type)
            return st.copy() if st is not None else None

    def cumulative_rtp(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> float:
        with self.lock:
            st = self._lookup(scope_id, scope_type)
            return st.cumulative_rtp if st is not None else 0.0

    def mean_round_rtp(self, scope_id: ScopeId = OVERALL_SCOPE, scope_type: Optional[ScopeType] = None) -> float:
        with self.lock:
            st = self._lookup(scope_id, scope_type)
            return st.mean_round_rtp if st is not None else 0.0

    @property
    def total_rounds(self) -> int:
        return self._overall.count

    def scope_ids(self, scope_type: ScopeType) -> List[ScopeId]:
        with self.lock:
            if scope_type is ScopeType.GAME:
                return list(self._games)
            if scope_type is ScopeType.CLIENT:
                return list(self._clients)
            return [OVERALL_SCOPE]

    def snapshots(self, scope_type: ScopeType) -> Iterator[ScopeStatistics]:
        with self.lock:
            if scope_type is ScopeType.GAME:
                items = [s.copy() for s in self._games.values()]
            elif scope_type is ScopeType.CLIENT:
                items = [s.copy() for s in self._clients.values()]
            else:
                items = [self._overall.copy()]
        return iter(items)

    def clear_scope(self, scope_type: ScopeType, scope_id: ScopeId) -> bool:
        """Drop one game or client scope; False if it was never observed.

        The overall scope keeps its totals; use `reset` to clear everything.
        """
        if scope_type is ScopeType.OVERALL:
            raise ValueError("the overall scope can only be cleared by reset()")
        with self.lock:
            table = self._games if scope_type is ScopeType.GAME else self._clients
            return table.pop(scope_id, None) is not None

    def reset(self) -> None:
        with self.lock:
            self._overall = ScopeStatistics(OVERALL_SCOPE, ScopeType.OVERALL)
            self._games.clear()
            self._clients.clear()


__all__ = ['ScopeStatistics', 'StreamingAggregator']
