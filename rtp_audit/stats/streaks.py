"""Losing-streak tracking per client and per game.

A round is a loss iff payout < bet. Detection is retrospective: a streak is
only judged against `max_losing_streak` when a non-loss round ends it, so a
streak still in progress is never reported as an anomaly.
"""
from __future__ import annotations
from typing import List, NamedTuple, Optional

from rtp_audit.core.custom_types import GameRound, ScopeType
from rtp_audit.stats.aggregator import ScopeStatistics, StreamingAggregator


class EndedStreak(NamedTuple):
    """A losing streak at or over the configured threshold."""
    scope_type: ScopeType
    scope_id: str
    length: int


class StreakTracker:
    """Updates streak counters stored on the aggregator's scope statistics.

    Client streaks that end at/over `max_losing_streak` are reported. Game
    streaks are tracked the same way but only reported with `flag_game_streaks`.
    """

    def __init__(self, aggregator: StreamingAggregator, max_losing_streak: int, flag_game_streaks: bool = False):
        if max_losing_streak <= 0:
            raise ValueError("max_losing_streak must be positive")
        self.aggregator = aggregator
        self.max_losing_streak = max_losing_streak
        self.flag_game_streaks = flag_game_streaks

    def _step(self, st: ScopeStatistics, is_loss: bool) -> Optional[EndedStreak]:
        if is_loss:
            st.current_losing_streak += 1
            if st.current_losing_streak > st.longest_losing_streak:
                st.longest_losing_streak = st.current_losing_streak
            return None
        ended = st.current_losing_streak
        st.current_losing_streak = 0
        if ended >= self.max_losing_streak:
            return EndedStreak(st.scope_type, st.scope_id, ended)
        return None

    def update(self, rnd: GameRound) -> List[EndedStreak]:
        """Apply one round; return the reportable streaks it ended."""
        with self.aggregator.lock:
            game_st, client_st = self.aggregator.live_scopes(rnd)
            out = []
            ended = self._step(client_st, rnd.is_loss)
            if ended is not None:
                out.append(ended)
            ended = self._step(game_st, rnd.is_loss)
            if ended is not None and self.flag_game_streaks:
                out.append(ended)
            return out

    def open_streaks_over_threshold(self) -> List[EndedStreak]:
        """Streaks in progress already at/over threshold (informational only)."""
        out = []
        for scope_type in (ScopeType.CLIENT, ScopeType.GAME):
            for st in self.aggregator.snapshots(scope_type):
                if st.current_losing_streak >= self.max_losing_streak:
                    out.append(EndedStreak(scope_type, st.scope_id, st.current_losing_streak))
        return out


__all__ = ['StreakTracker', 'EndedStreak']
