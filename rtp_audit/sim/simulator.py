"""Synthetic round generation for audits without a live platform.

Payouts are drawn around `bet * target_rtp / 100` with a uniform relative
spread, clipped at zero and rounded to cents, so the long-run cumulative RTP
of each game converges on its configured target.
"""
from __future__ import annotations
import asyncio
from typing import Dict, List, Optional, Sequence

import numpy as np

from rtp_audit.core.custom_types import GameRound

DEFAULT_GAME_TARGETS: Dict[str, float] = {
    'game-slot-01': 96.5,
    'game-roulette-02': 97.3,
    'game-blackjack-03': 99.2,
}
DEFAULT_CLIENTS = ('player-A', 'player-B', 'player-C')


def generate_rounds(
    n: int,
    game_targets: Optional[Dict[str, float]] = None,
    client_ids: Sequence[str] = DEFAULT_CLIENTS,
    bet_range: tuple = (1.0, 100.0),
    payout_spread: float = 0.1,
    seed: Optional[int] = None,
) -> List[GameRound]:
    if n < 0:
        raise ValueError("n must be >= 0")
    targets = game_targets or DEFAULT_GAME_TARGETS
    rng = np.random.default_rng(seed)
    games = list(targets)
    game_idx = rng.integers(0, len(games), n)
    client_idx = rng.integers(0, len(client_ids), n)
    bets = rng.uniform(bet_range[0], bet_range[1], n).round(2)
    noise = rng.uniform(-1.0, 1.0, n)
    out: List[GameRound] = []
    for i in range(n):
        gid = games[game_idx[i]]
        bet = float(bets[i])
        payout = bet * targets[gid] / 100.0 + bet * payout_spread * float(noise[i])
        out.append(GameRound(
            bet_amount=bet,
            payout=round(max(payout, 0.0), 2),
            game_id=gid,
            client_id=client_ids[client_idx[i]],
        ))
    return out


class SimulatedRoundSupplier:
    """In-process RoundSupplier backed by `generate_rounds`.

    `fail_after_batches` makes every call after that many successful batches
    raise ConnectionError, to exercise partial ingestion.
    """

    def __init__(self, game_targets: Optional[Dict[str, float]] = None, *, payout_spread: float = 0.1,
                 seed: Optional[int] = None, fail_after_batches: Optional[int] = None, latency_s: float = 0.0):
        self.game_targets = game_targets or DEFAULT_GAME_TARGETS
        self.payout_spread = payout_spread
        self.fail_after_batches = fail_after_batches
        self.latency_s = latency_s
        self._seed = seed
        self.calls = 0

    async def fetch_batch(self, company: str, game_id: Optional[str], client_id: str,
                          bet_amount: float, spins_requested: int) -> List[dict]:
        self.calls += 1
        if self.fail_after_batches is not None and self.calls > self.fail_after_batches:
            raise ConnectionError(f"simulated outage on batch {self.calls}")
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        targets = {game_id: self.game_targets.get(game_id, 96.0)} if game_id else self.game_targets
        seed = None if self._seed is None else self._seed + self.calls
        rounds = generate_rounds(
            spins_requested,
            game_targets=targets,
            client_ids=(client_id,),
            bet_range=(bet_amount, bet_amount),
            payout_spread=self.payout_spread,
            seed=seed,
        )
        # wire format, as a platform API would return it
        return [
            {'betAmount': r.bet_amount, 'payout': r.payout, 'gameId': r.game_id, 'clientId': r.client_id}
            for r in rounds
        ]


__all__ = ['generate_rounds', 'SimulatedRoundSupplier', 'DEFAULT_GAME_TARGETS']
