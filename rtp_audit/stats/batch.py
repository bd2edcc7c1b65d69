from __future__ import annotations

from typing import Any, Dict, Iterable

import numpy as np
import pandas as pd

from rtp_audit.core.custom_types import GameRound

ROUND_COLUMNS = ["bet_amount", "payout", "game_id", "client_id", "timestamp"]


def rounds_to_frame(rounds: Iterable[GameRound]) -> pd.DataFrame:
    """Materialise rounds into a DataFrame (one row per round)."""
    rows = [r.model_dump() for r in rounds]
    if not rows:
        return pd.DataFrame(columns=ROUND_COLUMNS)
    df = pd.DataFrame(rows, columns=ROUND_COLUMNS)
    # zero-bet rounds have no per-round RTP
    df["round_rtp"] = df["payout"] / df["bet_amount"].where(df["bet_amount"] > 0) * 100.0
    return df


def describe_payouts(rounds: Iterable[GameRound]) -> Dict[str, Any]:
    """
    Summary statistics of raw payouts.

    Keys: count, mean, median, variance, std_dev (sample), min, max. An empty
    input yields the same keys zeroed plus an "error" entry.
    """
    df = rounds_to_frame(rounds)
    if df.empty:
        return {
            "error": "no rounds",
            "count": 0,
            "mean": 0.0,
            "median": 0.0,
            "variance": 0.0,
            "std_dev": 0.0,
            "min": 0.0,
            "max": 0.0,
        }
    payouts = df["payout"].astype(float)
    n = int(len(payouts))
    return {
        "count": n,
        "mean": float(payouts.mean()),
        "median": float(payouts.median()),
        "variance": float(payouts.var(ddof=1)) if n > 1 else 0.0,
        "std_dev": float(payouts.std(ddof=1)) if n > 1 else 0.0,
        "min": float(payouts.min()),
        "max": float(payouts.max()),
    }


def two_pass_round_rtp_variance(rounds: Iterable[GameRound]) -> float:
    """Sample variance of per-round RTP computed from stored history."""
    values = np.array([r.round_rtp for r in rounds if r.round_rtp is not None], dtype=float)
    if values.size < 2:
        return 0.0
    mean = values.mean()
    return float(((values - mean) ** 2).sum() / (values.size - 1))


def per_game_rtp(rounds: Iterable[GameRound]) -> Dict[str, float]:
    """Bet-weighted RTP per game from stored rounds (games with no bets omitted)."""
    df = rounds_to_frame(rounds)
    if df.empty:
        return {}
    grouped = df.groupby("game_id")[["bet_amount", "payout"]].sum()
    grouped = grouped[grouped["bet_amount"] > 0]
    return {str(g): float(row.payout / row.bet_amount * 100.0) for g, row in grouped.iterrows()}


__all__ = ['rounds_to_frame', 'describe_payouts', 'two_pass_round_rtp_variance', 'per_game_rtp']
