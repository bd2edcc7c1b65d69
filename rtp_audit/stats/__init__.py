"""Single-pass statistics over game rounds.

- aggregator: per-scope running sums, Welford mean/variance, min/max
- streaks: losing-streak state per client and per game
- confidence: z-score confidence, intervals and qualitative labels
- batch: two-pass / DataFrame helpers for offline cross-checks
"""

__all__ = [
    'aggregator',
    'streaks',
    'confidence',
    'batch',
]
