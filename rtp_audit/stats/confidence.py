"""Confidence measures for an observed RTP.

Two families that never substitute for one another:

- numeric statistical confidence derived from the z-score of the mean
  per-round RTP against a target (`statistical_confidence`, `z_score`,
  `p_value`, `confidence_interval`);
- the qualitative label attached to a tolerance check
  (`confidence_label`).
"""
from __future__ import annotations
import math
from typing import Tuple

from scipy import stats

# Below this many samples the normal approximation is not trusted.
MIN_SAMPLES_FOR_CONFIDENCE = 30

LABEL_WITHIN = "Moderate Confidence (within acceptable range)"
LABEL_OUTSIDE = "Low Confidence (outside acceptable range)"


def standard_error(std_dev: float, n: int) -> float:
    if n <= 0:
        return 0.0
    return std_dev / math.sqrt(n)


def z_score(mean: float, std_dev: float, n: int, target: float) -> float:
    """|mean - target| in standard errors; inf for a gap with zero spread."""
    se = standard_error(std_dev, n)
    gap = abs(mean - target)
    if se == 0:
        return 0.0 if gap == 0 else math.inf
    return gap / se


def statistical_confidence(mean: float, std_dev: float, n: int, target: float) -> float:
    """Confidence (0..100) that the observed mean is consistent with `target`.

    Linear in the z-score: 100 at z=0, 0 at z>=3. Returns 0 below
    MIN_SAMPLES_FOR_CONFIDENCE samples.
    """
    if n < MIN_SAMPLES_FOR_CONFIDENCE:
        return 0.0
    z = z_score(mean, std_dev, n, target)
    if math.isinf(z):
        return 0.0
    return max(0.0, min(100.0, (1.0 - z / 3.0) * 100.0))


def p_value(mean: float, std_dev: float, n: int, target: float) -> float:
    """Two-sided p-value of the mean against `target` (normal approximation)."""
    z = z_score(mean, std_dev, n, target)
    if math.isinf(z):
        return 0.0
    return float(2.0 * stats.norm.sf(z))


def confidence_interval(mean: float, std_dev: float, n: int, level: float = 0.95) -> Tuple[float, float]:
    if not (0.0 < level < 1.0):
        raise ValueError("level must be in (0, 1)")
    if n <= 0:
        return (mean, mean)
    z = float(stats.norm.ppf(0.5 + level / 2.0))
    margin = z * standard_error(std_dev, n)
    return (mean - margin, mean + margin)


def confidence_label(is_valid: bool) -> str:
    return LABEL_WITHIN if is_valid else LABEL_OUTSIDE


__all__ = [
    'standard_error',
    'z_score',
    'statistical_confidence',
    'p_value',
    'confidence_interval',
    'confidence_label',
    'MIN_SAMPLES_FOR_CONFIDENCE',
]
