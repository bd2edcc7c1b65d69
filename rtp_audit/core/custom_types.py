"""
Custom Type Definitions
-----------------------

Centralized data model shared by the ingestion, statistics, validation and
reporting layers.

- ScopeId: a string alias for an aggregation scope ("overall", a game id or
  a client id).
- GameRound: an immutable Pydantic model for a single round outcome. It is
  the primary input of the statistics engine.
- AnomalyRecord: an immutable record of a detected critical condition.
- ValidationResult / RTPSnapshot: immutable outputs of the validator and the
  periodic snapshot.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Mapping, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

# A simple type alias for an aggregation scope id.
ScopeId = str

OVERALL_SCOPE: ScopeId = "overall"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScopeType(str, Enum):
    OVERALL = "overall"
    GAME = "game"
    CLIENT = "client"


class AnomalyKind(str, Enum):
    RTP_DEVIATION = "rtp_deviation"
    LOSING_STREAK = "losing_streak"
    OTHER = "other"


class RTPStatus(str, Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACCUMULATING = "accumulating"


# Raw gaming APIs emit camelCase; both spellings are accepted.
_RAW_KEYS = {
    'bet_amount': ('bet_amount', 'betAmount', 'bet'),
    'payout': ('payout', 'win', 'winAmount'),
    'game_id': ('game_id', 'gameId'),
    'client_id': ('client_id', 'clientId', 'playerId'),
    'timestamp': ('timestamp', 'ts'),
}


class GameRound(BaseModel):
    """
    A single completed game round.

    `bet_amount == 0` rounds are legal: they count toward round totals but
    carry no weight in RTP sums and have no per-round RTP.
    """
    model_config = ConfigDict(frozen=True)

    bet_amount: float = Field(ge=0, allow_inf_nan=False)
    payout: float = Field(ge=0, allow_inf_nan=False)
    game_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator('bet_amount', 'payout', mode='before')
    def reject_non_numeric(cls, v):
        # bools and numeric strings are not numbers on the wire
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError(f"expected a number, got {type(v).__name__}")
        return v

    @property
    def is_loss(self) -> bool:
        return self.payout < self.bet_amount

    @property
    def round_rtp(self) -> Optional[float]:
        """Per-round RTP percentage, None when the ratio is undefined."""
        if self.bet_amount <= 0:
            return None
        return self.payout / self.bet_amount * 100.0

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "GameRound":
        """Build a round from a loosely-typed record (raises ValidationError)."""
        if isinstance(raw, GameRound):
            return raw
        if not isinstance(raw, Mapping):
            raise TypeError(f"round record must be a mapping, got {type(raw).__name__}")
        data: dict[str, Any] = {}
        for name, aliases in _RAW_KEYS.items():
            for alias in aliases:
                if raw.get(alias) is not None:
                    data[name] = raw[alias]
                    break
        if isinstance(data.get('timestamp'), (int, float)) and not isinstance(data['timestamp'], bool):
            ts = float(data['timestamp'])
            # epoch millis vs seconds
            data['timestamp'] = datetime.fromtimestamp(ts / 1000.0 if ts > 1e11 else ts, tz=timezone.utc)
        return cls.model_validate(data)


@dataclass(frozen=True)
class AnomalyRecord:
    """An immutable, append-only record of a critical condition."""

    kind: AnomalyKind
    scope_id: ScopeId
    message: str
    round_count_at_detection: int
    scope_type: ScopeType = ScopeType.OVERALL
    timestamp: datetime = field(default_factory=utcnow)
    value: Optional[float] = None  # actual RTP or streak length
    threshold: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'type': self.kind.value,
            'scopeId': self.scope_id,
            'scopeType': self.scope_type.value,
            'message': self.message,
            'roundCount': self.round_count_at_detection,
            'value': self.value,
            'threshold': self.threshold,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ValidationResult:
    scope_id: ScopeId
    actual_rtp: float
    target_rtp: float
    deviation: float
    # deviation relative to the target, in percent of the target
    deviation_percent: float
    is_valid: bool
    is_critical: bool
    status: RTPStatus
    # True once the scope has enough rounds to escalate
    eligible: bool = True


@dataclass(frozen=True)
class RTPSnapshot:
    """Overall RTP reading recorded by a periodic snapshot."""

    round_count: int
    rtp: float
    deviation: float
    is_within_tolerance: bool
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            'roundCount': self.round_count,
            'rtp': self.rtp,
            'deviation': self.deviation,
            'isWithinTolerance': self.is_within_tolerance,
            'timestamp': self.timestamp.isoformat(),
        }
