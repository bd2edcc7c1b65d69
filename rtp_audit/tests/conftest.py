"""
Pytest Fixtures for the RTP Audit Test Suite

Shared fixtures: validated settings built from an in-memory dict (no
`settings.yaml` needed), a fresh engine, and a loguru message capture.
"""
from datetime import datetime, timedelta, timezone

import pytest
from loguru import logger

from rtp_audit.core.config import RTPSettings, settings_from_dict
from rtp_audit.core.custom_types import GameRound
from rtp_audit.engine.audit import RTPAuditEngine

TEST_CONFIG = {
    "rtp": {
        "overall_target_rtp": 96.0,
        "overall_tolerance": 0.5,
        "critical_tolerance_factor": 2.0,
        "min_rounds_for_validation": 100,
        "max_losing_streak": 50,
        "game_specific_rtps": {"game-slot-01": 96.5},
    },
    "ingestion": {"company": "test-co", "client_id": "tester", "batch_size": 100},
    "logging": {"level": "DEBUG"},
}

_T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _make_round(bet=1.0, payout=0.0, game_id="g1", client_id="c1", seq=0) -> GameRound:
    return GameRound(bet_amount=bet, payout=payout, game_id=game_id, client_id=client_id,
                     timestamp=_T0 + timedelta(seconds=seq))


@pytest.fixture
def make_round():
    """Factory for rounds with deterministic, increasing timestamps."""
    return _make_round


@pytest.fixture(scope="session")
def audit_settings():
    return settings_from_dict(TEST_CONFIG)


@pytest.fixture
def rtp_settings(audit_settings) -> RTPSettings:
    return audit_settings.rtp


@pytest.fixture
def engine(rtp_settings) -> RTPAuditEngine:
    return RTPAuditEngine(rtp_settings)


@pytest.fixture
def log_messages():
    """Collects every loguru message emitted during the test."""
    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(sink_id)
