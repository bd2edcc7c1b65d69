import numpy as np
import pytest

from rtp_audit.core.custom_types import GameRound, ScopeType
from rtp_audit.stats.aggregator import ScopeStatistics, StreamingAggregator
from rtp_audit.validation.deviation import validate


def _random_rounds(n, seed=7):
    rng = np.random.default_rng(seed)
    bets = rng.uniform(0.5, 50.0, n)
    payouts = bets * rng.uniform(0.0, 2.0, n)
    games = rng.integers(0, 3, n)
    clients = rng.integers(0, 4, n)
    return [
        GameRound(bet_amount=float(b), payout=float(p), game_id=f"g{g}", client_id=f"c{c}")
        for b, p, g, c in zip(bets, payouts, games, clients)
    ]


def test_weighted_rtp_identity():
    rounds = _random_rounds(500)
    agg = StreamingAggregator()
    for r in rounds:
        agg.add_round(r)
    st = agg.get_snapshot()
    bets = payouts = 0.0
    for r in rounds:
        bets += r.bet_amount
        payouts += r.payout
    assert st.cumulative_rtp == payouts / bets * 100.0
    assert st.count == 500


def test_336_of_350_is_96_percent():
    agg = StreamingAggregator()
    for i in range(350):
        agg.add_round(GameRound(bet_amount=1.0, payout=1.0 if i < 336 else 0.0, game_id="g", client_id="c"))
    assert agg.cumulative_rtp() == pytest.approx(96.0)
    assert agg.total_rounds == 350


@pytest.mark.parametrize("n", [2, 3, 10, 100, 1000, 10000])
def test_welford_matches_two_pass_variance(n):
    rng = np.random.default_rng(n)
    values = rng.uniform(0.0, 300.0, n)
    st = ScopeStatistics("overall", ScopeType.OVERALL)
    for v in values:
        st.observe(GameRound(bet_amount=1.0, payout=float(v / 100.0), game_id="g", client_id="c"))
    expected = float(np.var(values, ddof=1))
    assert st.variance == pytest.approx(expected, rel=1e-6)
    assert st.mean_round_rtp == pytest.approx(float(values.mean()), rel=1e-9)


def test_zero_bet_round_counted_but_not_weighted():
    agg = StreamingAggregator()
    agg.add_round(GameRound(bet_amount=10.0, payout=9.0, game_id="g", client_id="c"))
    before = agg.get_snapshot()
    agg.add_round(GameRound(bet_amount=0.0, payout=0.0, game_id="g", client_id="c"))
    after = agg.get_snapshot()
    assert after.count == before.count + 1
    assert after.cumulative_rtp == before.cumulative_rtp
    assert after.mean_round_rtp == before.mean_round_rtp
    assert after.rtp_count == before.rtp_count
    assert after.variance == before.variance


def test_empty_scope_reads_zero():
    agg = StreamingAggregator()
    st = agg.get_snapshot()
    assert st.count == 0
    assert st.cumulative_rtp == 0.0
    assert st.variance == 0.0
    assert st.min_rtp == 0.0 and st.max_rtp == 0.0
    assert agg.get_snapshot("nope") is None
    assert agg.cumulative_rtp("nope") == 0.0


def test_single_sample_variance_is_zero():
    st = ScopeStatistics("overall", ScopeType.OVERALL)
    st.observe(GameRound(bet_amount=2.0, payout=3.0, game_id="g", client_id="c"))
    assert st.variance == 0.0
    assert st.min_rtp == st.max_rtp == 150.0


def test_snapshot_reads_are_idempotent_copies():
    agg = StreamingAggregator()
    for r in _random_rounds(50):
        agg.add_round(r)
    first = agg.get_snapshot()
    second = agg.get_snapshot()
    assert first == second
    first.sum_payouts = 0.0
    assert agg.get_snapshot() == second


def test_per_scope_partitioning():
    rounds = _random_rounds(300)
    agg = StreamingAggregator()
    for r in rounds:
        agg.add_round(r)
    games = list(agg.snapshots(ScopeType.GAME))
    clients = list(agg.snapshots(ScopeType.CLIENT))
    assert sum(g.count for g in games) == 300
    assert sum(c.count for c in clients) == 300
    assert sum(g.sum_bets for g in games) == pytest.approx(agg.get_snapshot().sum_bets)
    g0 = [r for r in rounds if r.game_id == "g0"]
    expected = sum(r.payout for r in g0) / sum(r.bet_amount for r in g0) * 100.0
    assert agg.cumulative_rtp("g0", ScopeType.GAME) == pytest.approx(expected)


def test_game_and_client_with_same_id_are_separate():
    agg = StreamingAggregator()
    agg.add_round(GameRound(bet_amount=1.0, payout=2.0, game_id="x", client_id="y"))
    agg.add_round(GameRound(bet_amount=1.0, payout=0.0, game_id="y", client_id="x"))
    assert agg.get_snapshot("x", ScopeType.GAME).cumulative_rtp == 200.0
    assert agg.get_snapshot("x", ScopeType.CLIENT).cumulative_rtp == 0.0


def test_reset_clears_everything():
    agg = StreamingAggregator()
    for r in _random_rounds(10):
        agg.add_round(r)
    agg.reset()
    assert agg.total_rounds == 0
    assert agg.scope_ids(ScopeType.GAME) == []
    assert agg.scope_ids(ScopeType.CLIENT) == []


def test_mixed_bet_scenario_is_exactly_96():
    agg = StreamingAggregator()
    for bet, payout in ((100.0, 96.0), (50.0, 48.0), (200.0, 192.0)):
        agg.add_round(GameRound(bet_amount=bet, payout=payout, game_id="g", client_id="c"))
    st = agg.get_snapshot()
    assert st.sum_bets == 350.0 and st.sum_payouts == 336.0
    assert st.cumulative_rtp == pytest.approx(96.0)
    assert st.mean_round_rtp == pytest.approx(96.0)
    assert st.variance == pytest.approx(0.0, abs=1e-12)
    res = validate("overall", st.cumulative_rtp, 96.0, 0.5, 2.0, min_sample_size=1, round_count=st.count)
    assert res.is_valid and not res.is_critical
    assert res.eligible


def test_clear_scope_drops_one_game_only():
    agg = StreamingAggregator()
    agg.add_round(GameRound(bet_amount=1.0, payout=2.0, game_id="g1", client_id="c1"))
    agg.add_round(GameRound(bet_amount=1.0, payout=0.0, game_id="g2", client_id="c1"))
    assert agg.clear_scope(ScopeType.GAME, "g1") is True
    assert agg.get_snapshot("g1", ScopeType.GAME) is None
    assert agg.get_snapshot("g2", ScopeType.GAME).count == 1
    # overall and client totals are untouched
    assert agg.total_rounds == 2
    assert agg.get_snapshot("c1", ScopeType.CLIENT).count == 2
    assert agg.clear_scope(ScopeType.GAME, "g1") is False
    with pytest.raises(ValueError):
        agg.clear_scope(ScopeType.OVERALL, "overall")
