import pytest

from chickenrun.formatting import (
    cashout_offer,
    decorate_snapshot,
    format_money,
    format_signed_money,
    history_tier,
    phase_label,
)

from helpers import crossing_start, make_engine


def test_money():
    assert format_money(1234567.891) == "1,234,567.89"
    assert format_signed_money(12.5) == "+$12.50"
    assert format_signed_money(-1000) == "-$1,000.00"


def test_history_tiers():
    assert history_tier(1.0) == "low"
    assert history_tier(1.5) == "mid"
    assert history_tier(2.5) == "mid"
    assert history_tier(3.0) == "high"


def test_labels_follow_the_round():
    engine = make_engine(crash_lane=2)
    engine.start(0)
    assert phase_label(engine.snapshot()) == "BETTING"
    engine.tick(15)
    assert phase_label(engine.snapshot()) == "CALCULATING"
    engine.tick(20)
    assert phase_label(engine.snapshot()) == "LIVE"
    engine.tick(crossing_start(2) + 2)
    assert phase_label(engine.snapshot()) == "CRASHED @ 1.2x"


def test_safe_label():
    engine = make_engine(crash_lane=0)
    engine.start(0)
    engine.tick(52)
    assert phase_label(engine.snapshot()) == "SAFE — 4.0x"


def test_cashout_offer_only_while_riding():
    engine = make_engine(crash_lane=0)
    engine.start(0)
    engine.place_bet(100)
    assert cashout_offer(engine.snapshot()) is None

    engine.tick(crossing_start(2))
    assert cashout_offer(engine.snapshot()) == pytest.approx(220)
    display = decorate_snapshot(engine.snapshot())["display"]
    assert display["cashout_offer"] == "CASHOUT $220.00"

    engine.cash_out()
    assert cashout_offer(engine.snapshot()) is None


def test_decorated_history_is_newest_first():
    engine = make_engine(crash_lane=0)
    engine.session.history = [1.0, 4.0]
    engine.start(0)
    display = decorate_snapshot(engine.snapshot())["display"]
    assert display["history"] == [{"label": "4.0x", "tier": "high"}, {"label": "1.0x", "tier": "low"}]
    assert display["round_label"] == "Round #1"
    assert display["players_count"] == "4 players"
    assert display["net"] == "+$0.00"
