"""Tests for RiskManager thresholds, limits and daily loss accounting."""

from datetime import datetime, timedelta, timezone

import pytest

from gridbot.services.risk_manager import RiskConfig, RiskManager


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestThresholds:
    def test_stop_loss(self):
        risk = RiskManager(RiskConfig(stop_loss_percent=5))
        assert risk.stop_loss_price(100.0) == pytest.approx(95.0)
        assert risk.should_stop_loss(95.0, 100.0) is True
        assert risk.should_stop_loss(95.1, 100.0) is False

    def test_take_profit(self):
        risk = RiskManager(RiskConfig(take_profit_percent=10))
        assert risk.should_take_profit(110.0, 100.0) is True
        assert risk.should_take_profit(109.0, 100.0) is False

    def test_trailing_stop(self):
        risk = RiskManager(RiskConfig(trailing_stop_percent=2))
        assert risk.should_trailing_stop(98.0, 100.0) is True
        assert risk.should_trailing_stop(98.5, 100.0) is False
        assert risk.should_trailing_stop(50.0, None) is False

    @pytest.mark.parametrize("value", [None, 0])
    def test_disabled_thresholds_never_fire(self, value):
        risk = RiskManager(
            RiskConfig(stop_loss_percent=value, take_profit_percent=value, trailing_stop_percent=value)
        )
        assert risk.stop_loss_price(100.0) is None
        assert risk.should_stop_loss(1.0, 100.0) is False
        assert risk.should_take_profit(1000.0, 100.0) is False
        assert risk.should_trailing_stop(1.0, 100.0) is False


class TestLimits:
    def test_can_open_position(self):
        risk = RiskManager(RiskConfig(max_positions=2))
        assert risk.can_open_position(1) is True
        assert risk.can_open_position(2) is False

    def test_unlimited_positions(self):
        assert RiskManager(RiskConfig(max_positions=None)).can_open_position(500) is True

    def test_trade_below_minimum(self):
        check = RiskManager().validate_trade_size(1.0, 100.0)
        assert check.valid is False
        assert "below minimum" in check.reason

    def test_trade_above_balance(self):
        check = RiskManager().validate_trade_size(50.0, 20.0)
        assert check.valid is False
        assert "Insufficient balance" in check.reason

    def test_trade_within_limits(self):
        check = RiskManager().validate_trade_size(10.0, 20.0)
        assert check.valid is True
        assert check.reason is None


class TestDailyLoss:
    def test_halts_once_limit_reached(self):
        risk = RiskManager(RiskConfig(max_daily_loss=10))
        assert risk.record_loss(-4) is True
        assert risk.record_loss(-5) is True
        assert risk.record_loss(-1) is False
        assert risk.daily_loss == pytest.approx(10.0)

    def test_disabled_limit_never_halts(self):
        risk = RiskManager(RiskConfig(max_daily_loss=None))
        assert risk.record_loss(-1_000_000) is True

    def test_resets_after_utc_midnight(self):
        clock = _Clock(datetime(2024, 3, 1, 23, 0, tzinfo=timezone.utc))
        risk = RiskManager(RiskConfig(max_daily_loss=10), clock=clock)

        assert risk.record_loss(-8) is True
        clock.now += timedelta(hours=2)
        assert risk.daily_loss == 0.0
        assert risk.record_loss(-8) is True
        assert risk.record_loss(-3) is False


def test_pnl_helpers():
    assert RiskManager.calculate_pnl(100.0, 2.0, 103.0) == pytest.approx(6.0)
    assert RiskManager.calculate_pnl_percentage(100.0, 97.0) == pytest.approx(-3.0)
    assert RiskManager.calculate_pnl_percentage(0.0, 97.0) == 0.0


def test_position_risk_summary_and_update_config():
    risk = RiskManager(RiskConfig(stop_loss_percent=5))
    summary = risk.position_risk_summary(100.0, 1.0, 94.0)
    assert summary.should_stop_loss is True
    assert summary.take_profit is None

    risk.update_config(take_profit_percent=10)
    assert risk.config.stop_loss_percent == 5
    assert risk.take_profit_price(100.0) == pytest.approx(110.0)
