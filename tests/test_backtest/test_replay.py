"""
Tests for the portfolio replay engine.

Test Coverage:
- Single round trip P/L and total return
- Equity invariant after every step
- Strategy fault isolation (generate_signals and should_exit)
- Same-symbol overlap rejection and insufficient funds
- Stop-loss / take-profit exits
- Force-close at end of data
- Drawdown halt
- Kelly sizing
- One equity point per distinct timestamp
"""

import logging

import pytest

from backtest.config import RiskManagementConfig
from backtest.metrics import compute_metrics
from backtest.models import ExitReason, Side
from backtest.registry import StrategyRegistry
from backtest.replay import ReplayEngine
from tests.mocks.mock_strategies import (
    AlwaysLongStrategy,
    FaultyExitStrategy,
    FaultyStrategy,
    ScriptedStrategy,
    make_config,
    make_observations,
)


def assert_invariant(state):
    expected = state.cash + sum(p.market_value for p in state.positions.values())
    assert state.total_value == pytest.approx(expected)


# =============================================================================
# Test Basic Replay
# =============================================================================

class TestRoundTrip:
    """Tests for a single scripted trade."""

    def test_buy_ten_at_100_close_at_110(self, config):
        """Long 10 @ 100 closed @ 110 with no costs: pnl 100, return 0.1%."""
        observations = make_observations([100, 105, 110])
        strategy = ScriptedStrategy(
            entries={observations[0].timestamp: Side.LONG},
            exits=[observations[2].timestamp],
        )

        result = ReplayEngine().run(observations, [('scripted', strategy)], config)

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.pnl == pytest.approx(100.0)
        assert trade.exit_reason == ExitReason.STRATEGY_EXIT
        assert trade.strategy == 'scripted'
        assert trade.exit_time >= trade.entry_time

        metrics = compute_metrics(result.trades, result.equity, config.initial_capital)
        assert metrics.total_return == pytest.approx(0.001)

    def test_equity_invariant_every_step(self, config, trending_observations):
        """total_value == cash + market value after each observation."""
        engine = ReplayEngine(keep_states=True)
        result = engine.run(trending_observations, [('long', AlwaysLongStrategy())], config)

        assert len(result.states) == len(trending_observations) + 1
        for state in result.states:
            assert_invariant(state)

    def test_one_equity_point_per_timestamp(self, config):
        """Observations sharing a timestamp produce one equity point."""
        spy = make_observations([100, 101, 102])
        qqq = make_observations([50, 51, 52], symbol='QQQ')
        observations = sorted(spy + qqq, key=lambda o: o.timestamp)

        result = ReplayEngine().run(observations, [], config)

        assert [p.timestamp for p in result.equity] == [o.timestamp for o in spy]

    def test_empty_observations(self, config):
        """No observations: no trades, no equity, untouched capital."""
        result = ReplayEngine().run([], [('long', AlwaysLongStrategy())], config)
        assert result.trades == []
        assert result.equity == []
        assert result.final_state.cash == config.initial_capital

    def test_registry_filters_active_strategies(self):
        """Only strategies named in config.strategies run."""
        config = make_config(strategies=['enabled'])
        observations = make_observations([100, 101])
        enabled = ScriptedStrategy()
        disabled = ScriptedStrategy()
        registry = StrategyRegistry({'enabled': enabled, 'disabled': disabled})

        ReplayEngine().run(observations, registry, config)

        assert enabled.signal_calls == 2
        assert disabled.signal_calls == 0


# =============================================================================
# Test Fault Isolation
# =============================================================================

class TestStrategyFaults:
    """Tests for StrategyFault isolation."""

    def test_always_raising_strategy(self, config, caplog):
        """Run completes with no trades and one warning per step."""
        observations = make_observations([100, 101, 102, 103, 104])

        with caplog.at_level(logging.WARNING, logger='backtest.replay'):
            result = ReplayEngine().run(observations, [('faulty', FaultyStrategy())], config)

        assert result.trades == []
        assert result.strategy_faults == len(observations)
        warnings = [
            r for r in caplog.records
            if r.name == 'backtest.replay' and r.levelno == logging.WARNING
        ]
        assert len(warnings) == len(observations)
        assert 'faulty' in warnings[0].getMessage()

    def test_fault_does_not_affect_other_strategies(self, config):
        """A healthy strategy still trades alongside a faulty one."""
        observations = make_observations([100, 105, 110])
        healthy = ScriptedStrategy(
            entries={observations[0].timestamp: Side.LONG},
            exits=[observations[2].timestamp],
        )
        strategies = [('faulty', FaultyStrategy()), ('healthy', healthy)]

        result = ReplayEngine().run(observations, strategies, config)

        assert len(result.trades) == 1
        assert result.trades[0].strategy == 'healthy'

    def test_should_exit_fault_means_no_exit(self, config):
        """A raising should_exit keeps the position open until end of data."""
        observations = make_observations([100, 101, 102])
        strategy = FaultyExitStrategy(entries={observations[0].timestamp: Side.LONG})

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert result.strategy_faults == 3
        assert result.trades[0].exit_reason == ExitReason.END_OF_DATA


# =============================================================================
# Test Execution Rules
# =============================================================================

class TestExecution:
    """Tests for signal acceptance and rejection."""

    def test_overlapping_signal_rejected(self, config):
        """A second entry in an open symbol is rejected, not overwritten."""
        observations = make_observations([100, 101, 102, 103])
        strategy = ScriptedStrategy(entries={
            observations[0].timestamp: Side.LONG,
            observations[1].timestamp: Side.LONG,
        })

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert result.rejected_signals == 1
        assert len(result.trades) == 1
        assert result.trades[0].entry_price == 100

    def test_insufficient_funds_rejected(self, caplog):
        """Signals costing more than cash are dropped with a warning."""
        config = make_config(initial_capital=500.0)
        observations = make_observations([100, 101])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.LONG}, quantity=10)

        with caplog.at_level(logging.WARNING, logger='backtest.replay'):
            result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert result.trades == []
        assert result.rejected_signals == 1
        assert any('Insufficient cash' in r.getMessage() for r in caplog.records)

    def test_costs_reduce_cash(self):
        """Commission and slippage apply on both legs."""
        config = make_config(commission=0.001, slippage=0.001)
        observations = make_observations([100, 110])
        strategy = ScriptedStrategy(
            entries={observations[0].timestamp: Side.LONG},
            exits=[observations[1].timestamp],
        )

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        trade = result.trades[0]
        # entry value 1000, exit value 1100
        assert trade.commission == pytest.approx(1.0 + 1.1)
        assert trade.slippage == pytest.approx(1.0 + 1.1)
        assert trade.pnl == pytest.approx(100.0 - 2.2)
        assert result.final_state.cash == pytest.approx(100000 - 2.0 + 100.0 - 2.2)

    def test_instrument_filter(self):
        """Signals for unconfigured instruments are rejected."""
        config = make_config(instruments=['QQQ'])
        observations = make_observations([100, 101])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.LONG})

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert result.trades == []
        assert result.rejected_signals == 1

    def test_unknown_side_rejected(self, config):
        """Signals with a side other than LONG or SHORT never open a lot."""
        observations = make_observations([100, 101])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: 'BUY'})

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert result.trades == []
        assert result.rejected_signals == 1


# =============================================================================
# Test Exits
# =============================================================================

class TestExits:
    """Tests for stop-loss, take-profit and end-of-data exits."""

    def test_stop_loss(self):
        """Long position exits when price falls by stop_loss percent."""
        config = make_config(risk_management=RiskManagementConfig(stop_loss=5.0))
        observations = make_observations([100, 97, 94, 90])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.LONG})

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.exit_price == 94
        assert trade.pnl == pytest.approx(-60.0)

    def test_take_profit_short(self):
        """Short position takes profit when price falls by take_profit percent."""
        config = make_config(risk_management=RiskManagementConfig(take_profit=10.0))
        observations = make_observations([100, 95, 89, 85])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.SHORT})

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.TAKE_PROFIT
        assert trade.exit_price == 89
        assert trade.pnl == pytest.approx(110.0)

    def test_force_close_at_end_of_data(self, config):
        """Open positions are closed at the last close and equity restated."""
        observations = make_observations([100, 104, 108])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.LONG})

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.END_OF_DATA
        assert trade.exit_price == 108
        assert trade.exit_time == observations[-1].timestamp
        assert result.final_state.positions == {}
        assert result.equity[-1].value == pytest.approx(100080.0)
        assert result.equity[-1].value == pytest.approx(result.final_state.cash)


# =============================================================================
# Test Risk Management
# =============================================================================

class TestRiskManagement:
    """Tests for drawdown halt and position sizing."""

    def test_drawdown_halt_blocks_entries(self):
        """New entries are rejected while drawdown exceeds max_drawdown."""
        config = make_config(
            initial_capital=1000.0,
            risk_management=RiskManagementConfig(max_drawdown=10.0),
        )
        observations = make_observations([100, 80, 80, 80])
        strategy = ScriptedStrategy(
            entries={
                observations[0].timestamp: Side.LONG,
                observations[3].timestamp: Side.LONG,
            },
            exits=[observations[2].timestamp],
        )

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        # 10 units: 1000 -> 800 is a 20% drawdown, second entry halted
        assert len(result.trades) == 1
        assert result.rejected_signals == 1

    def test_kelly_falls_back_before_min_trades(self, config):
        """Kelly sizing uses the signal quantity until enough trades close."""
        config.risk_management.position_sizing = 'kelly'
        observations = make_observations([100, 101, 102])
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.LONG}, quantity=7)

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        assert result.trades[0].quantity == 7

    def test_kelly_sizes_after_min_trades(self):
        """After min_trades_for_kelly closes, quantity follows the Kelly fraction."""
        config = make_config(
            days=60,
            risk_management=RiskManagementConfig(position_sizing='kelly', min_trades_for_kelly=2),
        )
        closes = [100, 110, 100, 110, 100, 100]
        observations = make_observations(closes)
        strategy = ScriptedStrategy(
            entries={
                observations[0].timestamp: Side.LONG,
                observations[2].timestamp: Side.LONG,
                observations[4].timestamp: Side.LONG,
            },
            exits=[observations[1].timestamp, observations[3].timestamp],
            quantity=10,
        )

        result = ReplayEngine().run(observations, [('s', strategy)], config)

        # Two winners, no losers: half-Kelly = 0.5, capped to 0.25
        third = result.trades[2]
        expected = int(100200.0 * 0.25 / 100)
        assert third.quantity == expected
