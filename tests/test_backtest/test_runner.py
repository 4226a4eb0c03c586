"""
Tests for BacktestRunner and run_backtest.

Test Coverage:
- Full-period report assembly
- Configuration errors raised before any strategy call
- Walk-forward and Monte Carlo sections toggled by config
- Walk-forward windows isolated from full-period strategy state
- Seeded Monte Carlo reproducibility through the runner
- Observation preparation (range and instrument filters)
- Data source entry point
"""

from datetime import timedelta

import pytest

from backtest.config import MonteCarloConfig, WalkForwardConfig
from backtest.errors import ConfigurationError
from backtest.models import Side
from backtest.registry import StrategyRegistry
from backtest.results import BacktestReport, WindowKind
from backtest.runner import BacktestRunner, run_backtest
from tests.mocks.mock_strategies import (
    AlwaysLongStrategy,
    FaultyStrategy,
    ListDataSource,
    START,
    ScriptedStrategy,
    WarmupStrategy,
    make_config,
    make_observations,
)


# =============================================================================
# Test Full-Period Report
# =============================================================================

class TestRunner:
    """Tests for BacktestRunner.run."""

    def test_basic_report(self, trending_observations):
        """Report carries metrics, trades, equity and the config snapshot."""
        config = make_config(days=60)
        report = run_backtest({'long': AlwaysLongStrategy()}, trending_observations, config)

        assert isinstance(report, BacktestReport)
        assert report.metrics.total_trades == len(report.trades) > 0
        assert report.walk_forward == []
        assert report.monte_carlo is None
        assert len(report.equity_curve) == len(trending_observations)
        assert report.config_used == config.to_dict()
        assert report.execution_time_seconds >= 0

    def test_invalid_config_fails_before_replay(self, trending_observations):
        """ConfigurationError surfaces before any strategy is called."""
        config = make_config(initial_capital=-1)
        strategy = ScriptedStrategy()

        with pytest.raises(ConfigurationError):
            run_backtest({'s': strategy}, trending_observations, config)

        assert strategy.signal_calls == 0

    def test_faulty_strategy_report(self, trending_observations):
        """A failing strategy yields an empty but complete report."""
        config = make_config(days=60)
        report = run_backtest([('faulty', FaultyStrategy())], trending_observations, config)

        assert report.trades == []
        assert report.metrics.total_trades == 0
        assert report.strategy_faults == len(trending_observations)

    def test_observations_filtered_and_sorted(self):
        """Out-of-range and unconfigured observations are dropped."""
        config = make_config(days=5, instruments=['SPY'])
        spy = make_observations([100, 101, 102, 103, 104, 105, 106, 107, 108, 109])
        qqq = make_observations([50, 51, 52], symbol='QQQ')
        strategy = ScriptedStrategy()

        report = run_backtest({'s': strategy}, list(reversed(spy)) + qqq, config)

        # Days 0..5 inclusive of SPY only
        assert strategy.signal_calls == 6
        timestamps = [p.timestamp for p in report.equity_curve]
        assert timestamps == sorted(timestamps)
        assert timestamps[-1] == START + timedelta(days=5)

    def test_run_from_source(self):
        """Observations are fetched for the configured instruments and range."""
        config = make_config(days=5, instruments=['SPY'])
        observations = make_observations([100, 101, 102])
        source = ListDataSource(observations)
        strategy = ScriptedStrategy(entries={observations[0].timestamp: Side.LONG})

        report = BacktestRunner(StrategyRegistry({'s': strategy}), config).run_from_source(source)

        assert source.requests == [(['SPY'], config.start_date, config.end_date)]
        assert len(report.trades) == 1


# =============================================================================
# Test Optional Sections
# =============================================================================

class TestOptionalSections:
    """Walk-forward and Monte Carlo run only when enabled."""

    def test_walk_forward_enabled(self, year_observations):
        """Walk-forward results appear in chronological pairs."""
        config = make_config(days=365)
        config.walk_forward = WalkForwardConfig(
            enabled=True, window_size=90, min_test_period=30, max_workers=2
        )

        report = run_backtest({'long': AlwaysLongStrategy()}, year_observations, config)

        assert len(report.walk_forward) > 0
        assert report.walk_forward[0].period.kind == WindowKind.TRAINING
        assert report.walk_forward[1].period.kind == WindowKind.TESTING
        assert all(w.period.end <= config.end_date for w in report.walk_forward)

    def test_full_period_state_not_carried_into_windows(self, trending_observations):
        """Windows start from the registered strategy, not its full-period history."""
        config = make_config(days=60)
        config.walk_forward = WalkForwardConfig(
            enabled=True, window_size=20, min_test_period=10, max_workers=2
        )
        strategy = WarmupStrategy()

        report = run_backtest({'warmup': strategy}, trending_observations, config)

        assert len(report.trades) == 1
        assert report.walk_forward
        assert all(len(w.trades) == 1 for w in report.walk_forward)
        assert len(strategy.closes) == len(trending_observations)

    def test_monte_carlo_seeded(self, year_observations):
        """Same seed through the runner gives identical distributions."""
        config = make_config(days=365, monte_carlo=MonteCarloConfig(
            enabled=True, simulations=300, confidence_level=0.95, seed=123
        ))

        first = run_backtest({'long': AlwaysLongStrategy()}, year_observations, config)
        second = run_backtest({'long': AlwaysLongStrategy()}, year_observations, config)

        assert first.monte_carlo.simulations == 300
        assert first.monte_carlo.return_distribution == second.monte_carlo.return_distribution

    def test_monte_carlo_without_trades(self, year_observations):
        """No trades means no daily returns: Monte Carlo is all zero."""
        config = make_config(days=365, monte_carlo=MonteCarloConfig(enabled=True, seed=1))

        report = run_backtest({'idle': ScriptedStrategy()}, year_observations, config)

        assert report.monte_carlo.simulations == 0
        assert report.monte_carlo.return_distribution == []

    def test_report_serialization(self, trending_observations):
        """to_dict and summary cover every section."""
        config = make_config(days=60, monte_carlo=MonteCarloConfig(enabled=True, simulations=50, seed=1))
        report = run_backtest({'long': AlwaysLongStrategy()}, trending_observations, config)

        data = report.to_dict()
        assert set(data) >= {'metrics', 'trades', 'walk_forward', 'monte_carlo', 'equity_curve'}
        assert data['monte_carlo']['simulations'] == 50
        text = report.summary()
        assert 'BACKTEST REPORT' in text
        assert 'MONTE CARLO SIMULATION' in text
