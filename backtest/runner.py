"""
Backtest Runner - composes the replay core into a full backtest.

Runs, in order:
- Full-period replay and performance metrics
- Walk-forward analysis (if enabled)
- Monte Carlo resampling of the full-period daily returns (if enabled)

Configuration is validated before any simulation starts. Errors other than the
recoverable ones handled inside the components propagate to the caller, so a
run either returns a complete report or fails.

Usage:
    from backtest import BacktestRunner, BacktestConfig, StrategyRegistry

    registry = StrategyRegistry({'sma_cross': SmaCross()})
    runner = BacktestRunner(registry, config)
    report = runner.run(observations)
    print(report.summary())

    # Convenience function
    from backtest import run_backtest
    report = run_backtest({'sma_cross': SmaCross()}, observations, config)
"""

import copy
import logging
import time
from typing import Dict, Optional, Sequence, Union

import numpy as np

from backtest.config import BacktestConfig
from backtest.data import prepare_observations
from backtest.metrics import compute_metrics
from backtest.models import MarketObservation
from backtest.monte_carlo import MonteCarloSimulator
from backtest.protocols import MarketDataSource, NamedStrategies, StrategyProtocol
from backtest.registry import StrategyRegistry
from backtest.replay import ReplayEngine
from backtest.results import BacktestReport, MonteCarloResult
from backtest.trade_journal import TradeJournal
from backtest.walk_forward import WalkForwardAnalyzer, summarize

logger = logging.getLogger(__name__)


class BacktestRunner:
    """
    Coordinates replay, walk-forward and Monte Carlo for one configuration.

    Example:
        runner = BacktestRunner(registry, config, journal=TradeJournal('logs/backtest/'))
        report = runner.run(observations)
        if report.monte_carlo and report.monte_carlo.probability_of_loss < 0.2:
            print("Robust under resampling")
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        config: BacktestConfig,
        journal: Optional[TradeJournal] = None
    ):
        """
        Initialize runner.

        Args:
            registry: Strategies available to the run
            config: Backtest configuration (validated in run())
            journal: Optional audit trail for the full-period replay
        """
        self.registry = registry
        self.config = config
        self.journal = journal

    def run(self, observations: Sequence[MarketObservation]) -> BacktestReport:
        """
        Run the full backtest.

        Args:
            observations: Observations for all instruments, any order

        Returns:
            BacktestReport

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config = self.config.validate()
        start_time = time.time()

        strategies = self.registry.active(config.strategies)
        prepared = prepare_observations(
            observations, config.start_date, config.end_date, config.instruments
        )

        logger.info(
            f"Starting backtest: {len(prepared)} observations, "
            f"{len(strategies)} strategies, "
            f"{config.start_date.date()} to {config.end_date.date()}"
        )
        if not strategies:
            logger.warning("No active strategies; replay will produce no trades")

        # Walk-forward windows start from the strategies as registered, not as
        # left behind by the full-period replay
        pristine = copy.deepcopy(strategies) if config.walk_forward.enabled else strategies

        # Full-period replay
        replay = ReplayEngine(journal=self.journal).run(prepared, strategies, config)
        metrics = compute_metrics(
            replay.trades,
            replay.equity,
            config.initial_capital,
            risk_free_rate=config.risk_free_rate,
        )
        logger.info(
            f"Full-period replay: {metrics.total_trades} trades, "
            f"return={metrics.total_return:.2%}, Sharpe={metrics.sharpe_ratio:.2f}"
        )

        # Walk-forward
        walk_forward = []
        if config.walk_forward.enabled:
            walk_forward = WalkForwardAnalyzer(ReplayEngine()).run(prepared, pristine, config)
            wf_summary = summarize(walk_forward)
            logger.info(
                f"Walk-forward: {wf_summary.total_windows} windows, "
                f"avg test Sharpe={wf_summary.avg_testing_sharpe:.2f}"
            )

        # Monte Carlo
        monte_carlo = self._run_monte_carlo(metrics.daily_returns) if config.monte_carlo.enabled else None

        execution_time = time.time() - start_time
        logger.info(f"Backtest completed in {execution_time:.2f}s")

        return BacktestReport(
            metrics=metrics,
            trades=replay.trades,
            walk_forward=walk_forward,
            monte_carlo=monte_carlo,
            equity_curve=replay.equity,
            config_used=config.to_dict(),
            execution_time_seconds=execution_time,
            rejected_signals=replay.rejected_signals,
            strategy_faults=replay.strategy_faults,
        )

    def run_from_source(self, source: MarketDataSource) -> BacktestReport:
        """
        Fetch observations from a data source and run.

        Args:
            source: Supplier of observations for the configured range

        Returns:
            BacktestReport
        """
        config = self.config.validate()
        observations = source.get_observations(
            config.instruments, config.start_date, config.end_date
        )
        return self.run(observations)

    def _run_monte_carlo(self, daily_returns: Sequence[float]) -> MonteCarloResult:
        mc = self.config.monte_carlo
        simulator = MonteCarloSimulator(np.random.default_rng(mc.seed))
        return simulator.run(daily_returns, mc.simulations, mc.confidence_level)


def run_backtest(
    strategies: Union[StrategyRegistry, Dict[str, StrategyProtocol], NamedStrategies],
    observations: Sequence[MarketObservation],
    config: BacktestConfig,
    journal: Optional[TradeJournal] = None
) -> BacktestReport:
    """
    Convenience function to run a full backtest.

    Args:
        strategies: Registry, name -> strategy mapping, or (name, strategy) pairs
        observations: Observations for all instruments
        config: Backtest configuration
        journal: Optional audit trail for the full-period replay

    Returns:
        BacktestReport

    Example:
        >>> report = run_backtest({'sma': SmaCross()}, observations, config)
        >>> print(f"Sharpe: {report.metrics.sharpe_ratio:.2f}")
    """
    if isinstance(strategies, StrategyRegistry):
        registry = strategies
    elif isinstance(strategies, dict):
        registry = StrategyRegistry(strategies)
    else:
        registry = StrategyRegistry(dict(strategies))

    return BacktestRunner(registry, config, journal=journal).run(observations)
