"""
Backtest Core - Walk-Forward Orchestrator

Partitions the configured date range into successive (training, testing)
windows and replays each window independently on a fresh portfolio.

Window Structure (day-based, half-open):
    |-- training [cursor, cursor+window_size) --|-- testing (+min_test_period) --|
    cursor advances by step_size until the testing end would pass end_date.

Windows share no mutable state. Each window replays its own deep copy of the
strategies, so indicator warm-up and bar buffers never carry from one window
into another. Replays are dispatched over a bounded ThreadPoolExecutor. Output
is always chronological: training then testing for each cursor position.

Usage:
    from backtest.walk_forward import WalkForwardAnalyzer

    analyzer = WalkForwardAnalyzer()
    results = analyzer.run(observations, registry, config)
    print(summarize(results).to_dict())
"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence

import numpy as np

from backtest.config import BacktestConfig
from backtest.errors import InsufficientHistoryError
from backtest.metrics import compute_metrics
from backtest.models import MarketObservation
from backtest.protocols import NamedStrategies
from backtest.replay import ReplayEngine, StrategySet, resolve_strategies
from backtest.results import (
    PerformanceMetrics,
    WalkForwardResult,
    WalkForwardSummary,
    WindowKind,
    WindowPeriod,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowPair:
    """Adjacent training and testing periods for one cursor position."""
    index: int
    training: WindowPeriod
    testing: WindowPeriod


def generate_windows(config: BacktestConfig) -> List[WindowPair]:
    """
    Carve the configured date range into walk-forward windows.

    Gaps between windows (step_size > window_size + min_test_period) are
    allowed.

    Args:
        config: Backtest configuration

    Returns:
        Window pairs in chronological order (may be empty)
    """
    wf = config.walk_forward
    window = timedelta(days=wf.window_size)
    test = timedelta(days=wf.min_test_period)
    step = timedelta(days=wf.step_size)

    pairs = []
    cursor = config.start_date
    while True:
        train_end = cursor + window
        test_end = train_end + test
        if test_end > config.end_date:
            break

        pairs.append(WindowPair(
            index=len(pairs),
            training=WindowPeriod(cursor, train_end, WindowKind.TRAINING),
            testing=WindowPeriod(train_end, test_end, WindowKind.TESTING),
        ))
        cursor += step

    return pairs


class WalkForwardAnalyzer:
    """
    Runs the replay engine once per training and testing window.

    Example:
        analyzer = WalkForwardAnalyzer(ReplayEngine())
        results = analyzer.run(observations, strategies, config)
        testing = [r for r in results if r.period.kind == WindowKind.TESTING]
    """

    def __init__(self, engine: Optional[ReplayEngine] = None):
        """
        Initialize analyzer.

        Args:
            engine: Replay engine to use (default: a new ReplayEngine)
        """
        self.engine = engine or ReplayEngine()

    def run(
        self,
        observations: Sequence[MarketObservation],
        strategies: StrategySet,
        config: BacktestConfig
    ) -> List[WalkForwardResult]:
        """
        Run walk-forward analysis.

        Args:
            observations: Sorted observations covering the configured range
            strategies: Strategy set; each window replays a deep copy, so
                the caller's instances are never mutated
            config: Backtest configuration

        Returns:
            Two WalkForwardResult entries per window pair, chronological
        """
        pairs = generate_windows(config)
        logger.info(f"Starting walk-forward analysis: {len(pairs)} windows")

        if not pairs:
            logger.warning(
                f"Date range {config.start_date.date()} to {config.end_date.date()} is too short "
                f"for window_size={config.walk_forward.window_size} + "
                f"min_test_period={config.walk_forward.min_test_period}"
            )
            return []

        periods = []
        for pair in pairs:
            periods.append(pair.training)
            periods.append(pair.testing)

        active = resolve_strategies(strategies, config)
        results: List[Optional[WalkForwardResult]] = [None] * len(periods)
        workers = min(config.walk_forward.max_workers, len(periods))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(
                    self._run_window, observations, copy.deepcopy(active), config, period
                ): i
                for i, period in enumerate(periods)
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()

        for pair in pairs:
            training = results[2 * pair.index]
            testing = results[2 * pair.index + 1]
            logger.info(
                f"Window {pair.index + 1}/{len(pairs)}: "
                f"train Sharpe={training.metrics.sharpe_ratio:.2f}, "
                f"test Sharpe={testing.metrics.sharpe_ratio:.2f}, "
                f"test return={testing.metrics.total_return:.2%}"
            )

        logger.info(f"Walk-forward complete: {len(results)} window results")
        return results

    def _run_window(
        self,
        observations: Sequence[MarketObservation],
        strategies: NamedStrategies,
        config: BacktestConfig,
        period: WindowPeriod
    ) -> WalkForwardResult:
        try:
            window_observations = self._window_observations(
                observations, period, config.walk_forward.min_observations
            )
        except InsufficientHistoryError as e:
            logger.warning(f"{e}; using zeroed metrics")
            return WalkForwardResult(period=period, metrics=PerformanceMetrics.empty())

        replay = self.engine.run(window_observations, strategies, config)
        metrics = compute_metrics(
            replay.trades,
            replay.equity,
            config.initial_capital,
            risk_free_rate=config.risk_free_rate,
        )

        return WalkForwardResult(
            period=period,
            metrics=metrics,
            trades=replay.trades,
            equity=replay.equity,
        )

    @staticmethod
    def _window_observations(
        observations: Sequence[MarketObservation],
        period: WindowPeriod,
        required: int
    ) -> List[MarketObservation]:
        """
        Observations inside a window.

        Raises:
            InsufficientHistoryError: If fewer than required fall inside it
        """
        selected = [o for o in observations if period.start <= o.timestamp < period.end]
        if len(selected) < required:
            raise InsufficientHistoryError(
                len(selected),
                required,
                f"{period.kind.value} window {period.start.date()} to {period.end.date()}",
            )
        return selected


def summarize(results: Sequence[WalkForwardResult]) -> WalkForwardSummary:
    """
    Aggregate training vs testing performance.

    Args:
        results: Output of WalkForwardAnalyzer.run

    Returns:
        WalkForwardSummary (all zero for an empty result list)
    """
    training = [r.metrics.sharpe_ratio for r in results if r.period.kind == WindowKind.TRAINING]
    testing = [r for r in results if r.period.kind == WindowKind.TESTING]

    if not testing:
        return WalkForwardSummary(0, 0.0, 0.0, 0.0, 0.0)

    avg_training = float(np.mean(training)) if training else 0.0
    avg_testing = float(np.mean([r.metrics.sharpe_ratio for r in testing]))
    degradation = 1.0 - avg_testing / avg_training if avg_training != 0 else 0.0
    profitable = sum(1 for r in testing if r.metrics.total_return > 0) / len(testing)

    return WalkForwardSummary(
        total_windows=len(testing),
        avg_training_sharpe=avg_training,
        avg_testing_sharpe=avg_testing,
        sharpe_degradation=degradation,
        profitable_testing_pct=profitable,
    )
