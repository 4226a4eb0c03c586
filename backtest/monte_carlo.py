"""
Backtest Core - Monte Carlo Simulator

Bootstraps synthetic return paths from the daily returns of a replay to
estimate the distribution of outcomes.

Key Features:
- Bootstrap resampling with replacement
- Injected numpy Generator (reproducible given a seed)
- Optional cancellation between iterations
- P(Loss) and P(Drawdown > 10%) estimation

Usage:
    import numpy as np
    from backtest.monte_carlo import MonteCarloSimulator

    simulator = MonteCarloSimulator(np.random.default_rng(42))
    result = simulator.run(metrics.daily_returns, simulations=1000, confidence_level=0.95)
    print(result.summary())
"""

import logging
import math
import threading
from typing import Optional, Sequence

import numpy as np

from backtest.results import MonteCarloResult

logger = logging.getLogger(__name__)

# Outcomes below this compounded return count toward probability_of_drawdown
DRAWDOWN_THRESHOLD = 0.10


class MonteCarloSimulator:
    """
    Bootstrap resampler over a daily-return series.

    Example:
        simulator = MonteCarloSimulator(np.random.default_rng(seed))
        result = simulator.run(daily_returns, 5000, 0.95)
        if result.probability_of_loss > 0.2:
            print("More than 20% of paths lose money")
    """

    def __init__(self, rng: Optional[np.random.Generator] = None, seed: Optional[int] = None):
        """
        Initialize simulator.

        Args:
            rng: Random generator to draw from
            seed: Seed for a new generator when rng is not given
        """
        self._rng = rng if rng is not None else np.random.default_rng(seed)

    def run(
        self,
        daily_returns: Sequence[float],
        simulations: int,
        confidence_level: float,
        cancel_event: Optional[threading.Event] = None
    ) -> MonteCarloResult:
        """
        Run the bootstrap.

        Args:
            daily_returns: Observed daily returns
            simulations: Number of bootstrap paths
            confidence_level: Confidence level for worst/best case (0.95 = 95%)
            cancel_event: Checked between iterations; when set the loop stops
                and the result covers the completed iterations

        Returns:
            MonteCarloResult (all zero for an empty return series)
        """
        returns = np.asarray(daily_returns, dtype=float)

        if len(returns) == 0 or simulations <= 0:
            logger.warning("No daily returns provided for Monte Carlo simulation")
            return MonteCarloResult.empty()

        logger.info(
            f"Starting Monte Carlo simulation: {len(returns)} returns, {simulations} iterations"
        )

        n = len(returns)
        outcomes = []

        for i in range(simulations):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Monte Carlo cancelled after {i} of {simulations} simulations")
                break

            indices = self._rng.integers(0, n, size=n)
            outcomes.append(float(np.prod(1.0 + returns[indices]) - 1.0))

            if (i + 1) % 1000 == 0:
                logger.debug(f"Completed {i + 1}/{simulations} simulations")

        if not outcomes:
            return MonteCarloResult.empty()

        result = self._summarize(np.sort(np.array(outcomes)), confidence_level)
        logger.info(
            f"Monte Carlo complete: expected={result.expected_return:.2%}, "
            f"P(loss)={result.probability_of_loss:.1%}"
        )
        return result

    @staticmethod
    def _summarize(distribution: np.ndarray, confidence_level: float) -> MonteCarloResult:
        """Statistics over a sorted outcome distribution."""
        count = len(distribution)
        last = count - 1

        worst_index = min(int(math.floor((1 - confidence_level) * count)), last)
        best_index = min(int(math.floor(confidence_level * count)), last)

        return MonteCarloResult(
            simulations=count,
            confidence_level=confidence_level,
            expected_return=float(np.mean(distribution)),
            expected_volatility=float(np.std(distribution)),
            worst_case_return=float(distribution[worst_index]),
            best_case_return=float(distribution[best_index]),
            probability_of_loss=float(np.mean(distribution < 0)),
            probability_of_drawdown=float(np.mean(distribution < -DRAWDOWN_THRESHOLD)),
            return_distribution=distribution.tolist(),
        )
