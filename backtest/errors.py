"""
Backtest Core - Error Taxonomy

Recoverable errors are raised at the point of failure and caught one level up,
where they are logged and the run continues:
- InsufficientFundsError: signal rejected, replay continues
- InsufficientHistoryError: window gets zeroed metrics, walk-forward continues
- StrategyFaultError: strategy skipped for the current step

ConfigurationError is fatal and surfaces to the caller before any simulation
starts.
"""

from typing import Optional


class BacktestError(Exception):
    """Base class for all backtest core errors."""


class ConfigurationError(BacktestError, ValueError):
    """Invalid BacktestConfig (e.g. end_date <= start_date)."""


class InsufficientFundsError(BacktestError):
    """
    Signal execution attempted with required cash above available cash.

    Attributes:
        symbol: Symbol of the rejected signal
        required_cash: Cash needed including commission and slippage
        available_cash: Cash on hand when the signal was evaluated
    """

    def __init__(self, symbol: str, required_cash: float, available_cash: float):
        self.symbol = symbol
        self.required_cash = required_cash
        self.available_cash = available_cash
        super().__init__(
            f"Insufficient cash for {symbol}: required ${required_cash:,.2f}, "
            f"available ${available_cash:,.2f}"
        )


class InsufficientHistoryError(BacktestError):
    """Fewer observations than a window or strategy requires."""

    def __init__(self, available: int, required: int, context: str = ''):
        self.available = available
        self.required = required
        suffix = f" ({context})" if context else ''
        super().__init__(
            f"Insufficient history: {available} observations, {required} required{suffix}"
        )


class StrategyFaultError(BacktestError):
    """
    A strategy raised from generate_signals or should_exit.

    Wraps the original exception so the engine can log it uniformly.
    """

    def __init__(self, strategy_name: str, operation: str, cause: Optional[BaseException] = None):
        self.strategy_name = strategy_name
        self.operation = operation
        self.cause = cause
        super().__init__(f"Strategy '{strategy_name}' failed in {operation}: {cause}")
