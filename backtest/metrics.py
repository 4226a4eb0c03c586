"""
Backtest Core - Metrics Calculator

Pure functions turning a trade ledger and equity curve into PerformanceMetrics.

Every ratio resolves to 0.0 when its denominator is zero. NaN and infinity
never escape this module.

Usage:
    from backtest.metrics import compute_metrics

    metrics = compute_metrics(result.trades, result.equity, initial_capital=100000)
    print(metrics.summary())
"""

import math
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

from backtest.models import CompletedTrade, EquityPoint
from backtest.results import PerformanceMetrics

TRADING_DAYS_PER_YEAR = 252
CALENDAR_DAYS_PER_YEAR = 365


def _finite(value: float) -> float:
    """Collapse NaN/inf to 0.0."""
    value = float(value)
    return value if math.isfinite(value) else 0.0


def calculate_daily_returns(values: Sequence[float]) -> np.ndarray:
    """
    Period-over-period returns of an equity series.

    A step whose previous value is zero contributes a 0.0 return.

    Args:
        values: Equity values in chronological order

    Returns:
        Array of len(values) - 1 returns
    """
    equity = np.asarray(values, dtype=float)
    if len(equity) < 2:
        return np.array([])

    previous = equity[:-1]
    change = equity[1:] - previous
    safe = np.where(previous == 0, 1.0, previous)
    return np.where(previous == 0, 0.0, change / safe)


def _drawdown_series(values: Sequence[float]) -> np.ndarray:
    """Running-peak drawdown at each point as a positive decimal."""
    equity = np.asarray(values, dtype=float)
    if len(equity) == 0:
        return np.array([])

    running_max = np.maximum.accumulate(equity)
    safe = np.where(running_max <= 0, 1.0, running_max)
    return np.where(running_max <= 0, 0.0, (running_max - equity) / safe)


def calculate_max_drawdown(values: Sequence[float]) -> float:
    """
    Calculate maximum drawdown from an equity series.

    Returns drawdown as positive decimal (0.25 = 25% drawdown).

    Args:
        values: Equity values in chronological order

    Returns:
        Maximum drawdown, 0.0 for fewer than two points
    """
    if len(values) < 2:
        return 0.0
    return _finite(np.max(_drawdown_series(values)))


def calculate_ulcer_index(values: Sequence[float]) -> float:
    """Root mean square of running-peak drawdowns."""
    if len(values) < 2:
        return 0.0
    drawdowns = _drawdown_series(values)
    return _finite(np.sqrt(np.mean(drawdowns ** 2)))


def calculate_var(returns: Sequence[float], confidence: float) -> float:
    """
    Historical Value at Risk.

    Args:
        returns: Daily returns
        confidence: Confidence level (0.95 = 95%)

    Returns:
        Absolute return at index floor((1 - confidence) * n) of the sorted series
    """
    if len(returns) == 0:
        return 0.0
    ordered = np.sort(np.asarray(returns, dtype=float))
    index = min(int(math.floor((1 - confidence) * len(ordered))), len(ordered) - 1)
    return _finite(abs(ordered[index]))


def calculate_cvar(returns: Sequence[float], confidence: float) -> float:
    """Absolute mean of the returns at or below the VaR quantile."""
    if len(returns) == 0:
        return 0.0
    ordered = np.sort(np.asarray(returns, dtype=float))
    index = min(int(math.floor((1 - confidence) * len(ordered))), len(ordered) - 1)
    return _finite(abs(np.mean(ordered[:index + 1])))


def calculate_sharpe_ratio(
    annualized_return: float,
    volatility: float,
    risk_free_rate: float = 0.0
) -> float:
    """
    Sharpe = (annualized_return - risk_free_rate) / volatility

    Args:
        annualized_return: Annualized return as decimal
        volatility: Annualized volatility as decimal
        risk_free_rate: Annual risk-free rate

    Returns:
        Sharpe ratio, 0.0 if volatility is zero
    """
    if volatility <= 0:
        return 0.0
    return _finite((annualized_return - risk_free_rate) / volatility)


def _annualize(total_return: float, days: float) -> float:
    if days <= 0:
        return total_return
    growth = 1 + total_return
    if growth <= 0:
        return -1.0
    return _finite(growth ** (CALENDAR_DAYS_PER_YEAR / days) - 1)


def _longest_streak(pnls: Sequence[float], winning: bool) -> int:
    longest = 0
    current = 0
    for pnl in pnls:
        if (pnl > 0) if winning else (pnl < 0):
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def _monthly_returns(equity: Sequence[EquityPoint], initial_capital: float) -> Dict[str, float]:
    """Compounded return per calendar month keyed 'YYYY-MM'."""
    series = pd.Series(
        [p.value for p in equity],
        index=pd.DatetimeIndex([p.timestamp for p in equity]),
    )
    month_end = series.groupby(series.index.strftime('%Y-%m')).last()
    base = month_end.shift(1)
    base.iloc[0] = initial_capital

    monthly = {}
    for month, value in month_end.items():
        start = base[month]
        monthly[month] = _finite((value - start) / start) if start else 0.0
    return monthly


def compute_metrics(
    trades: List[CompletedTrade],
    equity: List[EquityPoint],
    initial_capital: float,
    risk_free_rate: float = 0.05
) -> PerformanceMetrics:
    """
    Compute PerformanceMetrics from a replay's trades and equity curve.

    Args:
        trades: Finalized trades (open ledger entries are ignored)
        equity: Equity curve in chronological order
        initial_capital: Starting capital of the replay
        risk_free_rate: Annual risk-free rate for Sharpe/Sortino

    Returns:
        PerformanceMetrics (all zero when there are no trades or no equity)
    """
    closed = [t for t in trades if t.is_closed]
    if not closed or not equity or initial_capital <= 0:
        return PerformanceMetrics.empty()

    closed.sort(key=lambda t: (t.exit_time, t.entry_time))
    values = [p.value for p in equity]

    # Returns
    total_return = _finite((values[-1] - initial_capital) / initial_capital)
    daily_returns = calculate_daily_returns(values)
    days = (equity[-1].timestamp - equity[0].timestamp).total_seconds() / 86400
    annualized_return = _annualize(total_return, days)

    # Risk
    if len(daily_returns) > 0:
        volatility = _finite(np.std(daily_returns) * np.sqrt(TRADING_DAYS_PER_YEAR))
        mean_return = np.mean(daily_returns)
        downside = daily_returns[daily_returns < mean_return]
    else:
        volatility = 0.0
        downside = np.array([])

    sharpe_ratio = calculate_sharpe_ratio(annualized_return, volatility, risk_free_rate)

    if len(downside) > 0:
        downside_deviation = np.sqrt(np.mean((downside - mean_return) ** 2))
        sortino_ratio = calculate_sharpe_ratio(
            annualized_return,
            _finite(downside_deviation * np.sqrt(TRADING_DAYS_PER_YEAR)),
            risk_free_rate,
        )
    else:
        sortino_ratio = 0.0

    max_drawdown = calculate_max_drawdown(values)
    calmar_ratio = _finite(annualized_return / max_drawdown) if max_drawdown > 0 else 0.0
    recovery_factor = _finite(total_return / max_drawdown) if max_drawdown > 0 else 0.0

    # Trade statistics
    pnls = [t.pnl for t in closed]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    total_gains = sum(wins)
    total_losses = abs(sum(losses))
    average_win = total_gains / len(wins) if wins else 0.0
    average_loss = total_losses / len(losses) if losses else 0.0
    profit_factor = (
        (average_win * len(wins)) / (average_loss * len(losses)) if average_loss > 0 else 0.0
    )
    durations = [t.holding_period.total_seconds() for t in closed]

    return PerformanceMetrics(
        total_return=total_return,
        annualized_return=annualized_return,
        volatility=volatility,
        sharpe_ratio=sharpe_ratio,
        sortino_ratio=sortino_ratio,
        max_drawdown=max_drawdown,
        calmar_ratio=calmar_ratio,
        var95=calculate_var(daily_returns, 0.95),
        var99=calculate_var(daily_returns, 0.99),
        cvar95=calculate_cvar(daily_returns, 0.95),
        win_rate=len(wins) / len(closed),
        profit_factor=_finite(profit_factor),
        consecutive_wins=_longest_streak(pnls, winning=True),
        consecutive_losses=_longest_streak(pnls, winning=False),
        ulcer_index=calculate_ulcer_index(values),
        gain_to_pain_ratio=_finite(total_gains / total_losses) if total_losses > 0 else 0.0,
        recovery_factor=recovery_factor,
        total_trades=len(closed),
        winning_trades=len(wins),
        losing_trades=len(losses),
        average_win=average_win,
        average_loss=average_loss,
        average_trade_duration=float(np.mean(durations)),
        best_trade=max(pnls),
        worst_trade=min(pnls),
        daily_returns=[float(r) for r in daily_returns],
        monthly_returns=_monthly_returns(equity, initial_capital),
    )
