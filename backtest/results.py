"""
Backtest Core - Results Module

Defines result dataclasses for the metrics calculator, walk-forward
orchestrator, Monte Carlo simulator and the coordinator report.

Usage:
    from backtest.results import PerformanceMetrics, BacktestReport

    print(report.summary())
    payload = report.to_dict()
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from backtest.models import CompletedTrade, EquityPoint


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Performance and risk statistics for one replay.

    Return and drawdown figures are decimals (0.25 = 25%). Every ratio is 0.0
    when its denominator is zero.

    Attributes:
        total_return: (final equity - initial capital) / initial capital
        annualized_return: Compounded over the elapsed calendar days
        volatility: Population std of daily returns * sqrt(252)
        sharpe_ratio: (annualized_return - risk_free_rate) / volatility
        sortino_ratio: Same numerator over annualized downside deviation
        max_drawdown: Largest peak-to-trough decline
        calmar_ratio: annualized_return / max_drawdown
        var95: Absolute daily return at the 5% quantile
        var99: Absolute daily return at the 1% quantile
        cvar95: Absolute mean of daily returns at or below the 5% quantile
        win_rate: winning_trades / total_trades
        profit_factor: Gross wins / gross losses
        consecutive_wins: Longest streak of positive-pnl trades
        consecutive_losses: Longest streak of negative-pnl trades
        ulcer_index: Root mean square drawdown
        gain_to_pain_ratio: Total gains / total losses
        recovery_factor: total_return / max_drawdown
        average_trade_duration: Mean holding period in seconds
    """
    total_return: float = 0.0
    annualized_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    calmar_ratio: float = 0.0
    var95: float = 0.0
    var99: float = 0.0
    cvar95: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    ulcer_index: float = 0.0
    gain_to_pain_ratio: float = 0.0
    recovery_factor: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    average_win: float = 0.0
    average_loss: float = 0.0
    average_trade_duration: float = 0.0
    best_trade: float = 0.0
    worst_trade: float = 0.0
    daily_returns: List[float] = field(default_factory=list)
    monthly_returns: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> 'PerformanceMetrics':
        """All-zero metrics for degenerate inputs."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'total_return': self.total_return,
            'annualized_return': self.annualized_return,
            'volatility': self.volatility,
            'sharpe_ratio': self.sharpe_ratio,
            'sortino_ratio': self.sortino_ratio,
            'max_drawdown': self.max_drawdown,
            'calmar_ratio': self.calmar_ratio,
            'var95': self.var95,
            'var99': self.var99,
            'cvar95': self.cvar95,
            'win_rate': self.win_rate,
            'profit_factor': self.profit_factor,
            'consecutive_wins': self.consecutive_wins,
            'consecutive_losses': self.consecutive_losses,
            'ulcer_index': self.ulcer_index,
            'gain_to_pain_ratio': self.gain_to_pain_ratio,
            'recovery_factor': self.recovery_factor,
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'average_win': self.average_win,
            'average_loss': self.average_loss,
            'average_trade_duration': self.average_trade_duration,
            'best_trade': self.best_trade,
            'worst_trade': self.worst_trade,
            'daily_returns': list(self.daily_returns),
            'monthly_returns': dict(self.monthly_returns),
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "=" * 60,
            "PERFORMANCE METRICS",
            "=" * 60,
            f"Total Return:          {self.total_return:.2%}",
            f"Annualized Return:     {self.annualized_return:.2%}",
            f"Volatility:            {self.volatility:.2%}",
            f"Sharpe Ratio:          {self.sharpe_ratio:.2f}",
            f"Sortino Ratio:         {self.sortino_ratio:.2f}",
            f"Calmar Ratio:          {self.calmar_ratio:.2f}",
            f"Max Drawdown:          {self.max_drawdown:.2%}",
            f"VaR 95% / 99%:         {self.var95:.2%} / {self.var99:.2%}",
            f"Ulcer Index:           {self.ulcer_index:.4f}",
            "",
            f"Trades:                {self.total_trades} "
            f"({self.winning_trades}W / {self.losing_trades}L)",
            f"Win Rate:              {self.win_rate:.1%}",
            f"Profit Factor:         {self.profit_factor:.2f}",
            f"Best / Worst Trade:    ${self.best_trade:,.2f} / ${self.worst_trade:,.2f}",
            f"Max Win/Loss Streak:   {self.consecutive_wins} / {self.consecutive_losses}",
            "=" * 60,
        ]
        return "\n".join(lines)


class WindowKind(str, Enum):
    """Walk-forward window role."""

    TRAINING = 'training'
    TESTING = 'testing'


@dataclass(frozen=True)
class WindowPeriod:
    """Half-open date range [start, end) of one walk-forward window."""
    start: datetime
    end: datetime
    kind: WindowKind


@dataclass(frozen=True)
class WalkForwardResult:
    """
    Results for a single walk-forward window.

    Attributes:
        period: Window date range and role
        metrics: Metrics for the window replay (all-zero if degenerate)
        trades: Finalized trades from the window
        equity: Equity curve from the window
    """
    period: WindowPeriod
    metrics: PerformanceMetrics
    trades: List[CompletedTrade] = field(default_factory=list)
    equity: List[EquityPoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'period': {
                'start': self.period.start.isoformat(),
                'end': self.period.end.isoformat(),
                'kind': self.period.kind.value,
            },
            'metrics': self.metrics.to_dict(),
            'trades': [t.to_dict() for t in self.trades],
            'equity': [
                {'timestamp': p.timestamp.isoformat(), 'value': p.value}
                for p in self.equity
            ],
        }


@dataclass(frozen=True)
class WalkForwardSummary:
    """
    Aggregate view over all walk-forward windows.

    Attributes:
        total_windows: Number of (training, testing) pairs
        avg_training_sharpe: Mean Sharpe over training windows
        avg_testing_sharpe: Mean Sharpe over testing windows
        sharpe_degradation: 1 - testing / training Sharpe (0 if training is 0)
        profitable_testing_pct: Share of testing windows with total_return > 0
    """
    total_windows: int
    avg_training_sharpe: float
    avg_testing_sharpe: float
    sharpe_degradation: float
    profitable_testing_pct: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'total_windows': self.total_windows,
            'avg_training_sharpe': self.avg_training_sharpe,
            'avg_testing_sharpe': self.avg_testing_sharpe,
            'sharpe_degradation': self.sharpe_degradation,
            'profitable_testing_pct': self.profitable_testing_pct,
        }


@dataclass(frozen=True)
class MonteCarloResult:
    """
    Distribution of compounded returns from bootstrap resampling.

    Attributes:
        simulations: Completed iterations
        confidence_level: Confidence level used for worst/best case
        expected_return: Mean of the distribution
        expected_volatility: Population std of the distribution
        worst_case_return: Value at the (1 - confidence) quantile index
        best_case_return: Value at the confidence quantile index
        probability_of_loss: Share of outcomes below 0
        probability_of_drawdown: Share of outcomes below -10%
        return_distribution: Sorted outcomes
    """
    simulations: int = 0
    confidence_level: float = 0.0
    expected_return: float = 0.0
    expected_volatility: float = 0.0
    worst_case_return: float = 0.0
    best_case_return: float = 0.0
    probability_of_loss: float = 0.0
    probability_of_drawdown: float = 0.0
    return_distribution: List[float] = field(default_factory=list)

    @classmethod
    def empty(cls) -> 'MonteCarloResult':
        """All-zero result for an empty return series."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (distribution omitted for size)."""
        return {
            'simulations': self.simulations,
            'confidence_level': self.confidence_level,
            'expected_return': self.expected_return,
            'expected_volatility': self.expected_volatility,
            'worst_case_return': self.worst_case_return,
            'best_case_return': self.best_case_return,
            'probability_of_loss': self.probability_of_loss,
            'probability_of_drawdown': self.probability_of_drawdown,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "=" * 60,
            "MONTE CARLO SIMULATION",
            "=" * 60,
            f"Simulations:           {self.simulations:,}",
            f"Confidence Level:      {self.confidence_level:.0%}",
            f"Expected Return:       {self.expected_return:.2%}",
            f"Expected Volatility:   {self.expected_volatility:.2%}",
            f"Worst Case:            {self.worst_case_return:.2%}",
            f"Best Case:             {self.best_case_return:.2%}",
            f"P(Loss):               {self.probability_of_loss:.1%}",
            f"P(Drawdown > 10%):     {self.probability_of_drawdown:.1%}",
            "=" * 60,
        ]
        return "\n".join(lines)


@dataclass
class BacktestReport:
    """
    Complete output of a backtest run.

    Attributes:
        metrics: Full-period performance metrics
        trades: Full-period finalized trades
        walk_forward: Per-window results (empty if disabled)
        monte_carlo: Monte Carlo result (None if disabled)
        equity_curve: Full-period equity curve
        config_used: Configuration snapshot (BacktestConfig.to_dict())
        execution_time_seconds: Wall-clock duration of the run
    """
    metrics: PerformanceMetrics
    trades: List[CompletedTrade]
    walk_forward: List[WalkForwardResult] = field(default_factory=list)
    monte_carlo: Optional[MonteCarloResult] = None
    equity_curve: List[EquityPoint] = field(default_factory=list)
    config_used: Dict[str, Any] = field(default_factory=dict)
    execution_time_seconds: float = 0.0
    rejected_signals: int = 0
    strategy_faults: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'metrics': self.metrics.to_dict(),
            'trades': [t.to_dict() for t in self.trades],
            'walk_forward': [w.to_dict() for w in self.walk_forward],
            'monte_carlo': self.monte_carlo.to_dict() if self.monte_carlo else None,
            'equity_curve': [
                {'timestamp': p.timestamp.isoformat(), 'value': p.value}
                for p in self.equity_curve
            ],
            'config_used': self.config_used,
            'execution_time_seconds': self.execution_time_seconds,
            'rejected_signals': self.rejected_signals,
            'strategy_faults': self.strategy_faults,
        }

    def summary(self) -> str:
        """Human-readable report."""
        lines = [
            "#" * 60,
            "BACKTEST REPORT",
            "#" * 60,
            f"Execution Time:        {self.execution_time_seconds:.2f}s",
            f"Trades:                {len(self.trades)}",
            f"Rejected Signals:      {self.rejected_signals}",
            f"Strategy Faults:       {self.strategy_faults}",
            "",
            self.metrics.summary(),
        ]

        if self.walk_forward:
            testing = [w for w in self.walk_forward if w.period.kind == WindowKind.TESTING]
            lines.append("")
            lines.append(f"Walk-Forward Windows:  {len(testing)} testing periods")

        if self.monte_carlo is not None:
            lines.append("")
            lines.append(self.monte_carlo.summary())

        return "\n".join(lines)
