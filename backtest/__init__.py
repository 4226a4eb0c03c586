"""
Backtest Core

Replays historical observations against strategies and evaluates the result.

Components:
- ReplayEngine: portfolio replay producing trades and an equity curve
- compute_metrics: performance and risk statistics
- WalkForwardAnalyzer: rolling training/testing windows
- MonteCarloSimulator: bootstrap resampling of daily returns
- BacktestRunner: composes the above into a BacktestReport

Usage:
    from backtest import BacktestConfig, StrategyRegistry, run_backtest

    config = BacktestConfig(start_date=start, end_date=end, initial_capital=100000)
    report = run_backtest({'sma_cross': SmaCross()}, observations, config)
    print(report.summary())
"""

from backtest.config import (
    BacktestConfig,
    WalkForwardConfig,
    MonteCarloConfig,
    RiskManagementConfig,
)
from backtest.errors import (
    BacktestError,
    ConfigurationError,
    InsufficientFundsError,
    InsufficientHistoryError,
    StrategyFaultError,
)
from backtest.models import (
    Side,
    ExitReason,
    MarketObservation,
    Signal,
    OpenPosition,
    CompletedTrade,
    EquityPoint,
)
from backtest.protocols import StrategyProtocol, MarketDataSource
from backtest.registry import StrategyRegistry
from backtest.portfolio import PortfolioState
from backtest.results import (
    PerformanceMetrics,
    WindowKind,
    WindowPeriod,
    WalkForwardResult,
    WalkForwardSummary,
    MonteCarloResult,
    BacktestReport,
)
from backtest.metrics import compute_metrics
from backtest.replay import ReplayEngine, ReplayResult
from backtest.walk_forward import WalkForwardAnalyzer, generate_windows, summarize
from backtest.monte_carlo import MonteCarloSimulator
from backtest.data import observations_from_ohlcv, prepare_observations
from backtest.trade_journal import TradeJournal
from backtest.runner import BacktestRunner, run_backtest

__version__ = '0.1.0'

__all__ = [
    # Config
    'BacktestConfig',
    'WalkForwardConfig',
    'MonteCarloConfig',
    'RiskManagementConfig',
    # Errors
    'BacktestError',
    'ConfigurationError',
    'InsufficientFundsError',
    'InsufficientHistoryError',
    'StrategyFaultError',
    # Data model
    'Side',
    'ExitReason',
    'MarketObservation',
    'Signal',
    'OpenPosition',
    'CompletedTrade',
    'EquityPoint',
    'PortfolioState',
    # Interfaces
    'StrategyProtocol',
    'MarketDataSource',
    'StrategyRegistry',
    # Results
    'PerformanceMetrics',
    'WindowKind',
    'WindowPeriod',
    'WalkForwardResult',
    'WalkForwardSummary',
    'MonteCarloResult',
    'BacktestReport',
    # Components
    'compute_metrics',
    'ReplayEngine',
    'ReplayResult',
    'WalkForwardAnalyzer',
    'generate_windows',
    'summarize',
    'MonteCarloSimulator',
    'observations_from_ohlcv',
    'prepare_observations',
    'TradeJournal',
    'BacktestRunner',
    'run_backtest',
]
