"""
Backtest Core - Configuration Module

Defines configuration dataclasses for the replay engine, walk-forward
orchestrator and Monte Carlo simulator.

Percent units: stop_loss, take_profit and max_drawdown in RiskManagementConfig
are percentages (2.0 = 2%). commission and slippage on BacktestConfig are
fractions of trade value (0.001 = 0.1%).

Usage:
    from backtest.config import BacktestConfig

    config = BacktestConfig(
        start_date=datetime(2022, 1, 1),
        end_date=datetime(2024, 1, 1),
        initial_capital=100000,
    )
    config.walk_forward.enabled = True
    config.monte_carlo.simulations = 5000
    config.validate()
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from backtest.errors import ConfigurationError

POSITION_SIZING_MODES = ('fixed', 'kelly', 'optimal')


@dataclass
class WalkForwardConfig:
    """
    Configuration for walk-forward analysis.

    Attributes:
        enabled: Run walk-forward after the full-period replay
        window_size: Training window length in days
        step_size: Days to advance the cursor between windows
        min_test_period: Testing window length in days
        min_observations: Windows with fewer observations get zeroed metrics
        max_workers: Thread pool size for window replays (default = CPU count)
    """
    enabled: bool = False
    window_size: int = 252
    step_size: Optional[int] = None  # Defaults to min_test_period if None
    min_test_period: int = 63
    min_observations: int = 2
    max_workers: Optional[int] = None

    def __post_init__(self):
        """Set step_size to min_test_period if not specified."""
        if self.step_size is None:
            self.step_size = self.min_test_period
        if self.max_workers is None:
            self.max_workers = os.cpu_count() or 1


@dataclass
class MonteCarloConfig:
    """
    Configuration for Monte Carlo resampling.

    Attributes:
        enabled: Run Monte Carlo on the full-period daily returns
        simulations: Number of bootstrap paths
        confidence_level: Confidence level for worst/best case (0.95 = 95%)
        seed: Random seed for reproducibility (None = fresh entropy)
    """
    enabled: bool = False
    simulations: int = 1000
    confidence_level: float = 0.95
    seed: Optional[int] = None


@dataclass
class RiskManagementConfig:
    """
    Risk controls applied by the replay engine.

    Attributes:
        max_drawdown: Halt new entries while drawdown >= this percent (0 disables)
        stop_loss: Exit when price moves this percent against entry (0 disables)
        take_profit: Exit when price moves this percent in favor (0 disables)
        position_sizing: 'fixed' (signal quantity), 'kelly' (half-Kelly)
            or 'optimal' (full Kelly)
        min_trades_for_kelly: Closed trades required before Kelly sizing applies
    """
    max_drawdown: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0
    position_sizing: str = 'fixed'
    min_trades_for_kelly: int = 10


@dataclass
class BacktestConfig:
    """
    Master configuration for a backtest run.

    Attributes:
        start_date: First timestamp included
        end_date: Last timestamp included
        initial_capital: Starting cash (must be > 0)
        commission: Commission as fraction of trade value
        slippage: Slippage as fraction of trade value
        instruments: Symbols to trade (empty = all observed symbols)
        strategies: Strategy names to enable (empty = all registered)
        risk_free_rate: Annual risk-free rate for Sharpe/Sortino
    """
    start_date: datetime
    end_date: datetime
    initial_capital: float = 100000.0
    commission: float = 0.0
    slippage: float = 0.0
    instruments: List[str] = field(default_factory=list)
    strategies: List[str] = field(default_factory=list)
    walk_forward: WalkForwardConfig = field(default_factory=WalkForwardConfig)
    monte_carlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    risk_management: RiskManagementConfig = field(default_factory=RiskManagementConfig)
    risk_free_rate: float = 0.05

    def validate(self) -> 'BacktestConfig':
        """
        Reject invalid configuration before any simulation starts.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: On the first invalid setting found
        """
        if self.end_date <= self.start_date:
            raise ConfigurationError(
                f"end_date {self.end_date} must be after start_date {self.start_date}"
            )
        if self.initial_capital <= 0:
            raise ConfigurationError(f"initial_capital must be > 0, got {self.initial_capital}")
        if self.commission < 0 or self.slippage < 0:
            raise ConfigurationError("commission and slippage must be >= 0")

        wf = self.walk_forward
        if wf.window_size <= 0:
            raise ConfigurationError(f"walk_forward.window_size must be > 0, got {wf.window_size}")
        if wf.step_size <= 0:
            raise ConfigurationError(f"walk_forward.step_size must be > 0, got {wf.step_size}")
        if wf.min_test_period <= 0:
            raise ConfigurationError(
                f"walk_forward.min_test_period must be > 0, got {wf.min_test_period}"
            )
        if wf.max_workers < 1:
            raise ConfigurationError(f"walk_forward.max_workers must be >= 1, got {wf.max_workers}")

        mc = self.monte_carlo
        if mc.simulations <= 0:
            raise ConfigurationError(f"monte_carlo.simulations must be > 0, got {mc.simulations}")
        if not 0 < mc.confidence_level <= 1:
            raise ConfigurationError(
                f"monte_carlo.confidence_level must be in (0, 1], got {mc.confidence_level}"
            )

        rm = self.risk_management
        for name in ('max_drawdown', 'stop_loss', 'take_profit'):
            if getattr(rm, name) < 0:
                raise ConfigurationError(f"risk_management.{name} must be >= 0")
        if rm.position_sizing not in POSITION_SIZING_MODES:
            raise ConfigurationError(
                f"risk_management.position_sizing must be one of {POSITION_SIZING_MODES}, "
                f"got '{rm.position_sizing}'"
            )

        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BacktestConfig':
        """
        Build a config from a plain dict (e.g. parsed JSON/YAML).

        Dates may be datetime objects or ISO-8601 strings.
        """
        data = dict(data)

        for key in ('start_date', 'end_date'):
            value = data.get(key)
            if isinstance(value, str):
                data[key] = datetime.fromisoformat(value)

        data['walk_forward'] = WalkForwardConfig(**data.get('walk_forward', {}))
        data['monte_carlo'] = MonteCarloConfig(**data.get('monte_carlo', {}))
        data['risk_management'] = RiskManagementConfig(**data.get('risk_management', {}))

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'initial_capital': self.initial_capital,
            'commission': self.commission,
            'slippage': self.slippage,
            'instruments': list(self.instruments),
            'strategies': list(self.strategies),
            'risk_free_rate': self.risk_free_rate,
            'walk_forward': {
                'enabled': self.walk_forward.enabled,
                'window_size': self.walk_forward.window_size,
                'step_size': self.walk_forward.step_size,
                'min_test_period': self.walk_forward.min_test_period,
                'min_observations': self.walk_forward.min_observations,
                'max_workers': self.walk_forward.max_workers,
            },
            'monte_carlo': {
                'enabled': self.monte_carlo.enabled,
                'simulations': self.monte_carlo.simulations,
                'confidence_level': self.monte_carlo.confidence_level,
                'seed': self.monte_carlo.seed,
            },
            'risk_management': {
                'max_drawdown': self.risk_management.max_drawdown,
                'stop_loss': self.risk_management.stop_loss,
                'take_profit': self.risk_management.take_profit,
                'position_sizing': self.risk_management.position_sizing,
                'min_trades_for_kelly': self.risk_management.min_trades_for_kelly,
            },
        }
