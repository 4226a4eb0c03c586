"""
Centralized Configuration Loading for the backtest core.

- Single source of truth for environment defaults
- Loads the project root .env once
- Builds BacktestConfig objects with environment defaults applied

Environment variables:
    BACKTEST_RISK_FREE_RATE  Annual risk-free rate (default 0.05)
    BACKTEST_SEED            Monte Carlo seed (default unset = fresh entropy)
    BACKTEST_MAX_WORKERS     Walk-forward thread pool size (default CPU count)
    BACKTEST_LOG_LEVEL       Logging level for configure_logging (default INFO)
    BACKTEST_JOURNAL_DIR     Trade journal directory (default logs/backtest/)

Usage:
    from config.settings import load_config, build_config, configure_logging

    # At app startup (call once)
    load_config()
    configure_logging()

    config = build_config(datetime(2022, 1, 1), datetime(2024, 1, 1), initial_capital=50000)
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from backtest.config import BacktestConfig, MonteCarloConfig, WalkForwardConfig
from backtest.errors import ConfigurationError

# Flag to track if config has been loaded
_CONFIG_LOADED = False

DEFAULT_RISK_FREE_RATE = 0.05
DEFAULT_LOG_LEVEL = 'INFO'
DEFAULT_JOURNAL_DIR = 'logs/backtest/'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_config(force_reload: bool = False) -> None:
    """
    Load environment variables from project root .env file.

    A missing .env is not an error: every setting has a default, and
    environment variables set by the shell or CI are used as-is.

    Args:
        force_reload: If True, reload even if already loaded
    """
    global _CONFIG_LOADED

    if _CONFIG_LOADED and not force_reload:
        return

    # Import here to avoid circular imports
    from dotenv import load_dotenv

    project_root = Path(__file__).parent.parent
    env_path = project_root / '.env'

    if env_path.exists():
        load_dotenv(env_path, override=True)

    _CONFIG_LOADED = True


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{value}'")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'")


def get_backtest_defaults() -> Dict[str, Any]:
    """
    Environment defaults for backtest runs.

    Returns:
        Dict with risk_free_rate, seed, max_workers, log_level and journal_dir

    Raises:
        ConfigurationError: If a numeric variable cannot be parsed
    """
    load_config()
    return {
        'risk_free_rate': _env_float('BACKTEST_RISK_FREE_RATE', DEFAULT_RISK_FREE_RATE),
        'seed': _env_int('BACKTEST_SEED', None),
        'max_workers': _env_int('BACKTEST_MAX_WORKERS', None),
        'log_level': os.getenv('BACKTEST_LOG_LEVEL', DEFAULT_LOG_LEVEL).upper(),
        'journal_dir': os.getenv('BACKTEST_JOURNAL_DIR', DEFAULT_JOURNAL_DIR),
    }


def build_config(start_date: datetime, end_date: datetime, **overrides) -> BacktestConfig:
    """
    Build a BacktestConfig with environment defaults applied.

    Explicit keyword arguments win over environment values.

    Args:
        start_date: First timestamp included
        end_date: Last timestamp included
        **overrides: Any BacktestConfig field

    Returns:
        BacktestConfig (not yet validated)
    """
    defaults = get_backtest_defaults()

    overrides.setdefault('risk_free_rate', defaults['risk_free_rate'])
    overrides.setdefault('walk_forward', WalkForwardConfig(max_workers=defaults['max_workers']))
    overrides.setdefault('monte_carlo', MonteCarloConfig(seed=defaults['seed']))

    return BacktestConfig(start_date=start_date, end_date=end_date, **overrides)


def get_journal_dir() -> str:
    """Get the trade journal directory."""
    return get_backtest_defaults()['journal_dir']


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging with a console handler.

    Args:
        level: Logging level name (default: BACKTEST_LOG_LEVEL or INFO)
    """
    level_name = (level or get_backtest_defaults()['log_level']).upper()
    numeric = getattr(logging, level_name, None)
    if not isinstance(numeric, int):
        raise ConfigurationError(f"Invalid log level: {level_name}")

    logging.basicConfig(level=numeric, format=LOG_FORMAT, force=True)


def is_config_loaded() -> bool:
    """Check if configuration has been loaded."""
    return _CONFIG_LOADED
