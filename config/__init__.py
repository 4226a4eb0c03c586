"""
Config package for the backtest core.

Provides environment defaults loaded from the root .env file.
"""

from config.settings import (
    load_config,
    get_backtest_defaults,
    build_config,
    get_journal_dir,
    configure_logging,
    is_config_loaded,
)

__all__ = [
    'load_config',
    'get_backtest_defaults',
    'build_config',
    'get_journal_dir',
    'configure_logging',
    'is_config_loaded',
]
