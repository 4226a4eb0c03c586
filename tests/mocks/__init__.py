"""
Mock objects for testing the backtest core.
"""

from tests.mocks.mock_strategies import (
    ScriptedStrategy,
    AlwaysLongStrategy,
    WarmupStrategy,
    FaultyStrategy,
    FaultyExitStrategy,
    ListDataSource,
    make_observations,
    make_config,
    closed_trade,
)

__all__ = [
    'ScriptedStrategy',
    'AlwaysLongStrategy',
    'WarmupStrategy',
    'FaultyStrategy',
    'FaultyExitStrategy',
    'ListDataSource',
    'make_observations',
    'make_config',
    'closed_trade',
]
