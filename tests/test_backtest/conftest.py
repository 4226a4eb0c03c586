"""
Fixtures for backtest core tests.

Provides configs and synthetic observations for testing the replay engine,
walk-forward orchestrator and runner.
"""

import pytest
import numpy as np

from tests.mocks.mock_strategies import make_config, make_observations


@pytest.fixture
def config():
    """Default 30-day config with no costs."""
    return make_config()


@pytest.fixture
def trending_observations():
    """60 daily SPY observations with an upward drift and noise."""
    rng = np.random.default_rng(42)
    returns = rng.normal(0.001, 0.01, 60)
    closes = 100 * np.cumprod(1 + returns)
    return make_observations(closes.tolist())


@pytest.fixture
def year_observations():
    """Daily SPY observations covering all of 2024."""
    rng = np.random.default_rng(7)
    returns = rng.normal(0.0005, 0.012, 366)
    closes = 100 * np.cumprod(1 + returns)
    return make_observations(closes.tolist())
