"""
Backtest Core - Protocols Module

Defines the narrow interfaces the replay core depends on. Uses Python Protocol
for structural typing - strategies and data sources don't need to inherit.

Usage:
    from backtest.protocols import StrategyProtocol

    class MyStrategy:  # No inheritance needed
        def generate_signals(self, observations):
            ...
        def should_exit(self, position, observations):
            ...
"""

from datetime import datetime
from typing import Protocol, List, Sequence, Tuple, runtime_checkable

from backtest.models import MarketObservation, OpenPosition, Signal


@runtime_checkable
class StrategyProtocol(Protocol):
    """
    Protocol defining the interface the replay engine consumes.

    Required methods:
        generate_signals: Entry signals for the latest observations
        should_exit: Whether an open position should be closed now

    Exceptions raised from either method are caught by the engine and treated
    as "no signal" / "no exit" for that step.
    """

    def generate_signals(self, observations: Sequence[MarketObservation]) -> List[Signal]:
        """
        Generate entry signals.

        Args:
            observations: Observations visible at this step (latest last)

        Returns:
            List of Signal objects (may be empty)
        """
        ...

    def should_exit(
        self,
        position: OpenPosition,
        observations: Sequence[MarketObservation]
    ) -> bool:
        """
        Decide whether to close a position this strategy opened.

        Args:
            position: Open position owned by this strategy
            observations: Observations visible at this step

        Returns:
            True to close the position at the current close
        """
        ...


class MarketDataSource(Protocol):
    """
    Supplier of sorted observations for a symbol set and date range.

    Fetching, caching and storage live behind this interface.
    """

    def get_observations(
        self,
        symbols: Sequence[str],
        start: datetime,
        end: datetime
    ) -> List[MarketObservation]:
        ...


# Type aliases for clarity
Observations = List[MarketObservation]
NamedStrategies = List[Tuple[str, StrategyProtocol]]
