"""
Strategy registry for a backtest run.

Constructed explicitly by the caller (or BacktestRunner) and passed to the
components that need it. There is no process-wide registry.
"""

import logging
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from backtest.protocols import StrategyProtocol

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """
    Name -> strategy mapping with ordered iteration.

    Example:
        registry = StrategyRegistry()
        registry.register('sma_cross', SmaCross())
        active = registry.active(['sma_cross'])
    """

    def __init__(self, strategies: Optional[Dict[str, StrategyProtocol]] = None):
        self._strategies: Dict[str, StrategyProtocol] = {}
        for name, strategy in (strategies or {}).items():
            self.register(name, strategy)

    def register(self, name: str, strategy: StrategyProtocol) -> None:
        """
        Add a strategy under a unique name.

        Raises:
            ValueError: If the name is empty or already registered, or the
                object does not implement StrategyProtocol
        """
        if not name:
            raise ValueError("Strategy name must be non-empty")
        if name in self._strategies:
            raise ValueError(f"Strategy '{name}' is already registered")
        if not isinstance(strategy, StrategyProtocol):
            raise ValueError(
                f"Strategy '{name}' must implement generate_signals and should_exit"
            )
        self._strategies[name] = strategy
        logger.info(f"Strategy registered: {name}")

    def get(self, name: str) -> Optional[StrategyProtocol]:
        return self._strategies.get(name)

    def names(self) -> List[str]:
        return list(self._strategies)

    def active(self, names: Optional[Sequence[str]] = None) -> List[Tuple[str, StrategyProtocol]]:
        """
        Strategies enabled for a run, in registration order.

        Args:
            names: Strategy names to enable. Empty or None enables all.

        Returns:
            List of (name, strategy) pairs
        """
        if not names:
            return list(self._strategies.items())

        missing = [n for n in names if n not in self._strategies]
        if missing:
            logger.warning(f"Configured strategies not registered: {missing}")

        return [(n, s) for n, s in self._strategies.items() if n in names]

    def __contains__(self, name: str) -> bool:
        return name in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)

    def __iter__(self) -> Iterator[str]:
        return iter(self._strategies)
