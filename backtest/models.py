"""
Backtest Core - Data Model

Market observations, strategy signals, open positions and the trade ledger.

Lot policy: one open lot per symbol. Each OpenPosition carries the trade_id of
its ledger entry, and the ledger entry is finalized by id when the lot closes.

Usage:
    from backtest.models import MarketObservation, Signal, Side

    bar = MarketObservation('SPY', datetime(2024, 1, 2), 470.0, 473.0, 469.5, 472.6, 1_000_000)
    signal = Signal(symbol='SPY', side=Side.LONG, quantity=10, price=472.6)
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional


class Side(str, Enum):
    """Trade direction."""

    LONG = 'LONG'
    SHORT = 'SHORT'


class ExitReason(str, Enum):
    """Why a position was closed."""

    STOP_LOSS = 'stop_loss'
    TAKE_PROFIT = 'take_profit'
    STRATEGY_EXIT = 'strategy_exit'
    END_OF_DATA = 'end_of_data'


@dataclass(frozen=True)
class MarketObservation:
    """
    One OHLCV bar for a symbol.

    Attributes:
        symbol: Instrument symbol
        timestamp: Bar timestamp
        open: Opening price
        high: High price
        low: Low price
        close: Closing price (used for marking and exits)
        volume: Traded volume
    """
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class Signal:
    """
    Entry signal emitted by a strategy. Immutable once emitted.

    Attributes:
        symbol: Instrument to trade
        side: LONG or SHORT
        quantity: Units requested (position sizing may override)
        price: Intended entry price
        id: Unique signal id (becomes the trade id)
        strategy_name: Name of the emitting strategy
    """
    symbol: str
    side: Side
    quantity: float
    price: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    strategy_name: str = ''


@dataclass(frozen=True)
class OpenPosition:
    """
    An open lot held by PortfolioState.

    market_value is entry value plus unrealized P/L, which equals
    current_price * quantity for LONG positions.
    """
    symbol: str
    side: Side
    quantity: float
    entry_price: float
    current_price: float
    unrealized_pnl: float
    trade_id: str
    strategy_name: str
    entry_time: datetime

    @property
    def entry_value(self) -> float:
        return self.entry_price * self.quantity

    @property
    def market_value(self) -> float:
        return self.entry_value + self.unrealized_pnl

    def mark(self, price: float) -> 'OpenPosition':
        """Return a copy marked to the given price."""
        if self.side == Side.LONG:
            unrealized = (price - self.entry_price) * self.quantity
        else:
            unrealized = (self.entry_price - price) * self.quantity
        return replace(self, current_price=price, unrealized_pnl=unrealized)


@dataclass(frozen=True)
class CompletedTrade:
    """
    Ledger entry for one round trip.

    Created at entry with exit_price=None and finalized exactly once via
    close(). A closed trade is terminal.

    Attributes:
        id: Trade id (the originating signal id)
        symbol: Instrument symbol
        side: LONG or SHORT
        quantity: Units traded
        entry_price: Fill price on entry
        exit_price: Fill price on exit (None while open)
        entry_time: Entry timestamp
        exit_time: Exit timestamp (None while open)
        pnl: Realized P/L net of exit-leg costs
        commission: Commission paid across both legs
        slippage: Slippage paid across both legs
        strategy: Name of the originating strategy
        exit_reason: Why the trade was closed
    """
    id: str
    symbol: str
    side: Side
    quantity: float
    entry_price: float
    entry_time: datetime
    strategy: str
    commission: float = 0.0
    slippage: float = 0.0
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    pnl: float = 0.0
    exit_reason: Optional[ExitReason] = None
    entry_commission: float = 0.0
    entry_slippage: float = 0.0

    @property
    def is_closed(self) -> bool:
        return self.exit_price is not None

    @property
    def holding_period(self) -> timedelta:
        if self.exit_time is None:
            return timedelta(0)
        return self.exit_time - self.entry_time

    @property
    def net_pnl(self) -> float:
        """P/L after both legs of costs."""
        return self.pnl - self.entry_commission - self.entry_slippage

    def close(
        self,
        exit_price: float,
        exit_time: datetime,
        pnl: float,
        commission: float,
        slippage: float,
        reason: ExitReason
    ) -> 'CompletedTrade':
        """
        Return the finalized copy of this trade.

        Args:
            exit_price: Exit fill price
            exit_time: Exit timestamp (must not precede entry_time)
            pnl: Realized P/L
            commission: Exit-leg commission
            slippage: Exit-leg slippage
            reason: Exit reason

        Raises:
            ValueError: If the trade is already closed or exit_time < entry_time
        """
        if self.is_closed:
            raise ValueError(f"Trade {self.id} is already closed")
        if exit_time < self.entry_time:
            raise ValueError(
                f"Trade {self.id} exit {exit_time} precedes entry {self.entry_time}"
            )
        return replace(
            self,
            exit_price=exit_price,
            exit_time=exit_time,
            pnl=pnl,
            commission=self.commission + commission,
            slippage=self.slippage + slippage,
            exit_reason=reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'symbol': self.symbol,
            'side': self.side.value,
            'quantity': self.quantity,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'entry_time': self.entry_time.isoformat(),
            'exit_time': self.exit_time.isoformat() if self.exit_time else None,
            'pnl': self.pnl,
            'commission': self.commission,
            'slippage': self.slippage,
            'strategy': self.strategy,
            'exit_reason': self.exit_reason.value if self.exit_reason else None,
        }


@dataclass(frozen=True)
class EquityPoint:
    """Portfolio value at a timestamp."""
    timestamp: datetime
    value: float
