"""
Backtest Core - Portfolio State

PortfolioState is an immutable value. The step functions in this module take a
state and return a new one, so every mutation site is a call in the replay
engine.

Invariant after every step:
    total_value == cash + sum(position.market_value for each open position)

Usage:
    state = initial_state(100000, start)
    state, trade = open_position(state, signal, 10, 100.0, ts, commission_rate=0.001)
    state = apply_price(state, 'SPY', 105.0, ts2)
    state, fill = close_position(state, 'SPY', 105.0, ts2, commission_rate=0.001)
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, NamedTuple, Optional, Tuple

from backtest.errors import InsufficientFundsError
from backtest.models import CompletedTrade, OpenPosition, Side, Signal


@dataclass(frozen=True)
class PortfolioState:
    """
    Cash, open positions and valuation at a point in the replay.

    Attributes:
        timestamp: Time of the last applied step
        cash: Cash on hand
        positions: Open lots keyed by symbol (one lot per symbol)
        total_value: cash + market value of open positions
        peak_value: Highest total_value seen so far
    """
    timestamp: Optional[datetime]
    cash: float
    positions: Dict[str, OpenPosition] = field(default_factory=dict)
    total_value: float = 0.0
    peak_value: float = 0.0

    @property
    def drawdown(self) -> float:
        """Current drawdown from peak as a decimal."""
        if self.peak_value <= 0:
            return 0.0
        return max(0.0, (self.peak_value - self.total_value) / self.peak_value)

    def has_position(self, symbol: str) -> bool:
        return symbol in self.positions


class ExitFill(NamedTuple):
    """Outcome of closing a lot."""
    position: OpenPosition
    exit_price: float
    pnl: float
    commission: float
    slippage: float


def _revalue(
    state: PortfolioState,
    cash: float,
    positions: Dict[str, OpenPosition],
    timestamp: Optional[datetime]
) -> PortfolioState:
    total_value = cash + sum(p.market_value for p in positions.values())
    return replace(
        state,
        timestamp=timestamp,
        cash=cash,
        positions=positions,
        total_value=total_value,
        peak_value=max(state.peak_value, total_value),
    )


def initial_state(initial_capital: float, timestamp: Optional[datetime] = None) -> PortfolioState:
    """Fresh all-cash state."""
    return PortfolioState(
        timestamp=timestamp,
        cash=initial_capital,
        positions={},
        total_value=initial_capital,
        peak_value=initial_capital,
    )


def apply_price(
    state: PortfolioState,
    symbol: str,
    price: float,
    timestamp: datetime
) -> PortfolioState:
    """
    Mark the open position in symbol (if any) to price and revalue.

    Args:
        state: Current state
        symbol: Observation symbol
        price: Observation close
        timestamp: Observation timestamp

    Returns:
        New state
    """
    positions = state.positions
    if symbol in positions:
        positions = dict(positions)
        positions[symbol] = positions[symbol].mark(price)
    return _revalue(state, state.cash, positions, timestamp)


def open_position(
    state: PortfolioState,
    signal: Signal,
    quantity: float,
    price: float,
    timestamp: datetime,
    commission_rate: float = 0.0,
    slippage_rate: float = 0.0
) -> Tuple[PortfolioState, CompletedTrade]:
    """
    Debit cash and open a lot for an accepted signal.

    Args:
        state: Current state
        signal: Entry signal (its id becomes the trade id)
        quantity: Units to buy or sell short (after sizing)
        price: Entry fill price
        timestamp: Entry time
        commission_rate: Commission as fraction of entry value
        slippage_rate: Slippage as fraction of entry value

    Returns:
        (new state, open ledger entry)

    Raises:
        InsufficientFundsError: If required cash exceeds available cash
        ValueError: If a lot is already open in the symbol
    """
    if signal.symbol in state.positions:
        raise ValueError(f"Position already open in {signal.symbol}")

    entry_value = quantity * price
    commission = entry_value * commission_rate
    slippage = entry_value * slippage_rate
    required_cash = entry_value + commission + slippage

    if required_cash > state.cash:
        raise InsufficientFundsError(signal.symbol, required_cash, state.cash)

    position = OpenPosition(
        symbol=signal.symbol,
        side=Side(signal.side),
        quantity=quantity,
        entry_price=price,
        current_price=price,
        unrealized_pnl=0.0,
        trade_id=signal.id,
        strategy_name=signal.strategy_name,
        entry_time=timestamp,
    )
    trade = CompletedTrade(
        id=signal.id,
        symbol=signal.symbol,
        side=position.side,
        quantity=quantity,
        entry_price=price,
        entry_time=timestamp,
        strategy=signal.strategy_name,
        commission=commission,
        slippage=slippage,
        entry_commission=commission,
        entry_slippage=slippage,
    )

    positions = dict(state.positions)
    positions[signal.symbol] = position
    return _revalue(state, state.cash - required_cash, positions, timestamp), trade


def close_position(
    state: PortfolioState,
    symbol: str,
    price: float,
    timestamp: datetime,
    commission_rate: float = 0.0,
    slippage_rate: float = 0.0
) -> Tuple[PortfolioState, ExitFill]:
    """
    Close the lot in symbol at price and credit cash.

    pnl is gross P/L minus exit-leg commission and slippage. Cash is credited
    with entry value + gross P/L - exit fees.

    Raises:
        KeyError: If no lot is open in the symbol
    """
    position = state.positions[symbol]

    exit_value = position.quantity * price
    commission = exit_value * commission_rate
    slippage = exit_value * slippage_rate
    fees = commission + slippage

    if position.side == Side.LONG:
        gross_pnl = exit_value - position.entry_value
    else:
        gross_pnl = position.entry_value - exit_value

    positions = dict(state.positions)
    del positions[symbol]
    cash = state.cash + position.entry_value + gross_pnl - fees

    fill = ExitFill(
        position=position,
        exit_price=price,
        pnl=gross_pnl - fees,
        commission=commission,
        slippage=slippage,
    )
    return _revalue(state, cash, positions, timestamp), fill
