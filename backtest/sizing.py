"""
Position sizing policies.

- fixed: use the signal quantity as emitted
- kelly: half-Kelly fraction of portfolio value
- optimal: full-Kelly fraction of portfolio value

Kelly fractions come from the run's own closed trades and are capped to
[MIN_FRACTION, MAX_FRACTION]. Until min_trades_for_kelly trades have closed,
Kelly modes fall back to the signal quantity.
"""

import logging
import math
from typing import Sequence

from backtest.config import RiskManagementConfig
from backtest.models import CompletedTrade, Signal

logger = logging.getLogger(__name__)

MIN_FRACTION = 0.02
MAX_FRACTION = 0.25


def kelly_fraction(trades: Sequence[CompletedTrade], scale: float = 0.5) -> float:
    """
    Capped Kelly fraction from a trade history.

    kelly = (p * b - (1 - p)) / b, with p the win rate and b the average
    win / average loss ratio.

    Args:
        trades: Closed trades
        scale: Multiplier on raw Kelly (0.5 = half-Kelly)

    Returns:
        Fraction of portfolio value in [MIN_FRACTION, MAX_FRACTION]
    """
    closed = [t for t in trades if t.is_closed]
    if not closed:
        return MIN_FRACTION

    wins = [t.pnl for t in closed if t.pnl > 0]
    losses = [abs(t.pnl) for t in closed if t.pnl < 0]
    win_prob = len(wins) / len(closed)

    avg_win = sum(wins) / len(wins) if wins else 0.0
    avg_loss = sum(losses) / len(losses) if losses else 0.0

    if avg_loss == 0:
        # No losers: Kelly tends to p as b grows
        kelly = win_prob
    elif avg_win == 0:
        kelly = 0.0
    else:
        ratio = avg_win / avg_loss
        kelly = (win_prob * ratio - (1 - win_prob)) / ratio

    return max(min(kelly * scale, MAX_FRACTION), MIN_FRACTION)


def size_signal(
    signal: Signal,
    price: float,
    portfolio_value: float,
    closed_trades: Sequence[CompletedTrade],
    risk: RiskManagementConfig
) -> float:
    """
    Quantity to trade for a signal under the configured sizing mode.

    Args:
        signal: Entry signal
        price: Entry price
        portfolio_value: Current total portfolio value
        closed_trades: Trades closed so far in this run
        risk: Risk management settings

    Returns:
        Quantity (0 means the signal should be rejected)
    """
    mode = risk.position_sizing
    if mode == 'fixed' or len(closed_trades) < risk.min_trades_for_kelly:
        return signal.quantity

    if price <= 0:
        return 0.0

    scale = 0.5 if mode == 'kelly' else 1.0
    fraction = kelly_fraction(closed_trades, scale=scale)
    quantity = math.floor(portfolio_value * fraction / price)

    logger.debug(
        f"{mode} sizing {signal.symbol}: fraction={fraction:.3f}, quantity={quantity}"
    )
    return float(quantity)
