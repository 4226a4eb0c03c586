"""
Backtest Core - Portfolio Replay Engine

Advances a PortfolioState through time-ordered market observations, invoking
strategies for entry signals and exit checks, and produces a trade ledger and
an equity curve.

Per observation, in order:
1. Price update: mark the open position in the observation's symbol
2. Signal generation: each active strategy sees [observation]
3. Execution: size, check overlap/drawdown halt/cash, open the lot
4. Exit evaluation: stop-loss, take-profit, then the owning strategy's should_exit
5. Snapshot: one equity point per distinct timestamp

Lots still open after the last observation are force-closed at the last
observed close of their symbol (exit reason END_OF_DATA).

Usage:
    from backtest.replay import ReplayEngine

    engine = ReplayEngine()
    result = engine.run(observations, [('sma', SmaCross())], config)
    print(len(result.trades), result.equity[-1].value)
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

from backtest.config import BacktestConfig
from backtest.errors import InsufficientFundsError, StrategyFaultError
from backtest.models import (
    CompletedTrade,
    EquityPoint,
    ExitReason,
    MarketObservation,
    OpenPosition,
    Side,
    Signal,
)
from backtest.portfolio import (
    PortfolioState,
    apply_price,
    close_position,
    initial_state,
    open_position,
)
from backtest.protocols import NamedStrategies, StrategyProtocol
from backtest.registry import StrategyRegistry
from backtest.sizing import size_signal
from backtest.trade_journal import TradeJournal

logger = logging.getLogger(__name__)

StrategySet = Union[StrategyRegistry, Sequence[Tuple[str, StrategyProtocol]]]


def resolve_strategies(strategies: StrategySet, config: BacktestConfig) -> NamedStrategies:
    """(name, strategy) pairs active for a run."""
    if isinstance(strategies, StrategyRegistry):
        return strategies.active(config.strategies)
    return list(strategies)


@dataclass
class ReplayResult:
    """
    Output of one replay.

    Attributes:
        trades: Finalized trades in entry order
        equity: One point per distinct timestamp
        final_state: Portfolio after force-closing open lots
        rejected_signals: Signals dropped during execution
        strategy_faults: Strategy calls that raised
        states: Per-observation states (only when the engine keeps them)
    """
    trades: List[CompletedTrade]
    equity: List[EquityPoint]
    final_state: PortfolioState
    rejected_signals: int = 0
    strategy_faults: int = 0
    states: List[PortfolioState] = field(default_factory=list)


class _Replay:
    """Mutable bookkeeping for a single run. Never shared between runs."""

    def __init__(self, config: BacktestConfig, strategies: NamedStrategies):
        self.config = config
        self.strategies = strategies
        self.by_name: Dict[str, StrategyProtocol] = dict(strategies)
        self.state = initial_state(config.initial_capital)
        self.ledger: Dict[str, CompletedTrade] = {}
        self.closed: List[CompletedTrade] = []
        self.equity: List[EquityPoint] = []
        self.last_close: Dict[str, float] = {}
        self.rejected = 0
        self.faults = 0


class ReplayEngine:
    """
    Sequential, single-threaded portfolio replay.

    Each call to run() starts from a fresh PortfolioState seeded with
    config.initial_capital, so one engine can serve concurrent walk-forward
    windows.

    Example:
        engine = ReplayEngine(journal=TradeJournal('logs/backtest/'))
        result = engine.run(observations, registry, config)
    """

    def __init__(self, journal: Optional[TradeJournal] = None, keep_states: bool = False):
        """
        Initialize replay engine.

        Args:
            journal: Optional audit trail for replay events
            keep_states: Record the PortfolioState after every observation
        """
        self.journal = journal
        self.keep_states = keep_states

    def run(
        self,
        observations: Sequence[MarketObservation],
        strategies: StrategySet,
        config: BacktestConfig
    ) -> ReplayResult:
        """
        Replay observations against strategies.

        Args:
            observations: Sorted ascending, restricted to the configured range
            strategies: StrategyRegistry (filtered by config.strategies) or
                a sequence of (name, strategy) pairs
            config: Backtest configuration

        Returns:
            ReplayResult with finalized trades and the equity curve
        """
        active = resolve_strategies(strategies, config)

        run = _Replay(config, active)
        states: List[PortfolioState] = []

        logger.debug(
            f"Starting replay: {len(observations)} observations, {len(active)} strategies"
        )

        for observation in observations:
            self._step(run, observation)
            if self.keep_states:
                states.append(run.state)

        if observations:
            self._force_close(run, observations[-1].timestamp)
            if self.keep_states:
                states.append(run.state)

        trades = [t for t in run.ledger.values() if t.is_closed]

        logger.debug(
            f"Replay complete: {len(trades)} trades, {run.rejected} rejected, "
            f"{run.faults} faults, final value ${run.state.total_value:,.2f}"
        )

        return ReplayResult(
            trades=trades,
            equity=run.equity,
            final_state=run.state,
            rejected_signals=run.rejected,
            strategy_faults=run.faults,
            states=states,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _step(self, run: _Replay, observation: MarketObservation):
        run.last_close[observation.symbol] = observation.close

        # 1. Price update
        run.state = apply_price(run.state, observation.symbol, observation.close, observation.timestamp)

        # 2. Signal generation
        signals = self._collect_signals(run, observation)

        # 3. Execution
        for signal in signals:
            self._execute(run, signal, observation)

        # 4. Exit evaluation
        position = run.state.positions.get(observation.symbol)
        if position is not None:
            reason = self._exit_reason(run, position, observation)
            if reason is not None:
                self._close(run, observation.symbol, observation.close, observation.timestamp, reason)

        # 5. Snapshot
        self._snapshot(run, observation.timestamp)

    def _collect_signals(self, run: _Replay, observation: MarketObservation) -> List[Signal]:
        collected = []
        for name, strategy in run.strategies:
            try:
                signals = strategy.generate_signals([observation]) or []
            except Exception as e:
                self._record_fault(run, name, 'generate_signals', observation.timestamp, e)
                continue

            for signal in signals:
                if not signal.strategy_name:
                    signal = replace(signal, strategy_name=name)
                collected.append(signal)
        return collected

    def _execute(self, run: _Replay, signal: Signal, observation: MarketObservation):
        config = run.config
        risk = config.risk_management
        timestamp = observation.timestamp

        if signal.quantity <= 0 or signal.price <= 0:
            self._reject(run, signal, timestamp, 'non-positive quantity or price')
            return

        if signal.side not in (Side.LONG, Side.SHORT):
            self._reject(run, signal, timestamp, f'unknown side {signal.side!r}')
            return

        if config.instruments and signal.symbol not in config.instruments:
            self._reject(run, signal, timestamp, 'instrument not configured')
            return

        if signal.id in run.ledger:
            self._reject(run, signal, timestamp, f'duplicate signal id {signal.id}')
            return

        if run.state.has_position(signal.symbol):
            self._reject(run, signal, timestamp, 'position already open in symbol')
            return

        if risk.max_drawdown > 0 and run.state.drawdown * 100 >= risk.max_drawdown:
            self._reject(
                run, signal, timestamp,
                f'drawdown halt ({run.state.drawdown:.1%} >= {risk.max_drawdown}%)'
            )
            return

        quantity = size_signal(signal, signal.price, run.state.total_value, run.closed, risk)
        if quantity <= 0:
            self._reject(run, signal, timestamp, 'sized quantity is zero')
            return

        try:
            run.state, trade = open_position(
                run.state,
                signal,
                quantity,
                signal.price,
                timestamp,
                commission_rate=config.commission,
                slippage_rate=config.slippage,
            )
        except InsufficientFundsError as e:
            logger.warning(f"Signal rejected: {e}")
            run.rejected += 1
            if self.journal:
                self.journal.log_rejection(signal, timestamp, str(e))
            return

        run.ledger[trade.id] = trade
        if self.journal:
            self.journal.log_open(trade)

    def _exit_reason(
        self,
        run: _Replay,
        position: OpenPosition,
        observation: MarketObservation
    ) -> Optional[ExitReason]:
        risk = run.config.risk_management
        close = observation.close

        if position.side == Side.LONG:
            move_pct = (close - position.entry_price) / position.entry_price * 100
        else:
            move_pct = (position.entry_price - close) / position.entry_price * 100

        if risk.stop_loss > 0 and move_pct <= -risk.stop_loss:
            return ExitReason.STOP_LOSS
        if risk.take_profit > 0 and move_pct >= risk.take_profit:
            return ExitReason.TAKE_PROFIT

        strategy = run.by_name.get(position.strategy_name)
        if strategy is None:
            return None

        try:
            if strategy.should_exit(position, [observation]):
                return ExitReason.STRATEGY_EXIT
        except Exception as e:
            self._record_fault(run, position.strategy_name, 'should_exit', observation.timestamp, e)

        return None

    def _close(
        self,
        run: _Replay,
        symbol: str,
        price: float,
        timestamp: datetime,
        reason: ExitReason
    ):
        config = run.config
        run.state, fill = close_position(
            run.state,
            symbol,
            price,
            timestamp,
            commission_rate=config.commission,
            slippage_rate=config.slippage,
        )

        trade_id = fill.position.trade_id
        trade = run.ledger[trade_id].close(
            exit_price=fill.exit_price,
            exit_time=timestamp,
            pnl=fill.pnl,
            commission=fill.commission,
            slippage=fill.slippage,
            reason=reason,
        )
        run.ledger[trade_id] = trade
        run.closed.append(trade)

        if self.journal:
            self.journal.log_close(trade)

    def _snapshot(self, run: _Replay, timestamp: datetime):
        point = EquityPoint(timestamp, run.state.total_value)
        if run.equity and run.equity[-1].timestamp == timestamp:
            run.equity[-1] = point
        else:
            run.equity.append(point)

    def _force_close(self, run: _Replay, timestamp: datetime):
        open_symbols = list(run.state.positions)
        if not open_symbols:
            return

        logger.info(f"Force-closing {len(open_symbols)} open positions at end of data")

        for symbol in open_symbols:
            position = run.state.positions[symbol]
            price = run.last_close.get(symbol, position.current_price)
            self._close(run, symbol, price, timestamp, ExitReason.END_OF_DATA)

        if run.equity:
            run.equity[-1] = EquityPoint(run.equity[-1].timestamp, run.state.total_value)

    # ------------------------------------------------------------------
    # Recoverable faults
    # ------------------------------------------------------------------

    def _reject(self, run: _Replay, signal: Signal, timestamp: datetime, reason: str):
        logger.info(f"Signal rejected for {signal.symbol} ({signal.strategy_name}): {reason}")
        run.rejected += 1
        if self.journal:
            self.journal.log_rejection(signal, timestamp, reason)

    def _record_fault(
        self,
        run: _Replay,
        strategy_name: str,
        operation: str,
        timestamp: datetime,
        error: Exception
    ):
        fault = StrategyFaultError(strategy_name, operation, error)
        logger.warning(f"{fault} at {timestamp}; skipping for this step")
        run.faults += 1
        if self.journal:
            self.journal.log_fault(strategy_name, operation, timestamp, error)
