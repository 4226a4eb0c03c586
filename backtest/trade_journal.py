"""
Trade Journal - Audit trail for replay events

Records every replay event for post-run analysis:
- Position opens and closes
- Rejected signals (insufficient funds, overlap, drawdown halt, zero size)
- Strategy faults

Log Destinations:
1. File: {journal_dir}/replay_{date}.log (all levels)
2. CSV: {journal_dir}/trades_{date}.csv (one row per event)

Timestamps in the CSV are simulation times, not wall-clock times.

Usage:
    journal = TradeJournal('logs/backtest/')
    engine = ReplayEngine(journal=journal)
    ...
    journal.close()
"""

import csv
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from backtest.models import CompletedTrade, Side, Signal

CSV_COLUMNS = [
    'timestamp',
    'event',
    'trade_id',
    'symbol',
    'side',
    'qty',
    'price',
    'pnl',
    'strategy',
    'reason',
]


def _side_name(side) -> str:
    """Plain side label for enum or raw string sides."""
    return side.value if isinstance(side, Side) else str(side)


class TradeJournal:
    """
    Replay event journal with a dated log file and CSV audit trail.

    Safe to share between walk-forward worker threads.
    """

    def __init__(self, journal_dir: str = 'logs/backtest/'):
        """
        Initialize trade journal.

        Args:
            journal_dir: Directory for journal files (created if missing)
        """
        self.journal_dir = Path(journal_dir)
        self.journal_dir.mkdir(parents=True, exist_ok=True)

        self.today = datetime.now().strftime('%Y-%m-%d')
        self._lock = threading.Lock()

        self.logger = self._create_logger()
        self.csv_file = self._create_csv_file()

        self.logger.info("TradeJournal initialized")

    def _create_logger(self) -> logging.Logger:
        """Create file-backed journal logger."""
        logger = logging.getLogger(f'backtest.trade_journal.{id(self)}')
        logger.setLevel(logging.DEBUG)
        logger.handlers = []

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        self.log_file = self.journal_dir / f'replay_{self.today}.log'
        file_handler = logging.FileHandler(self.log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        return logger

    def _create_csv_file(self) -> Path:
        """Create or open CSV audit trail."""
        csv_path = self.journal_dir / f'trades_{self.today}.csv'

        if not csv_path.exists():
            with open(csv_path, 'w', newline='') as f:
                writer = csv.writer(f)
                writer.writerow(CSV_COLUMNS)

        return csv_path

    def _write_csv(
        self,
        timestamp: Optional[datetime],
        event: str,
        trade_id: str = '',
        symbol: str = '',
        side: str = '',
        qty: Optional[float] = None,
        price: Optional[float] = None,
        pnl: Optional[float] = None,
        strategy: str = '',
        reason: str = ''
    ):
        """Append one event row."""
        with self._lock:
            with open(self.csv_file, 'a', newline='') as f:
                writer = csv.writer(f)
                writer.writerow([
                    timestamp.isoformat() if timestamp else '',
                    event,
                    trade_id,
                    symbol,
                    side,
                    qty if qty is not None else '',
                    price if price is not None else '',
                    pnl if pnl is not None else '',
                    strategy,
                    reason,
                ])

    def log_open(self, trade: CompletedTrade):
        """
        Log a position open.

        Args:
            trade: Open ledger entry created at entry
        """
        self.logger.info(
            f"OPEN {trade.side.value} {trade.quantity} {trade.symbol} @ ${trade.entry_price:.2f} "
            f"(strategy={trade.strategy}, id={trade.id})"
        )
        self._write_csv(
            timestamp=trade.entry_time,
            event='OPEN',
            trade_id=trade.id,
            symbol=trade.symbol,
            side=trade.side.value,
            qty=trade.quantity,
            price=trade.entry_price,
            strategy=trade.strategy,
        )

    def log_close(self, trade: CompletedTrade):
        """
        Log a position close.

        Args:
            trade: Finalized ledger entry
        """
        reason = trade.exit_reason.value if trade.exit_reason else ''
        self.logger.info(
            f"CLOSE {trade.side.value} {trade.quantity} {trade.symbol} @ ${trade.exit_price:.2f} "
            f"P/L=${trade.pnl:.2f} (reason={reason}, id={trade.id})"
        )
        self._write_csv(
            timestamp=trade.exit_time,
            event='CLOSE',
            trade_id=trade.id,
            symbol=trade.symbol,
            side=trade.side.value,
            qty=trade.quantity,
            price=trade.exit_price,
            pnl=trade.pnl,
            strategy=trade.strategy,
            reason=reason,
        )

    def log_rejection(self, signal: Signal, timestamp: datetime, reason: str):
        """
        Log a rejected signal.

        Args:
            signal: Rejected signal
            timestamp: Observation time
            reason: Why the signal was rejected
        """
        self.logger.warning(
            f"REJECT {_side_name(signal.side)} {signal.quantity} {signal.symbol} "
            f"(strategy={signal.strategy_name}): {reason}"
        )
        self._write_csv(
            timestamp=timestamp,
            event='REJECT',
            trade_id=signal.id,
            symbol=signal.symbol,
            side=_side_name(signal.side),
            qty=signal.quantity,
            price=signal.price,
            strategy=signal.strategy_name,
            reason=reason,
        )

    def log_fault(self, strategy_name: str, operation: str, timestamp: datetime, error: Exception):
        """
        Log a strategy fault.

        Args:
            strategy_name: Faulting strategy
            operation: generate_signals or should_exit
            timestamp: Observation time
            error: Exception raised by the strategy
        """
        self.logger.error(f"FAULT {strategy_name}.{operation}: {error}")
        self._write_csv(
            timestamp=timestamp,
            event='FAULT',
            strategy=strategy_name,
            reason=f"{operation}: {error}",
        )

    def read_events(self) -> List[dict]:
        """Read back all CSV events."""
        with open(self.csv_file, newline='') as f:
            return list(csv.DictReader(f))

    def close(self):
        """Release file handlers."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
