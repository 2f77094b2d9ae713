"""
Credit Ledger - crash-safe persistence of credit consumption.

Tracks cumulative consumption against a fixed starting balance. Every
charge is written through to a JSON record before it returns, so a crash
right after a successful remote call never loses the charge.

Record layout:
    {
        "starting_balance": 20000000,
        "consumed_total": 1250,
        "remaining": 19998750,
        "last_updated": "2026-01-01T12:00:00+00:00"
    }
"""

import json
import logging
import os
import tempfile
import threading
import warnings
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from core.config import get_config
from core.errors import PersistenceWarning

logger = logging.getLogger(__name__)

DEFAULT_STARTING_BALANCE = 20_000_000


@dataclass(frozen=True)
class CreditSnapshot:
    """Read-only view of the ledger."""
    starting_balance: int
    consumed_total: int
    remaining: int
    last_updated: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class CreditLedger:
    """
    Process-wide credit ledger backed by a JSON file.

    Usage:
        ledger = CreditLedger("credits.json")
        ledger.load()

        ledger.charge(250)
        print(ledger.snapshot().remaining)
    """

    def __init__(
        self,
        path: str = "credits.json",
        starting_balance: int = DEFAULT_STARTING_BALANCE,
    ):
        self.path = Path(path)
        self.starting_balance = starting_balance
        self._consumed_total = 0
        self._last_updated: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def consumed_total(self) -> int:
        return self._consumed_total

    def load(self) -> int:
        """
        Read persisted state.

        A missing store means nothing has been consumed yet. An unreadable
        or invalid store is reported as a PersistenceWarning and also
        treated as zero consumed.

        Returns:
            The consumed total now held in memory
        """
        with self._lock:
            self._consumed_total = 0
            self._last_updated = None

            if not self.path.exists():
                logger.info(f"No credit ledger at {self.path}, starting fresh")
                return 0

            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                consumed = data.get("consumed_total", data.get("creditsUsed", 0))
                if isinstance(consumed, bool) or not isinstance(consumed, int) or consumed < 0:
                    raise ValueError(f"invalid consumed total: {consumed!r}")
            except (OSError, ValueError, AttributeError) as e:
                message = f"Could not read credit ledger {self.path}, starting fresh: {e}"
                logger.warning(message)
                warnings.warn(message, PersistenceWarning, stacklevel=2)
                return 0

            self._consumed_total = consumed
            self._last_updated = data.get("last_updated")

        logger.info(
            f"Credits loaded: {self.snapshot().remaining:,} remaining "
            f"({self._consumed_total:,} consumed)"
        )
        return self._consumed_total

    def charge(self, amount: int) -> CreditSnapshot:
        """
        Add a confirmed charge and persist the full record before returning.

        Args:
            amount: Non-negative number of credits reported by the remote API

        Raises:
            ValueError: amount is negative or not an integer
            OSError: the record could not be written; the in-memory total is left unchanged
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValueError(f"Credit amount must be an integer, got {amount!r}")
        if amount < 0:
            raise ValueError(f"Credit amount must not be negative, got {amount}")
        if amount == 0:
            return self.snapshot()

        with self._lock:
            new_total = self._consumed_total + amount
            timestamp = datetime.now(timezone.utc).isoformat()
            self._write(new_total, timestamp)
            self._consumed_total = new_total
            self._last_updated = timestamp
            snapshot = self._snapshot_unlocked()

        logger.info(f"Credits used: {amount:,} | Remaining: {snapshot.remaining:,}")
        return snapshot

    def snapshot(self) -> CreditSnapshot:
        """Current balance; remaining never goes below zero."""
        with self._lock:
            return self._snapshot_unlocked()

    def has_remaining(self) -> bool:
        return self.snapshot().remaining > 0

    def _snapshot_unlocked(self) -> CreditSnapshot:
        return CreditSnapshot(
            starting_balance=self.starting_balance,
            consumed_total=self._consumed_total,
            remaining=max(0, self.starting_balance - self._consumed_total),
            last_updated=self._last_updated,
        )

    def _write(self, consumed_total: int, timestamp: str):
        """Replace the record atomically: write a temp file, fsync, rename."""
        record = {
            "starting_balance": self.starting_balance,
            "consumed_total": consumed_total,
            "remaining": max(0, self.starting_balance - consumed_total),
            "last_updated": timestamp,
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


# Global ledger instance
_ledger: Optional[CreditLedger] = None


def get_ledger() -> CreditLedger:
    """Get the process-wide ledger, loading it on first use."""
    global _ledger
    if _ledger is None:
        config = get_config()
        _ledger = CreditLedger(
            path=config.credits.ledger_path,
            starting_balance=config.credits.starting_balance,
        )
        _ledger.load()
    return _ledger
