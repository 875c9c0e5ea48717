"""
Payment reconciliation chore.

Periodically pulls payments from the ledger source and keeps the payment
cache in sync with it:

- the cursor is recomputed every tick from the highest confirmed block in the
  cache, so no separate checkpoint can drift from the cached rows
- every fetched payment is classified as pending or confirmed against the
  chain head reported with the same fetch
- the cached pending set is regenerated wholesale from the latest fetch;
  confirmed rows are never touched again

Failures other than monetary contract violations never escape a tick: they
are logged, recorded in ChoreStats and the next tick retries from durable
state.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP
from typing import Optional

from .client import LedgerClient
from .exceptions import (
    IncompatibleUnitError,
    InternalError,
    LedgerscanError,
    LedgerSourceError,
    NoPaymentsError,
    UnauthorizedError,
)
from .logging_config import TickContext
from .models import LatestPayments, Payment
from .monetary import STORJ_TOKEN, US_DOLLARS_MICRO, Amount
from .payments_db import CachedPayment, PaymentsDB, PaymentStatus
from .scheduler import Cycle, Trigger

logger = logging.getLogger("ledgerscan.chore")


@dataclass
class TickResult:
    """Outcome of one reconciliation pass."""
    skipped: bool = False
    cursor: Optional[int] = None
    latest_block: Optional[int] = None
    fetched: int = 0
    pending: int = 0
    confirmed: int = 0
    error: Optional[LedgerscanError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ChoreStats:
    """Operator-visible counters."""
    ticks: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_cursor: Optional[int] = None
    last_error: Optional[str] = None
    last_success_at: Optional[datetime] = None
    errors_by_code: dict[str, int] = field(default_factory=dict)

    def record(self, result: TickResult) -> None:
        self.ticks += 1
        if result.cursor is not None:
            self.last_cursor = result.cursor
        if result.error is None:
            self.consecutive_failures = 0
            if not result.skipped:
                self.last_success_at = datetime.now(timezone.utc)
            return
        self.failures += 1
        self.consecutive_failures += 1
        self.last_error = str(result.error)
        code = result.error.error_code
        self.errors_by_code[code] = self.errors_by_code.get(code, 0) + 1


def classify(payment: Payment, head: int, confirmations: int) -> PaymentStatus:
    """A payment is confirmed once ``confirmations`` blocks sit on top of it."""
    if head - payment.block_number >= confirmations:
        return PaymentStatus.CONFIRMED
    return PaymentStatus.PENDING


def to_cached(payment: Payment, status: PaymentStatus) -> CachedPayment:
    return CachedPayment(
        from_address=payment.from_address,
        to_address=payment.to_address,
        token_value=Amount.from_base_units(payment.token_value, STORJ_TOKEN),
        # Provider fiat values may carry more digits than micro-dollars hold.
        usd_value=Amount.from_decimal(payment.usd_value, US_DOLLARS_MICRO, rounding=ROUND_HALF_UP),
        status=status,
        block_hash=payment.block_hash,
        block_number=payment.block_number,
        transaction=payment.transaction,
        log_index=payment.log_index,
        timestamp=payment.timestamp,
    )


def classify_batch(latest: LatestPayments, confirmations: int) -> list[CachedPayment]:
    head = latest.latest_block.number
    return [to_cached(p, classify(p, head, confirmations)) for p in latest.payments]


class Chore:
    """
    Periodically queries the ledger source for new payments.

    Args:
        client: Ledger source client
        payments_db: Payment cache
        confirmations: Blocks required on top of a payment before it is final
        interval: Seconds between ticks
        disable_loop: Skip every tick without fetching
        trigger: Optional trigger replacing the wall-clock interval
    """

    def __init__(
        self,
        client: LedgerClient,
        payments_db: PaymentsDB,
        *,
        confirmations: int,
        interval: float,
        disable_loop: bool = False,
        trigger: Optional[Trigger] = None,
    ):
        if confirmations < 0:
            raise ValueError("confirmations must be non-negative")

        self._client = client
        self._payments_db = payments_db
        self._confirmations = confirmations
        self._disable_loop = disable_loop
        self.cycle = Cycle(interval, trigger=trigger)
        self.stats = ChoreStats()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def confirmations(self) -> int:
        return self._confirmations

    async def run(self) -> None:
        """Run the payment loop until closed."""
        logger.info(
            "Chore started",
            extra={
                "interval_seconds": self.cycle.interval,
                "confirmations": self._confirmations,
                "disable_loop": self._disable_loop,
            },
        )
        await self.cycle.run(self._tick)

    async def _tick(self) -> None:
        await self.run_once()

    def start(self) -> asyncio.Task[None]:
        """Run the loop as an owned background task."""
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.create_task(self.run(), name="ledgerscan-chore")
        return self._task

    async def close(self) -> None:
        """Stop the loop at the next tick boundary and wait for it.

        Re-raises the exception that ended the loop early, if any.
        """
        self.cycle.close()
        task, self._task = self._task, None
        try:
            if task is not None:
                await task
        finally:
            logger.info("Chore stopped")

    async def run_once(self) -> TickResult:
        """Execute a single reconciliation pass."""
        with TickContext():
            try:
                result = await self._reconcile()
            except IncompatibleUnitError:
                raise
            except Exception as e:
                logger.error("Unexpected error during tick", exc_info=True)
                result = TickResult(error=InternalError(e))
            self.stats.record(result)
            return result

    async def _reconcile(self) -> TickResult:
        if self._disable_loop:
            logger.debug("Skipping chore iteration as loop is disabled")
            return TickResult(skipped=True)

        result = TickResult()

        try:
            result.cursor = await self._payments_db.last_block(PaymentStatus.CONFIRMED) + 1
        except NoPaymentsError:
            result.cursor = 0
        except IncompatibleUnitError:
            raise
        except LedgerscanError as e:
            logger.error(
                "Error retrieving last payment",
                extra={"error": e.to_dict()},
            )
            result.error = e
            return result

        try:
            latest = await self._client.payments(result.cursor)
        except UnauthorizedError as e:
            logger.error(
                "Ledger source rejected credentials",
                extra={"cursor": result.cursor, "error": e.to_dict()},
            )
            result.error = e
            return result
        except LedgerSourceError as e:
            logger.error(
                "Error retrieving payments",
                extra={"cursor": result.cursor, "error": e.to_dict()},
            )
            result.error = e
            return result

        result.latest_block = latest.latest_block.number
        result.fetched = len(latest.payments)
        if not latest.payments:
            # Keep the existing pending rows.
            logger.debug("No new payments", extra={"cursor": result.cursor})
            return result

        fresh = [p for p in latest.payments if p.block_number >= result.cursor]
        if len(fresh) != len(latest.payments):
            # Blocks below the cursor are already covered by confirmed rows.
            logger.warning(
                "Ledger source returned payments below the cursor",
                extra={"cursor": result.cursor, "discarded": len(latest.payments) - len(fresh)},
            )
            latest = latest.model_copy(update={"payments": fresh})
            if not fresh:
                return result

        batch = classify_batch(latest, self._confirmations)

        result.pending = sum(1 for p in batch if p.status == PaymentStatus.PENDING)
        result.confirmed = len(batch) - result.pending

        try:
            await self._payments_db.replace_pending(batch)
        except IncompatibleUnitError:
            raise
        except LedgerscanError as e:
            # The replace is transactional, so the previous pending set is kept.
            logger.error(
                "Error storing payments to db",
                extra={
                    "cursor": result.cursor,
                    "batch_size": len(batch),
                    "error": e.to_dict(),
                },
            )
            result.error = e
            return result

        logger.info(
            "Payments reconciled",
            extra={
                "cursor": result.cursor,
                "latest_block": result.latest_block,
                "pending": result.pending,
                "confirmed": result.confirmed,
            },
        )
        return result
