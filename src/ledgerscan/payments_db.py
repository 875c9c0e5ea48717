"""Cached payment rows and the store contract the chore writes through."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Protocol, Sequence, runtime_checkable

from .exceptions import NoPaymentsError, StorageError
from .monetary import Amount


class PaymentStatus(str, Enum):
    """Finality of a cached payment."""

    PENDING = "pending"
    CONFIRMED = "confirmed"


@dataclass(frozen=True, slots=True)
class CachedPayment:
    """A provider payment together with its classified status.

    Identity is (transaction, log_index); a store holds at most one row per key.
    """

    from_address: str
    to_address: str
    token_value: Amount
    usd_value: Amount
    status: PaymentStatus
    block_hash: str
    block_number: int
    transaction: str
    log_index: int
    timestamp: datetime

    @property
    def key(self) -> tuple[str, int]:
        return (self.transaction, self.log_index)

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)


@runtime_checkable
class PaymentsDB(Protocol):
    """Payment cache contract."""

    async def insert_batch(self, payments: Sequence[CachedPayment]) -> None:
        """Insert all rows or none."""
        ...

    async def delete_pending(self) -> None:
        """Remove every pending row. Deleting when none exist is a no-op."""
        ...

    async def replace_pending(self, payments: Sequence[CachedPayment]) -> None:
        """Delete pending rows and insert ``payments`` as one atomic unit."""
        ...

    async def last_block(self, status: PaymentStatus) -> int:
        """Highest block number among rows of ``status``; NoPaymentsError if none."""
        ...

    async def list(self) -> list[CachedPayment]:
        """All rows, newest (block_number, log_index) first."""
        ...

    async def list_wallet(self, wallet: str, limit: int, offset: int) -> list[CachedPayment]:
        """Rows received by ``wallet``, newest first."""
        ...

    async def list_confirmed(self, block_number: int, log_index: int) -> list[CachedPayment]:
        """Confirmed rows after the given position, oldest first."""
        ...


def check_unique(payments: Iterable[CachedPayment]) -> None:
    """Raise StorageError if two rows share a (transaction, log_index) key."""
    seen: set[tuple[str, int]] = set()
    for payment in payments:
        if payment.key in seen:
            raise StorageError(
                f"duplicate payment {payment.transaction}:{payment.log_index}",
                operation="insert_batch",
                details={"transaction": payment.transaction, "log_index": payment.log_index},
            )
        seen.add(payment.key)


class InMemoryPaymentsDB:
    """In-memory payment cache (swap for PostgresPaymentsDB in production).

    Writes build a new row map and swap it in under a lock, so readers see
    either the state before a write or the state after it.
    """

    def __init__(self) -> None:
        self._rows: dict[tuple[str, int], CachedPayment] = {}
        self._lock = asyncio.Lock()

    async def insert_batch(self, payments: Sequence[CachedPayment]) -> None:
        async with self._lock:
            rows = dict(self._rows)
            self._commit(rows, payments)

    async def delete_pending(self) -> None:
        async with self._lock:
            self._rows = {
                k: p for k, p in self._rows.items() if p.status != PaymentStatus.PENDING
            }

    async def replace_pending(self, payments: Sequence[CachedPayment]) -> None:
        async with self._lock:
            rows = {
                k: p for k, p in self._rows.items() if p.status != PaymentStatus.PENDING
            }
            self._commit(rows, payments)

    def _commit(
        self,
        rows: dict[tuple[str, int], CachedPayment],
        payments: Sequence[CachedPayment],
    ) -> None:
        check_unique(payments)
        for payment in payments:
            if payment.key in rows:
                raise StorageError(
                    f"payment {payment.transaction}:{payment.log_index} already cached",
                    operation="insert_batch",
                    details={"transaction": payment.transaction, "log_index": payment.log_index},
                )
            rows[payment.key] = payment
        self._rows = rows

    async def last_block(self, status: PaymentStatus) -> int:
        blocks = [p.block_number for p in self._rows.values() if p.status == status]
        if not blocks:
            raise NoPaymentsError(status.value)
        return max(blocks)

    async def list(self) -> list[CachedPayment]:
        return sorted(self._rows.values(), key=lambda p: p.position, reverse=True)

    async def list_wallet(self, wallet: str, limit: int, offset: int) -> list[CachedPayment]:
        wallet = wallet.lower()
        rows = [p for p in await self.list() if p.to_address == wallet]
        return rows[offset : offset + limit]

    async def list_confirmed(self, block_number: int, log_index: int) -> list[CachedPayment]:
        after = (block_number, log_index)
        rows = [
            p for p in self._rows.values()
            if p.status == PaymentStatus.CONFIRMED and p.position > after
        ]
        return sorted(rows, key=lambda p: p.position)
