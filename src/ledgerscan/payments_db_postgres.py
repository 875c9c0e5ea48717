"""PostgreSQL-backed payment cache and deposit wallet store.

Maps:
- CachedPayment <-> ledger_payments (primary key transaction, log_index)
- Amount values are stored as NUMERIC base units; the currency of each column
  is fixed (token_value: STORJ_TOKEN, usd_value: US_DOLLARS_MICRO).
- user deposit wallets <-> deposit_wallets
"""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

import asyncpg

from .exceptions import NoPaymentsError, StorageError, WalletNotFoundError
from .monetary import STORJ_TOKEN, US_DOLLARS_MICRO, Amount
from .payments_db import CachedPayment, PaymentStatus, check_unique
from .wallets_db import Wallet

logger = logging.getLogger("ledgerscan.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ledger_payments (
    transaction VARCHAR(66) NOT NULL,
    log_index INTEGER NOT NULL,
    from_address VARCHAR(42) NOT NULL,
    to_address VARCHAR(42) NOT NULL,
    token_value NUMERIC(78, 0) NOT NULL,
    usd_value NUMERIC(78, 0) NOT NULL,
    status VARCHAR(16) NOT NULL,
    block_hash VARCHAR(66) NOT NULL,
    block_number BIGINT NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (transaction, log_index)
);

CREATE INDEX IF NOT EXISTS idx_ledger_payments_status_block
    ON ledger_payments (status, block_number, log_index);

CREATE INDEX IF NOT EXISTS idx_ledger_payments_to_address
    ON ledger_payments (to_address, block_number DESC, log_index DESC);

CREATE TABLE IF NOT EXISTS deposit_wallets (
    user_id VARCHAR(64) PRIMARY KEY,
    wallet_address VARCHAR(42) UNIQUE NOT NULL,
    created_at TIMESTAMPTZ DEFAULT NOW()
);
"""

_PAYMENT_COLUMNS = """
    transaction, log_index, from_address, to_address, token_value, usd_value,
    status, block_hash, block_number, timestamp
"""

# Driver, connection and timeout failures surfaced as StorageError.
DB_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

_INSERT_PAYMENT = f"""
INSERT INTO ledger_payments ({_PAYMENT_COLUMNS})
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
"""


def normalize_dsn(dsn: str) -> str:
    # Heroku/Railway style URLs
    if dsn.startswith("postgres://"):
        dsn = dsn.replace("postgres://", "postgresql://", 1)
    return dsn


class _PostgresStore:
    def __init__(self, dsn: str, pool: Optional[asyncpg.Pool] = None):
        self._dsn = normalize_dsn(dsn)
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(self._dsn, min_size=1, max_size=5)
            except DB_ERRORS as e:
                raise StorageError(f"connect: {e}", operation="connect") from e
        return self._pool

    async def init_schema(self) -> None:
        """Create tables if they do not exist."""
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except DB_ERRORS as e:
            raise StorageError(f"init_schema: {e}", operation="init_schema") from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


class PostgresPaymentsDB(_PostgresStore):
    """PostgreSQL payment cache."""

    @staticmethod
    def _payment_from_row(row: Any) -> CachedPayment:
        return CachedPayment(
            from_address=str(row["from_address"]),
            to_address=str(row["to_address"]),
            token_value=Amount.from_base_units(int(row["token_value"]), STORJ_TOKEN),
            usd_value=Amount.from_base_units(int(row["usd_value"]), US_DOLLARS_MICRO),
            status=PaymentStatus(row["status"]),
            block_hash=str(row["block_hash"]),
            block_number=int(row["block_number"]),
            transaction=str(row["transaction"]),
            log_index=int(row["log_index"]),
            timestamp=row["timestamp"],
        )

    @staticmethod
    def _payment_to_args(payment: CachedPayment) -> tuple:
        if payment.token_value.currency != STORJ_TOKEN or payment.usd_value.currency != US_DOLLARS_MICRO:
            raise StorageError(
                "payment amounts must be STORJ / micro USD",
                operation="insert_batch",
                details={
                    "token_currency": payment.token_value.currency.symbol,
                    "usd_currency": payment.usd_value.currency.symbol,
                },
            )
        return (
            payment.transaction,
            payment.log_index,
            payment.from_address,
            payment.to_address,
            Decimal(payment.token_value.base_units),
            Decimal(payment.usd_value.base_units),
            payment.status.value,
            payment.block_hash,
            payment.block_number,
            payment.timestamp,
        )

    async def _insert(self, conn: asyncpg.Connection, payments: Sequence[CachedPayment]) -> None:
        check_unique(payments)
        if payments:
            await conn.executemany(_INSERT_PAYMENT, [self._payment_to_args(p) for p in payments])

    async def insert_batch(self, payments: Sequence[CachedPayment]) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await self._insert(conn, payments)
        except asyncpg.UniqueViolationError as e:
            raise StorageError(f"insert_batch: duplicate payment: {e}", operation="insert_batch") from e
        except DB_ERRORS as e:
            raise StorageError(f"insert_batch: {e}", operation="insert_batch") from e

    async def delete_pending(self) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    "DELETE FROM ledger_payments WHERE status = $1",
                    PaymentStatus.PENDING.value,
                )
        except DB_ERRORS as e:
            raise StorageError(f"delete_pending: {e}", operation="delete_pending") from e

    async def replace_pending(self, payments: Sequence[CachedPayment]) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "DELETE FROM ledger_payments WHERE status = $1",
                        PaymentStatus.PENDING.value,
                    )
                    await self._insert(conn, payments)
        except asyncpg.UniqueViolationError as e:
            raise StorageError(f"replace_pending: duplicate payment: {e}", operation="replace_pending") from e
        except DB_ERRORS as e:
            raise StorageError(f"replace_pending: {e}", operation="replace_pending") from e

    async def last_block(self, status: PaymentStatus) -> int:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                value = await conn.fetchval(
                    "SELECT MAX(block_number) FROM ledger_payments WHERE status = $1",
                    status.value,
                )
        except DB_ERRORS as e:
            raise StorageError(f"last_block: {e}", operation="last_block") from e
        if value is None:
            raise NoPaymentsError(status.value)
        return int(value)

    async def _fetch(self, operation: str, query: str, *args: Any) -> list[CachedPayment]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
        except DB_ERRORS as e:
            raise StorageError(f"{operation}: {e}", operation=operation) from e
        return [self._payment_from_row(row) for row in rows]

    async def list(self) -> list[CachedPayment]:
        return await self._fetch(
            "list",
            f"""
            SELECT {_PAYMENT_COLUMNS}
            FROM ledger_payments
            ORDER BY block_number DESC, log_index DESC
            """,
        )

    async def list_wallet(self, wallet: str, limit: int, offset: int) -> list[CachedPayment]:
        return await self._fetch(
            "list_wallet",
            f"""
            SELECT {_PAYMENT_COLUMNS}
            FROM ledger_payments
            WHERE to_address = $1
            ORDER BY block_number DESC, log_index DESC
            LIMIT $2 OFFSET $3
            """,
            wallet.lower(),
            limit,
            offset,
        )

    async def list_confirmed(self, block_number: int, log_index: int) -> list[CachedPayment]:
        return await self._fetch(
            "list_confirmed",
            f"""
            SELECT {_PAYMENT_COLUMNS}
            FROM ledger_payments
            WHERE status = $1
              AND (block_number > $2 OR (block_number = $2 AND log_index > $3))
            ORDER BY block_number ASC, log_index ASC
            """,
            PaymentStatus.CONFIRMED.value,
            block_number,
            log_index,
        )


class PostgresWalletsDB(_PostgresStore):
    """PostgreSQL deposit wallet store."""

    async def add(self, user_id: str, address: str) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    "INSERT INTO deposit_wallets (user_id, wallet_address) VALUES ($1, $2)",
                    user_id,
                    address.lower(),
                )
        except DB_ERRORS as e:
            raise StorageError(f"add_wallet: {e}", operation="add_wallet") from e

    async def get(self, user_id: str) -> str:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                value = await conn.fetchval(
                    "SELECT wallet_address FROM deposit_wallets WHERE user_id = $1",
                    user_id,
                )
        except DB_ERRORS as e:
            raise StorageError(f"get_wallet: {e}", operation="get_wallet") from e
        if value is None:
            raise WalletNotFoundError(user_id)
        return str(value)

    async def get_all(self) -> list[Wallet]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT user_id, wallet_address FROM deposit_wallets ORDER BY created_at"
                )
        except DB_ERRORS as e:
            raise StorageError(f"get_all_wallets: {e}", operation="get_all_wallets") from e
        return [Wallet(user_id=str(r["user_id"]), address=str(r["wallet_address"])) for r in rows]
