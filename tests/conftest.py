from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import pytest

from ledgerscan.client import CLAIM_PATH, PAYMENTS_PATH, LedgerClient
from ledgerscan.config import load_settings
from ledgerscan.monetary import STORJ_TOKEN, US_DOLLARS_MICRO, Amount
from ledgerscan.payments_db import CachedPayment, PaymentStatus

WALLET = "0x00000000000000000000000000000000000000aa"
OTHER_WALLET = "0x00000000000000000000000000000000000000bb"
SENDER = "0x00000000000000000000000000000000000000ff"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep real environment and .env files out of settings."""
    import os

    for key in list(os.environ):
        if key.startswith("LEDGERSCAN_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


def payment_json(
    block: int,
    log_index: int = 0,
    *,
    tx: Optional[str] = None,
    to: str = WALLET,
    token_value: Any = 100000000,
    usd_value: Any = 0.5,
) -> dict[str, Any]:
    """A payment as the ledger source serializes it."""
    return {
        "from": SENDER,
        "to": to,
        "tokenValue": token_value,
        "usdValue": usd_value,
        "blockHash": f"0x{block:064x}",
        "blockNumber": block,
        "transaction": tx or f"0x{block:060x}{log_index:04x}",
        "logIndex": log_index,
        "timestamp": "2024-05-01T12:00:00.123456789Z",
    }


def header_json(number: int) -> dict[str, Any]:
    return {
        "hash": f"0x{number:064x}",
        "number": number,
        "timestamp": "2024-05-01T12:00:00Z",
    }


def cached(
    block: int,
    log_index: int = 0,
    *,
    status: PaymentStatus = PaymentStatus.CONFIRMED,
    to: str = WALLET,
    tokens: int = 100000000,
    usd_micro: int = 500000,
) -> CachedPayment:
    """A cache row built directly, bypassing the chore."""
    return CachedPayment(
        from_address=SENDER,
        to_address=to,
        token_value=Amount.from_base_units(tokens, STORJ_TOKEN),
        usd_value=Amount.from_base_units(usd_micro, US_DOLLARS_MICRO),
        status=status,
        block_hash=f"0x{block:064x}",
        block_number=block,
        transaction=f"0x{block:060x}{log_index:04x}",
        log_index=log_index,
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


class FakeLedger:
    """Ledger source stand-in served through httpx.MockTransport."""

    def __init__(self, head: int = 0):
        self.head = head
        self.payments: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self.claimed = 0
        self.ignore_cursor = False

    def add(self, block: int, log_index: int = 0, **kwargs: Any) -> dict[str, Any]:
        payment = payment_json(block, log_index, **kwargs)
        self.payments.append(payment)
        return payment

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "ledger unavailable"})

        if request.url.path == PAYMENTS_PATH:
            start = 0 if self.ignore_cursor else int(request.url.params["from"])
            return httpx.Response(
                200,
                json={
                    "latestBlock": header_json(self.head),
                    "payments": [p for p in self.payments if p["blockNumber"] >= start],
                },
            )
        if request.url.path == CLAIM_PATH and request.method == "POST":
            self.claimed += 1
            return httpx.Response(200, json=f"0x{self.claimed:040X}")
        return httpx.Response(404, json={"error": "not found"})

    @property
    def payment_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == PAYMENTS_PATH]

    def client(self) -> LedgerClient:
        return LedgerClient(
            endpoint="http://ledger.test",
            identifier="satellite",
            secret="secret",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


class FakeConnection:
    """asyncpg connection stand-in that records statements.

    ``failures`` maps a method name to the exception that method raises.
    ``block`` maps a method name to an event the method waits on first.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.fetchval_result: Any = None
        self.rows: list[dict[str, Any]] = []
        self.failures: dict[str, BaseException] = {}
        self.block: dict[str, asyncio.Event] = {}
        self.entered: dict[str, asyncio.Event] = {}

    async def _enter(self, method: str) -> None:
        self.entered.setdefault(method, asyncio.Event()).set()
        if method in self.block:
            await self.block[method].wait()
        if method in self.failures:
            raise self.failures[method]

    @contextlib.asynccontextmanager
    async def _transaction(self):
        self.calls.append(("begin",))
        try:
            yield
        except BaseException:
            self.calls.append(("rollback",))
            raise
        self.calls.append(("commit",))

    def transaction(self):
        return self._transaction()

    async def execute(self, query: str, *args: Any) -> str:
        await self._enter("execute")
        self.calls.append(("execute", query.split()[0].upper(), args))
        return "OK"

    async def executemany(self, query: str, args: list[tuple]) -> None:
        await self._enter("executemany")
        self.calls.append(("executemany", list(args)))

    async def fetchval(self, query: str, *args: Any) -> Any:
        await self._enter("fetchval")
        self.calls.append(("fetchval", args))
        return self.fetchval_result

    async def fetch(self, query: str, *args: Any) -> list[dict[str, Any]]:
        await self._enter("fetch")
        self.calls.append(("fetch", args))
        return self.rows


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn

    @contextlib.asynccontextmanager
    async def _acquire(self):
        yield self.conn

    def acquire(self):
        return self._acquire()

    async def close(self) -> None:
        pass
