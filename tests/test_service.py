"""Tests for the deposit wallet service."""
from __future__ import annotations

import asyncio

import pytest

from ledgerscan.exceptions import ProviderError, StorageError, WalletNotFoundError
from ledgerscan.payments_db import InMemoryPaymentsDB, PaymentStatus
from ledgerscan.service import DepositWalletService
from ledgerscan.wallets_db import InMemoryWalletsDB, WalletsDB

from conftest import OTHER_WALLET, WALLET, FakeLedger, cached


@pytest.fixture
def wallets() -> InMemoryWalletsDB:
    return InMemoryWalletsDB()


@pytest.fixture
def payments_db() -> InMemoryPaymentsDB:
    return InMemoryPaymentsDB()


@pytest.fixture
def service(ledger: FakeLedger, wallets, payments_db) -> DepositWalletService:
    return DepositWalletService(wallets, payments_db, ledger.client())


class TestClaim:
    """Tests for DepositWalletService.claim()."""

    @pytest.mark.asyncio
    async def test_claims_once_per_user(self, service, ledger: FakeLedger, wallets):
        """Should return the stored wallet instead of claiming again."""
        first = await service.claim("user-1")
        second = await service.claim("user-1")

        assert first == second == "0x" + "0" * 39 + "1"
        assert ledger.claimed == 1
        assert await wallets.get("user-1") == first

    @pytest.mark.asyncio
    async def test_concurrent_claims_share_one_address(self, service, ledger: FakeLedger):
        results = await asyncio.gather(*(service.claim("user-1") for _ in range(5)))
        assert len(set(results)) == 1
        assert ledger.claimed == 1

    @pytest.mark.asyncio
    async def test_distinct_users_get_distinct_addresses(self, service):
        a = await service.claim("user-1")
        b = await service.claim("user-2")
        assert a != b

    @pytest.mark.asyncio
    async def test_provider_failure_stores_nothing(self, service, ledger: FakeLedger, wallets):
        ledger.fail_status = 500
        with pytest.raises(ProviderError):
            await service.claim("user-1")
        assert await wallets.get_all() == []

    @pytest.mark.asyncio
    async def test_get_unknown_user(self, service):
        with pytest.raises(WalletNotFoundError) as exc:
            await service.get("nobody")
        assert exc.value.details["user_id"] == "nobody"


class TestPayments:
    """Tests for listing and totalling wallet payments."""

    @pytest.mark.asyncio
    async def test_lists_newest_first(self, service, payments_db):
        await payments_db.insert_batch([cached(1), cached(3), cached(2, to=OTHER_WALLET)])
        rows = await service.payments(WALLET)
        assert [p.block_number for p in rows] == [3, 1]

    @pytest.mark.asyncio
    async def test_rejects_bad_paging(self, service):
        with pytest.raises(ValueError):
            await service.payments(WALLET, limit=0)
        with pytest.raises(ValueError):
            await service.payments(WALLET, offset=-1)

    @pytest.mark.asyncio
    async def test_totals(self, service, payments_db):
        await payments_db.insert_batch(
            [
                cached(1, tokens=100, usd_micro=10),
                cached(2, tokens=200, usd_micro=20),
                cached(3, status=PaymentStatus.PENDING, tokens=5, usd_micro=1),
                cached(4, to=OTHER_WALLET, tokens=1000, usd_micro=1000),
            ]
        )

        totals = await service.totals(WALLET, page_size=2)

        assert totals.wallet == WALLET
        assert totals.confirmed_tokens.base_units == 300
        assert totals.confirmed_usd.base_units == 30
        assert totals.pending_tokens.base_units == 5
        assert totals.pending_usd.base_units == 1

    @pytest.mark.asyncio
    async def test_totals_empty_wallet(self, service):
        totals = await service.totals(WALLET)
        assert totals.confirmed_tokens.is_zero()
        assert totals.pending_usd.is_zero()


class TestInMemoryWalletsDB:
    def test_satisfies_protocol(self, wallets):
        assert isinstance(wallets, WalletsDB)

    @pytest.mark.asyncio
    async def test_rejects_second_wallet_for_user(self, wallets):
        await wallets.add("user-1", WALLET)
        with pytest.raises(StorageError):
            await wallets.add("user-1", OTHER_WALLET)

    @pytest.mark.asyncio
    async def test_rejects_reused_address(self, wallets):
        await wallets.add("user-1", WALLET)
        with pytest.raises(StorageError):
            await wallets.add("user-2", WALLET.upper().replace("0X", "0x"))
