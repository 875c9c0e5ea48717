"""Deposit wallet service.

Provisions receiving addresses for users through the ledger source and
exposes the cached payments received by those addresses.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .client import LedgerClient
from .exceptions import WalletNotFoundError
from .monetary import STORJ_TOKEN, US_DOLLARS_MICRO, Amount
from .payments_db import CachedPayment, PaymentsDB, PaymentStatus
from .wallets_db import WalletsDB

logger = logging.getLogger("ledgerscan.service")


@dataclass(frozen=True)
class WalletTotals:
    """Sum of confirmed and pending deposits received by a wallet."""
    wallet: str
    confirmed_tokens: Amount
    confirmed_usd: Amount
    pending_tokens: Amount
    pending_usd: Amount


class DepositWalletService:
    """Claims deposit addresses and reports what they received."""

    def __init__(
        self,
        wallets_db: WalletsDB,
        payments_db: PaymentsDB,
        client: LedgerClient,
    ):
        self._wallets_db = wallets_db
        self._payments_db = payments_db
        self._client = client
        self._claim_lock = asyncio.Lock()

    async def claim(self, user_id: str) -> str:
        """Return the user's deposit address, claiming a new one if needed."""
        async with self._claim_lock:
            try:
                return await self._wallets_db.get(user_id)
            except WalletNotFoundError:
                pass

            address = await self._client.claim_new_address()
            await self._wallets_db.add(user_id, address)
            logger.info("Claimed deposit wallet", extra={"user_id": user_id, "wallet": address})
            return address

    async def get(self, user_id: str) -> str:
        return await self._wallets_db.get(user_id)

    async def payments(self, wallet: str, limit: int = 50, offset: int = 0) -> list[CachedPayment]:
        """Cached payments received by ``wallet``, newest first."""
        if limit <= 0 or offset < 0:
            raise ValueError("limit must be positive and offset non-negative")
        return await self._payments_db.list_wallet(wallet, limit, offset)

    async def totals(self, wallet: str, page_size: int = 500) -> WalletTotals:
        zero_tokens = Amount.from_base_units(0, STORJ_TOKEN)
        zero_usd = Amount.from_base_units(0, US_DOLLARS_MICRO)
        sums = {
            PaymentStatus.CONFIRMED: [zero_tokens, zero_usd],
            PaymentStatus.PENDING: [zero_tokens, zero_usd],
        }

        offset = 0
        while True:
            page = await self._payments_db.list_wallet(wallet, page_size, offset)
            for payment in page:
                acc = sums[payment.status]
                acc[0] = acc[0] + payment.token_value
                acc[1] = acc[1] + payment.usd_value
            if len(page) < page_size:
                break
            offset += page_size

        return WalletTotals(
            wallet=wallet.lower(),
            confirmed_tokens=sums[PaymentStatus.CONFIRMED][0],
            confirmed_usd=sums[PaymentStatus.CONFIRMED][1],
            pending_tokens=sums[PaymentStatus.PENDING][0],
            pending_usd=sums[PaymentStatus.PENDING][1],
        )
