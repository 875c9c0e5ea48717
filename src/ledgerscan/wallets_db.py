"""Deposit wallet associations (user -> claimed receiving address)."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .exceptions import StorageError, WalletNotFoundError


@dataclass(frozen=True, slots=True)
class Wallet:
    """A receiving address claimed for a user."""
    user_id: str
    address: str


@runtime_checkable
class WalletsDB(Protocol):
    """Deposit wallet store contract."""

    async def add(self, user_id: str, address: str) -> None:
        ...

    async def get(self, user_id: str) -> str:
        ...

    async def get_all(self) -> list[Wallet]:
        ...


class InMemoryWalletsDB:
    """In-memory wallet store (swap for PostgresWalletsDB in production)."""

    def __init__(self) -> None:
        self._wallets: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def add(self, user_id: str, address: str) -> None:
        address = address.lower()
        async with self._lock:
            if user_id in self._wallets:
                raise StorageError(
                    f"user '{user_id}' already has a wallet",
                    operation="add_wallet",
                    details={"user_id": user_id},
                )
            if address in self._wallets.values():
                raise StorageError(
                    f"wallet {address} is already associated",
                    operation="add_wallet",
                    details={"address": address},
                )
            self._wallets[user_id] = address

    async def get(self, user_id: str) -> str:
        try:
            return self._wallets[user_id]
        except KeyError:
            raise WalletNotFoundError(user_id) from None

    async def get_all(self) -> list[Wallet]:
        return [Wallet(user_id=u, address=a) for u, a in self._wallets.items()]
