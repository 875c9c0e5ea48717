"""
ledgerscan - reconciles token payments reported by a ledger source into a
local payment cache, classifying each one as pending or confirmed by block
depth.
"""
from __future__ import annotations

__version__ = "0.1.0"

from .chore import Chore, ChoreStats, TickResult
from .client import LedgerClient
from .config import LedgerscanSettings, load_settings
from .exceptions import (
    IncompatibleUnitError,
    LedgerscanError,
    LedgerSourceError,
    NoPaymentsError,
    PrecisionLossError,
    ProviderError,
    StorageError,
    TransportError,
    UnauthorizedError,
    WalletNotFoundError,
)
from .models import Header, LatestPayments, Payment
from .monetary import STORJ_TOKEN, US_DOLLARS, US_DOLLARS_MICRO, Amount, Currency
from .payments_db import CachedPayment, InMemoryPaymentsDB, PaymentsDB, PaymentStatus
from .service import DepositWalletService, WalletTotals
from .wallets_db import InMemoryWalletsDB, Wallet, WalletsDB

__all__ = [
    "__version__",
    # Chore
    "Chore",
    "ChoreStats",
    "TickResult",
    # Ledger source
    "LedgerClient",
    "Header",
    "LatestPayments",
    "Payment",
    # Storage
    "CachedPayment",
    "InMemoryPaymentsDB",
    "PaymentsDB",
    "PaymentStatus",
    "InMemoryWalletsDB",
    "Wallet",
    "WalletsDB",
    # Deposit wallets
    "DepositWalletService",
    "WalletTotals",
    # Money
    "Amount",
    "Currency",
    "STORJ_TOKEN",
    "US_DOLLARS",
    "US_DOLLARS_MICRO",
    # Config
    "LedgerscanSettings",
    "load_settings",
    # Errors
    "LedgerscanError",
    "LedgerSourceError",
    "TransportError",
    "UnauthorizedError",
    "ProviderError",
    "StorageError",
    "NoPaymentsError",
    "WalletNotFoundError",
    "IncompatibleUnitError",
    "PrecisionLossError",
]
