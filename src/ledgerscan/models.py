"""Wire models for the ledger source API."""
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# RFC 3339 timestamps from the provider may carry nanoseconds.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class LedgerModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to its wire dictionary."""
        return self.model_dump(mode="json", by_alias=True)


def _trim_fraction(value: Any) -> Any:
    if isinstance(value, str):
        return _FRACTION_RE.sub(r"\1", value)
    return value


class Header(LedgerModel):
    """Chain block header as reported by the provider."""

    hash: str
    number: int
    timestamp: datetime

    @field_validator("timestamp", mode="before")
    @classmethod
    def trim_timestamp(cls, v: Any) -> Any:
        return _trim_fraction(v)


class Payment(LedgerModel):
    """One transfer observed by the provider."""

    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    token_value: int = Field(alias="tokenValue")
    usd_value: Decimal = Field(alias="usdValue")
    block_hash: str = Field(alias="blockHash")
    block_number: int = Field(alias="blockNumber")
    transaction: str
    log_index: int = Field(alias="logIndex")
    timestamp: datetime

    @field_validator("timestamp", mode="before")
    @classmethod
    def trim_timestamp(cls, v: Any) -> Any:
        return _trim_fraction(v)

    @field_validator("from_address", "to_address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return v.lower()

    @field_validator("token_value", mode="before")
    @classmethod
    def parse_token_value(cls, v: Any) -> Any:
        # Big integers may arrive as JSON strings.
        if isinstance(v, str):
            return int(v)
        return v

    @property
    def key(self) -> tuple[str, int]:
        return (self.transaction, self.log_index)


class LatestPayments(LedgerModel):
    """Payments observed since a block, plus the chain head at fetch time."""

    latest_block: Header = Field(alias="latestBlock")
    payments: list[Payment] = Field(default_factory=list)
