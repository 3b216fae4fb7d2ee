"""Pydantic models for vault data and market snapshots fed into the core."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .portfolio.numbers import parse_decimal

TransactionType = Literal["buy", "sell", "receive", "send"]


def _raw_numeric_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class _VaultModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Transaction(_VaultModel):
    """Ledger row. Numeric columns stay as the raw text the vault stores."""

    id: str
    token_symbol: str = Field(alias="tokenSymbol")
    token_name: str = Field(default="", alias="tokenName")
    chain: str = ""
    type: TransactionType
    quantity: str = "0"
    price_per_unit: str = Field(default="0", alias="pricePerUnit")
    total_cost: str = Field(default="0", alias="totalCost")
    fee: str = "0"
    coingecko_id: Optional[str] = Field(default=None, alias="coingeckoId")
    note: Optional[str] = None
    transacted_at: str = Field(default="", alias="transactedAt")
    created_at: str = Field(default="", alias="createdAt")

    @field_validator("quantity", "price_per_unit", "total_cost", "fee", mode="before")
    @classmethod
    def _numeric_text(cls, value: Any) -> str:
        return _raw_numeric_text(value)


class ManualEntry(_VaultModel):
    id: str
    token_symbol: str = Field(alias="tokenSymbol")
    token_name: str = Field(default="", alias="tokenName")
    coingecko_id: Optional[str] = Field(default=None, alias="coingeckoId")
    quantity: Decimal = Decimal("0")
    note: Optional[str] = None

    @field_validator("quantity", mode="before")
    @classmethod
    def _lenient_quantity(cls, value: Any) -> Decimal:
        return parse_decimal(value)


class RebalanceTarget(_VaultModel):
    token_symbol: str = Field(alias="tokenSymbol")
    target_percent: Decimal = Field(default=Decimal("0"), alias="targetPercent")
    coingecko_id: Optional[str] = Field(default=None, alias="coingeckoId")
    id: Optional[str] = None

    @field_validator("target_percent", mode="before")
    @classmethod
    def _lenient_percent(cls, value: Any) -> Decimal:
        return parse_decimal(value)


class TokenGroup(_VaultModel):
    name: str
    symbols: list[str] = Field(default_factory=list)
    id: Optional[str] = None


class TokenCategory(_VaultModel):
    token_symbol: str = Field(alias="tokenSymbol")
    category: str
    id: Optional[str] = None
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


class VaultData(_VaultModel):
    """Decrypted vault snapshot; read-only for the duration of a computation."""

    transactions: list[Transaction] = Field(default_factory=list)
    manual_entries: list[ManualEntry] = Field(default_factory=list, alias="manualEntries")
    rebalance_targets: list[RebalanceTarget] = Field(default_factory=list, alias="rebalanceTargets")
    token_groups: list[TokenGroup] = Field(default_factory=list, alias="tokenGroups")
    token_categories: list[TokenCategory] = Field(default_factory=list, alias="tokenCategories")
    settings: dict[str, str] = Field(default_factory=dict)

    @field_validator("settings", mode="before")
    @classmethod
    def _stringify_settings(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, Mapping):
            return {}
        return {str(key): _raw_numeric_text(item) for key, item in value.items() if item is not None}


class PriceData(_VaultModel):
    usd: Decimal = Decimal("0")
    change24h: Optional[Decimal] = None
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator("usd", mode="before")
    @classmethod
    def _lenient_usd(cls, value: Any) -> Decimal:
        return parse_decimal(value)

    @field_validator("change24h", mode="before")
    @classmethod
    def _optional_change(cls, value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        return parse_decimal(value)


class VolatilityData(_VaultModel):
    volatility: Decimal = Decimal("0")

    @field_validator("volatility", mode="before")
    @classmethod
    def _lenient_volatility(cls, value: Any) -> Decimal:
        return parse_decimal(value)


PriceMap = Mapping[str, PriceData]
VolatilityMap = Mapping[str, VolatilityData]


def price_map_from_payload(payload: Mapping[str, Any]) -> dict[str, PriceData]:
    """Build a price map keyed by lower-cased coingecko id."""

    return {
        str(key).strip().lower(): PriceData.model_validate(value)
        for key, value in payload.items()
        if isinstance(value, Mapping)
    }


def volatility_map_from_payload(payload: Mapping[str, Any]) -> dict[str, VolatilityData]:
    """Build a volatility map keyed by lower-cased coingecko id, like the price map."""

    return {
        str(key).strip().lower(): VolatilityData.model_validate(value)
        for key, value in payload.items()
        if isinstance(value, Mapping)
    }


__all__ = [
    "TransactionType",
    "Transaction",
    "ManualEntry",
    "RebalanceTarget",
    "TokenGroup",
    "TokenCategory",
    "VaultData",
    "PriceData",
    "VolatilityData",
    "PriceMap",
    "VolatilityMap",
    "price_map_from_payload",
    "volatility_map_from_payload",
]
