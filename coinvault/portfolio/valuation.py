"""Portfolio totals and per-symbol allocations on top of computed holdings."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from ..models import PriceMap, VaultData
from .holdings import Holding, compute_holdings
from .numbers import HUNDRED, ZERO, as_float, normalize_symbol, round2, safe_div


@dataclass(frozen=True)
class TokenAllocation:
    symbol: str
    value_usd: Decimal
    percent: Decimal
    coingecko_id: Optional[str]
    balance: Decimal
    is_staking: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "valueUsd": as_float(self.value_usd),
            "percent": as_float(self.percent),
            "coingeckoId": self.coingecko_id,
            "isStaking": self.is_staking,
            "balance": as_float(self.balance),
        }


@dataclass(frozen=True)
class PortfolioSummary:
    """Valuation snapshot.

    ``total_value`` and ``symbol_values`` are unrounded and feed the
    rebalancing math; ``total_value_usd`` and ``token_allocations`` are
    rounded to cents / hundredths of a percent for display.
    """

    total_value: Decimal
    symbol_values: dict[str, Decimal]
    token_allocations: list[TokenAllocation] = field(default_factory=list)
    holdings: list[Holding] = field(default_factory=list)

    @property
    def total_value_usd(self) -> Decimal:
        return round2(self.total_value)

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalValueUsd": as_float(self.total_value_usd),
            "symbolValues": {symbol: as_float(value) for symbol, value in self.symbol_values.items()},
            "tokenAllocations": [allocation.to_payload() for allocation in self.token_allocations],
        }


def summarize_holdings(holdings: list[Holding]) -> PortfolioSummary:
    total_value = ZERO
    symbol_values: dict[str, Decimal] = {}
    active = [holding for holding in holdings if holding.current_qty > 0]

    for holding in active:
        total_value += holding.current_value
        symbol = normalize_symbol(holding.symbol)
        symbol_values[symbol] = symbol_values.get(symbol, ZERO) + holding.current_value

    allocations = [
        TokenAllocation(
            symbol=holding.symbol,
            value_usd=round2(holding.current_value),
            percent=round2(safe_div(holding.current_value, total_value) * HUNDRED),
            coingecko_id=holding.coingecko_id,
            balance=holding.current_qty,
        )
        for holding in active
    ]
    return PortfolioSummary(
        total_value=total_value,
        symbol_values=symbol_values,
        token_allocations=allocations,
        holdings=holdings,
    )


def compute_summary(vault: VaultData, price_map: PriceMap) -> PortfolioSummary:
    """Value the vault at the given prices, rolling coingecko ids up to symbols."""

    holdings = compute_holdings(vault.transactions, vault.manual_entries, price_map)
    return summarize_holdings(holdings)


__all__ = ["TokenAllocation", "PortfolioSummary", "summarize_holdings", "compute_summary"]
