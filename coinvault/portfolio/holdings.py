"""Fold the transaction ledger into per-token holdings with weighted-average cost basis."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..models import ManualEntry, PriceData, PriceMap, Transaction
from .numbers import (
    HUNDRED,
    ZERO,
    as_float,
    normalize_coingecko_id,
    normalize_symbol,
    parse_decimal,
    safe_div,
)

HoldingKey = tuple[str, str]


@dataclass(frozen=True)
class Holding:
    symbol: str
    token_name: str
    coingecko_id: Optional[str]
    current_qty: Decimal
    buy_qty: Decimal
    receive_qty: Decimal
    sell_qty: Decimal
    send_qty: Decimal
    total_buy_cost: Decimal
    total_sell_revenue: Decimal
    total_fees: Decimal
    avg_cost_basis: Decimal
    current_price: Decimal
    change24h: Optional[Decimal]
    current_value: Decimal
    unrealized_pl: Decimal
    unrealized_pl_percent: Decimal
    realized_pl: Decimal
    manual_qty: Decimal = ZERO

    @property
    def key(self) -> HoldingKey:
        return holding_key(self.symbol, self.coingecko_id)

    @property
    def ledger_qty(self) -> Decimal:
        """Net ledger quantity before clamping and manual adjustments."""

        return self.buy_qty + self.receive_qty - self.sell_qty - self.send_qty

    def to_payload(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "tokenName": self.token_name,
            "coingeckoId": self.coingecko_id,
            "currentQty": as_float(self.current_qty),
            "buyQty": as_float(self.buy_qty),
            "sellQty": as_float(self.sell_qty),
            "totalBuyCost": as_float(self.total_buy_cost),
            "totalSellRevenue": as_float(self.total_sell_revenue),
            "totalFees": as_float(self.total_fees),
            "avgCostBasis": as_float(self.avg_cost_basis),
            "currentPrice": as_float(self.current_price),
            "change24h": as_float(self.change24h),
            "currentValue": as_float(self.current_value),
            "unrealizedPL": as_float(self.unrealized_pl),
            "unrealizedPLPercent": as_float(self.unrealized_pl_percent),
            "realizedPL": as_float(self.realized_pl),
        }


@dataclass
class _LedgerGroup:
    symbol: str
    token_name: str
    coingecko_id: Optional[str]
    buy_qty: Decimal = ZERO
    receive_qty: Decimal = ZERO
    sell_qty: Decimal = ZERO
    send_qty: Decimal = ZERO
    total_buy_cost: Decimal = ZERO
    total_sell_revenue: Decimal = ZERO
    total_fees: Decimal = ZERO


def holding_key(symbol: str, coingecko_id: Optional[str]) -> HoldingKey:
    return normalize_symbol(symbol), normalize_coingecko_id(coingecko_id) or ""


def lookup_price(price_map: PriceMap, coingecko_id: Optional[str]) -> Optional[PriceData]:
    normalized = normalize_coingecko_id(coingecko_id)
    if normalized is None:
        return None
    return price_map.get(normalized)


def compute_holdings(
    transactions: Iterable[Transaction],
    manual_entries: Iterable[ManualEntry],
    price_map: PriceMap,
) -> list[Holding]:
    """Aggregate the ledger into holdings, sorted by current value (largest first).

    Sells realize P&L against the final average buy cost rather than the
    average in force at the time of each sell; the realized P&L timeline
    keeps the chronological view.
    """

    groups: dict[HoldingKey, _LedgerGroup] = {}
    for tx in transactions:
        key = holding_key(tx.token_symbol, tx.coingecko_id)
        group = groups.get(key)
        if group is None:
            group = _LedgerGroup(
                symbol=tx.token_symbol,
                token_name=tx.token_name,
                coingecko_id=normalize_coingecko_id(tx.coingecko_id),
            )
            groups[key] = group
        _apply_transaction(group, tx)

    holdings: dict[HoldingKey, Holding] = {
        key: _holding_from_group(group, price_map) for key, group in groups.items()
    }

    for entry in manual_entries:
        key = holding_key(entry.token_symbol, entry.coingecko_id)
        existing = holdings.get(key)
        if existing is not None:
            holdings[key] = _merge_manual_quantity(existing, entry.quantity)
        else:
            holdings[key] = _holding_from_manual_entry(entry, price_map)

    return sorted(holdings.values(), key=lambda holding: holding.current_value, reverse=True)


def _apply_transaction(group: _LedgerGroup, tx: Transaction) -> None:
    qty = parse_decimal(tx.quantity)
    cost = parse_decimal(tx.total_cost)
    fee = parse_decimal(tx.fee)

    group.total_fees += fee
    if tx.type == "buy":
        group.buy_qty += qty
        group.total_buy_cost += cost + fee
    elif tx.type == "receive":
        group.receive_qty += qty
    elif tx.type == "sell":
        group.sell_qty += qty
        group.total_sell_revenue += cost - fee
    elif tx.type == "send":
        # transfers out reduce inventory without realizing P/L
        group.send_qty += qty


def _holding_from_group(group: _LedgerGroup, price_map: PriceMap) -> Holding:
    net_qty = group.buy_qty + group.receive_qty - group.sell_qty - group.send_qty
    held_qty = max(net_qty, ZERO)
    avg_cost_basis = safe_div(group.total_buy_cost, group.buy_qty)
    price = lookup_price(price_map, group.coingecko_id)
    current_price = price.usd if price is not None else ZERO

    return Holding(
        symbol=group.symbol,
        token_name=group.token_name,
        coingecko_id=group.coingecko_id,
        current_qty=held_qty,
        buy_qty=group.buy_qty,
        receive_qty=group.receive_qty,
        sell_qty=group.sell_qty,
        send_qty=group.send_qty,
        total_buy_cost=group.total_buy_cost,
        total_sell_revenue=group.total_sell_revenue,
        total_fees=group.total_fees,
        avg_cost_basis=avg_cost_basis,
        current_price=current_price,
        change24h=price.change24h if price is not None else None,
        current_value=held_qty * current_price,
        unrealized_pl=held_qty * (current_price - avg_cost_basis),
        unrealized_pl_percent=_unrealized_pl_percent(current_price, avg_cost_basis, held_qty),
        realized_pl=group.total_sell_revenue - group.sell_qty * avg_cost_basis,
    )


def _merge_manual_quantity(holding: Holding, entry_qty: Decimal) -> Holding:
    # manual balances carry no cost, only the quantity moves
    current_qty = holding.current_qty + entry_qty
    held_qty = max(current_qty, ZERO)
    return replace(
        holding,
        current_qty=held_qty,
        manual_qty=holding.manual_qty + entry_qty,
        current_value=held_qty * holding.current_price,
        unrealized_pl=held_qty * (holding.current_price - holding.avg_cost_basis),
        unrealized_pl_percent=_unrealized_pl_percent(holding.current_price, holding.avg_cost_basis, held_qty),
    )


def _holding_from_manual_entry(entry: ManualEntry, price_map: PriceMap) -> Holding:
    coingecko_id = normalize_coingecko_id(entry.coingecko_id)
    price = lookup_price(price_map, coingecko_id)
    current_price = price.usd if price is not None else ZERO
    qty = max(entry.quantity, ZERO)
    return Holding(
        symbol=entry.token_symbol,
        token_name=entry.token_name,
        coingecko_id=coingecko_id,
        current_qty=qty,
        buy_qty=ZERO,
        receive_qty=ZERO,
        sell_qty=ZERO,
        send_qty=ZERO,
        total_buy_cost=ZERO,
        total_sell_revenue=ZERO,
        total_fees=ZERO,
        avg_cost_basis=ZERO,
        current_price=current_price,
        change24h=price.change24h if price is not None else None,
        current_value=qty * current_price,
        unrealized_pl=ZERO,
        unrealized_pl_percent=ZERO,
        realized_pl=ZERO,
        manual_qty=entry.quantity,
    )


def _unrealized_pl_percent(current_price: Decimal, avg_cost_basis: Decimal, qty: Decimal) -> Decimal:
    if avg_cost_basis <= 0 or qty <= 0:
        return ZERO
    return (current_price - avg_cost_basis) / avg_cost_basis * HUNDRED


__all__ = ["Holding", "HoldingKey", "holding_key", "lookup_price", "compute_holdings"]
