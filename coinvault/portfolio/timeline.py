"""Chronological realized profit and loss from the transaction ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from ..models import Transaction
from .holdings import HoldingKey, holding_key
from .numbers import ZERO, as_float, normalize_symbol, parse_decimal, parse_timestamp

_EPOCH_FLOOR = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class PLPoint:
    date: str
    cumulative_pl: Decimal
    symbol: str
    pl: Decimal

    def to_payload(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "cumulativePL": as_float(self.cumulative_pl),
            "symbol": self.symbol,
            "pl": as_float(self.pl),
        }


@dataclass(frozen=True)
class RealizedPLTimeline:
    timeline: list[PLPoint] = field(default_factory=list)
    total_realized_pl: Decimal = ZERO

    def to_payload(self) -> dict[str, Any]:
        return {
            "timeline": [point.to_payload() for point in self.timeline],
            "totalRealizedPL": as_float(self.total_realized_pl),
        }


@dataclass
class _CostPool:
    total_cost: Decimal = ZERO
    total_qty: Decimal = ZERO


def _sort_key(tx: Transaction) -> datetime:
    return parse_timestamp(tx.transacted_at) or _EPOCH_FLOOR


def compute_realized_pl_timeline(transactions: Iterable[Transaction]) -> RealizedPLTimeline:
    """Walk the ledger in time order, realizing each sell against the pool average.

    Unlike the holdings view, each sell uses the average cost in force at
    the moment it happened and shrinks the pool proportionally.
    """

    ordered = sorted(transactions, key=_sort_key)
    pools: dict[HoldingKey, _CostPool] = {}
    timeline: list[PLPoint] = []
    cumulative = ZERO

    for tx in ordered:
        pool = pools.setdefault(holding_key(tx.token_symbol, tx.coingecko_id), _CostPool())
        qty = parse_decimal(tx.quantity)
        cost = parse_decimal(tx.total_cost)
        fee = parse_decimal(tx.fee)

        if tx.type == "buy":
            pool.total_cost += cost + fee
            pool.total_qty += qty
        elif tx.type == "receive":
            pool.total_qty += qty
        elif tx.type == "sell":
            avg_cost = pool.total_cost / pool.total_qty if pool.total_qty > 0 else ZERO
            sell_price = (cost - fee) / qty if qty > 0 else ZERO
            pl = (sell_price - avg_cost) * qty

            if pool.total_qty > 0:
                pool.total_cost -= pool.total_cost * (qty / pool.total_qty)
            pool.total_qty -= qty

            cumulative += pl
            timeline.append(
                PLPoint(
                    date=tx.transacted_at,
                    cumulative_pl=cumulative,
                    symbol=normalize_symbol(tx.token_symbol),
                    pl=pl,
                )
            )

    return RealizedPLTimeline(timeline=timeline, total_realized_pl=cumulative)


__all__ = ["PLPoint", "RealizedPLTimeline", "compute_realized_pl_timeline"]
