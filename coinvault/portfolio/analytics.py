"""Portfolio-level performance metrics derived from holdings."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from .holdings import Holding
from .numbers import HUNDRED, ZERO, as_float, round2, safe_div


@dataclass(frozen=True)
class Performer:
    symbol: str
    return_percent: Decimal

    def to_payload(self) -> dict[str, Any]:
        return {"symbol": self.symbol, "returnPercent": as_float(self.return_percent)}


@dataclass(frozen=True)
class PerformanceMetrics:
    total_invested: Decimal
    total_value: Decimal
    total_return: Decimal
    total_return_percent: Decimal
    best_performer: Optional[Performer]
    worst_performer: Optional[Performer]
    win_rate: Decimal
    avg_holding_value: Decimal
    number_of_tokens: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalInvested": as_float(self.total_invested),
            "totalValue": as_float(self.total_value),
            "totalReturn": as_float(self.total_return),
            "totalReturnPercent": as_float(self.total_return_percent),
            "bestPerformer": self.best_performer.to_payload() if self.best_performer else None,
            "worstPerformer": self.worst_performer.to_payload() if self.worst_performer else None,
            "winRate": as_float(self.win_rate),
            "avgHoldingValue": as_float(self.avg_holding_value),
            "numberOfTokens": self.number_of_tokens,
        }


def compute_performance_metrics(holdings: Iterable[Holding]) -> PerformanceMetrics:
    """Aggregate return figures.

    Positions are holdings with any buy cost, sell revenue or current
    quantity. Best, worst and win rate only consider positions that carry a
    buy cost, ranked by total return over that cost.
    """

    holdings = list(holdings)
    active = [holding for holding in holdings if holding.current_qty > 0]
    positions = [
        holding
        for holding in holdings
        if holding.total_buy_cost > 0 or holding.total_sell_revenue > 0 or holding.current_qty > 0
    ]

    total_invested = ZERO
    total_value = ZERO
    total_return = ZERO
    winners = 0
    with_cost = 0
    best: Optional[Performer] = None
    worst: Optional[Performer] = None

    for holding in positions:
        total_invested += holding.total_buy_cost
        total_value += holding.current_value
        holding_return = holding.realized_pl + holding.unrealized_pl
        total_return += holding_return

        if holding.total_buy_cost <= 0:
            continue
        with_cost += 1
        if holding_return > 0:
            winners += 1
        return_percent = holding_return / holding.total_buy_cost * HUNDRED
        if best is None or return_percent > best.return_percent:
            best = Performer(holding.symbol, return_percent)
        if worst is None or return_percent < worst.return_percent:
            worst = Performer(holding.symbol, return_percent)

    return PerformanceMetrics(
        total_invested=round2(total_invested),
        total_value=round2(total_value),
        total_return=round2(total_return),
        total_return_percent=round2(safe_div(total_return, total_invested) * HUNDRED),
        best_performer=Performer(best.symbol, round2(best.return_percent)) if best else None,
        worst_performer=Performer(worst.symbol, round2(worst.return_percent)) if worst else None,
        win_rate=round2(safe_div(Decimal(winners), Decimal(with_cost)) * HUNDRED),
        avg_holding_value=round2(safe_div(total_value, Decimal(len(active)))),
        number_of_tokens=len(active),
    )


__all__ = ["Performer", "PerformanceMetrics", "compute_performance_metrics"]
