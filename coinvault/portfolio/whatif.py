"""Hypothetical trade simulation against the current allocation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Literal, Mapping

from .numbers import HUNDRED, ZERO, NumericInput, as_float, normalize_symbol, parse_decimal, round2, safe_div


@dataclass(frozen=True)
class WhatIfTrade:
    token_symbol: str
    action: Literal["buy", "sell"]
    amount_usd: Decimal

    @classmethod
    def from_raw(cls, token_symbol: str, action: str, amount_usd: NumericInput) -> "WhatIfTrade":
        return cls(
            token_symbol=normalize_symbol(token_symbol),
            action="buy" if action == "buy" else "sell",
            amount_usd=parse_decimal(amount_usd),
        )


@dataclass(frozen=True)
class WhatIfResult:
    token_symbol: str
    current_percent: Decimal
    simulated_percent: Decimal
    change: Decimal

    def to_payload(self) -> dict[str, Any]:
        return {
            "tokenSymbol": self.token_symbol,
            "currentPercent": as_float(self.current_percent),
            "simulatedPercent": as_float(self.simulated_percent),
            "change": as_float(self.change),
        }


def simulate_trades(
    symbol_values: Mapping[str, Decimal],
    total_value: Decimal,
    trades: Iterable[WhatIfTrade],
) -> list[WhatIfResult]:
    """Apply trades in order and compare allocations, largest change first.

    Buys add new money; sells can remove at most what the symbol is worth.
    Trades without a symbol or a positive amount are ignored.
    """

    simulated = dict(symbol_values)
    simulated_total = total_value
    for trade in trades:
        symbol = normalize_symbol(trade.token_symbol)
        if not symbol or trade.amount_usd <= 0:
            continue
        current = simulated.get(symbol, ZERO)
        if trade.action == "buy":
            simulated[symbol] = current + trade.amount_usd
            simulated_total += trade.amount_usd
        else:
            executed = min(current, trade.amount_usd)
            simulated[symbol] = max(ZERO, current - executed)
            simulated_total = max(ZERO, simulated_total - executed)

    results: list[WhatIfResult] = []
    for symbol in dict.fromkeys([*symbol_values, *simulated]):
        current_value = symbol_values.get(symbol, ZERO)
        simulated_value = simulated.get(symbol, ZERO)
        if current_value == 0 and simulated_value == 0:
            continue
        current_percent = safe_div(current_value, total_value) * HUNDRED if total_value > 0 else ZERO
        simulated_percent = (
            safe_div(simulated_value, simulated_total) * HUNDRED if simulated_total > 0 else ZERO
        )
        results.append(
            WhatIfResult(
                token_symbol=symbol,
                current_percent=round2(current_percent),
                simulated_percent=round2(simulated_percent),
                change=round2(simulated_percent - current_percent),
            )
        )

    results.sort(key=lambda result: abs(result.change), reverse=True)
    return results


__all__ = ["WhatIfTrade", "WhatIfResult", "simulate_trades"]
