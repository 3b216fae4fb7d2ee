"""Drift and concentration alerts over the current allocation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Literal

from .context import StrategyContext
from .numbers import HUNDRED, ZERO, as_float, round2

AlertSeverity = Literal["low", "medium", "high"]
AlertType = Literal["deviation", "concentration_token"]

_SEVERITY_RANK: dict[str, int] = {"low": 0, "medium": 1, "high": 2}


@dataclass(frozen=True)
class Alert:
    token_symbol: str
    target_percent: Decimal
    current_percent: Decimal
    deviation: Decimal
    severity: AlertSeverity
    type: AlertType

    def to_payload(self) -> dict[str, Any]:
        return {
            "tokenSymbol": self.token_symbol,
            "targetPercent": as_float(self.target_percent),
            "currentPercent": as_float(self.current_percent),
            "deviation": as_float(self.deviation),
            "severity": self.severity,
            "type": self.type,
        }


def deviation_severity(deviation: Decimal, hold_zone_percent: Decimal) -> AlertSeverity:
    magnitude = abs(deviation)
    if magnitude > hold_zone_percent * 3:
        return "high"
    if magnitude > hold_zone_percent * 2:
        return "medium"
    return "low"


def compute_alerts(ctx: StrategyContext) -> list[Alert]:
    """Deviation alerts per target, then concentration alerts per symbol.

    Percentages are taken against the effective total. A symbol that
    already raised a concentration alert as a target is not reported twice.
    """

    total = ctx.effective_total
    if total <= 0:
        return []

    config = ctx.config
    threshold = config.concentration_threshold_percent
    high_threshold = config.high_concentration_threshold_percent

    def excluded(symbol: str) -> bool:
        return config.exclude_stablecoins_from_concentration and symbol in ctx.stablecoin_symbols

    def concentration(symbol: str, target_percent: Decimal, current_percent: Decimal) -> Alert:
        return Alert(
            token_symbol=symbol,
            target_percent=target_percent,
            current_percent=round2(current_percent),
            deviation=round2(current_percent - target_percent),
            severity="high" if current_percent > high_threshold else "medium",
            type="concentration_token",
        )

    alerts: list[Alert] = []
    concentrated: set[str] = set()
    target_percents = {target.token_symbol: target.target_percent for target in ctx.targets}

    for target in ctx.targets:
        symbol = target.token_symbol
        current_percent = ctx.resolve_current_value(symbol) / total * HUNDRED
        deviation = current_percent - target.target_percent

        if abs(deviation) > config.hold_zone_percent:
            alerts.append(
                Alert(
                    token_symbol=symbol,
                    target_percent=target.target_percent,
                    current_percent=round2(current_percent),
                    deviation=round2(deviation),
                    severity=deviation_severity(deviation, config.hold_zone_percent),
                    type="deviation",
                )
            )

        if current_percent > threshold and not excluded(symbol):
            concentrated.add(symbol)
            alerts.append(concentration(symbol, target.target_percent, current_percent))

    for symbol, value in ctx.symbol_values.items():
        if symbol in concentrated or excluded(symbol):
            continue
        current_percent = value / total * HUNDRED
        if current_percent <= threshold:
            continue
        alerts.append(concentration(symbol, target_percents.get(symbol, ZERO), current_percent))

    return alerts


def collapse_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    """Keep one alert per symbol: the more severe one, deviation on ties."""

    kept: dict[str, Alert] = {}
    for alert in alerts:
        current = kept.get(alert.token_symbol)
        if current is None:
            kept[alert.token_symbol] = alert
            continue
        rank = _SEVERITY_RANK[alert.severity]
        current_rank = _SEVERITY_RANK[current.severity]
        if rank > current_rank or (rank == current_rank and alert.type == "deviation"):
            kept[alert.token_symbol] = alert
    return list(kept.values())


__all__ = [
    "AlertSeverity",
    "AlertType",
    "Alert",
    "deviation_severity",
    "compute_alerts",
    "collapse_alerts",
]
