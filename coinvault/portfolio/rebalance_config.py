"""Typed rebalance configuration parsed from the vault settings map."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal, Mapping, Optional, cast

from .numbers import ONE, as_float, parse_with_default, round_int

RebalanceStrategyName = Literal[
    "threshold",
    "calendar",
    "percent-of-portfolio",
    "risk-parity",
    "dca-weighted",
]
RebalanceInterval = Literal["weekly", "monthly", "quarterly"]

REBALANCE_STRATEGIES: tuple[RebalanceStrategyName, ...] = (
    "threshold",
    "calendar",
    "percent-of-portfolio",
    "risk-parity",
    "dca-weighted",
)
REBALANCE_INTERVALS: tuple[RebalanceInterval, ...] = ("weekly", "monthly", "quarterly")

DEFAULT_STRATEGY: RebalanceStrategyName = "percent-of-portfolio"
DEFAULT_INTERVAL: RebalanceInterval = "monthly"

DEFAULT_HOLD_ZONE_PERCENT = Decimal("5")
DEFAULT_MIN_TRADE_USD = Decimal("50")
DEFAULT_DUST_THRESHOLD_USD = Decimal("1")
DEFAULT_SLIPPAGE_PERCENT = Decimal("0.5")
DEFAULT_TRADING_FEE_PERCENT = Decimal("0.1")
DEFAULT_PORTFOLIO_CHANGE_THRESHOLD = Decimal("5")
DEFAULT_DCA_SPLIT_COUNT = Decimal("4")
DEFAULT_DCA_INTERVAL_DAYS = Decimal("7")
MAX_DCA_SPLIT_COUNT = Decimal("100")
MAX_DCA_INTERVAL_DAYS = Decimal("365")

CONCENTRATION_ALERT_THRESHOLD_PERCENT = Decimal("30")
MIN_CONCENTRATION_ALERT_THRESHOLD_PERCENT = Decimal("10")
MAX_CONCENTRATION_ALERT_THRESHOLD_PERCENT = Decimal("95")
HIGH_CONCENTRATION_MARGIN_PERCENT = Decimal("20")

DEFAULT_RISK_PARITY_LOOKBACK_DAYS = Decimal("30")
MIN_RISK_PARITY_LOOKBACK_DAYS = Decimal("7")
MAX_RISK_PARITY_LOOKBACK_DAYS = Decimal("365")


@dataclass(frozen=True)
class RebalanceConfig:
    """Rebalance settings with every vault key resolved to a typed value.

    Percent fields are plain percentages (5 means 5%). USD fields are notional
    amounts. Defaults mirror a freshly created vault.
    """

    hold_zone_percent: Decimal = DEFAULT_HOLD_ZONE_PERCENT
    min_trade_usd: Decimal = DEFAULT_MIN_TRADE_USD
    buy_only_mode: bool = False
    new_cash_usd: Decimal = Decimal("0")
    cash_reserve_usd: Decimal = Decimal("0")
    cash_reserve_percent: Decimal = Decimal("0")
    dust_threshold_usd: Decimal = DEFAULT_DUST_THRESHOLD_USD
    slippage_percent: Decimal = DEFAULT_SLIPPAGE_PERCENT
    trading_fee_percent: Decimal = DEFAULT_TRADING_FEE_PERCENT
    # clamped to [10, 95]
    concentration_threshold_percent: Decimal = CONCENTRATION_ALERT_THRESHOLD_PERCENT
    exclude_stablecoins_from_concentration: bool = False
    treat_stablecoins_as_cash_reserve: bool = False
    # raw name; unknown names dispatch as threshold
    strategy: str = DEFAULT_STRATEGY
    rebalance_interval: str = DEFAULT_INTERVAL
    portfolio_change_threshold: Decimal = DEFAULT_PORTFOLIO_CHANGE_THRESHOLD
    # whole days in [7, 365]
    risk_parity_lookback_days: int = 30
    # split count in [1, 100], interval in [1, 365] days
    dca_split_count: int = 4
    dca_interval_days: int = 7
    last_rebalance_date: Optional[str] = None

    @property
    def high_concentration_threshold_percent(self) -> Decimal:
        return min(
            Decimal("100"),
            self.concentration_threshold_percent + HIGH_CONCENTRATION_MARGIN_PERCENT,
        )

    @property
    def strategy_name(self) -> RebalanceStrategyName:
        if self.strategy in REBALANCE_STRATEGIES:
            return cast(RebalanceStrategyName, self.strategy)
        return "threshold"

    def to_payload(self) -> dict[str, Any]:
        return {
            "holdZonePercent": as_float(self.hold_zone_percent),
            "minTradeUsd": as_float(self.min_trade_usd),
            "buyOnlyMode": self.buy_only_mode,
            "newCashUsd": as_float(self.new_cash_usd),
            "cashReserveUsd": as_float(self.cash_reserve_usd),
            "cashReservePercent": as_float(self.cash_reserve_percent),
            "dustThresholdUsd": as_float(self.dust_threshold_usd),
            "slippagePercent": as_float(self.slippage_percent),
            "tradingFeePercent": as_float(self.trading_fee_percent),
            "concentrationThresholdPercent": as_float(self.concentration_threshold_percent),
            "excludeStablecoinsFromConcentration": self.exclude_stablecoins_from_concentration,
            "treatStablecoinsAsCashReserve": self.treat_stablecoins_as_cash_reserve,
            "rebalanceStrategy": self.strategy,
            "rebalanceInterval": self.rebalance_interval,
            "portfolioChangeThreshold": as_float(self.portfolio_change_threshold),
            "riskParityLookbackDays": self.risk_parity_lookback_days,
            "dcaSplitCount": self.dca_split_count,
            "dcaIntervalDays": self.dca_interval_days,
            "lastRebalanceDate": self.last_rebalance_date,
        }


def parse_concentration_threshold_percent(raw: Optional[str]) -> Decimal:
    return parse_with_default(
        raw,
        CONCENTRATION_ALERT_THRESHOLD_PERCENT,
        minimum=MIN_CONCENTRATION_ALERT_THRESHOLD_PERCENT,
        maximum=MAX_CONCENTRATION_ALERT_THRESHOLD_PERCENT,
    )


def rebalance_config_from_settings(settings: Mapping[str, str]) -> RebalanceConfig:
    """Resolve the vault's string settings into a ``RebalanceConfig``."""

    def number(key: str, default: Decimal) -> Decimal:
        return parse_with_default(settings.get(key), default)

    def flag(key: str) -> bool:
        return (settings.get(key) or "").strip() == "1"

    def bounded_count(key: str, default: Decimal, maximum: Decimal) -> int:
        return max(1, round_int(parse_with_default(settings.get(key), default, maximum=maximum)))

    lookback = parse_with_default(
        settings.get("riskParityLookbackDays"),
        DEFAULT_RISK_PARITY_LOOKBACK_DAYS,
    )
    lookback = min(
        MAX_RISK_PARITY_LOOKBACK_DAYS,
        max(MIN_RISK_PARITY_LOOKBACK_DAYS, Decimal(round_int(lookback))),
    )

    last_rebalance_date = (settings.get("lastRebalanceDate") or "").strip() or None

    return RebalanceConfig(
        hold_zone_percent=number("holdZonePercent", DEFAULT_HOLD_ZONE_PERCENT),
        min_trade_usd=number("minTradeUsd", DEFAULT_MIN_TRADE_USD),
        buy_only_mode=number("buyOnlyMode", Decimal("0")) == ONE,
        new_cash_usd=number("newCashUsd", Decimal("0")),
        cash_reserve_usd=number("cashReserveUsd", Decimal("0")),
        cash_reserve_percent=number("cashReservePercent", Decimal("0")),
        dust_threshold_usd=number("dustThresholdUsd", DEFAULT_DUST_THRESHOLD_USD),
        slippage_percent=number("slippagePercent", DEFAULT_SLIPPAGE_PERCENT),
        trading_fee_percent=number("tradingFeePercent", DEFAULT_TRADING_FEE_PERCENT),
        concentration_threshold_percent=parse_concentration_threshold_percent(
            settings.get("concentrationThresholdPercent")
        ),
        exclude_stablecoins_from_concentration=flag("excludeStablecoinsFromConcentration"),
        treat_stablecoins_as_cash_reserve=flag("treatStablecoinsAsCashReserve"),
        strategy=(settings.get("rebalanceStrategy") or "").strip() or DEFAULT_STRATEGY,
        rebalance_interval=(settings.get("rebalanceInterval") or "").strip() or DEFAULT_INTERVAL,
        portfolio_change_threshold=number(
            "portfolioChangeThreshold", DEFAULT_PORTFOLIO_CHANGE_THRESHOLD
        ),
        risk_parity_lookback_days=int(lookback),
        dca_split_count=bounded_count("dcaSplitCount", DEFAULT_DCA_SPLIT_COUNT, MAX_DCA_SPLIT_COUNT),
        dca_interval_days=bounded_count("dcaIntervalDays", DEFAULT_DCA_INTERVAL_DAYS, MAX_DCA_INTERVAL_DAYS),
        last_rebalance_date=last_rebalance_date,
    )


__all__ = [
    "RebalanceStrategyName",
    "RebalanceInterval",
    "REBALANCE_STRATEGIES",
    "REBALANCE_INTERVALS",
    "RebalanceConfig",
    "parse_concentration_threshold_percent",
    "rebalance_config_from_settings",
]
