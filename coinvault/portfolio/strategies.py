"""Rebalance strategies producing per-target buy/sell/hold suggestions.

Every strategy funnels through ``compute_suggestion``. Strategies differ in
the trade trigger they pass and in the schedule data they attach.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Literal, Mapping, Optional, Sequence

from ..models import VolatilityMap
from .context import MergedTarget, StrategyContext
from .numbers import HUNDRED, ZERO, as_float, parse_timestamp, round2

logger = logging.getLogger(__name__)

SuggestionAction = Literal["buy", "sell", "hold"]


@dataclass(frozen=True)
class Suggestion:
    token_symbol: str
    coingecko_id: Optional[str]
    target_percent: Decimal
    current_percent: Decimal
    current_value: Decimal
    target_value: Decimal
    deviation: Decimal
    action: SuggestionAction
    amount: Decimal
    estimated_slippage: Decimal
    estimated_fee: Decimal
    net_amount: Decimal
    is_untargeted: bool = False
    is_dust: bool = False

    @property
    def is_trade(self) -> bool:
        return self.action != "hold"

    def to_payload(self) -> dict[str, Any]:
        return {
            "tokenSymbol": self.token_symbol,
            "coingeckoId": self.coingecko_id,
            "targetPercent": as_float(self.target_percent),
            "currentPercent": as_float(self.current_percent),
            "currentValue": as_float(self.current_value),
            "targetValue": as_float(self.target_value),
            "deviation": as_float(self.deviation),
            "action": self.action,
            "amount": as_float(self.amount),
            "estimatedSlippage": as_float(self.estimated_slippage),
            "estimatedFee": as_float(self.estimated_fee),
            "netAmount": as_float(self.net_amount),
            "isUntargeted": self.is_untargeted,
            "isDust": self.is_dust,
        }


@dataclass(frozen=True)
class RiskParityTarget:
    token_symbol: str
    volatility: Decimal
    computed_target_percent: Decimal
    has_volatility_data: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "tokenSymbol": self.token_symbol,
            "volatility": as_float(self.volatility),
            "computedTargetPercent": as_float(self.computed_target_percent),
            "hasVolatilityData": self.has_volatility_data,
        }


@dataclass(frozen=True)
class DcaTrade:
    token_symbol: str
    action: SuggestionAction
    amount: Decimal

    def to_payload(self) -> dict[str, Any]:
        return {"tokenSymbol": self.token_symbol, "action": self.action, "amount": as_float(self.amount)}


@dataclass(frozen=True)
class DcaChunk:
    chunk_index: int
    scheduled_date: str
    trades: tuple[DcaTrade, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "chunkIndex": self.chunk_index,
            "scheduledDate": self.scheduled_date,
            "trades": [trade.to_payload() for trade in self.trades],
        }


@dataclass(frozen=True)
class StrategyOutput:
    suggestions: list[Suggestion]
    calendar_blocked: Optional[bool] = None
    next_rebalance_date: Optional[str] = None
    risk_parity_targets: Optional[list[RiskParityTarget]] = None
    dca_chunks: Optional[list[DcaChunk]] = None
    dca_total_chunks: Optional[int] = None
    dca_interval_days: Optional[int] = None


def compute_suggestion(
    ctx: StrategyContext,
    symbol: str,
    target_percent: Decimal,
    coingecko_id: Optional[str] = None,
    *,
    hold_zone_percent: Optional[Decimal] = None,
    portfolio_change_threshold: Optional[Decimal] = None,
) -> Suggestion:
    """Size one target against the context.

    The trade trigger is ``|deviation| > hold zone`` unless a
    ``portfolio_change_threshold`` is given, in which case the trade's share
    of the whole portfolio is compared instead.
    """

    config = ctx.config
    hold_zone = config.hold_zone_percent if hold_zone_percent is None else hold_zone_percent
    current_value = ctx.resolve_current_value(symbol)
    current_percent = ctx.current_percent(current_value)
    target_value = ctx.target_value(target_percent)
    deviation = current_percent - target_percent
    trade_amount = abs(target_value - current_value)

    if portfolio_change_threshold is not None:
        portfolio_impact = ctx.current_percent(trade_amount)
        triggered = portfolio_impact >= portfolio_change_threshold
    else:
        triggered = abs(deviation) > hold_zone

    action: SuggestionAction = "hold"
    if triggered and trade_amount >= config.min_trade_usd:
        action = "buy" if deviation < 0 else "sell"
    if config.buy_only_mode and action == "sell":
        action = "hold"

    estimated_slippage = ZERO
    estimated_fee = ZERO
    net_amount = trade_amount
    if action != "hold":
        estimated_slippage = trade_amount * config.slippage_percent / HUNDRED
        estimated_fee = trade_amount * config.trading_fee_percent / HUNDRED
        if action == "buy":
            net_amount = trade_amount + estimated_slippage + estimated_fee
        else:
            net_amount = trade_amount - estimated_slippage - estimated_fee

    return Suggestion(
        token_symbol=symbol,
        coingecko_id=ctx.resolve_coingecko_id(symbol, coingecko_id),
        target_percent=target_percent,
        current_percent=round2(current_percent),
        current_value=round2(current_value),
        target_value=round2(target_value),
        deviation=round2(deviation),
        action=action,
        amount=round2(trade_amount),
        estimated_slippage=round2(estimated_slippage),
        estimated_fee=round2(estimated_fee),
        net_amount=round2(net_amount),
        is_dust=_is_dust(current_value, ctx),
    )


def _is_dust(current_value: Decimal, ctx: StrategyContext) -> bool:
    return ZERO < current_value < ctx.config.dust_threshold_usd


def _blocked_suggestion(ctx: StrategyContext, target: MergedTarget) -> Suggestion:
    current_value = ctx.resolve_current_value(target.token_symbol)
    current_percent = ctx.current_percent(current_value)
    return Suggestion(
        token_symbol=target.token_symbol,
        coingecko_id=ctx.resolve_coingecko_id(target.token_symbol, target.coingecko_id),
        target_percent=target.target_percent,
        current_percent=round2(current_percent),
        current_value=round2(current_value),
        target_value=round2(ctx.target_value(target.target_percent)),
        deviation=round2(current_percent - target.target_percent),
        action="hold",
        amount=ZERO,
        estimated_slippage=ZERO,
        estimated_fee=ZERO,
        net_amount=ZERO,
        is_dust=_is_dust(current_value, ctx),
    )


def compute_threshold_suggestions(ctx: StrategyContext) -> StrategyOutput:
    suggestions = [
        compute_suggestion(ctx, target.token_symbol, target.target_percent, target.coingecko_id)
        for target in ctx.targets
    ]
    return StrategyOutput(suggestions=suggestions)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; days past the end of the month clamp to its last day."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_rebalance_at(last_rebalance: datetime, interval: str) -> datetime:
    if interval == "weekly":
        return last_rebalance + timedelta(days=7)
    if interval == "quarterly":
        return add_months(last_rebalance, 3)
    return add_months(last_rebalance, 1)


def compute_calendar_suggestions(ctx: StrategyContext, *, now: Optional[datetime] = None) -> StrategyOutput:
    now = now or datetime.now(timezone.utc)
    last_rebalance = parse_timestamp(ctx.config.last_rebalance_date)

    next_rebalance: Optional[datetime] = None
    blocked = False
    if last_rebalance is not None:
        try:
            next_rebalance = next_rebalance_at(last_rebalance, ctx.config.rebalance_interval)
        except (ValueError, OverflowError):
            logger.debug("Next rebalance after %s is out of range, not blocking", last_rebalance)
        else:
            blocked = now < next_rebalance
    next_date = next_rebalance.date().isoformat() if next_rebalance is not None else None

    if blocked:
        logger.info("Calendar rebalance blocked until %s", next_date)
        return StrategyOutput(
            suggestions=[_blocked_suggestion(ctx, target) for target in ctx.targets],
            calendar_blocked=True,
            next_rebalance_date=next_date,
        )

    # once the period has elapsed the hold zone no longer applies
    suggestions = [
        compute_suggestion(
            ctx,
            target.token_symbol,
            target.target_percent,
            target.coingecko_id,
            hold_zone_percent=ZERO,
        )
        for target in ctx.targets
    ]
    return StrategyOutput(suggestions=suggestions, calendar_blocked=False, next_rebalance_date=next_date)


def compute_percent_of_portfolio_suggestions(ctx: StrategyContext) -> StrategyOutput:
    threshold = ctx.config.portfolio_change_threshold
    suggestions = [
        compute_suggestion(
            ctx,
            target.token_symbol,
            target.target_percent,
            target.coingecko_id,
            portfolio_change_threshold=threshold,
        )
        for target in ctx.targets
    ]
    return StrategyOutput(suggestions=suggestions)


def allocate_rounded_percents(weights: Sequence[Decimal], total_percent: Decimal) -> list[Decimal]:
    """Split ``total_percent`` by weight, rounding to hundredths.

    The rounding residual lands on the largest raw share so the result sums
    to ``total_percent`` exactly.
    """

    if not weights or total_percent <= 0:
        return [ZERO for _ in weights]
    total_weight = sum(weights, ZERO)
    if total_weight <= 0:
        return [ZERO for _ in weights]

    raw = [weight / total_weight * total_percent for weight in weights]
    rounded = [round2(value) for value in raw]
    adjustment = round2(total_percent - sum(rounded, ZERO))
    if abs(adjustment) >= Decimal("0.01"):
        max_index = max(range(len(raw)), key=lambda index: (raw[index], -index))
        rounded[max_index] = round2(max(ZERO, rounded[max_index] + adjustment))
    return rounded


def compute_risk_parity_suggestions(
    ctx: StrategyContext,
    volatilities: Optional[VolatilityMap] = None,
) -> StrategyOutput:
    volatilities = volatilities or {}
    rows: list[tuple[MergedTarget, Optional[str], Decimal, Decimal]] = []
    for target in ctx.targets:
        coingecko_id = ctx.resolve_coingecko_id(target.token_symbol, target.coingecko_id)
        volatility = ZERO
        if coingecko_id and coingecko_id in volatilities:
            volatility = volatilities[coingecko_id].volatility
        rows.append((target, coingecko_id, volatility, max(ZERO, target.target_percent)))

    complete = bool(rows) and all(volatility > 0 for _, _, volatility, _ in rows)
    if complete:
        total_percent = round2(sum((percent for _, _, _, percent in rows), ZERO))
        allocated = allocate_rounded_percents([1 / volatility for _, _, volatility, _ in rows], total_percent)
    else:
        if rows:
            logger.info(
                "Risk parity falling back to declared targets; missing volatility for %s",
                ", ".join(target.token_symbol for target, _, volatility, _ in rows if volatility <= 0),
            )
        allocated = [round2(percent) for _, _, _, percent in rows]

    suggestions: list[Suggestion] = []
    parity_targets: list[RiskParityTarget] = []
    for (target, coingecko_id, volatility, _), target_percent in zip(rows, allocated):
        suggestions.append(compute_suggestion(ctx, target.token_symbol, target_percent, coingecko_id))
        parity_targets.append(
            RiskParityTarget(
                token_symbol=target.token_symbol,
                volatility=round2(volatility * HUNDRED),
                computed_target_percent=target_percent,
                has_volatility_data=complete or volatility > 0,
            )
        )
    return StrategyOutput(suggestions=suggestions, risk_parity_targets=parity_targets)


def _split_suggestion(suggestion: Suggestion, ctx: StrategyContext, split_count: int) -> Suggestion:
    if not suggestion.is_trade:
        return suggestion
    chunk_amount = round2(suggestion.amount / split_count)
    estimated_slippage = round2(chunk_amount * ctx.config.slippage_percent / HUNDRED)
    estimated_fee = round2(chunk_amount * ctx.config.trading_fee_percent / HUNDRED)
    if suggestion.action == "buy":
        net_amount = chunk_amount + estimated_slippage + estimated_fee
    else:
        net_amount = chunk_amount - estimated_slippage - estimated_fee
    return replace(
        suggestion,
        amount=chunk_amount,
        estimated_slippage=estimated_slippage,
        estimated_fee=estimated_fee,
        net_amount=round2(net_amount),
    )


def _schedule_date(start: datetime, days: int) -> str:
    try:
        return (start + timedelta(days=days)).date().isoformat()
    except OverflowError:
        return date.max.isoformat()


def compute_dca_suggestions(ctx: StrategyContext, *, now: Optional[datetime] = None) -> StrategyOutput:
    now = now or datetime.now(timezone.utc)
    split_count = max(1, ctx.config.dca_split_count)
    interval_days = max(1, ctx.config.dca_interval_days)

    full = compute_threshold_suggestions(ctx).suggestions
    trades = tuple(
        DcaTrade(
            token_symbol=suggestion.token_symbol,
            action=suggestion.action,
            amount=round2(suggestion.amount / split_count),
        )
        for suggestion in full
        if suggestion.is_trade
    )
    chunks: list[DcaChunk] = []
    if trades:
        for index in range(split_count):
            chunks.append(
                DcaChunk(
                    chunk_index=index + 1,
                    scheduled_date=_schedule_date(now, index * interval_days),
                    trades=trades,
                )
            )

    return StrategyOutput(
        suggestions=[_split_suggestion(suggestion, ctx, split_count) for suggestion in full],
        dca_chunks=chunks,
        dca_total_chunks=split_count,
        dca_interval_days=interval_days,
    )


_StrategyRunner = Callable[[StrategyContext, Optional[VolatilityMap], Optional[datetime]], StrategyOutput]

STRATEGY_RUNNERS: Mapping[str, _StrategyRunner] = {
    "threshold": lambda ctx, _vols, _now: compute_threshold_suggestions(ctx),
    "calendar": lambda ctx, _vols, now: compute_calendar_suggestions(ctx, now=now),
    "percent-of-portfolio": lambda ctx, _vols, _now: compute_percent_of_portfolio_suggestions(ctx),
    "risk-parity": lambda ctx, vols, _now: compute_risk_parity_suggestions(ctx, vols),
    "dca-weighted": lambda ctx, _vols, now: compute_dca_suggestions(ctx, now=now),
}


def dispatch_strategy(
    strategy: str,
    ctx: StrategyContext,
    *,
    volatilities: Optional[VolatilityMap] = None,
    now: Optional[datetime] = None,
) -> StrategyOutput:
    """Run the named strategy; unknown names run the threshold strategy."""

    runner = STRATEGY_RUNNERS.get(strategy)
    if runner is None:
        logger.debug("Unknown rebalance strategy %r, using threshold", strategy)
        runner = STRATEGY_RUNNERS["threshold"]
    return runner(ctx, volatilities, now)


__all__ = [
    "SuggestionAction",
    "Suggestion",
    "RiskParityTarget",
    "DcaTrade",
    "DcaChunk",
    "StrategyOutput",
    "compute_suggestion",
    "compute_threshold_suggestions",
    "add_months",
    "next_rebalance_at",
    "compute_calendar_suggestions",
    "compute_percent_of_portfolio_suggestions",
    "allocate_rounded_percents",
    "compute_risk_parity_suggestions",
    "compute_dca_suggestions",
    "STRATEGY_RUNNERS",
    "dispatch_strategy",
]
