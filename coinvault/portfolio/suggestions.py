"""Post-processing of strategy output: untargeted rows, summary and execution plan."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from ..models import PriceMap, VaultData, VolatilityMap
from .context import StrategyContext, build_context
from .holdings import lookup_price
from .numbers import HUNDRED, ZERO, as_float, round2
from .rebalance_config import RebalanceConfig
from .strategies import (
    DcaChunk,
    RiskParityTarget,
    StrategyOutput,
    Suggestion,
    SuggestionAction,
    dispatch_strategy,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionStep:
    step: int
    token_symbol: str
    action: SuggestionAction
    amount: Decimal
    estimated_slippage: Decimal
    estimated_fee: Decimal
    running_cash_after: Decimal

    def to_payload(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "tokenSymbol": self.token_symbol,
            "action": self.action,
            "amount": as_float(self.amount),
            "estimatedSlippage": as_float(self.estimated_slippage),
            "estimatedFee": as_float(self.estimated_fee),
            "runningCashAfter": as_float(self.running_cash_after),
        }


@dataclass(frozen=True)
class RebalanceSummary:
    trade_count: int
    sell_count: int
    buy_count: int
    total_volume: Decimal
    total_estimated_fees: Decimal
    portfolio_drift: Decimal
    portfolio_efficiency: Decimal
    max_post_rebalance_deviation: Decimal
    is_well_balanced: bool
    drift_threshold_percent: Decimal

    def to_payload(self) -> dict[str, Any]:
        return {
            "tradeCount": self.trade_count,
            "sellCount": self.sell_count,
            "buyCount": self.buy_count,
            "totalVolume": as_float(self.total_volume),
            "totalEstimatedFees": as_float(self.total_estimated_fees),
            "portfolioDrift": as_float(self.portfolio_drift),
            "portfolioEfficiency": as_float(self.portfolio_efficiency),
            "maxPostRebalanceDeviation": as_float(self.max_post_rebalance_deviation),
            "isWellBalanced": self.is_well_balanced,
            "driftThresholdPercent": as_float(self.drift_threshold_percent),
        }


@dataclass(frozen=True)
class SuggestionsData:
    total_value: Decimal
    targets: list[Suggestion]
    summary: RebalanceSummary
    execution_steps: list[ExecutionStep]
    config: RebalanceConfig
    strategy: str
    calendar_blocked: Optional[bool] = None
    next_rebalance_date: Optional[str] = None
    risk_parity_targets: Optional[list[RiskParityTarget]] = None
    dca_chunks: Optional[list[DcaChunk]] = None
    dca_total_chunks: Optional[int] = None
    dca_interval_days: Optional[int] = None
    oldest_price_update: Optional[str] = None
    untargeted: list[Suggestion] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        config = self.config.to_payload()
        payload: dict[str, Any] = {
            "totalValue": as_float(self.total_value),
            "targets": [suggestion.to_payload() for suggestion in self.targets],
            "summary": self.summary.to_payload(),
            "executionSteps": [step.to_payload() for step in self.execution_steps],
            "rebalanceStrategy": self.strategy,
            "lastRebalanceTime": self.config.last_rebalance_date,
            "oldestPriceUpdate": self.oldest_price_update,
        }
        for key in (
            "holdZonePercent",
            "minTradeUsd",
            "buyOnlyMode",
            "newCashUsd",
            "cashReserveUsd",
            "cashReservePercent",
            "dustThresholdUsd",
            "slippagePercent",
            "tradingFeePercent",
            "riskParityLookbackDays",
        ):
            payload[key] = config[key]
        if self.calendar_blocked is not None:
            payload["calendarBlocked"] = self.calendar_blocked
            payload["nextRebalanceDate"] = self.next_rebalance_date
        if self.risk_parity_targets is not None:
            payload["riskParityTargets"] = [target.to_payload() for target in self.risk_parity_targets]
        if self.dca_chunks is not None:
            payload["dcaChunks"] = [chunk.to_payload() for chunk in self.dca_chunks]
            payload["dcaTotalChunks"] = self.dca_total_chunks
            payload["dcaIntervalDays"] = self.dca_interval_days
        return payload


def untargeted_suggestions(ctx: StrategyContext) -> list[Suggestion]:
    """Hold rows for held symbols above the dust threshold that no target covers.

    Only direct target symbols count as covered, so members of a targeted
    group still get a row. Stablecoins held as cash reserve are already
    absent from the context's symbol values.
    """

    covered = {target.token_symbol for target in ctx.targets}

    rows: list[Suggestion] = []
    for symbol, value in ctx.symbol_values.items():
        if symbol in covered or value <= ctx.config.dust_threshold_usd:
            continue
        current_percent = round2(value / ctx.total_value * HUNDRED) if ctx.total_value > 0 else ZERO
        rows.append(
            Suggestion(
                token_symbol=symbol,
                coingecko_id=ctx.resolve_coingecko_id(symbol),
                target_percent=ZERO,
                current_percent=current_percent,
                current_value=round2(value),
                target_value=ZERO,
                deviation=current_percent,
                action="hold",
                amount=ZERO,
                estimated_slippage=ZERO,
                estimated_fee=ZERO,
                net_amount=ZERO,
                is_untargeted=True,
                is_dust=False,
            )
        )
    return rows


def append_untargeted(suggestions: Iterable[Suggestion], ctx: StrategyContext) -> list[Suggestion]:
    return [*suggestions, *untargeted_suggestions(ctx)]


def summarize(suggestions: Iterable[Suggestion], hold_zone_percent: Decimal) -> RebalanceSummary:
    targeted = [suggestion for suggestion in suggestions if not suggestion.is_untargeted]
    trades = [suggestion for suggestion in targeted if suggestion.is_trade]

    portfolio_drift = sum((abs(suggestion.deviation) for suggestion in targeted), ZERO)
    max_deviation = max((abs(suggestion.deviation) for suggestion in targeted), default=ZERO)
    held = [abs(suggestion.deviation) for suggestion in targeted if not suggestion.is_trade]
    if trades:
        max_post_deviation = max(held, default=ZERO)
    else:
        max_post_deviation = max_deviation
    post_trade_drift = sum(held, ZERO)

    if portfolio_drift > 0:
        efficiency = (portfolio_drift - post_trade_drift) / portfolio_drift * HUNDRED
        efficiency = max(ZERO, min(HUNDRED, efficiency))
    else:
        efficiency = HUNDRED

    return RebalanceSummary(
        trade_count=len(trades),
        sell_count=sum(1 for suggestion in trades if suggestion.action == "sell"),
        buy_count=sum(1 for suggestion in trades if suggestion.action == "buy"),
        total_volume=round2(sum((suggestion.amount for suggestion in trades), ZERO)),
        total_estimated_fees=round2(
            sum((suggestion.estimated_fee + suggestion.estimated_slippage for suggestion in trades), ZERO)
        ),
        portfolio_drift=round2(portfolio_drift),
        portfolio_efficiency=round2(efficiency),
        max_post_rebalance_deviation=round2(max_post_deviation),
        is_well_balanced=max_deviation <= hold_zone_percent,
        drift_threshold_percent=hold_zone_percent,
    )


def build_execution_steps(suggestions: Iterable[Suggestion]) -> list[ExecutionStep]:
    """Order trades sells-first and track the cash they free up or consume."""

    actionable = [suggestion for suggestion in suggestions if suggestion.is_trade]
    ordered = [s for s in actionable if s.action == "sell"] + [s for s in actionable if s.action == "buy"]

    steps: list[ExecutionStep] = []
    running_cash = ZERO
    for index, suggestion in enumerate(ordered, start=1):
        costs = suggestion.estimated_slippage + suggestion.estimated_fee
        if suggestion.action == "sell":
            running_cash += suggestion.amount - costs
        else:
            running_cash -= suggestion.amount + costs
        steps.append(
            ExecutionStep(
                step=index,
                token_symbol=suggestion.token_symbol,
                action=suggestion.action,
                amount=suggestion.amount,
                estimated_slippage=suggestion.estimated_slippage,
                estimated_fee=suggestion.estimated_fee,
                running_cash_after=round2(running_cash),
            )
        )
    return steps


def oldest_price_update(price_map: PriceMap, coingecko_ids: Iterable[Optional[str]]) -> Optional[str]:
    stamps = []
    for coingecko_id in coingecko_ids:
        price = lookup_price(price_map, coingecko_id)
        if price is not None and price.updated_at:
            stamps.append(price.updated_at)
    return min(stamps) if stamps else None


def assemble_suggestions(
    ctx: StrategyContext,
    output: StrategyOutput,
    *,
    price_map: Optional[PriceMap] = None,
) -> SuggestionsData:
    rows: Sequence[Suggestion] = append_untargeted(output.suggestions, ctx)
    untargeted = [suggestion for suggestion in rows if suggestion.is_untargeted]
    relevant_ids = {suggestion.coingecko_id for suggestion in rows if suggestion.coingecko_id}
    return SuggestionsData(
        total_value=ctx.total_value,
        targets=list(rows),
        summary=summarize(rows, ctx.config.hold_zone_percent),
        execution_steps=build_execution_steps(rows),
        config=ctx.config,
        strategy=ctx.config.strategy,
        calendar_blocked=output.calendar_blocked,
        next_rebalance_date=output.next_rebalance_date,
        risk_parity_targets=output.risk_parity_targets,
        dca_chunks=output.dca_chunks,
        dca_total_chunks=output.dca_total_chunks,
        dca_interval_days=output.dca_interval_days,
        oldest_price_update=oldest_price_update(price_map or {}, sorted(relevant_ids)),
        untargeted=untargeted,
    )


def build_suggestions(
    vault: VaultData,
    price_map: PriceMap,
    *,
    volatilities: Optional[VolatilityMap] = None,
    now: Optional[datetime] = None,
) -> SuggestionsData:
    """Run the configured strategy end to end for one vault snapshot."""

    ctx = build_context(vault, price_map)
    strategy = ctx.config.strategy_name
    logger.debug("Computing rebalance suggestions strategy=%s targets=%d", strategy, len(ctx.targets))
    output = dispatch_strategy(strategy, ctx, volatilities=volatilities, now=now)
    return assemble_suggestions(ctx, output, price_map=price_map)


__all__ = [
    "ExecutionStep",
    "RebalanceSummary",
    "SuggestionsData",
    "untargeted_suggestions",
    "append_untargeted",
    "summarize",
    "build_execution_steps",
    "oldest_price_update",
    "assemble_suggestions",
    "build_suggestions",
]
