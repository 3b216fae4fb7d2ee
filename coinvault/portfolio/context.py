"""Shared computation state consumed by every rebalance strategy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from ..models import PriceMap, RebalanceTarget, VaultData
from .numbers import HUNDRED, ZERO, normalize_coingecko_id, normalize_symbol, round2
from .rebalance_config import RebalanceConfig, rebalance_config_from_settings
from .stablecoins import build_stablecoin_symbol_set
from .valuation import PortfolioSummary, compute_summary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergedTarget:
    token_symbol: str
    target_percent: Decimal
    coingecko_id: Optional[str]


@dataclass(frozen=True)
class StrategyContext:
    targets: tuple[MergedTarget, ...]
    symbol_values: Mapping[str, Decimal]
    total_value: Decimal
    effective_total: Decimal
    effective_cash_reserve: Decimal
    investable_total: Decimal
    config: RebalanceConfig
    group_values: Mapping[str, Decimal] = field(default_factory=dict)
    group_members: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    symbol_to_group: Mapping[str, str] = field(default_factory=dict)
    symbol_coingecko_map: Mapping[str, str] = field(default_factory=dict)
    stablecoin_symbols: frozenset[str] = frozenset()

    def resolve_current_value(self, symbol: str) -> Decimal:
        """Value behind a target key: a group total when the key names a group."""

        key = normalize_symbol(symbol)
        if key in self.group_values:
            return self.group_values[key]
        return self.symbol_values.get(key, ZERO)

    def resolve_coingecko_id(self, symbol: str, explicit: Optional[str] = None) -> Optional[str]:
        return explicit or self.symbol_coingecko_map.get(normalize_symbol(symbol))

    def current_percent(self, value: Decimal) -> Decimal:
        if self.effective_total <= 0:
            return ZERO
        return value / self.effective_total * HUNDRED

    def target_value(self, target_percent: Decimal) -> Decimal:
        if self.investable_total <= 0:
            return ZERO
        return target_percent / HUNDRED * self.investable_total


def merge_targets(targets: Iterable[RebalanceTarget]) -> tuple[MergedTarget, ...]:
    """Sum duplicate rows per symbol; the first non-empty coingecko id is kept."""

    percents: dict[str, Decimal] = {}
    ids: dict[str, Optional[str]] = {}
    for target in targets:
        symbol = normalize_symbol(target.token_symbol)
        if not symbol:
            continue
        percents[symbol] = percents.get(symbol, ZERO) + target.target_percent
        if not ids.get(symbol):
            ids[symbol] = normalize_coingecko_id(target.coingecko_id)
    return tuple(
        MergedTarget(token_symbol=symbol, target_percent=round2(percent), coingecko_id=ids.get(symbol))
        for symbol, percent in percents.items()
    )


def build_symbol_coingecko_map(
    vault: VaultData, targets: Iterable[MergedTarget]
) -> dict[str, str]:
    """Resolve one coingecko id per symbol: targets, then transactions, then manual entries."""

    resolved: dict[str, str] = {}

    def remember(symbol: str, coingecko_id: Optional[str]) -> None:
        key = normalize_symbol(symbol)
        normalized = normalize_coingecko_id(coingecko_id)
        if key and normalized and key not in resolved:
            resolved[key] = normalized

    for target in targets:
        remember(target.token_symbol, target.coingecko_id)
    for tx in vault.transactions:
        remember(tx.token_symbol, tx.coingecko_id)
    for entry in vault.manual_entries:
        remember(entry.token_symbol, entry.coingecko_id)
    return resolved


def build_context(
    vault: VaultData,
    price_map: PriceMap,
    *,
    summary: Optional[PortfolioSummary] = None,
) -> StrategyContext:
    config = rebalance_config_from_settings(vault.settings)
    targets = merge_targets(vault.rebalance_targets)
    stablecoins = build_stablecoin_symbol_set(vault.token_categories)
    summary = summary if summary is not None else compute_summary(vault, price_map)

    symbol_values = dict(summary.symbol_values)
    if config.treat_stablecoins_as_cash_reserve:
        symbol_values = {
            symbol: value for symbol, value in symbol_values.items() if symbol not in stablecoins
        }
    total_value = sum(symbol_values.values(), ZERO)

    effective_total = total_value + (config.new_cash_usd if config.buy_only_mode else ZERO)
    reserve_from_percent = effective_total * config.cash_reserve_percent / HUNDRED
    effective_cash_reserve = max(config.cash_reserve_usd, reserve_from_percent)
    investable_total = max(ZERO, effective_total - effective_cash_reserve)

    group_values: dict[str, Decimal] = {}
    group_members: dict[str, tuple[str, ...]] = {}
    symbol_to_group: dict[str, str] = {}
    for group in vault.token_groups:
        group_key = normalize_symbol(group.name)
        if not group_key:
            continue
        members = tuple(normalize_symbol(symbol) for symbol in group.symbols if normalize_symbol(symbol))
        for member in members:
            symbol_to_group[member] = group_key
        group_members[group_key] = members
        group_values[group_key] = sum((symbol_values.get(member, ZERO) for member in members), ZERO)

    logger.debug(
        "Built strategy context targets=%d total=%s investable=%s reserve=%s",
        len(targets),
        total_value,
        investable_total,
        effective_cash_reserve,
    )

    return StrategyContext(
        targets=targets,
        symbol_values=symbol_values,
        total_value=total_value,
        effective_total=effective_total,
        effective_cash_reserve=effective_cash_reserve,
        investable_total=investable_total,
        config=config,
        group_values=group_values,
        group_members=group_members,
        symbol_to_group=symbol_to_group,
        symbol_coingecko_map=build_symbol_coingecko_map(vault, targets),
        stablecoin_symbols=stablecoins,
    )


__all__ = [
    "MergedTarget",
    "StrategyContext",
    "merge_targets",
    "build_symbol_coingecko_map",
    "build_context",
]
