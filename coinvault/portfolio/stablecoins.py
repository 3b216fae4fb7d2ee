"""Stablecoin classification used by cash-reserve and concentration rules."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..models import TokenCategory
from .numbers import normalize_symbol

STABLECOIN_CATEGORY = "stablecoin"

COMMON_STABLECOIN_SYMBOLS: tuple[str, ...] = (
    "USDT",
    "USDC",
    "DAI",
    "FDUSD",
    "TUSD",
    "USDE",
    "USDD",
    "USDP",
    "BUSD",
    "PYUSD",
    "FRAX",
    "GUSD",
    "LUSD",
)

_COMMON_STABLECOIN_SET = frozenset(COMMON_STABLECOIN_SYMBOLS)


def is_known_stablecoin_symbol(symbol: Optional[str]) -> bool:
    normalized = normalize_symbol(symbol)
    return bool(normalized) and normalized in _COMMON_STABLECOIN_SET


def build_stablecoin_symbol_set(token_categories: Iterable[TokenCategory]) -> frozenset[str]:
    """Known stablecoins plus every symbol the user tagged as a stablecoin."""

    symbols = set(_COMMON_STABLECOIN_SET)
    for category in token_categories:
        if category.category.strip().lower() != STABLECOIN_CATEGORY:
            continue
        normalized = normalize_symbol(category.token_symbol)
        if normalized:
            symbols.add(normalized)
    return frozenset(symbols)


def with_auto_stablecoin_category(
    token_categories: list[TokenCategory],
    token_symbol: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> list[TokenCategory]:
    """Return categories with a stablecoin tag added for an untagged known stablecoin."""

    normalized = normalize_symbol(token_symbol)
    if not is_known_stablecoin_symbol(normalized):
        return token_categories
    if any(normalize_symbol(item.token_symbol) == normalized for item in token_categories):
        return token_categories

    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return [
        *token_categories,
        TokenCategory(
            id=str(uuid.uuid4()),
            tokenSymbol=normalized,
            category=STABLECOIN_CATEGORY,
            updatedAt=stamp,
        ),
    ]


__all__ = [
    "COMMON_STABLECOIN_SYMBOLS",
    "STABLECOIN_CATEGORY",
    "is_known_stablecoin_symbol",
    "build_stablecoin_symbol_set",
    "with_auto_stablecoin_category",
]
