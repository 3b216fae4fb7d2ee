"""Annualized volatility per token from recorded price history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from math import isfinite, sqrt
from typing import Any, Iterable, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from ..models import VolatilityData
from .numbers import NumericInput, ZERO, parse_with_default, round_int
from .rebalance_config import (
    DEFAULT_RISK_PARITY_LOOKBACK_DAYS,
    MAX_RISK_PARITY_LOOKBACK_DAYS,
    MIN_RISK_PARITY_LOOKBACK_DAYS,
)

logger = logging.getLogger(__name__)

PERIODS_PER_YEAR = 365


class PriceHistoryPoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    coingecko_id: str = Field(alias="coingeckoId")
    price_usd: float = Field(alias="priceUsd")
    recorded_at: datetime = Field(alias="recordedAt")


@dataclass(frozen=True)
class TokenVolatility:
    volatility: Decimal
    data_points: int

    def to_payload(self) -> dict[str, Any]:
        return {"volatility": float(self.volatility), "dataPoints": self.data_points}


def parse_lookback_days(raw: NumericInput) -> int:
    return round_int(
        parse_with_default(
            raw,
            DEFAULT_RISK_PARITY_LOOKBACK_DAYS,
            minimum=MIN_RISK_PARITY_LOOKBACK_DAYS,
            maximum=MAX_RISK_PARITY_LOOKBACK_DAYS,
        )
    )


def annualized_volatility(prices: pd.Series, *, periods_per_year: int = PERIODS_PER_YEAR) -> float:
    """Population std-dev of simple returns, scaled by sqrt(periods_per_year).

    Returns whose previous price is not positive are skipped.
    """

    if len(prices) < 2:
        return 0.0
    previous = prices.shift(1)
    valid = previous > 0
    rets = ((prices - previous) / previous)[valid].dropna()
    if rets.empty:
        return 0.0
    volatility = float(rets.std(ddof=0) * sqrt(periods_per_year))
    return volatility if isfinite(volatility) else 0.0


def compute_token_volatilities(
    price_history: Iterable[PriceHistoryPoint],
    *,
    lookback_days: NumericInput = None,
    coingecko_ids: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> dict[str, TokenVolatility]:
    now = now or datetime.now(timezone.utc)
    days = parse_lookback_days(lookback_days)
    cutoff = pd.Timestamp(now - timedelta(days=days))
    if cutoff.tzinfo is None:
        cutoff = cutoff.tz_localize("UTC")

    frame = pd.DataFrame(
        [
            {
                "coingecko_id": point.coingecko_id,
                "price_usd": point.price_usd,
                "recorded_at": point.recorded_at,
            }
            for point in price_history
        ],
        columns=["coingecko_id", "price_usd", "recorded_at"],
    )
    if frame.empty:
        return {}

    # timestamps outside the pandas range become NaT and drop out with the cutoff
    frame["recorded_at"] = pd.to_datetime(frame["recorded_at"], utc=True, errors="coerce")
    frame = frame[frame["recorded_at"].notna() & (frame["recorded_at"] >= cutoff)]
    wanted = {value.strip() for value in coingecko_ids or () if value.strip()}
    if wanted:
        frame = frame[frame["coingecko_id"].isin(wanted)]

    result: dict[str, TokenVolatility] = {}
    ordered = frame.sort_values(["coingecko_id", "recorded_at"], kind="stable")
    for coingecko_id, group in ordered.groupby("coingecko_id", sort=True):
        prices = group["price_usd"].astype(float).reset_index(drop=True)
        volatility = annualized_volatility(prices)
        result[str(coingecko_id)] = TokenVolatility(
            volatility=Decimal(str(volatility)) if volatility else ZERO,
            data_points=int(len(prices)),
        )

    logger.debug("Computed volatility for %d tokens over %d days", len(result), days)
    return result


def to_volatility_map(volatilities: dict[str, TokenVolatility]) -> dict[str, VolatilityData]:
    return {
        coingecko_id: VolatilityData(volatility=entry.volatility)
        for coingecko_id, entry in volatilities.items()
    }


__all__ = [
    "PERIODS_PER_YEAR",
    "PriceHistoryPoint",
    "TokenVolatility",
    "parse_lookback_days",
    "annualized_volatility",
    "compute_token_volatilities",
    "to_volatility_map",
]
