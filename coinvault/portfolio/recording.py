"""Turn executed rebalance trades into ledger transactions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..models import Transaction, VaultData
from .numbers import NumericInput, normalize_coingecko_id, normalize_symbol, parse_decimal


@dataclass(frozen=True)
class ExecutedTrade:
    token_symbol: str
    action: str
    amount_usd: NumericInput
    quantity: NumericInput


@dataclass(frozen=True)
class TrackedToken:
    coingecko_id: str
    symbol: str

    def to_payload(self) -> dict[str, Any]:
        return {"coingeckoId": self.coingecko_id, "symbol": self.symbol}


@dataclass(frozen=True)
class RecordedTrades:
    transactions: list[Transaction] = field(default_factory=list)
    tokens_to_ensure: list[TrackedToken] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "transactions": [tx.model_dump(by_alias=True) for tx in self.transactions],
            "tokensToEnsure": [token.to_payload() for token in self.tokens_to_ensure],
        }


@dataclass
class _TokenMetadata:
    token_name: str
    coingecko_id: Optional[str]


def _decimal_text(value: Decimal) -> str:
    return format(value.normalize(), "f")


def build_token_metadata(vault: VaultData) -> dict[str, _TokenMetadata]:
    """Name and coingecko id per symbol from transactions, manual entries, then targets.

    Earlier sources win; later ones only fill a missing id or a name that is
    just the symbol.
    """

    metadata: dict[str, _TokenMetadata] = {}

    def update(raw_symbol: str, token_name: str, coingecko_id: Optional[str]) -> None:
        symbol = normalize_symbol(raw_symbol)
        if not symbol:
            return
        name = (token_name or "").strip()
        coingecko_id = normalize_coingecko_id(coingecko_id)
        existing = metadata.get(symbol)
        if existing is None:
            metadata[symbol] = _TokenMetadata(token_name=name or symbol, coingecko_id=coingecko_id)
            return
        if not existing.coingecko_id and coingecko_id:
            existing.coingecko_id = coingecko_id
        if existing.token_name == symbol and name:
            existing.token_name = name

    for tx in vault.transactions:
        update(tx.token_symbol, tx.token_name, tx.coingecko_id)
    for entry in vault.manual_entries:
        update(entry.token_symbol, entry.token_name, entry.coingecko_id)
    for target in vault.rebalance_targets:
        update(target.token_symbol, target.token_symbol, target.coingecko_id)
    return metadata


def build_transactions_from_executed_trades(
    vault: VaultData,
    trades: Iterable[ExecutedTrade],
    recorded_at: str,
    note: str,
) -> RecordedTrades:
    metadata = build_token_metadata(vault)
    tracked: dict[str, str] = {}
    transactions: list[Transaction] = []

    for trade in trades:
        symbol = normalize_symbol(trade.token_symbol)
        amount_usd = parse_decimal(trade.amount_usd)
        quantity = parse_decimal(trade.quantity)
        if not symbol or amount_usd <= 0 or quantity <= 0:
            continue

        meta = metadata.get(symbol)
        coingecko_id = meta.coingecko_id if meta is not None else None
        if coingecko_id:
            tracked[coingecko_id] = symbol

        transactions.append(
            Transaction(
                id=str(uuid.uuid4()),
                token_symbol=symbol,
                token_name=meta.token_name if meta is not None else symbol,
                chain="",
                type="buy" if trade.action == "buy" else "sell",
                quantity=_decimal_text(quantity),
                price_per_unit=_decimal_text(amount_usd / quantity),
                total_cost=_decimal_text(amount_usd),
                fee="0",
                coingecko_id=coingecko_id,
                note=note,
                transacted_at=recorded_at,
                created_at=recorded_at,
            )
        )

    return RecordedTrades(
        transactions=transactions,
        tokens_to_ensure=[
            TrackedToken(coingecko_id=coingecko_id, symbol=symbol) for coingecko_id, symbol in tracked.items()
        ],
    )


__all__ = [
    "ExecutedTrade",
    "TrackedToken",
    "RecordedTrades",
    "build_token_metadata",
    "build_transactions_from_executed_trades",
]
