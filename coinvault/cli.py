"""Command line access to the valuation and rebalancing core."""

from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from pydantic import TypeAdapter, ValidationError

from .config import get_settings
from .logger import configure_logging, get_logger
from .models import (
    PriceMap,
    VaultData,
    VolatilityMap,
    price_map_from_payload,
    volatility_map_from_payload,
)
from .portfolio.alerts import collapse_alerts, compute_alerts
from .portfolio.analytics import compute_performance_metrics
from .portfolio.context import build_context
from .portfolio.holdings import compute_holdings
from .portfolio.numbers import parse_timestamp
from .portfolio.recording import ExecutedTrade, build_transactions_from_executed_trades
from .portfolio.suggestions import build_suggestions
from .portfolio.timeline import compute_realized_pl_timeline
from .portfolio.valuation import compute_summary
from .portfolio.volatility import PriceHistoryPoint, compute_token_volatilities
from .portfolio.whatif import WhatIfTrade, simulate_trades

logger = get_logger(__name__)

_HISTORY_ADAPTER = TypeAdapter(list[PriceHistoryPoint])


class InputError(ValueError):
    """Raised when a command line input cannot be used."""


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _load_object(path: Path) -> dict[str, Any]:
    payload = _load_json(path)
    if not isinstance(payload, dict):
        raise InputError(f"Expected JSON object at {path}")
    return payload


def _load_vault(path: Path) -> VaultData:
    return VaultData.model_validate(_load_object(path))


def _load_prices(path: Optional[Path]) -> PriceMap:
    if path is None:
        return {}
    return price_map_from_payload(_load_object(path))


def _load_volatility(path: Optional[Path]) -> Optional[VolatilityMap]:
    if path is None:
        return None
    payload = _load_object(path)
    # accept the volatility command's own output as input
    if isinstance(payload.get("volatilities"), dict):
        payload = payload["volatilities"]
    return volatility_map_from_payload(payload)


def _parse_now(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise InputError(f"Invalid --now timestamp: {raw!r}")
    return parsed


def _parse_trade(raw: str) -> WhatIfTrade:
    parts = raw.split(":")
    if len(parts) != 3 or parts[1] not in ("buy", "sell"):
        raise InputError(f"Invalid --trade {raw!r}, expected SYMBOL:buy|sell:AMOUNT")
    return WhatIfTrade.from_raw(parts[0], parts[1], parts[2])


def _cmd_holdings(args: argparse.Namespace) -> Any:
    vault = _load_vault(args.vault)
    holdings = compute_holdings(vault.transactions, vault.manual_entries, _load_prices(args.prices))
    return [holding.to_payload() for holding in holdings]


def _cmd_summary(args: argparse.Namespace) -> Any:
    return compute_summary(_load_vault(args.vault), _load_prices(args.prices)).to_payload()


def _cmd_suggest(args: argparse.Namespace) -> Any:
    data = build_suggestions(
        _load_vault(args.vault),
        _load_prices(args.prices),
        volatilities=_load_volatility(args.volatility),
        now=_parse_now(args.now),
    )
    return data.to_payload()


def _cmd_alerts(args: argparse.Namespace) -> Any:
    ctx = build_context(_load_vault(args.vault), _load_prices(args.prices))
    alerts = compute_alerts(ctx)
    if args.collapse:
        alerts = collapse_alerts(alerts)
    return [alert.to_payload() for alert in alerts]


def _cmd_pnl(args: argparse.Namespace) -> Any:
    return compute_realized_pl_timeline(_load_vault(args.vault).transactions).to_payload()


def _cmd_metrics(args: argparse.Namespace) -> Any:
    vault = _load_vault(args.vault)
    holdings = compute_holdings(vault.transactions, vault.manual_entries, _load_prices(args.prices))
    return compute_performance_metrics(holdings).to_payload()


def _cmd_volatility(args: argparse.Namespace) -> Any:
    history = _HISTORY_ADAPTER.validate_python(_load_json(args.history))
    ids = [value for value in (args.ids or "").split(",") if value.strip()]
    volatilities = compute_token_volatilities(
        history,
        lookback_days=args.lookback_days,
        coingecko_ids=ids,
        now=_parse_now(args.now),
    )
    return {
        "tokenCount": len(volatilities),
        "volatilities": {key: value.to_payload() for key, value in volatilities.items()},
    }


def _cmd_whatif(args: argparse.Namespace) -> Any:
    summary = compute_summary(_load_vault(args.vault), _load_prices(args.prices))
    trades = [_parse_trade(raw) for raw in args.trade]
    results = simulate_trades(summary.symbol_values, summary.total_value, trades)
    return [result.to_payload() for result in results]


def _cmd_record(args: argparse.Namespace) -> Any:
    payload = _load_json(args.trades)
    if not isinstance(payload, list):
        raise InputError(f"Expected JSON array at {args.trades}")
    trades = [
        ExecutedTrade(
            token_symbol=str(item.get("tokenSymbol", "")),
            action=str(item.get("action", "")),
            amount_usd=item.get("amountUsd"),
            quantity=item.get("quantity"),
        )
        for item in payload
        if isinstance(item, dict)
    ]
    recorded = build_transactions_from_executed_trades(
        _load_vault(args.vault), trades, args.recorded_at, args.note
    )
    return recorded.to_payload()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coinvault", description="Crypto holdings valuation and rebalancing.")
    parser.add_argument("--output", type=Path, help="Optional output JSON file. Prints to stdout regardless.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add(
        name: str,
        handler: Callable[[argparse.Namespace], Any],
        help_text: str,
        *,
        vault: bool = True,
        prices: bool = True,
    ) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.set_defaults(handler=handler)
        if vault:
            sub.add_argument("--vault", type=Path, required=True, help="Decrypted vault JSON.")
        if prices:
            sub.add_argument("--prices", type=Path, help="Price snapshot JSON keyed by coingecko id.")
        return sub

    add("holdings", _cmd_holdings, "Per-token holdings with cost basis and P/L.")
    add("summary", _cmd_summary, "Portfolio total and allocations.")
    suggest = add("suggest", _cmd_suggest, "Rebalance suggestions for the configured strategy.")
    suggest.add_argument("--volatility", type=Path, help="Volatility JSON keyed by coingecko id.")
    suggest.add_argument("--now", help="ISO timestamp used as the current time.")
    alerts = add("alerts", _cmd_alerts, "Deviation and concentration alerts.")
    alerts.add_argument("--collapse", action="store_true", help="Keep one alert per token.")
    add("pnl", _cmd_pnl, "Realized P/L timeline.", prices=False)
    add("metrics", _cmd_metrics, "Performance metrics.")
    volatility = add(
        "volatility", _cmd_volatility, "Annualized volatility from price history.", vault=False, prices=False
    )
    volatility.add_argument("--history", type=Path, required=True, help="Price history JSON array.")
    volatility.add_argument("--lookback-days", default=None, help="Lookback window in days (7-365).")
    volatility.add_argument("--ids", help="Comma separated coingecko ids to include.")
    volatility.add_argument("--now", help="ISO timestamp used as the current time.")
    whatif = add("whatif", _cmd_whatif, "Simulate hypothetical trades.")
    whatif.add_argument("--trade", action="append", required=True, help="SYMBOL:buy|sell:AMOUNT_USD")
    record = add("record", _cmd_record, "Build ledger transactions from executed trades.", prices=False)
    record.add_argument("--trades", type=Path, required=True, help="Executed trades JSON array.")
    record.add_argument("--recorded-at", required=True, help="ISO timestamp stored on the transactions.")
    record.add_argument("--note", default="Recorded from rebalance", help="Note stored on the transactions.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        payload = args.handler(args)
    except ValidationError as exc:
        logger.error("invalid input", command=args.command, errors=exc.error_count())
        return 2
    except (OSError, ValueError) as exc:
        logger.error("unreadable input", command=args.command, error=str(exc))
        return 2

    rendered = json.dumps(payload, indent=2, sort_keys=True)
    print(rendered)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered + "\n", encoding="utf-8")
    logger.debug("command finished", command=args.command)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
