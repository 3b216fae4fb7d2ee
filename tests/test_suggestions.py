from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence
from unittest import TestCase

from coinvault.models import PriceData, VaultData, price_map_from_payload
from coinvault.portfolio.context import build_context
from coinvault.portfolio.strategies import Suggestion, compute_threshold_suggestions
from coinvault.portfolio.suggestions import (
    append_untargeted,
    build_execution_steps,
    build_suggestions,
    summarize,
    untargeted_suggestions,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _vault(
    holdings: Mapping[str, tuple[str, str]],
    *,
    targets: Sequence[dict[str, Any]] = (),
    settings: Optional[dict[str, str]] = None,
    groups: Sequence[dict[str, Any]] = (),
    updated_at: Optional[Mapping[str, str]] = None,
) -> tuple[VaultData, dict[str, PriceData]]:
    transactions = [
        {
            "id": f"tx-{symbol}",
            "tokenSymbol": symbol,
            "type": "buy",
            "quantity": "1",
            "totalCost": value,
            "coingeckoId": coingecko_id,
        }
        for symbol, (coingecko_id, value) in holdings.items()
    ]
    vault = VaultData.model_validate(
        {
            "transactions": transactions,
            "rebalanceTargets": list(targets),
            "tokenGroups": list(groups),
            "settings": settings or {},
        }
    )
    stamps = updated_at or {}
    prices = price_map_from_payload(
        {cg: {"usd": value, "updatedAt": stamps.get(cg)} for cg, value in holdings.values()}
    )
    return vault, prices


def _row(symbol: str, action: str, amount: str, *, deviation: str = "0", untargeted: bool = False) -> Suggestion:
    amount_value = Decimal(amount)
    slippage = amount_value * Decimal("0.005") if action != "hold" else Decimal("0")
    fee = amount_value * Decimal("0.001") if action != "hold" else Decimal("0")
    return Suggestion(
        token_symbol=symbol,
        coingecko_id=None,
        target_percent=Decimal("0"),
        current_percent=Decimal("0"),
        current_value=Decimal("0"),
        target_value=Decimal("0"),
        deviation=Decimal(deviation),
        action=action,  # type: ignore[arg-type]
        amount=amount_value,
        estimated_slippage=slippage,
        estimated_fee=fee,
        net_amount=amount_value,
        is_untargeted=untargeted,
    )


class TestUntargetedRows(TestCase):
    def test_adds_hold_rows_for_untargeted_holdings_above_dust(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "600"), "ETH": ("ethereum", "400"), "SHIB": ("shiba-inu", "0.5")},
            targets=[{"tokenSymbol": "BTC", "targetPercent": 100}],
        )
        ctx = build_context(vault, prices)

        rows = untargeted_suggestions(ctx)

        self.assertEqual(len(rows), 1)
        eth = rows[0]
        self.assertEqual(eth.token_symbol, "ETH")
        self.assertEqual(eth.coingecko_id, "ethereum")
        self.assertTrue(eth.is_untargeted)
        self.assertEqual(eth.action, "hold")
        self.assertEqual(eth.target_percent, Decimal("0"))
        self.assertEqual(eth.current_percent, Decimal("39.98"))
        self.assertEqual(eth.deviation, eth.current_percent)

    def test_members_of_targeted_groups_still_get_rows(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "600"), "ETH": ("ethereum", "400")},
            targets=[{"tokenSymbol": "Majors", "targetPercent": 100}],
            groups=[{"name": "majors", "symbols": ["BTC", "ETH"]}],
        )

        rows = untargeted_suggestions(build_context(vault, prices))

        self.assertEqual([row.token_symbol for row in rows], ["BTC", "ETH"])
        self.assertEqual([row.current_percent for row in rows], [Decimal("60.00"), Decimal("40.00")])
        self.assertTrue(all(row.is_untargeted for row in rows))

    def test_stablecoins_held_as_reserve_are_skipped(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "600"), "USDC": ("usd-coin", "400")},
            targets=[{"tokenSymbol": "BTC", "targetPercent": 100}],
            settings={"treatStablecoinsAsCashReserve": "1"},
        )

        self.assertEqual(untargeted_suggestions(build_context(vault, prices)), [])

    def test_append_keeps_strategy_rows_first(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "600"), "ETH": ("ethereum", "400")},
            targets=[{"tokenSymbol": "BTC", "targetPercent": 100}],
        )
        ctx = build_context(vault, prices)

        rows = append_untargeted(compute_threshold_suggestions(ctx).suggestions, ctx)

        self.assertEqual([row.token_symbol for row in rows], ["BTC", "ETH"])
        self.assertEqual([row.is_untargeted for row in rows], [False, True])


class TestSummary(TestCase):
    def test_counts_volume_and_drift(self) -> None:
        rows = [
            _row("BTC", "sell", "100", deviation="10"),
            _row("ETH", "buy", "100", deviation="-10"),
            _row("SOL", "hold", "0", deviation="40", untargeted=True),
        ]

        summary = summarize(rows, Decimal("5"))

        self.assertEqual(summary.trade_count, 2)
        self.assertEqual(summary.sell_count, 1)
        self.assertEqual(summary.buy_count, 1)
        self.assertEqual(summary.total_volume, Decimal("200.00"))
        self.assertEqual(summary.total_estimated_fees, Decimal("1.20"))
        self.assertEqual(summary.portfolio_drift, Decimal("20.00"))
        self.assertEqual(summary.max_post_rebalance_deviation, Decimal("0"))
        self.assertEqual(summary.portfolio_efficiency, Decimal("100.00"))
        self.assertFalse(summary.is_well_balanced)

    def test_well_balanced_without_trades(self) -> None:
        rows = [_row("BTC", "hold", "20", deviation="2"), _row("ETH", "hold", "20", deviation="-2")]

        summary = summarize(rows, Decimal("5"))

        self.assertTrue(summary.is_well_balanced)
        self.assertEqual(summary.trade_count, 0)
        self.assertEqual(summary.max_post_rebalance_deviation, Decimal("2.00"))
        self.assertEqual(summary.portfolio_efficiency, Decimal("0.00"))

    def test_remaining_holds_lower_efficiency(self) -> None:
        rows = [_row("BTC", "sell", "100", deviation="-8"), _row("ETH", "hold", "30", deviation="2")]

        summary = summarize(rows, Decimal("5"))

        self.assertEqual(summary.portfolio_efficiency, Decimal("80.00"))
        self.assertEqual(summary.max_post_rebalance_deviation, Decimal("2.00"))

    def test_no_rows_is_fully_efficient(self) -> None:
        summary = summarize([], Decimal("5"))

        self.assertEqual(summary.portfolio_efficiency, Decimal("100"))
        self.assertTrue(summary.is_well_balanced)


class TestExecutionSteps(TestCase):
    def test_sells_run_before_buys_with_running_cash(self) -> None:
        rows = [
            _row("ETH", "buy", "100"),
            _row("BTC", "sell", "100"),
            _row("SOL", "hold", "30"),
            _row("ADA", "sell", "50"),
        ]

        steps = build_execution_steps(rows)

        self.assertEqual([step.token_symbol for step in steps], ["BTC", "ADA", "ETH"])
        self.assertEqual([step.step for step in steps], [1, 2, 3])
        self.assertEqual(steps[0].running_cash_after, Decimal("99.40"))
        self.assertEqual(steps[1].running_cash_after, Decimal("149.10"))
        sell_proceeds = Decimal("99.4") + Decimal("49.7")
        buy_cost = Decimal("100.6")
        self.assertEqual(steps[-1].running_cash_after, sell_proceeds - buy_cost)


class TestBuildSuggestions(TestCase):
    def test_full_pipeline_payload(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "600"), "ETH": ("ethereum", "400"), "SOL": ("solana", "100")},
            targets=[
                {"tokenSymbol": "ETH", "targetPercent": 50},
                {"tokenSymbol": "BTC", "targetPercent": 40},
            ],
            settings={"rebalanceStrategy": "threshold"},
            updated_at={"bitcoin": "2026-03-01T00:00:00Z", "ethereum": "2026-02-28T00:00:00Z"},
        )

        data = build_suggestions(vault, prices, now=NOW)
        payload = data.to_payload()

        self.assertEqual(data.strategy, "threshold")
        self.assertEqual([row.token_symbol for row in data.targets], ["ETH", "BTC", "SOL"])
        self.assertEqual([row.token_symbol for row in data.untargeted], ["SOL"])
        self.assertEqual(data.summary.trade_count, 2)
        self.assertEqual([step.token_symbol for step in data.execution_steps], ["BTC", "ETH"])
        self.assertEqual(data.oldest_price_update, "2026-02-28T00:00:00Z")
        self.assertEqual(payload["rebalanceStrategy"], "threshold")
        self.assertEqual(payload["totalValue"], 1100.0)
        self.assertEqual(payload["holdZonePercent"], 5.0)
        self.assertNotIn("dcaChunks", payload)
        self.assertNotIn("calendarBlocked", payload)

    def test_strategy_extras_are_echoed(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "600"), "ETH": ("ethereum", "400")},
            targets=[
                {"tokenSymbol": "BTC", "targetPercent": 50},
                {"tokenSymbol": "ETH", "targetPercent": 50},
            ],
            settings={"rebalanceStrategy": "dca-weighted", "dcaSplitCount": "2"},
        )

        payload = build_suggestions(vault, prices, now=NOW).to_payload()

        self.assertEqual(payload["dcaTotalChunks"], 2)
        self.assertEqual(len(payload["dcaChunks"]), 2)
        self.assertEqual(payload["targets"][0]["amount"], 50.0)

    def test_extreme_settings_and_prices_still_build(self) -> None:
        vault, prices = _vault(
            {"BTC": ("bitcoin", "1e40"), "ETH": ("ethereum", "400")},
            targets=[
                {"tokenSymbol": "BTC", "targetPercent": 50},
                {"tokenSymbol": "ETH", "targetPercent": 50},
            ],
            settings={"rebalanceStrategy": "dca-weighted", "dcaSplitCount": "1e30", "dcaIntervalDays": "1000000"},
        )

        data = build_suggestions(vault, prices, now=NOW)
        payload = data.to_payload()

        self.assertEqual(data.dca_total_chunks, 100)
        self.assertEqual(payload["dcaIntervalDays"], 365)
        self.assertEqual(len(payload["dcaChunks"]), 100)
        self.assertEqual([row.action for row in data.targets], ["sell", "buy"])

    def test_default_strategy_is_percent_of_portfolio(self) -> None:
        vault, prices = _vault({"BTC": ("bitcoin", "100")}, targets=[{"tokenSymbol": "BTC", "targetPercent": 100}])

        data = build_suggestions(vault, prices, now=NOW)

        self.assertEqual(data.strategy, "percent-of-portfolio")
        self.assertEqual(data.targets[0].action, "hold")
