from __future__ import annotations

from decimal import Decimal
from unittest import TestCase

from coinvault.portfolio.whatif import WhatIfTrade, simulate_trades

VALUES = {"BTC": Decimal("600"), "ETH": Decimal("400")}
TOTAL = Decimal("1000")


class TestSimulateTrades(TestCase):
    def test_buy_shifts_allocation(self) -> None:
        results = simulate_trades(VALUES, TOTAL, [WhatIfTrade.from_raw("eth", "buy", "200")])

        by_symbol = {result.token_symbol: result for result in results}
        self.assertEqual(by_symbol["ETH"].current_percent, Decimal("40.00"))
        self.assertEqual(by_symbol["ETH"].simulated_percent, Decimal("50.00"))
        self.assertEqual(by_symbol["ETH"].change, Decimal("10.00"))
        self.assertEqual(by_symbol["BTC"].change, Decimal("-10.00"))

    def test_sell_is_capped_at_holding_value(self) -> None:
        results = simulate_trades(VALUES, TOTAL, [WhatIfTrade.from_raw("ETH", "sell", 5000)])

        by_symbol = {result.token_symbol: result for result in results}
        self.assertEqual(by_symbol["ETH"].simulated_percent, Decimal("0.00"))
        self.assertEqual(by_symbol["BTC"].simulated_percent, Decimal("100.00"))

    def test_new_symbol_appears(self) -> None:
        results = simulate_trades(VALUES, TOTAL, [WhatIfTrade.from_raw("sol", "buy", 250)])

        first = results[0]
        self.assertEqual(first.token_symbol, "SOL")
        self.assertEqual(first.current_percent, Decimal("0.00"))
        self.assertEqual(first.simulated_percent, Decimal("20.00"))

    def test_sorted_by_absolute_change(self) -> None:
        results = simulate_trades(VALUES, TOTAL, [WhatIfTrade.from_raw("btc", "sell", 300)])

        self.assertEqual([result.token_symbol for result in results], ["BTC", "ETH"])
        self.assertEqual(results[0].change, Decimal("-17.14"))
        self.assertEqual(results[1].change, Decimal("17.14"))

    def test_invalid_trades_are_ignored(self) -> None:
        results = simulate_trades(
            VALUES,
            TOTAL,
            [
                WhatIfTrade.from_raw("BTC", "buy", 0),
                WhatIfTrade.from_raw("  ", "buy", 100),
                WhatIfTrade.from_raw("ETH", "sell", "-5"),
            ],
        )

        self.assertTrue(all(result.change == 0 for result in results))
        self.assertEqual(len(results), 2)

    def test_empty_portfolio(self) -> None:
        self.assertEqual(simulate_trades({}, Decimal("0"), []), [])
        (result,) = simulate_trades({}, Decimal("0"), [WhatIfTrade.from_raw("BTC", "buy", 10)])
        self.assertEqual(result.simulated_percent, Decimal("100.00"))
        self.assertEqual(result.to_payload()["change"], 100.0)
