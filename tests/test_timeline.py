from __future__ import annotations

from decimal import Decimal
from unittest import TestCase

from coinvault.models import Transaction
from coinvault.portfolio.holdings import compute_holdings
from coinvault.portfolio.timeline import compute_realized_pl_timeline


def _tx(tx_type: str, quantity: str, total_cost: str, transacted_at: str, *, fee: str = "0") -> Transaction:
    return Transaction.model_validate(
        {
            "id": f"{tx_type}-{transacted_at}",
            "tokenSymbol": "btc",
            "type": tx_type,
            "quantity": quantity,
            "totalCost": total_cost,
            "fee": fee,
            "coingeckoId": "bitcoin",
            "transactedAt": transacted_at,
        }
    )


LEDGER = [
    _tx("sell", "2", "1000", "2026-01-05T00:00:00Z"),
    _tx("buy", "2", "200", "2026-01-01T00:00:00Z"),
    _tx("buy", "1", "800", "2026-01-04T00:00:00Z"),
    _tx("buy", "2", "600", "2026-01-02T00:00:00Z"),
    _tx("sell", "1", "300", "2026-01-03T00:00:00Z"),
]


class TestRealizedPLTimeline(TestCase):
    def test_sequential_sells_use_running_average(self) -> None:
        result = compute_realized_pl_timeline(LEDGER)

        self.assertEqual([point.pl for point in result.timeline], [Decimal("100"), Decimal("300")])
        self.assertEqual([point.cumulative_pl for point in result.timeline], [Decimal("100"), Decimal("400")])
        self.assertEqual([point.date for point in result.timeline], ["2026-01-03T00:00:00Z", "2026-01-05T00:00:00Z"])
        self.assertEqual({point.symbol for point in result.timeline}, {"BTC"})
        self.assertEqual(result.total_realized_pl, Decimal("400"))

    def test_disagrees_with_final_average_holdings_view(self) -> None:
        (holding,) = compute_holdings(LEDGER, [], {})

        self.assertEqual(holding.realized_pl, Decimal("340"))
        self.assertNotEqual(holding.realized_pl, compute_realized_pl_timeline(LEDGER).total_realized_pl)

    def test_fees_reduce_sale_proceeds(self) -> None:
        result = compute_realized_pl_timeline(
            [
                _tx("buy", "1", "100", "2026-01-01T00:00:00Z", fee="1"),
                _tx("sell", "1", "150", "2026-01-02T00:00:00Z", fee="2"),
            ]
        )

        self.assertEqual(result.total_realized_pl, Decimal("47"))

    def test_receives_add_zero_cost_quantity_and_sends_are_ignored(self) -> None:
        result = compute_realized_pl_timeline(
            [
                _tx("buy", "1", "100", "2026-01-01T00:00:00Z"),
                _tx("receive", "1", "0", "2026-01-02T00:00:00Z"),
                _tx("send", "1", "0", "2026-01-03T00:00:00Z"),
                _tx("sell", "1", "100", "2026-01-04T00:00:00Z"),
            ]
        )

        self.assertEqual(result.total_realized_pl, Decimal("50"))

    def test_unparseable_dates_sort_first(self) -> None:
        result = compute_realized_pl_timeline(
            [
                _tx("buy", "1", "100", "2026-01-01T00:00:00Z"),
                _tx("sell", "1", "40", "someday"),
            ]
        )

        (point,) = result.timeline
        self.assertEqual(point.date, "someday")
        self.assertEqual(point.pl, Decimal("40"))

    def test_no_sells_empty_timeline(self) -> None:
        result = compute_realized_pl_timeline([_tx("buy", "1", "100", "2026-01-01T00:00:00Z")])

        self.assertEqual(result.timeline, [])
        self.assertEqual(result.to_payload(), {"timeline": [], "totalRealizedPL": 0.0})
