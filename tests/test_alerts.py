from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence
from unittest import TestCase

from coinvault.models import VaultData, price_map_from_payload
from coinvault.portfolio.alerts import Alert, collapse_alerts, compute_alerts, deviation_severity
from coinvault.portfolio.context import StrategyContext, build_context


def _context(
    holdings: Mapping[str, tuple[str, str]],
    *,
    targets: Sequence[dict[str, Any]] = (),
    settings: Optional[dict[str, str]] = None,
    groups: Sequence[dict[str, Any]] = (),
) -> StrategyContext:
    vault = VaultData.model_validate(
        {
            "transactions": [
                {
                    "id": f"tx-{symbol}",
                    "tokenSymbol": symbol,
                    "type": "buy",
                    "quantity": "1",
                    "totalCost": value,
                    "coingeckoId": coingecko_id,
                }
                for symbol, (coingecko_id, value) in holdings.items()
            ],
            "rebalanceTargets": list(targets),
            "tokenGroups": list(groups),
            "settings": settings or {},
        }
    )
    prices = price_map_from_payload({cg: {"usd": value} for cg, value in holdings.values()})
    return build_context(vault, prices)


def _pair(btc: str, eth: str, btc_target: int = 50, eth_target: int = 50, **settings: str) -> StrategyContext:
    return _context(
        {"BTC": ("bitcoin", btc), "ETH": ("ethereum", eth)},
        targets=[
            {"tokenSymbol": "BTC", "targetPercent": btc_target},
            {"tokenSymbol": "ETH", "targetPercent": eth_target},
        ],
        settings=dict(settings),
    )


def _by_kind(alerts: list[Alert]) -> dict[tuple[str, str], Alert]:
    return {(alert.token_symbol, alert.type): alert for alert in alerts}


class TestDeviationAlerts(TestCase):
    def test_severity_bands(self) -> None:
        hold_zone = Decimal("5")
        self.assertEqual(deviation_severity(Decimal("6"), hold_zone), "low")
        self.assertEqual(deviation_severity(Decimal("-11"), hold_zone), "medium")
        self.assertEqual(deviation_severity(Decimal("15"), hold_zone), "medium")
        self.assertEqual(deviation_severity(Decimal("15.01"), hold_zone), "high")

    def test_deviation_and_concentration_for_targets(self) -> None:
        alerts = compute_alerts(_pair("600", "400", btc_target=45, eth_target=55))

        by_kind = _by_kind(alerts)
        self.assertEqual(len(alerts), 4)
        self.assertEqual(by_kind[("BTC", "deviation")].severity, "medium")
        self.assertEqual(by_kind[("BTC", "deviation")].deviation, Decimal("15.00"))
        self.assertEqual(by_kind[("ETH", "deviation")].severity, "medium")
        self.assertEqual(by_kind[("BTC", "concentration_token")].severity, "high")
        self.assertEqual(by_kind[("ETH", "concentration_token")].severity, "medium")
        self.assertEqual(by_kind[("ETH", "concentration_token")].target_percent, Decimal("55.00"))

    def test_within_hold_zone_no_deviation_alert(self) -> None:
        alerts = compute_alerts(_pair("520", "480", concentrationThresholdPercent="95"))

        self.assertEqual(alerts, [])

    def test_low_and_high_deviation(self) -> None:
        low = compute_alerts(_pair("560", "440", concentrationThresholdPercent="95"))
        high = compute_alerts(_pair("700", "300", concentrationThresholdPercent="95"))

        self.assertEqual({alert.severity for alert in low}, {"low"})
        self.assertEqual({alert.severity for alert in high}, {"high"})

    def test_group_targets_use_group_value(self) -> None:
        ctx = _context(
            {"BTC": ("bitcoin", "600"), "ETH": ("ethereum", "400")},
            targets=[{"tokenSymbol": "majors", "targetPercent": 50}],
            groups=[{"name": "Majors", "symbols": ["BTC", "ETH"]}],
            settings={"concentrationThresholdPercent": "95"},
        )

        (alert,) = [alert for alert in compute_alerts(ctx) if alert.type == "deviation"]

        self.assertEqual(alert.token_symbol, "MAJORS")
        self.assertEqual(alert.current_percent, Decimal("100.00"))
        self.assertEqual(alert.deviation, Decimal("50.00"))
        self.assertEqual(alert.severity, "high")

    def test_empty_portfolio_has_no_alerts(self) -> None:
        ctx = _context({}, targets=[{"tokenSymbol": "BTC", "targetPercent": 100}])

        self.assertEqual(compute_alerts(ctx), [])


class TestConcentrationAlerts(TestCase):
    def test_untargeted_symbols_are_checked(self) -> None:
        ctx = _context(
            {"BTC": ("bitcoin", "500"), "SOL": ("solana", "500")},
            targets=[{"tokenSymbol": "BTC", "targetPercent": 50}],
        )

        by_kind = _by_kind(compute_alerts(ctx))

        self.assertNotIn(("BTC", "deviation"), by_kind)
        self.assertEqual(by_kind[("BTC", "concentration_token")].severity, "medium")
        sol = by_kind[("SOL", "concentration_token")]
        self.assertEqual(sol.target_percent, Decimal("0"))
        self.assertEqual(sol.deviation, Decimal("50.00"))

    def test_no_duplicate_concentration_alerts(self) -> None:
        alerts = compute_alerts(_pair("900", "100", btc_target=90, eth_target=10))

        concentration = [alert for alert in alerts if alert.type == "concentration_token"]
        self.assertEqual([alert.token_symbol for alert in concentration], ["BTC"])
        self.assertEqual(concentration[0].severity, "high")

    def test_stablecoins_can_be_excluded(self) -> None:
        holdings = {"BTC": ("bitcoin", "200"), "USDT": ("tether", "800")}

        included = compute_alerts(_context(holdings))
        excluded = compute_alerts(_context(holdings, settings={"excludeStablecoinsFromConcentration": "1"}))

        self.assertEqual([alert.token_symbol for alert in included], ["USDT"])
        self.assertEqual(excluded, [])

    def test_threshold_is_clamped(self) -> None:
        alerts = compute_alerts(
            _context(
                {"BTC": ("bitcoin", "920"), "ETH": ("ethereum", "80")},
                settings={"concentrationThresholdPercent": "5"},
            )
        )

        # threshold clamps up to 10, so ETH at 8% stays quiet
        self.assertEqual([alert.token_symbol for alert in alerts], ["BTC"])
        self.assertEqual(alerts[0].severity, "high")


class TestCollapseAlerts(TestCase):
    def _alert(self, symbol: str, severity: str, kind: str) -> Alert:
        return Alert(
            token_symbol=symbol,
            target_percent=Decimal("0"),
            current_percent=Decimal("0"),
            deviation=Decimal("0"),
            severity=severity,  # type: ignore[arg-type]
            type=kind,  # type: ignore[arg-type]
        )

    def test_keeps_most_severe_alert_per_symbol(self) -> None:
        collapsed = collapse_alerts(
            [
                self._alert("BTC", "medium", "deviation"),
                self._alert("BTC", "high", "concentration_token"),
                self._alert("ETH", "medium", "concentration_token"),
                self._alert("ETH", "medium", "deviation"),
            ]
        )

        self.assertEqual(
            [(alert.token_symbol, alert.severity, alert.type) for alert in collapsed],
            [("BTC", "high", "concentration_token"), ("ETH", "medium", "deviation")],
        )
