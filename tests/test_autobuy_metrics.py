"""Tests for the autobuy analytics (pure functions, no store)."""

from datetime import UTC, datetime, timedelta

import pytest

from manastash.analysis.autobuy_metrics import (
    compute_accuracy,
    compute_card_profit,
    compute_sell_through,
    confidence_for,
    label_outcome,
    suggest_weight_adjustments,
)
from manastash.models.autobuy import (
    DEFAULT_IPS_WEIGHTS,
    RunItemSnapshot,
    RunSnapshot,
    RunStatus,
    SaleEvent,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)


def bought(
    card_id: str,
    predicted: float,
    actual: float,
    qty: int = 1,
    dominant: str | None = None,
    at: datetime = NOW,
) -> RunItemSnapshot:
    return RunItemSnapshot(
        card_id=card_id,
        card_name=card_id.title(),
        predicted_unit=predicted,
        predicted_qty=qty,
        actual_unit=actual,
        actual_qty=qty,
        dominant_weight=dominant,
        purchased_at=at,
    )


def run(
    *items: RunItemSnapshot,
    status: RunStatus = RunStatus.PURCHASED,
    created_at: datetime = NOW,
    run_id: int = 1,
) -> RunSnapshot:
    return RunSnapshot(id=run_id, created_at=created_at, status=status, items=list(items))


def sale(card_id: str, quantity: int, unit_price: float, at: datetime) -> SaleEvent:
    return SaleEvent(card_id=card_id, quantity=quantity, unit_price=unit_price, sold_at=at)


class TestAccuracy:
    def test_two_runs(self) -> None:
        """Paid +20% on one run and -10% on the other."""
        metrics = compute_accuracy(
            [
                run(bought("sol-ring", 10.0, 12.0), run_id=1),
                run(bought("mana-crypt", 20.0, 18.0), run_id=2),
            ]
        )

        assert metrics.overall_accuracy == pytest.approx(0.85)
        assert metrics.avg_price_variance == pytest.approx(0.0)
        assert metrics.avg_price_variance_percent == pytest.approx(5.0)
        assert metrics.total_runs == 2
        assert metrics.total_items == 2
        assert [v.card_id for v in metrics.item_breakdown] == ["sol-ring", "mana-crypt"]
        assert metrics.item_breakdown[0].variance_percent == pytest.approx(20.0)

    def test_pending_and_cancelled_runs_are_ignored(self) -> None:
        metrics = compute_accuracy(
            [
                run(bought("a", 10.0, 30.0), status=RunStatus.PENDING),
                run(bought("b", 10.0, 30.0), status=RunStatus.CANCELLED),
            ]
        )

        assert metrics.total_runs == 0
        assert metrics.total_items == 0
        assert metrics.overall_accuracy == 0.0

    def test_unbought_items_are_ignored(self) -> None:
        skipped = RunItemSnapshot(
            card_id="b", predicted_unit=5.0, predicted_qty=1, actual_unit=50.0, actual_qty=0
        )

        metrics = compute_accuracy(
            [run(bought("a", 10.0, 10.0), skipped, status=RunStatus.PARTIALLY_PURCHASED)]
        )

        assert metrics.total_items == 1
        assert metrics.overall_accuracy == 1.0

    def test_accuracy_is_clipped(self) -> None:
        metrics = compute_accuracy([run(bought("a", 1.0, 5.0))])

        assert metrics.overall_accuracy == 0.0


class TestSellThrough:
    def test_sales_count_from_first_purchase_up_to_quantity(self) -> None:
        runs = [run(bought("a", 1.0, 1.0, qty=4, at=NOW))]
        sales = [
            sale("a", 2, 3.0, NOW - timedelta(days=1)),
            sale("a", 3, 3.0, NOW + timedelta(days=2)),
            sale("a", 3, 3.0, NOW + timedelta(days=4)),
        ]

        metrics = compute_sell_through(runs, sales)

        assert metrics.total_purchased == 4
        assert metrics.total_sold == 4
        assert metrics.sell_through_rate == 1.0
        # 3 copies after 2 days, 1 counted copy after 4 days
        assert metrics.avg_days_to_sell == pytest.approx(2.5)

    def test_partial_sell_through(self) -> None:
        runs = [run(bought("a", 1.0, 1.0, qty=4), bought("b", 1.0, 1.0, qty=6))]
        sales = [sale("a", 1, 2.0, NOW + timedelta(days=1)), sale("c", 5, 2.0, NOW)]

        metrics = compute_sell_through(runs, sales)

        assert metrics.total_purchased == 10
        assert metrics.total_sold == 1
        assert metrics.sell_through_rate == pytest.approx(0.1)

    def test_single_card(self) -> None:
        runs = [run(bought("a", 1.0, 1.0, qty=2), bought("b", 1.0, 1.0, qty=2))]
        sales = [sale("a", 1, 2.0, NOW), sale("b", 2, 2.0, NOW)]

        metrics = compute_sell_through(runs, sales, card_id="a")

        assert metrics.card_id == "a"
        assert metrics.total_purchased == 2
        assert metrics.sell_through_rate == 0.5

    def test_nothing_bought(self) -> None:
        metrics = compute_sell_through([], [sale("a", 1, 1.0, NOW)])

        assert metrics.sell_through_rate == 0.0
        assert metrics.avg_days_to_sell == 0.0


class TestCardProfit:
    def test_profit_and_margin(self) -> None:
        items = [bought("a", 2.5, 3.0, qty=2)]
        sales = [sale("a", 1, 5.0, NOW), sale("a", 1, 4.0, NOW), sale("b", 1, 100.0, NOW)]

        metrics = compute_card_profit("a", items, sales)

        assert metrics.total_purchase_cost == pytest.approx(6.0)
        assert metrics.total_sale_revenue == pytest.approx(9.0)
        assert metrics.total_profit == pytest.approx(3.0)
        assert metrics.profit_margin == pytest.approx(0.5)
        assert metrics.quantity_purchased == 2
        assert metrics.quantity_sold == 2
        assert metrics.card_name == "A"

    def test_never_bought(self) -> None:
        assert compute_card_profit("a", [], [sale("a", 1, 5.0, NOW)]) is None


class TestLabelOutcome:
    def test_cancelled_run_underperforms(self) -> None:
        r = run(bought("a", 1.0, 1.0), status=RunStatus.CANCELLED)

        assert label_outcome(r, r.items[0], {}, NOW, 0.25, 30) == 0

    def test_overpay_underperforms(self) -> None:
        r = run(bought("a", 1.0, 1.5))

        assert label_outcome(r, r.items[0], {}, NOW, 0.25, 30) == 0

    def test_sold_after_purchase_succeeds(self) -> None:
        old = NOW - timedelta(days=90)
        r = run(bought("a", 1.0, 1.0, at=old))

        assert label_outcome(r, r.items[0], {"a": [old + timedelta(days=3)]}, NOW, 0.25, 30) == 1

    def test_unsold_after_window_underperforms(self) -> None:
        old = NOW - timedelta(days=90)
        r = run(bought("a", 1.0, 1.0, at=old))

        assert label_outcome(r, r.items[0], {}, NOW, 0.25, 30) == 0

    def test_inside_window_succeeds(self) -> None:
        r = run(bought("a", 1.0, 1.0, at=NOW - timedelta(days=3)))

        assert label_outcome(r, r.items[0], {}, NOW, 0.25, 30) == 1


class TestConfidence:
    def test_bands(self) -> None:
        assert confidence_for(5, 0.5, 10) == "low"
        assert confidence_for(10, 0.5, 10) == "medium"
        assert confidence_for(30, 0.15, 10) == "medium"
        assert confidence_for(30, 0.25, 10) == "high"


class TestWeightSuggestions:
    def good_and_bad_runs(self, good: str, bad: str, count: int = 10) -> list[RunSnapshot]:
        """count good purchases driven by one weight, count overpays driven by another."""
        items = [bought(f"good-{i}", 1.0, 1.0, dominant=good) for i in range(count)]
        items += [bought(f"bad-{i}", 1.0, 2.0, dominant=bad) for i in range(count)]
        return [run(*items)]

    def test_nudges_weights_by_lift(self) -> None:
        runs = self.good_and_bad_runs("price_delta", "recency")

        suggestions = suggest_weight_adjustments(runs, [], DEFAULT_IPS_WEIGHTS, NOW)

        by_name = {s.weight_name: s for s in suggestions}
        assert list(by_name) == ["price_delta", "recency"]

        up = by_name["price_delta"]
        assert up.current_value == 0.35
        assert up.suggested_value == pytest.approx(0.385)
        assert up.lift == 1.0
        assert up.based_on_cards == 10
        assert up.confidence == "medium"
        assert up.reason == (
            "Purchases driven by price_delta succeeded 100% more often "
            "than the rest over 10 items"
        )

        down = by_name["recency"]
        assert down.suggested_value == pytest.approx(0.09)
        assert down.lift == -1.0
        assert "underperformed" in down.reason

    def test_beta_is_capped_at_one(self) -> None:
        weights = {**DEFAULT_IPS_WEIGHTS, "substitution_attenuation": 0.95}
        runs = self.good_and_bad_runs("substitution_attenuation", "stock_headroom")

        suggestions = suggest_weight_adjustments(runs, [], weights, NOW)

        beta = next(s for s in suggestions if s.weight_name == "substitution_attenuation")
        assert beta.suggested_value == 1.0

    def test_small_samples_are_skipped(self) -> None:
        runs = self.good_and_bad_runs("price_delta", "recency", count=5)

        assert suggest_weight_adjustments(runs, [], DEFAULT_IPS_WEIGHTS, NOW) == []

    def test_weak_lift_is_skipped(self) -> None:
        items = [bought(f"a-{i}", 1.0, 1.0, dominant="price_delta") for i in range(10)]
        items += [bought(f"b-{i}", 1.0, 1.0, dominant="recency") for i in range(10)]

        assert suggest_weight_adjustments([run(*items)], [], DEFAULT_IPS_WEIGHTS, NOW) == []

    def test_pending_runs_are_ignored(self) -> None:
        runs = self.good_and_bad_runs("price_delta", "recency")
        runs[0].status = RunStatus.PENDING

        assert suggest_weight_adjustments(runs, [], DEFAULT_IPS_WEIGHTS, NOW) == []
