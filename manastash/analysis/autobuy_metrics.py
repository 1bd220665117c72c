"""
Autobuy analytics.

Read-only aggregates over recorded runs and the sales feed: prediction
accuracy, sell-through, per-card profit and weight-adjustment suggestions.
Everything here is pure; callers load the runs and sales for the window.

Sign convention: variance = actual - predicted, so a positive variance
means more was paid than predicted.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta

from manastash.config import HIGH_CONFIDENCE_MIN_LIFT, HIGH_CONFIDENCE_MIN_SAMPLE
from manastash.models.autobuy import (
    COMPLETED_STATUSES,
    SUBSTITUTION_ATTENUATION,
    AccuracyMetrics,
    CardProfitMetrics,
    Confidence,
    ItemVariance,
    RunItemSnapshot,
    RunSnapshot,
    RunStatus,
    SaleEvent,
    SellThroughMetrics,
    WeightAdjustment,
)

SECONDS_PER_DAY = 86400.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _purchased_items(runs: Sequence[RunSnapshot]) -> list[tuple[RunSnapshot, RunItemSnapshot]]:
    return [
        (run, item)
        for run in runs
        if run.status in COMPLETED_STATUSES
        for item in run.items
        if item.was_purchased
    ]


def _purchase_time(run: RunSnapshot, item: RunItemSnapshot) -> datetime:
    return item.purchased_at or run.created_at


# =============================================================================
# ACCURACY
# =============================================================================


def compute_accuracy(runs: Sequence[RunSnapshot]) -> AccuracyMetrics:
    """
    Prediction accuracy over the runs of a window.

    Only bought items of purchased or partially purchased runs count.
    overall_accuracy is 1 - mean(|variance_pct|), clipped to [0, 1].
    """
    completed = [run for run in runs if run.status in COMPLETED_STATUSES]
    bought = [item for _, item in _purchased_items(completed)]

    if not bought:
        return AccuracyMetrics(
            overall_accuracy=0.0,
            avg_price_variance=0.0,
            avg_price_variance_percent=0.0,
            total_runs=len(completed),
            total_items=0,
        )

    variances = [item.variance or 0.0 for item in bought]
    percents = [item.variance_pct or 0.0 for item in bought]
    overall = 1.0 - _mean([abs(p) for p in percents])

    return AccuracyMetrics(
        overall_accuracy=max(0.0, min(1.0, overall)),
        avg_price_variance=_mean(variances),
        avg_price_variance_percent=_mean(percents) * 100,
        total_runs=len(completed),
        total_items=len(bought),
        item_breakdown=item_breakdown(bought),
    )


def item_breakdown(items: Sequence[RunItemSnapshot]) -> list[ItemVariance]:
    """Per-card totals, largest absolute variance first."""
    predicted: dict[str, float] = defaultdict(float)
    actual: dict[str, float] = defaultdict(float)
    names: dict[str, str | None] = {}

    for item in items:
        predicted[item.card_id] += item.predicted_total
        actual[item.card_id] += item.actual_total or 0.0
        names[item.card_id] = names.get(item.card_id) or item.card_name

    breakdown = []
    for card_id, predicted_total in predicted.items():
        actual_total = actual[card_id]
        percent = (
            (actual_total - predicted_total) / predicted_total * 100 if predicted_total > 0 else 0.0
        )
        breakdown.append(
            ItemVariance(
                card_id=card_id,
                card_name=names[card_id],
                predicted_total=predicted_total,
                actual_total=actual_total,
                variance_percent=percent,
            )
        )

    breakdown.sort(key=lambda v: (-abs(v.variance_percent), v.card_id))
    return breakdown


# =============================================================================
# SELL-THROUGH AND PROFIT
# =============================================================================


def compute_sell_through(
    runs: Sequence[RunSnapshot],
    sales: Sequence[SaleEvent],
    card_id: str | None = None,
) -> SellThroughMetrics:
    """
    Share of purchased copies that sold.

    Per card, sales count from the card's first purchase onward,
    chronologically, up to the quantity purchased. avg_days_to_sell is
    weighted by quantity over the counted sales.
    """
    purchased: dict[str, int] = defaultdict(int)
    first_purchase: dict[str, datetime] = {}

    for run, item in _purchased_items(runs):
        if card_id is not None and item.card_id != card_id:
            continue
        purchased[item.card_id] += item.actual_qty or 0
        bought_at = _purchase_time(run, item)
        if item.card_id not in first_purchase or bought_at < first_purchase[item.card_id]:
            first_purchase[item.card_id] = bought_at

    total_purchased = sum(purchased.values())

    total_sold = 0
    weighted_days = 0.0
    for sale in sorted(sales, key=lambda s: s.sold_at):
        start = first_purchase.get(sale.card_id)
        if start is None or sale.sold_at < start:
            continue
        counted = min(sale.quantity, purchased[sale.card_id])
        if counted <= 0:
            continue
        purchased[sale.card_id] -= counted
        total_sold += counted
        weighted_days += counted * (sale.sold_at - start).total_seconds() / SECONDS_PER_DAY

    return SellThroughMetrics(
        sell_through_rate=total_sold / total_purchased if total_purchased else 0.0,
        total_sold=total_sold,
        total_purchased=total_purchased,
        avg_days_to_sell=weighted_days / total_sold if total_sold else 0.0,
        card_id=card_id,
    )


def compute_card_profit(
    card_id: str,
    bought_items: Sequence[RunItemSnapshot],
    sales: Sequence[SaleEvent],
) -> CardProfitMetrics | None:
    """
    Purchase cost against sale revenue for one card.

    Returns None if the card was never bought.
    """
    bought = [item for item in bought_items if item.card_id == card_id and item.was_purchased]
    if not bought:
        return None

    card_sales = [sale for sale in sales if sale.card_id == card_id]
    cost = sum(
        (item.actual_unit or item.predicted_unit) * (item.actual_qty or 0) for item in bought
    )
    revenue = sum(sale.unit_price * sale.quantity for sale in card_sales)
    profit = revenue - cost

    name = next((item.card_name for item in bought if item.card_name), None)
    if name is None:
        name = next((sale.card_name for sale in card_sales if sale.card_name), None)

    return CardProfitMetrics(
        card_id=card_id,
        card_name=name,
        total_purchase_cost=cost,
        total_sale_revenue=revenue,
        total_profit=profit,
        profit_margin=profit / cost if cost > 0 else 0.0,
        quantity_purchased=sum(item.actual_qty or 0 for item in bought),
        quantity_sold=sum(sale.quantity for sale in card_sales),
    )


# =============================================================================
# WEIGHT SUGGESTIONS
# =============================================================================


def label_outcome(
    run: RunSnapshot,
    item: RunItemSnapshot,
    sold_cards: dict[str, list[datetime]],
    now: datetime,
    overpay_threshold: float,
    sell_window_days: int,
) -> int:
    """
    1 if the purchase went well, 0 if it underperformed.

    Cancelled or unbought items and heavy overpays underperform. A bought
    item succeeds when it sold afterwards or is still inside the sell window.
    """
    if run.status == RunStatus.CANCELLED or not item.was_purchased:
        return 0
    if (item.variance_pct or 0.0) > overpay_threshold:
        return 0

    bought_at = _purchase_time(run, item)
    if any(sold_at >= bought_at for sold_at in sold_cards.get(item.card_id, [])):
        return 1
    if now - bought_at < timedelta(days=sell_window_days):
        return 1
    return 0


def confidence_for(sample: int, lift: float, min_sample: int) -> Confidence:
    if sample >= HIGH_CONFIDENCE_MIN_SAMPLE and abs(lift) > HIGH_CONFIDENCE_MIN_LIFT:
        return "high"
    if sample >= min_sample:
        return "medium"
    return "low"


def suggest_weight_adjustments(
    runs: Sequence[RunSnapshot],
    sales: Sequence[SaleEvent],
    weights: dict[str, float],
    now: datetime,
    *,
    lift_threshold: float = 0.1,
    min_sample: int = 10,
    step: float = 0.1,
    overpay_threshold: float = 0.25,
    sell_window_days: int = 30,
) -> list[WeightAdjustment]:
    """
    Suggest nudging weights whose dominance correlates with outcomes.

    lift_k = mean(outcome | k dominant) - mean(outcome | k not dominant).
    A weight with |lift_k| above the threshold over at least min_sample
    items gets currentValue * (1 + step * sign(lift_k)). The attenuation
    weight never goes above 1.
    """
    sold_cards: dict[str, list[datetime]] = defaultdict(list)
    for sale in sales:
        sold_cards[sale.card_id].append(sale.sold_at)

    labelled: list[tuple[str, int]] = []
    for run in runs:
        if run.status == RunStatus.PENDING:
            continue
        for item in run.items:
            if not item.dominant_weight:
                continue
            outcome = label_outcome(
                run, item, sold_cards, now, overpay_threshold, sell_window_days
            )
            labelled.append((item.dominant_weight, outcome))

    suggestions = []
    for name in sorted(weights):
        dominant = [outcome for weight, outcome in labelled if weight == name]
        others = [outcome for weight, outcome in labelled if weight != name]
        if len(dominant) < min_sample or not others:
            continue

        lift = _mean(dominant) - _mean(others)
        if abs(lift) <= lift_threshold:
            continue

        current = weights[name]
        direction = 1 if lift > 0 else -1
        suggested = current * (1 + step * direction)
        if name == SUBSTITUTION_ATTENUATION:
            suggested = min(suggested, 1.0)

        verb = "succeeded" if lift > 0 else "underperformed"
        suggestions.append(
            WeightAdjustment(
                weight_name=name,
                current_value=current,
                suggested_value=round(suggested, 4),
                reason=(
                    f"Purchases driven by {name} {verb} {abs(lift):.0%} more often "
                    f"than the rest over {len(dominant)} items"
                ),
                confidence=confidence_for(len(dominant), lift, min_sample),
                based_on_cards=len(dominant),
                lift=round(lift, 4),
            )
        )
    return suggestions
