"""
Autobuy service: scoring, run recording and analytics.

Runs are recorded as pending with their predictions and the weights in
force, then completed by posting actuals. Analytics load the runs and
sales of a window and hand them to the pure functions in
manastash.analysis.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from manastash.analysis.autobuy_metrics import (
    compute_accuracy,
    compute_card_profit,
    compute_sell_through,
    suggest_weight_adjustments,
)
from manastash.analysis.ips import rank_scores, score_candidate, validate_weights
from manastash.config import settings
from manastash.db import autobuy as store
from manastash.models.autobuy import (
    AccuracyMetrics,
    CardProfitMetrics,
    IPSCandidate,
    IPSScore,
    RunItemSnapshot,
    RunSnapshot,
    RunStatus,
    SellThroughMetrics,
    WeightAdjustment,
)
from manastash.models.db import AutobuyRunDB, AutobuyRunItemDB, CardSaleDB, utcnow
from manastash.models.failure import InvalidInputError, NotFoundError, ValidationFailedError

logger = logging.getLogger(__name__)


@dataclass
class PlannedPurchase:
    """A purchase the autobuyer intends to make."""

    card_id: str
    predicted_unit: float
    predicted_qty: int
    card_name: str | None = None
    dominant_weight: str | None = None
    seller_id: str | None = None
    marketplace: str | None = None


@dataclass
class PurchaseActual:
    """What was actually paid for a planned purchase. actual_qty == 0: not bought."""

    card_id: str
    actual_unit: float
    actual_qty: int


# =============================================================================
# WEIGHTS AND SCORING
# =============================================================================


async def current_weights(session: AsyncSession) -> dict[str, float]:
    return await store.get_weights(session)


async def update_weights(session: AsyncSession, weights: dict[str, float]) -> dict[str, float]:
    """Validate and store a (possibly partial) weight set."""
    if not weights:
        raise InvalidInputError("No weights given")
    validate_weights(weights)
    updated = await store.set_weights(session, weights)
    logger.info("Updated IPS weights: %s", ", ".join(sorted(weights)))
    return updated


async def score_candidates(
    session: AsyncSession, candidates: Sequence[IPSCandidate]
) -> list[IPSScore]:
    """
    Score purchase candidates against the current weights.

    Unreserved stock is looked up for candidates that do not carry it. A
    candidate is attenuated when another member of its substitution group
    has copies available.
    """
    if not candidates:
        return []

    weights = await store.get_weights(session)
    card_ids = [c.card_id for c in candidates]
    substitutes = await store.substitutes_by_card(session, card_ids)

    lookup = set(card_ids)
    for others in substitutes.values():
        lookup.update(others)
    available = await store.available_by_scryfall_id(session, sorted(lookup))

    scores = []
    for candidate in candidates:
        in_stock = candidate.in_stock
        if in_stock is None:
            in_stock = available.get(candidate.card_id, 0)
        substitute_in_stock = any(
            available.get(other, 0) > 0 for other in substitutes.get(candidate.card_id, [])
        )
        scores.append(score_candidate(candidate, weights, in_stock, substitute_in_stock))

    return rank_scores(scores)


# =============================================================================
# RUNS
# =============================================================================


async def record_run(
    session: AsyncSession,
    purchases: Sequence[PlannedPurchase],
    weights: dict[str, float] | None = None,
) -> AutobuyRunDB:
    """
    Record a pending run.

    The weights snapshot defaults to the current weight set.
    """
    if not purchases:
        raise InvalidInputError("A run needs at least one item")
    for purchase in purchases:
        if purchase.predicted_qty <= 0:
            raise InvalidInputError(f"Predicted quantity for {purchase.card_id} must be positive")
        if purchase.predicted_unit < 0:
            raise InvalidInputError(f"Predicted price for {purchase.card_id} must not be negative")

    if weights is None:
        weights = await store.get_weights(session)
    else:
        validate_weights(weights)

    items = [
        AutobuyRunItemDB(
            card_id=p.card_id,
            card_name=p.card_name,
            predicted_unit=p.predicted_unit,
            predicted_qty=p.predicted_qty,
            dominant_weight=p.dominant_weight,
            seller_id=p.seller_id,
            marketplace=p.marketplace,
        )
        for p in purchases
    ]
    run = await store.create_run(session, items, weights)
    logger.info("Recorded autobuy run %d with %d items", run.id, len(items))
    return run


async def record_actuals(
    session: AsyncSession, run_id: int, actuals: Sequence[PurchaseActual]
) -> AutobuyRunDB:
    """
    Fill in what was actually bought and settle the run status.

    Items without an actual are treated as not bought.

    Raises:
        NotFoundError: Unknown run.
        ValidationFailedError: Run already completed, or an actual names a
            card that is not part of the run.
    """
    run = await store.get_run(session, run_id)
    if run is None:
        raise NotFoundError("Autobuy run", run_id)
    if run.status != RunStatus.PENDING.value:
        raise ValidationFailedError(f"Run {run_id} is already {run.status}")

    for actual in actuals:
        if actual.actual_unit < 0 or actual.actual_qty < 0:
            raise InvalidInputError(f"Actuals for {actual.card_id} must not be negative")

    by_card = {actual.card_id: actual for actual in actuals}
    unknown = set(by_card) - {item.card_id for item in run.items}
    if unknown:
        raise ValidationFailedError(
            f"Cards not in run {run_id}: {', '.join(sorted(unknown))}"
        )

    now = utcnow()
    purchased = 0
    actual_total = 0.0
    for item in run.items:
        actual = by_card.get(item.card_id)
        if actual is None or actual.actual_qty <= 0:
            item.actual_unit = actual.actual_unit if actual else None
            item.actual_qty = 0
            continue
        item.actual_unit = actual.actual_unit
        item.actual_qty = actual.actual_qty
        item.purchased_at = now
        purchased += 1
        actual_total += actual.actual_unit * actual.actual_qty

    if purchased == len(run.items):
        status = RunStatus.PURCHASED
    elif purchased:
        status = RunStatus.PARTIALLY_PURCHASED
    else:
        status = RunStatus.CANCELLED

    run.status = status.value
    run.purchased_count = purchased
    run.item_count = len(run.items)
    run.actual_total = actual_total
    run.completed_at = now
    await session.flush()

    logger.info("Autobuy run %d %s (%d/%d items)", run.id, status.value, purchased, len(run.items))
    return run


async def record_sale(
    session: AsyncSession,
    card_id: str,
    quantity: int,
    unit_price: float,
    sold_at: datetime | None = None,
    card_name: str | None = None,
) -> CardSaleDB:
    if quantity <= 0:
        raise InvalidInputError("Sale quantity must be positive")
    if unit_price < 0:
        raise InvalidInputError("Sale price must not be negative")
    return await store.record_sale(session, card_id, quantity, unit_price, sold_at, card_name)


# =============================================================================
# ANALYTICS
# =============================================================================


def _window_start(days: int) -> datetime:
    if days <= 0:
        raise InvalidInputError("days must be positive")
    return utcnow() - timedelta(days=days)


async def _window_runs(session: AsyncSession, days: int) -> list[RunSnapshot]:
    runs = await store.runs_since(session, _window_start(days))
    return [store.run_to_snapshot(run) for run in runs]


async def accuracy_report(session: AsyncSession, days: int = 30) -> AccuracyMetrics:
    return compute_accuracy(await _window_runs(session, days))


async def sell_through_report(
    session: AsyncSession, days: int = 30, card_id: str | None = None
) -> SellThroughMetrics:
    cutoff = _window_start(days)
    runs = [store.run_to_snapshot(run) for run in await store.runs_since(session, cutoff)]
    sales = [store.sale_to_event(s) for s in await store.list_sales(session, cutoff, card_id)]
    return compute_sell_through(runs, sales, card_id)


async def card_profit_report(session: AsyncSession, card_id: str) -> CardProfitMetrics:
    """
    Raises:
        NotFoundError: The card was never bought.
    """
    items = await store.purchased_items_for_card(session, card_id)
    bought = [
        RunItemSnapshot(
            card_id=item.card_id,
            card_name=item.card_name,
            predicted_unit=item.predicted_unit,
            predicted_qty=item.predicted_qty,
            actual_unit=item.actual_unit,
            actual_qty=item.actual_qty,
        )
        for item in items
    ]
    sales = [store.sale_to_event(s) for s in await store.list_sales(session, card_id=card_id)]

    metrics = compute_card_profit(card_id, bought, sales)
    if metrics is None:
        raise NotFoundError("Purchases for card", card_id)
    return metrics


async def weight_suggestions(session: AsyncSession, days: int = 90) -> list[WeightAdjustment]:
    """Suggestions against the stored weights, from the runs of the window."""
    cutoff = _window_start(days)
    runs = [store.run_to_snapshot(run) for run in await store.runs_since(session, cutoff)]
    sales = [store.sale_to_event(s) for s in await store.list_sales(session, cutoff)]
    weights = await store.get_weights(session)

    return suggest_weight_adjustments(
        runs,
        sales,
        weights,
        utcnow(),
        lift_threshold=settings.suggestion_lift_threshold,
        min_sample=settings.suggestion_min_sample,
        step=settings.suggestion_step,
        overpay_threshold=settings.overpay_threshold,
        sell_window_days=settings.sell_window_days,
    )


async def recent_runs(session: AsyncSession, limit: int = 20) -> list[AutobuyRunDB]:
    if limit <= 0:
        raise InvalidInputError("limit must be positive")
    return await store.list_runs(session, limit)
