"""
Autobuy API endpoints.

Scoring candidates, the IPS weight set, recording runs and their actuals,
the sales feed, and the analytics dashboard. Analytics responses use
camelCase keys.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from manastash.api.deck_instances import CamelModel
from manastash.db import autobuy as autobuy_store
from manastash.db.database import get_session, transaction
from manastash.models.autobuy import IPSCandidate
from manastash.models.db import AutobuyRunDB, as_utc
from manastash.models.failure import NotFoundError
from manastash.services import autobuy as autobuy_service
from manastash.services.autobuy import PlannedPurchase, PurchaseActual

router = APIRouter(prefix="/autobuy", tags=["autobuy"])


# =============================================================================
# REQUEST MODELS
# =============================================================================


class CandidateRequest(BaseModel):
    """A card to score, with observed prices."""

    card_id: str = Field(..., min_length=1, description="Scryfall id")
    card_name: str | None = None
    market_price: float = Field(..., ge=0, description="Observed best buy price")
    reference_price: float = Field(..., ge=0, description="Observed sell-side anchor")
    deck_demand: int = Field(default=0, ge=0)
    recent_sales: float = Field(default=0.0, ge=0)
    days_since_last_purchase: int | None = Field(default=None, ge=0)
    in_stock: int | None = Field(default=None, ge=0, description="Looked up when omitted")
    target_stock: int = Field(default=4, ge=0)


class ScoreRequest(BaseModel):
    candidates: list[CandidateRequest] = Field(..., min_length=1)


class WeightsRequest(BaseModel):
    weights: dict[str, float] = Field(..., examples=[{"price_delta": 0.4}])


class RunItemRequest(BaseModel):
    card_id: str = Field(..., min_length=1)
    card_name: str | None = None
    predicted_unit: float = Field(..., ge=0)
    predicted_qty: int = Field(..., ge=1)
    dominant_weight: str | None = None
    seller_id: str | None = None
    marketplace: str | None = None


class RunCreateRequest(BaseModel):
    items: list[RunItemRequest] = Field(..., min_length=1)
    weights: dict[str, float] | None = Field(
        default=None, description="Weights used for scoring; defaults to the current set"
    )


class ActualRequest(BaseModel):
    card_id: str
    actual_unit: float = Field(..., ge=0)
    actual_qty: int = Field(..., ge=0, description="0 means not bought")


class ActualsRequest(BaseModel):
    items: list[ActualRequest]


class SaleRequest(BaseModel):
    card_id: str = Field(..., min_length=1)
    card_name: str | None = None
    quantity: int = Field(default=1, ge=1)
    unit_price: float = Field(..., ge=0)
    sold_at: datetime | None = None


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class ScoreResponse(CamelModel):
    card_id: str
    card_name: str | None = None
    score: float
    dominant_weight: str
    attenuated: bool
    factors: dict[str, float]
    contributions: dict[str, float]


class ScoresResponse(CamelModel):
    scores: list[ScoreResponse]


class WeightsResponse(CamelModel):
    weights: dict[str, float]


class RunItemResponse(CamelModel):
    card_id: str
    card_name: str | None = None
    predicted_unit: float
    predicted_qty: int
    actual_unit: float | None = None
    actual_qty: int | None = None
    dominant_weight: str | None = None
    seller_id: str | None = None
    marketplace: str | None = None
    purchased_at: datetime | None = None


class RunResponse(CamelModel):
    id: int
    created_at: datetime
    completed_at: datetime | None = None
    status: str
    predicted_total: float
    actual_total: float | None = None
    item_count: int
    purchased_count: int
    weights: dict[str, float] = Field(default_factory=dict)
    items: list[RunItemResponse] = Field(default_factory=list)


class RunsResponse(CamelModel):
    runs: list[RunResponse]


class SaleResponse(CamelModel):
    id: int
    card_id: str
    card_name: str | None = None
    quantity: int
    unit_price: float
    sold_at: datetime


class ItemVarianceResponse(CamelModel):
    card_id: str
    card_name: str | None = None
    predicted_total: float
    actual_total: float
    variance_percent: float


class AccuracyResponse(CamelModel):
    overall_accuracy: float
    total_items: int
    total_runs: int
    avg_price_variance: float
    avg_price_variance_percent: float
    item_breakdown: list[ItemVarianceResponse] = Field(default_factory=list)


class SuggestionResponse(CamelModel):
    weight_name: str
    current_value: float
    suggested_value: float
    reason: str
    confidence: str
    based_on_cards: int
    lift: float


class SuggestionsResponse(CamelModel):
    suggestions: list[SuggestionResponse]


class SellThroughResponse(CamelModel):
    sell_through_rate: float
    total_sold: int
    total_purchased: int
    avg_days_to_sell: float
    card_id: str | None = None


class ProfitResponse(CamelModel):
    card_id: str
    card_name: str | None = None
    total_purchase_cost: float
    total_sale_revenue: float
    total_profit: float
    profit_margin: float
    quantity_purchased: int
    quantity_sold: int


def _run_response(run: AutobuyRunDB) -> RunResponse:
    return RunResponse(
        id=run.id,
        created_at=as_utc(run.created_at),
        completed_at=as_utc(run.completed_at) if run.completed_at else None,
        status=run.status,
        predicted_total=run.predicted_total,
        actual_total=run.actual_total,
        item_count=run.item_count,
        purchased_count=run.purchased_count,
        weights=run.weights or {},
        items=[
            RunItemResponse(
                card_id=item.card_id,
                card_name=item.card_name,
                predicted_unit=item.predicted_unit,
                predicted_qty=item.predicted_qty,
                actual_unit=item.actual_unit,
                actual_qty=item.actual_qty,
                dominant_weight=item.dominant_weight,
                seller_id=item.seller_id,
                marketplace=item.marketplace,
                purchased_at=as_utc(item.purchased_at) if item.purchased_at else None,
            )
            for item in run.items
        ],
    )


# =============================================================================
# SCORING AND WEIGHTS
# =============================================================================


@router.post("/ips", response_model=ScoresResponse)
async def score_candidates(
    body: ScoreRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ScoresResponse:
    """Score purchase candidates, highest priority first."""
    async with transaction(session):
        scores = await autobuy_service.score_candidates(
            session, [IPSCandidate(**c.model_dump()) for c in body.candidates]
        )
    return ScoresResponse(
        scores=[
            ScoreResponse(
                card_id=s.card_id,
                card_name=s.card_name,
                score=s.score,
                dominant_weight=s.dominant_weight,
                attenuated=s.attenuated,
                factors=s.factors,
                contributions=s.contributions,
            )
            for s in scores
        ]
    )


@router.get("/weights", response_model=WeightsResponse)
async def get_weights(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> WeightsResponse:
    async with transaction(session):
        weights = await autobuy_service.current_weights(session)
    return WeightsResponse(weights=weights)


@router.put("/weights", response_model=WeightsResponse)
async def update_weights(
    body: WeightsRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> WeightsResponse:
    """
    Update some or all weights.

    substitution_attenuation must lie in (0, 1]; other weights must not be
    negative (422). Unknown names are rejected (400).
    """
    async with transaction(session):
        weights = await autobuy_service.update_weights(session, body.weights)
    return WeightsResponse(weights=weights)


# =============================================================================
# RUNS AND SALES
# =============================================================================


@router.post("/runs", response_model=RunResponse, status_code=status.HTTP_201_CREATED)
async def create_run(
    body: RunCreateRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RunResponse:
    async with transaction(session):
        run = await autobuy_service.record_run(
            session,
            [PlannedPurchase(**item.model_dump()) for item in body.items],
            body.weights,
        )
    return _run_response(run)


@router.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: int,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RunResponse:
    run = await autobuy_store.get_run(session, run_id)
    if run is None:
        raise NotFoundError("Autobuy run", run_id)
    return _run_response(run)


@router.post("/runs/{run_id}/actuals", response_model=RunResponse)
async def record_actuals(
    run_id: int,
    body: ActualsRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RunResponse:
    """Record what was bought; the run becomes purchased, partially_purchased or cancelled."""
    async with transaction(session):
        run = await autobuy_service.record_actuals(
            session, run_id, [PurchaseActual(**item.model_dump()) for item in body.items]
        )
    return _run_response(run)


@router.post("/sales", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def record_sale(
    body: SaleRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SaleResponse:
    async with transaction(session):
        sale = await autobuy_service.record_sale(
            session,
            card_id=body.card_id,
            quantity=body.quantity,
            unit_price=body.unit_price,
            sold_at=body.sold_at,
            card_name=body.card_name,
        )
    return SaleResponse(
        id=sale.id,
        card_id=sale.card_id,
        card_name=sale.card_name,
        quantity=sale.quantity,
        unit_price=sale.unit_price,
        sold_at=as_utc(sale.sold_at),
    )


# =============================================================================
# ANALYTICS
# =============================================================================


@router.get("/analytics/accuracy", response_model=AccuracyResponse)
async def get_accuracy(
    session: Annotated[AsyncSession, Depends(get_session)],
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> AccuracyResponse:
    """
    Prediction accuracy over completed runs of the last `days` days.

    avgPriceVariance is actual minus predicted: positive means more was paid
    than predicted.
    """
    metrics = await autobuy_service.accuracy_report(session, days)
    return AccuracyResponse(
        overall_accuracy=metrics.overall_accuracy,
        total_items=metrics.total_items,
        total_runs=metrics.total_runs,
        avg_price_variance=metrics.avg_price_variance,
        avg_price_variance_percent=metrics.avg_price_variance_percent,
        item_breakdown=[
            ItemVarianceResponse(
                card_id=v.card_id,
                card_name=v.card_name,
                predicted_total=v.predicted_total,
                actual_total=v.actual_total,
                variance_percent=v.variance_percent,
            )
            for v in metrics.item_breakdown
        ],
    )


@router.get("/analytics/suggestions", response_model=SuggestionsResponse)
async def get_suggestions(
    session: Annotated[AsyncSession, Depends(get_session)],
    days: Annotated[int, Query(ge=1, le=365)] = 90,
) -> SuggestionsResponse:
    async with transaction(session):
        suggestions = await autobuy_service.weight_suggestions(session, days)
    return SuggestionsResponse(
        suggestions=[
            SuggestionResponse(
                weight_name=s.weight_name,
                current_value=s.current_value,
                suggested_value=s.suggested_value,
                reason=s.reason,
                confidence=s.confidence,
                based_on_cards=s.based_on_cards,
                lift=s.lift,
            )
            for s in suggestions
        ]
    )


@router.get("/analytics/runs", response_model=RunsResponse)
async def get_recent_runs(
    session: Annotated[AsyncSession, Depends(get_session)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> RunsResponse:
    runs = await autobuy_service.recent_runs(session, limit)
    return RunsResponse(runs=[_run_response(run) for run in runs])


@router.get("/analytics/sell-through", response_model=SellThroughResponse)
async def get_sell_through(
    session: Annotated[AsyncSession, Depends(get_session)],
    days: Annotated[int, Query(ge=1, le=365)] = 30,
    card_id: str | None = None,
) -> SellThroughResponse:
    metrics = await autobuy_service.sell_through_report(session, days, card_id)
    return SellThroughResponse(
        sell_through_rate=metrics.sell_through_rate,
        total_sold=metrics.total_sold,
        total_purchased=metrics.total_purchased,
        avg_days_to_sell=metrics.avg_days_to_sell,
        card_id=metrics.card_id,
    )


@router.get("/analytics/profit/{card_id}", response_model=ProfitResponse)
async def get_card_profit(
    card_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ProfitResponse:
    """Purchase cost against sale revenue for one card. 404 if never bought."""
    metrics = await autobuy_service.card_profit_report(session, card_id)
    return ProfitResponse(
        card_id=metrics.card_id,
        card_name=metrics.card_name,
        total_purchase_cost=metrics.total_purchase_cost,
        total_sale_revenue=metrics.total_sale_revenue,
        total_profit=metrics.total_profit,
        profit_margin=metrics.profit_margin,
        quantity_purchased=metrics.quantity_purchased,
        quantity_sold=metrics.quantity_sold,
    )
