"""
Autobuy domain values.

Runs and their items as seen by the analytics, the IPS weight set, and the
aggregate metric shapes returned to the dashboard.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal


class RunStatus(str, Enum):
    """Lifecycle of an autobuy run."""

    PENDING = "pending"
    PURCHASED = "purchased"
    PARTIALLY_PURCHASED = "partially_purchased"
    CANCELLED = "cancelled"


COMPLETED_STATUSES = frozenset({RunStatus.PURCHASED, RunStatus.PARTIALLY_PURCHASED})

# Weight names, in the order they are reported.
PRICE_DELTA = "price_delta"
DEMAND_PRESSURE = "demand_pressure"
RECENCY = "recency"
STOCK_HEADROOM = "stock_headroom"
SUBSTITUTION_ATTENUATION = "substitution_attenuation"

# Factors that contribute to the weighted IPS sum. The attenuation weight
# scales demand_pressure instead of contributing on its own.
SCORING_FACTORS = (PRICE_DELTA, DEMAND_PRESSURE, RECENCY, STOCK_HEADROOM)

DEFAULT_IPS_WEIGHTS: dict[str, float] = {
    PRICE_DELTA: 0.35,
    DEMAND_PRESSURE: 0.35,
    RECENCY: 0.1,
    STOCK_HEADROOM: 0.2,
    SUBSTITUTION_ATTENUATION: 0.5,
}


@dataclass
class RunItemSnapshot:
    """
    One predicted purchase and, once recorded, what actually happened.

    actual_qty == 0 means the item was not bought.
    """

    card_id: str
    predicted_unit: float
    predicted_qty: int
    card_name: str | None = None
    actual_unit: float | None = None
    actual_qty: int | None = None
    dominant_weight: str | None = None
    purchased_at: datetime | None = None

    @property
    def predicted_total(self) -> float:
        return self.predicted_unit * self.predicted_qty

    @property
    def actual_total(self) -> float | None:
        if self.actual_unit is None or self.actual_qty is None:
            return None
        return self.actual_unit * self.actual_qty

    @property
    def was_purchased(self) -> bool:
        return self.actual_unit is not None and (self.actual_qty or 0) > 0

    @property
    def variance(self) -> float | None:
        actual = self.actual_total
        if actual is None or not self.was_purchased:
            return None
        return actual - self.predicted_total

    @property
    def variance_pct(self) -> float | None:
        variance = self.variance
        if variance is None:
            return None
        if self.predicted_total <= 0:
            return 0.0
        return variance / self.predicted_total


@dataclass
class RunSnapshot:
    """An autobuy run with its items."""

    id: int
    created_at: datetime
    status: RunStatus
    items: list[RunItemSnapshot] = field(default_factory=list)
    predicted_total: float = 0.0
    actual_total: float | None = None


@dataclass
class SaleEvent:
    """A sale of copies of a card, from the sales feed."""

    card_id: str
    quantity: int
    unit_price: float
    sold_at: datetime
    card_name: str | None = None


@dataclass
class ItemVariance:
    """Per-card prediction accuracy."""

    card_id: str
    card_name: str | None
    predicted_total: float
    actual_total: float
    variance_percent: float


@dataclass
class AccuracyMetrics:
    """Prediction vs actual over a window of runs."""

    overall_accuracy: float
    avg_price_variance: float
    avg_price_variance_percent: float
    total_runs: int
    total_items: int
    item_breakdown: list[ItemVariance] = field(default_factory=list)


@dataclass
class SellThroughMetrics:
    """How many purchased copies went on to sell."""

    sell_through_rate: float
    total_sold: int
    total_purchased: int
    avg_days_to_sell: float
    card_id: str | None = None


@dataclass
class CardProfitMetrics:
    """Purchase cost vs sale revenue for one card."""

    card_id: str
    card_name: str | None
    total_purchase_cost: float
    total_sale_revenue: float
    total_profit: float
    profit_margin: float
    quantity_purchased: int
    quantity_sold: int


Confidence = Literal["low", "medium", "high"]


@dataclass
class WeightAdjustment:
    """A suggested change to one IPS weight."""

    weight_name: str
    current_value: float
    suggested_value: float
    reason: str
    confidence: Confidence
    based_on_cards: int
    lift: float


@dataclass
class IPSCandidate:
    """
    A card being considered for purchase, with caller-observed prices.

    Attributes:
        card_id: Scryfall id
        market_price: Observed best buy price
        reference_price: Observed sell-side anchor price
        deck_demand: Copies wanted by deck templates and instances
        recent_sales: Copies sold over the recent period
        days_since_last_purchase: None if never bought
        in_stock: Unreserved copies on hand (None = look up in inventory)
        target_stock: Desired copies on hand
    """

    card_id: str
    market_price: float
    reference_price: float
    card_name: str | None = None
    deck_demand: int = 0
    recent_sales: float = 0.0
    days_since_last_purchase: int | None = None
    in_stock: int | None = None
    target_stock: int = 4


@dataclass
class IPSScore:
    """Scored candidate with its per-factor breakdown."""

    card_id: str
    card_name: str | None
    score: float
    factors: dict[str, float]
    contributions: dict[str, float]
    dominant_weight: str
    attenuated: bool = False
