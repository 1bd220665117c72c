"""
Item Priority Score (IPS).

A weighted sum over four factors, each normalized to [0, 1]:

    price_delta      how far the observed buy price sits below the sell anchor
    demand_pressure  copies wanted by decks plus recent sales
    recency          time since the card was last bought
    stock_headroom   how far unreserved stock is below target

When another member of the card's substitution group is in stock, the
demand_pressure factor is multiplied by substitution_attenuation (beta).
Prices are observed values supplied by the caller.
"""

from manastash.models.autobuy import (
    DEMAND_PRESSURE,
    PRICE_DELTA,
    RECENCY,
    SCORING_FACTORS,
    STOCK_HEADROOM,
    SUBSTITUTION_ATTENUATION,
    IPSCandidate,
    IPSScore,
)
from manastash.models.failure import InvalidInputError, ValidationFailedError

# Demand (deck copies + recent sales) at which the factor saturates
DEMAND_SATURATION = 10.0

# Days without a purchase after which recency saturates
RECENCY_HORIZON_DAYS = 30.0


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def price_delta_factor(candidate: IPSCandidate) -> float:
    """(reference - market) / reference, clamped. Zero without a reference price."""
    if candidate.reference_price <= 0:
        return 0.0
    return _clamp((candidate.reference_price - candidate.market_price) / candidate.reference_price)


def demand_pressure_factor(candidate: IPSCandidate) -> float:
    return _clamp((candidate.deck_demand + candidate.recent_sales) / DEMAND_SATURATION)


def recency_factor(candidate: IPSCandidate) -> float:
    """1.0 for cards never bought, rising linearly to 1.0 over the horizon otherwise."""
    if candidate.days_since_last_purchase is None:
        return 1.0
    return _clamp(candidate.days_since_last_purchase / RECENCY_HORIZON_DAYS)


def stock_headroom_factor(in_stock: int, target_stock: int) -> float:
    if target_stock <= 0:
        return 0.0
    return _clamp((target_stock - in_stock) / target_stock)


def validate_weights(weights: dict[str, float]) -> dict[str, float]:
    """
    Check a weight set.

    Raises:
        InvalidInputError: Unknown weight name.
        ValidationFailedError: beta outside (0, 1] or a negative factor weight.
    """
    known = {*SCORING_FACTORS, SUBSTITUTION_ATTENUATION}
    unknown = set(weights) - known
    if unknown:
        raise InvalidInputError(f"Unknown weights: {', '.join(sorted(unknown))}")

    for name, value in weights.items():
        if name == SUBSTITUTION_ATTENUATION:
            if not 0 < value <= 1:
                raise ValidationFailedError(
                    f"{SUBSTITUTION_ATTENUATION} must be in (0, 1], got {value}"
                )
        elif value < 0:
            raise ValidationFailedError(f"Weight {name} must not be negative, got {value}")
    return dict(weights)


def score_candidate(
    candidate: IPSCandidate,
    weights: dict[str, float],
    in_stock: int,
    substitute_in_stock: bool = False,
) -> IPSScore:
    """
    Score one candidate.

    The dominant weight is the factor with the largest weighted contribution.
    When beta removed more demand than any factor contributes, the
    attenuation itself is reported as dominant.
    """
    beta = weights[SUBSTITUTION_ATTENUATION] if substitute_in_stock else 1.0

    factors = {
        PRICE_DELTA: price_delta_factor(candidate),
        DEMAND_PRESSURE: demand_pressure_factor(candidate) * beta,
        RECENCY: recency_factor(candidate),
        STOCK_HEADROOM: stock_headroom_factor(in_stock, candidate.target_stock),
    }
    contributions = {name: weights[name] * factors[name] for name in SCORING_FACTORS}

    # max() keeps the first of equal contributions, in SCORING_FACTORS order
    dominant = max(SCORING_FACTORS, key=lambda name: contributions[name])
    if substitute_in_stock and beta < 1.0:
        removed = weights[DEMAND_PRESSURE] * demand_pressure_factor(candidate) * (1.0 - beta)
        if removed > contributions[dominant]:
            dominant = SUBSTITUTION_ATTENUATION

    return IPSScore(
        card_id=candidate.card_id,
        card_name=candidate.card_name,
        score=round(sum(contributions.values()), 6),
        factors=factors,
        contributions=contributions,
        dominant_weight=dominant,
        attenuated=substitute_in_stock,
    )


def rank_scores(scores: list[IPSScore]) -> list[IPSScore]:
    """Highest score first; ties by card id."""
    return sorted(scores, key=lambda s: (-s.score, s.card_id))
