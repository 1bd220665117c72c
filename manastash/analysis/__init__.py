from manastash.analysis.autobuy_metrics import (
    compute_accuracy,
    compute_card_profit,
    compute_sell_through,
    suggest_weight_adjustments,
)
from manastash.analysis.ips import rank_scores, score_candidate, validate_weights

__all__ = [
    "compute_accuracy",
    "compute_card_profit",
    "compute_sell_through",
    "rank_scores",
    "score_candidate",
    "suggest_weight_adjustments",
    "validate_weights",
]
