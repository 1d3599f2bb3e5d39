"""
Mix scoring: how much of the ideal category mix the account already buys.
"""
from typing import Any, Iterable, Tuple
from .base import BaseScorer


class MixScorer(BaseScorer):
    """
    Weighted fill ratio over the matched profile's categories.
    
    The value is an iterable of ``(fill_ratio, weight)`` pairs, where
    fill_ratio is ``min(actual / expected, 1)`` and weight is the category
    importance (boosted for required categories). A gap in a heavy
    category therefore costs more than the same gap in a light one.
    """
    
    def calculate_score(self, value: Any) -> float:
        pairs: Iterable[Tuple[float, float]] = value or []
        
        total_weight = 0.0
        weighted_fill = 0.0
        for fill, weight in pairs:
            total_weight += weight
            weighted_fill += max(0.0, min(1.0, fill)) * weight
        
        if total_weight <= 0:
            return 0.0
        
        return weighted_fill / total_weight
