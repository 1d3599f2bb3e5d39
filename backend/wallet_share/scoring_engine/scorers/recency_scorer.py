"""
Recency scoring: days since the last order, inverted.
"""
from typing import Any
from .base import BaseScorer


class RecencyScorer(BaseScorer):
    """
    Linear decay from 1.0 (ordered today) to 0.0 at the horizon.
    
    Config format:
    {
        "horizon_days": 365
    }
    """
    
    def calculate_score(self, value: Any) -> float:
        if value is None:
            return 0.0
        
        try:
            days = float(value)
        except (ValueError, TypeError):
            return 0.0
        
        horizon = float(self.config.get("horizon_days", 365))
        if horizon <= 0:
            return 0.0
        
        return max(0.0, min(1.0, 1.0 - days / horizon))
