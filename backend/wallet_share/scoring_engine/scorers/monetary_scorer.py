"""
Monetary scoring: percentile rank of trailing revenue within the tenant.
"""
from bisect import bisect_right
from typing import Any
from .base import BaseScorer


class MonetaryScorer(BaseScorer):
    """
    Config format:
    {
        "distribution": [1200.0, 5400.0, ...]   # sorted positive revenues of the tenant
    }
    """
    
    def calculate_score(self, value: Any) -> float:
        if value is None:
            return 0.0
        
        try:
            revenue = float(value)
        except (ValueError, TypeError):
            return 0.0
        
        if revenue <= 0:
            return 0.0
        
        distribution = self.config.get("distribution") or []
        if not distribution:
            return 1.0
        
        # Share of tenant accounts at or below this revenue
        return bisect_right(distribution, revenue) / len(distribution)
