"""
Frequency scoring: order count scaled against a tenant-wide reference.
"""
from typing import Any
from .base import BaseScorer


class FrequencyScorer(BaseScorer):
    """
    Config format:
    {
        "reference_count": 24   # e.g. 90th percentile of order counts in the tenant
    }
    """
    
    def calculate_score(self, value: Any) -> float:
        if not value:
            return 0.0
        
        reference = float(self.config.get("reference_count") or 0)
        if reference <= 0:
            return 0.0
        
        return min(1.0, float(value) / reference)
