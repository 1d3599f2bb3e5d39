"""
Opportunity engine core components.
"""
from .aggregator import MetricsAggregator, TenantReference, aggregate_history
from .gap_calculator import ProfileTarget, GapRow, GapAnalysis, compute_gaps
from .matcher import ProfileMatcher
from .calculator import OpportunityCalculator


__all__ = [
    "MetricsAggregator",
    "TenantReference",
    "aggregate_history",
    "ProfileTarget",
    "GapRow",
    "GapAnalysis",
    "compute_gaps",
    "ProfileMatcher",
    "OpportunityCalculator",
]
