"""
Opportunity Scoring Engine.

Turns an account's order history and its matched segment profile into
persisted metrics, category gaps and a composite opportunity score.

Main components:
- Scorers: Normalise one signal (recency, frequency, monetary, mix) to 0-1
- Core: Order aggregation, profile matching, gap analysis, orchestration

Usage:
    from wallet_share.scoring_engine.core import OpportunityCalculator

    calculator = OpportunityCalculator(db, tenant_id, config)
    metrics, gaps = await calculator.recompute_account(account_id)
"""

__version__ = "1.0.0"
__all__ = ["scorers", "core"]
