# tests/engine/test_scorers.py
"""
Tests for the signal scorers and the composite score.

Run with: pytest tests/engine/test_scorers.py -v
"""

import pytest
from uuid import uuid4

from wallet_share.schemas.settings import EngineConfig
from wallet_share.scoring_engine.core.aggregator import AccountAggregate, TenantReference
from wallet_share.scoring_engine.core.calculator import OpportunityCalculator
from wallet_share.scoring_engine.core.gap_calculator import GapAnalysis
from wallet_share.scoring_engine.scorers import (
    FrequencyScorer, MixScorer, MonetaryScorer, RecencyScorer, get_scorer
)


# ============================================================================
# TEST: Individual scorers
# ============================================================================

class TestRecencyScorer:

    def test_linear_decay(self):
        scorer = RecencyScorer({"horizon_days": 365})
        assert scorer.calculate_score(0) == 1.0
        assert scorer.calculate_score(182.5) == pytest.approx(0.5)
        assert scorer.calculate_score(400) == 0.0

    def test_no_orders(self):
        assert RecencyScorer({"horizon_days": 365}).calculate_score(None) == 0.0


class TestFrequencyScorer:

    def test_scaled_to_reference(self):
        scorer = FrequencyScorer({"reference_count": 10})
        assert scorer.calculate_score(5) == 0.5
        assert scorer.calculate_score(20) == 1.0

    def test_zero_reference(self):
        assert FrequencyScorer({"reference_count": 0}).calculate_score(5) == 0.0


class TestMonetaryScorer:

    def test_percentile_rank(self):
        scorer = MonetaryScorer({"distribution": [100.0, 200.0, 300.0, 400.0]})
        assert scorer.calculate_score(300.0) == 0.75
        assert scorer.calculate_score(50.0) == 0.0

    def test_zero_revenue(self):
        assert MonetaryScorer({"distribution": [100.0]}).calculate_score(0) == 0.0

    def test_empty_distribution(self):
        assert MonetaryScorer({"distribution": []}).calculate_score(100.0) == 1.0


class TestMixScorer:

    def test_weighted_fill(self):
        scorer = MixScorer({})
        assert scorer.calculate_score([(1.0, 1.0), (0.0, 1.0)]) == 0.5
        assert scorer.calculate_score([(1.0, 3.0), (0.0, 1.0)]) == 0.75

    def test_no_pairs(self):
        assert MixScorer({}).calculate_score([]) == 0.0

    def test_percent_scale(self):
        assert MixScorer({}).score_percent([(1.0, 2.0), (0.0, 1.0)]) == 66.67


class TestScorerRegistry:

    def test_get_scorer(self):
        assert isinstance(get_scorer("recency", {}), RecencyScorer)

    def test_unknown_scorer(self):
        with pytest.raises(ValueError, match="Unknown scorer type"):
            get_scorer("velocity", {})


# ============================================================================
# TEST: Composite score
# ============================================================================

@pytest.fixture
def calculator():
    return OpportunityCalculator(None, uuid4(), EngineConfig())


@pytest.fixture
def reference():
    return TenantReference(
        order_counts=[1, 2, 3, 4, 5, 6, 7, 8, 10, 10],
        revenues=[1000.0, 2000.0, 4000.0, 8000.0]
    )


class TestCompositeScore:

    def test_zero_revenue_clamps_to_zero(self, calculator, reference):
        analysis = GapAnalysis(mix_pairs=[(0.0, 1.0)])
        scores = calculator.score_signals(AccountAggregate(), analysis, reference)

        assert scores == {
            "recency_score": 0.0,
            "frequency_score": 0.0,
            "monetary_score": 0.0,
            "mix_score": 0.0,
            "opportunity_score": 0.0,
        }

    def test_no_profile_leaves_mix_and_composite_undefined(self, calculator, reference):
        aggregate = AccountAggregate(last_12m_revenue=4000.0, order_count_12m=5, days_since_last_order=73)
        scores = calculator.score_signals(aggregate, None, reference)

        assert scores["recency_score"] == 80.0
        assert scores["mix_score"] is None
        assert scores["opportunity_score"] is None

    def test_empty_profile_is_undefined(self, calculator, reference):
        aggregate = AccountAggregate(last_12m_revenue=4000.0, order_count_12m=5, days_since_last_order=73)
        scores = calculator.score_signals(aggregate, GapAnalysis(), reference)

        assert scores["opportunity_score"] is None

    def test_weighted_average(self, calculator, reference):
        aggregate = AccountAggregate(last_12m_revenue=4000.0, order_count_12m=4, days_since_last_order=73)
        analysis = GapAnalysis(mix_pairs=[(1.0, 1.0), (0.0, 1.0)])

        scores = calculator.score_signals(aggregate, analysis, reference)

        # nearest-rank 90th percentile of the order counts is 10
        assert scores["recency_score"] == 80.0
        assert scores["frequency_score"] == 40.0
        assert scores["monetary_score"] == 75.0
        assert scores["mix_score"] == 50.0
        assert scores["opportunity_score"] == pytest.approx(
            (80.0 * 20 + 40.0 * 20 + 75.0 * 30 + 50.0 * 30) / 100, abs=0.01
        )

    def test_custom_weights(self, reference):
        config = EngineConfig(recency_weight=0, frequency_weight=0, monetary_weight=0, mix_weight=100)
        calculator = OpportunityCalculator(None, uuid4(), config)
        aggregate = AccountAggregate(last_12m_revenue=4000.0, order_count_12m=4, days_since_last_order=10)

        scores = calculator.score_signals(aggregate, GapAnalysis(mix_pairs=[(0.25, 1.0)]), reference)

        assert scores["opportunity_score"] == 25.0


class TestEngineConfig:

    def test_weights_must_sum_to_100(self):
        with pytest.raises(ValueError, match="must sum to 100"):
            EngineConfig(recency_weight=50)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig.model_validate({"recency_weigth": 20})
