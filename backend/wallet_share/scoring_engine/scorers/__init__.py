"""
Signal scorers for the opportunity score.

Each signal of the composite (recency, frequency, monetary, mix) has one
scorer class; the calculator builds them by name with per-tenant
parameters.
"""
from typing import Any, Dict, Optional

from .base import BaseScorer
from .recency_scorer import RecencyScorer
from .frequency_scorer import FrequencyScorer
from .monetary_scorer import MonetaryScorer
from .mix_scorer import MixScorer

SCORER_REGISTRY = {
    "recency": RecencyScorer,
    "frequency": FrequencyScorer,
    "monetary": MonetaryScorer,
    "mix": MixScorer,
}


def get_scorer(signal: str, config: Optional[Dict[str, Any]] = None) -> BaseScorer:
    """
    Build the scorer for one signal.

    Raises:
        ValueError: Unknown signal name
    """
    scorer_class = SCORER_REGISTRY.get(signal)
    if not scorer_class:
        raise ValueError(
            f"Unknown scorer type: {signal}. "
            f"Available: {list(SCORER_REGISTRY.keys())}"
        )
    return scorer_class(config or {})
