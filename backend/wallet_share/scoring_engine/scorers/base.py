"""
Base scorer interface for opportunity signals.

A scorer maps one raw account signal (days since last order, order count,
trailing revenue, category mix) onto [0, 1]. The calculator persists
sub-scores on the 0-100 scale via ``score_percent``.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class BaseScorer(ABC):
    """Abstract base for all signal scorers."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @abstractmethod
    def calculate_score(self, value: Any) -> float:
        """
        Score a raw signal.

        Returns:
            Score between 0.0 and 1.0 (missing or unusable input scores 0.0)
        """

    def score_percent(self, value: Any) -> float:
        """Score on the 0-100 scale, rounded to 2 decimals."""
        score = max(0.0, min(1.0, self.calculate_score(value)))
        return round(score * 100, 2)
