"""
Gap analysis: compare an account's actual category mix to its profile.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID


@dataclass(frozen=True)
class ProfileTarget:
    """One category expectation of a matched profile."""
    category_id: UUID
    expected_pct: float
    importance: float = 1.0
    is_required: bool = False


@dataclass(frozen=True)
class GapRow:
    category_id: UUID
    expected_pct: float
    actual_pct: float
    gap_pct: float
    estimated_opportunity: float
    importance: float
    is_required: bool
    is_missing_required: bool


@dataclass
class GapAnalysis:
    """Result of comparing one account against one profile."""
    gaps: List[GapRow] = field(default_factory=list)
    penetration: Optional[float] = None
    gap_score: Optional[float] = None
    missing_required_count: int = 0
    # (fill_ratio, weight) per profile category, consumed by MixScorer
    mix_pairs: List[Tuple[float, float]] = field(default_factory=list)


def category_weight(target: ProfileTarget, required_multiplier: float) -> float:
    weight = float(target.importance)
    if target.is_required:
        weight *= required_multiplier
    return weight


def compute_gaps(
    targets: Sequence[ProfileTarget],
    distribution: Dict[UUID, float],
    purchased: Dict[UUID, float],
    last_12m_revenue: float,
    required_multiplier: float = 1.5
) -> GapAnalysis:
    """
    Compute per-category gaps and the profile-level aggregates.

    Only under-purchasing is a gap. A category bought above target yields
    no row, and rows are emitted only for a strictly positive gap.

    Args:
        targets: Profile categories
        distribution: Actual category share of revenue (percent)
        purchased: Category revenue in the window (used for penetration)
        last_12m_revenue: Account revenue base for dollar opportunity
        required_multiplier: Weight boost for required categories

    Returns:
        GapAnalysis
    """
    analysis = GapAnalysis()
    if not targets:
        return analysis

    weighted_gap = 0.0
    weighted_expected = 0.0
    purchased_count = 0

    for target in targets:
        expected = round(float(target.expected_pct), 2)
        actual = round(float(distribution.get(target.category_id, 0.0)), 2)
        bought = purchased.get(target.category_id, 0.0) > 0
        weight = category_weight(target, required_multiplier)

        if bought:
            purchased_count += 1

        gap = round(max(0.0, expected - actual), 2)

        weighted_gap += weight * gap
        weighted_expected += weight * expected

        fill = 1.0 if expected <= 0 else min(actual / expected, 1.0)
        analysis.mix_pairs.append((fill, weight))

        missing_required = bool(target.is_required) and not bought
        if missing_required:
            analysis.missing_required_count += 1

        if gap <= 0:
            continue

        analysis.gaps.append(GapRow(
            category_id=target.category_id,
            expected_pct=expected,
            actual_pct=actual,
            gap_pct=gap,
            estimated_opportunity=round(last_12m_revenue * gap / 100.0, 2),
            importance=float(target.importance),
            is_required=bool(target.is_required),
            is_missing_required=missing_required,
        ))

    analysis.penetration = round(purchased_count / len(targets) * 100.0, 2)
    analysis.gap_score = (
        round(weighted_gap / weighted_expected * 100.0, 2)
        if weighted_expected > 0
        else 0.0
    )

    return analysis
