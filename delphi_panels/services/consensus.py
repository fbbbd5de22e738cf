"""
Consensus Calculator: aggregate agreement statistics for a round.

Every function here is pure. Callers load the round's feedback and the
panel size; nothing in this module touches the database.

Scoring (per round):
- sample      = every agreement level (-2..+2) on every feedback item
- sd term     = max(0, (1 - min(sd, 1)) * 100)
- average term = |mean| / 2 * 100
- direction term = share of the majority sign (positive / negative / zero)
- consensus   = round(0.4 * sd + 0.3 * average + 0.3 * direction), 0..100

A sample with no spread at all (every rating identical) is full consensus
and scores 100 regardless of which level was chosen.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any, Protocol


class HasAgreements(Protocol):
    expert_id: str
    agreements: Mapping[str, int]


SD_WEIGHT = 0.4
AVERAGE_WEIGHT = 0.3
DIRECTION_WEIGHT = 0.3

# Largest possible change between two ratings (-2 -> +2)
MAX_AGREEMENT_CHANGE = 4


@dataclass(frozen=True)
class ConsensusMetrics:
    """Aggregate statistics for one round."""

    consensus_level: int = 0
    participation_rate: int = 0
    agreement_score: float = 0.0
    standard_deviation: float = 0.0
    total_participants: int = 0
    total_feedback: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "consensusLevel": self.consensus_level,
            "participationRate": self.participation_rate,
            "agreementScore": self.agreement_score,
            "standardDeviation": self.standard_deviation,
            "totalParticipants": self.total_participants,
            "totalFeedback": self.total_feedback,
        }


@dataclass(frozen=True)
class TrendPoint:
    """Agreement on one feedback item in one round."""

    round_number: int
    average_agreement: float
    participant_count: int
    consensus_level: int


@dataclass(frozen=True)
class StabilityScore:
    """How much an expert's ratings moved between rounds (100 = not at all)."""

    average_change: float
    stability_score: int
    total_changes: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _mean(values: Sequence[int]) -> float:
    return sum(values) / len(values)


def population_sd(values: Sequence[int]) -> float:
    mean = _mean(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def sd_consensus(sd: float) -> float:
    return max(0.0, (1 - min(sd, 1.0)) * 100)


def direction_consensus(values: Sequence[int]) -> float:
    positive = sum(1 for v in values if v > 0)
    negative = sum(1 for v in values if v < 0)
    neutral = len(values) - positive - negative
    return max(positive, negative, neutral) / len(values) * 100


def flatten_agreements(feedback_items: Iterable[HasAgreements]) -> list[int]:
    sample: list[int] = []
    for item in feedback_items:
        sample.extend(int(level) for level in (item.agreements or {}).values())
    return sample


def calculate_consensus(
    feedback_items: Sequence[HasAgreements],
    panel_member_count: int,
) -> ConsensusMetrics:
    """Compute the consensus metrics for a round's feedback.

    Args:
        feedback_items: All feedback of one (topic, round).
        panel_member_count: Admins plus experts on the topic's panel.
    """
    total_feedback = len(feedback_items)
    if total_feedback == 0:
        return ConsensusMetrics()

    participants = {item.expert_id for item in feedback_items}
    sample = flatten_agreements(feedback_items)

    if not sample:
        # Nobody rated anything yet
        return ConsensusMetrics(
            total_participants=len(participants),
            total_feedback=total_feedback,
        )

    mean = _mean(sample)
    sd = population_sd(sample)

    if sd == 0:
        consensus_level = 100
    else:
        weighted = (
            SD_WEIGHT * sd_consensus(sd)
            + AVERAGE_WEIGHT * (abs(mean) / 2 * 100)
            + DIRECTION_WEIGHT * direction_consensus(sample)
        )
        consensus_level = int(_clamp(round(weighted), 0, 100))

    participation = len(participants) / max(1, panel_member_count) * 100

    return ConsensusMetrics(
        consensus_level=consensus_level,
        participation_rate=int(_clamp(round(participation), 0, 100)),
        agreement_score=_clamp(abs(mean) / 2, 0.0, 1.0),
        standard_deviation=sd,
        total_participants=len(participants),
        total_feedback=total_feedback,
    )


# =============================================================================
# VOTE CONTINUITY HELPERS
# =============================================================================


def agreement_trend_point(round_number: int, agreements: Mapping[str, int]) -> TrendPoint | None:
    """Summarize the ratings of a single feedback item, or None if unrated."""
    levels = [int(v) for v in agreements.values()]
    if not levels:
        return None

    return TrendPoint(
        round_number=round_number,
        average_agreement=round(_mean(levels), 2),
        participant_count=len(levels),
        consensus_level=round(sd_consensus(population_sd(levels))),
    )


def stability_score(changes: Sequence[int]) -> StabilityScore:
    """Score how stable an expert's ratings stayed across rounds."""
    if not changes:
        return StabilityScore(average_change=0.0, stability_score=100, total_changes=0)

    average_change = _mean([abs(c) for c in changes])
    score = max(0.0, (1 - average_change / MAX_AGREEMENT_CHANGE) * 100)

    return StabilityScore(
        average_change=round(average_change, 2),
        stability_score=round(score),
        total_changes=len(changes),
    )
