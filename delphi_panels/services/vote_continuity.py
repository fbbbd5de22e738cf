"""
Vote continuity: how an expert's ratings carry across rounds.

Feedback items belong to a single round. An item refined in a later round
points at its predecessor through ``parent_id``, so "the same item across
rounds" is the chain an item forms with its parent ancestors.
"""

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFound
from ..models import Feedback
from .consensus import StabilityScore, TrendPoint, agreement_trend_point, stability_score

logger = logging.getLogger(__name__)


class VoteContinuityService:
    """Read-only queries over agreement history."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def previous_round_agreements(
        self,
        topic_id: str,
        current_round: int,
        expert_id: str,
    ) -> dict[str, int]:
        """The expert's ratings from the round before ``current_round``, by feedback id."""
        previous_round = current_round - 1
        if previous_round < 1:
            return {}

        agreements: dict[str, int] = {}
        for feedback in await self._round_feedback(topic_id, previous_round):
            level = (feedback.agreements or {}).get(expert_id)
            if level is not None:
                agreements[feedback.id] = int(level)
        return agreements

    async def feedback_agreement_trend(
        self,
        feedback_id: str,
        max_rounds: int = 5,
    ) -> list[TrendPoint]:
        """One trend point per round along the item's refinement chain, oldest first."""
        feedback = await self._session.get(Feedback, feedback_id)
        if feedback is None:
            raise NotFound(f"Feedback {feedback_id} not found")

        chain: list[Feedback] = []
        seen: set[str] = set()
        node: Feedback | None = feedback
        while node is not None and node.id not in seen and len(chain) < max_rounds:
            seen.add(node.id)
            chain.append(node)
            node = await self._session.get(Feedback, node.parent_id) if node.parent_id else None

        points = [
            point
            for item in reversed(chain)
            if (point := agreement_trend_point(item.round_number, item.agreements or {})) is not None
        ]
        return points

    async def expert_stability(
        self,
        topic_id: str,
        expert_id: str,
        current_round: int,
    ) -> StabilityScore:
        """Stability of an expert's ratings between refined items and their predecessors."""
        changes: list[int] = []

        for round_number in range(2, current_round + 1):
            for item in await self._round_feedback(topic_id, round_number):
                level = (item.agreements or {}).get(expert_id)
                if level is None or not item.parent_id:
                    continue
                parent = await self._session.get(Feedback, item.parent_id)
                if parent is None or parent.round_number >= item.round_number:
                    continue
                previous = (parent.agreements or {}).get(expert_id)
                if previous is not None:
                    changes.append(int(level) - int(previous))

        return stability_score(changes)

    async def _round_feedback(self, topic_id: str, round_number: int) -> Sequence[Feedback]:
        result = await self._session.execute(
            select(Feedback).where(
                Feedback.topic_id == topic_id,
                Feedback.round_number == round_number,
            )
        )
        return result.scalars().all()
