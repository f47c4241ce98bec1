"""
Ranking Service - Score, filter, sort, truncate
================================================
Pipeline for one ranking request:

1. Score EVERY candidate against the requester (filters never see scores)
2. Apply all active filters as a conjunction on raw attributes
3. Stable sort by score descending - ties keep their input order
4. Truncate to top-N

An empty requester scores every candidate 0, so the output is the filtered
input in its original order. That is expected, not an error.
"""

import time
import logging
from typing import Callable, Dict, List, Optional, Sequence

from roomy.config import get_config
from roomy.profile_schema import Profile, FilterSpec, ScoredCandidate, RankingResponse
from roomy.scoring import CompatibilityScorer, get_scorer

# Logging
logger = logging.getLogger(__name__)


# =============================================================================
# FILTER PREDICATES
# =============================================================================

def _budget_in_range(candidate: Profile, spec: FilterSpec) -> bool:
    # A candidate without a budget cannot satisfy an active range
    if candidate.budget is None:
        return False
    if spec.budget_min is not None and candidate.budget < spec.budget_min:
        return False
    if spec.budget_max is not None and candidate.budget > spec.budget_max:
        return False
    return True


def _name_contains(candidate: Profile, spec: FilterSpec) -> bool:
    return bool(candidate.full_name) and spec.name.lower() in candidate.full_name.lower()


FILTER_PREDICATES: Dict[str, Callable[[Profile, FilterSpec], bool]] = {
    "budget": _budget_in_range,
    "university": lambda c, spec: c.university == spec.university,
    "room_type": lambda c, spec: c.room_type == spec.room_type,
    "personality": lambda c, spec: c.personality == spec.personality,
    "name": _name_contains,
}


def passes_filters(candidate: Profile, spec: FilterSpec) -> bool:
    """True when the candidate satisfies every active filter"""
    return all(FILTER_PREDICATES[name](candidate, spec) for name in spec.active_filters())


# =============================================================================
# RANKING SERVICE
# =============================================================================

class RankingService:
    """
    Ranks candidates for one requester with a named rubric variant.

    Usage:
        service = RankingService("roommate")
        top = service.rank(me, others, FilterSpec(university="AUB"))
    """

    def __init__(self, variant: str = "roommate", scorer: Optional[CompatibilityScorer] = None):
        self.scorer = scorer or get_scorer(variant)
        self.variant = self.scorer.variant

    def default_limit(self) -> int:
        config = get_config()
        return config.dorm_top_n if self.variant == "dorm" else config.roommate_top_n

    def score_all(self, requester: Profile, candidates: Sequence[Profile]) -> List[ScoredCandidate]:
        """Score and explain every candidate, preserving input order"""
        scored = []
        for candidate in candidates:
            score = self.scorer.score(requester, candidate)
            reasons = self.scorer.reasons(requester, candidate, score)
            scored.append(ScoredCandidate(candidate=candidate, score=score, reasons=reasons))
        return scored

    def rank(
        self,
        requester: Profile,
        candidates: Sequence[Profile],
        filters: Optional[FilterSpec] = None,
        limit: Optional[int] = None
    ) -> List[ScoredCandidate]:
        """
        Rank candidates for the requester.

        Args:
            requester: Profile of the user asking
            candidates: Raw candidate profiles (already fetched)
            filters: Hard filters; None means no filtering
            limit: Top-N; defaults to the variant's configured N

        Returns:
            Up to `limit` ScoredCandidate, best first
        """
        filters = filters or FilterSpec()
        limit = limit if limit is not None else self.default_limit()

        scored = self.score_all(requester, candidates)
        kept = [s for s in scored if passes_filters(s.candidate, filters)]

        # sorted() is stable: equal scores keep their input order
        ranked = sorted(kept, key=lambda s: s.score, reverse=True)[:limit]

        logger.info(
            f"Ranked {len(candidates)} {self.variant} candidates: "
            f"{len(kept)} passed filters {filters.active_filters()}, returning {len(ranked)}"
        )
        return ranked

    def rank_response(
        self,
        requester: Profile,
        candidates: Sequence[Profile],
        filters: Optional[FilterSpec] = None,
        limit: Optional[int] = None
    ) -> RankingResponse:
        """rank() wrapped with timing metadata for the HTTP layer"""
        start = time.time()
        results = self.rank(requester, candidates, filters, limit)
        return RankingResponse(
            variant=self.variant,
            total_candidates=len(candidates),
            returned=len(results),
            took_ms=int((time.time() - start) * 1000),
            results=results,
        )


def rank_candidates(
    requester: Profile,
    candidates: Sequence[Profile],
    filters: Optional[FilterSpec] = None,
    limit: Optional[int] = None,
    variant: str = "roommate"
) -> List[ScoredCandidate]:
    """Convenience function to rank with a fresh service"""
    return RankingService(variant).rank(requester, candidates, filters, limit)
