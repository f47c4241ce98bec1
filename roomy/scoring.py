"""
Compatibility Scoring - Pairwise 0-100 scores
==============================================
Two named variants of one configurable rubric:

- RoommateScorer: student vs student (budget, room type, university,
  onboarding answers, boost-profile lifestyle traits)
- DormScorer: student vs dorm listing (budget proximity, university, area,
  room type, amenities)

All terms are ADDITIVE. A term whose inputs are missing on either side
contributes nothing; nothing here raises on sparse profiles.
"""

import math
from typing import Dict, List, Optional

from roomy.profile_schema import Profile, BoostProfile
from roomy.normalizers import QUESTION_SOCIAL, QUESTION_STUDY, QUESTION_AREA, contains_ci
from roomy import explanations


MAX_SCORE = 100


def finalize_score(total: float) -> int:
    """Round half-up and clamp to [0, 100]"""
    rounded = int(math.floor(total + 0.5))
    return max(0, min(MAX_SCORE, rounded))


def closeness(a: Optional[float], b: Optional[float], max_points: float, divisor: float) -> float:
    """max(0, max_points - |a - b| / divisor); 0 when either side is missing"""
    if a is None or b is None:
        return 0.0
    return max(0.0, max_points - abs(a - b) / divisor)


def same(a: Optional[str], b: Optional[str]) -> bool:
    """Exact equality where both sides carry a value"""
    return a is not None and b is not None and a == b


class CompatibilityScorer:
    """
    Base scorer. Subclasses define WEIGHTS and the per-term breakdown.

    Weights can be overridden per instance:
        scorer = RoommateScorer(weights={"university": 20})
    """

    variant = "base"
    WEIGHTS: Dict[str, float] = {}

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        unknown = set(weights or {}) - set(self.WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown {self.variant} rubric terms: {sorted(unknown)}")
        self.weights = {**self.WEIGHTS, **(weights or {})}

    def breakdown(self, requester: Profile, candidate: Profile) -> Dict[str, float]:
        raise NotImplementedError

    def score(self, requester: Profile, candidate: Profile) -> int:
        """Compatibility score in [0, 100]"""
        return finalize_score(sum(self.breakdown(requester, candidate).values()))

    def reasons(self, requester: Profile, candidate: Profile, score: int) -> List[str]:
        raise NotImplementedError


class RoommateScorer(CompatibilityScorer):
    """
    Student-to-student rubric.

    Budget (25) + room type (15) + university (10) + onboarding answers (20)
    + boost lifestyle bonus (30) = 100 for a perfect match.
    """

    variant = "roommate"

    WEIGHTS = {
        "budget": 25.0,                 # Minus 1 point per $50 of difference
        "room_type": 15.0,
        "university": 10.0,
        "personality_social": 10.0,     # Social vs quiet
        "personality_study": 5.0,       # Study alone vs with others
        "personality_area": 5.0,        # Preferred area/campus
        # Boost profile - only when BOTH sides opted in
        "wake_time": 5.0,
        "cleanliness": 5.0,
        "noise_tolerance": 5.0,
        "guest_policy": 3.0,
        "cooking_habits": 3.0,
        "social_energy": 4.0,
        "organization_style": 3.0,
        "temperature_preference": 2.0,
    }

    BUDGET_STEP = 50.0

    # Points lost per unit of difference on the 1-N sliders
    CLOSENESS_DIVISORS = {
        "cleanliness": 2.0,
        "noise_tolerance": 2.0,
        "social_energy": 2.5,
        "organization_style": 3.0,
    }

    PERSONALITY_QUESTIONS = {
        "personality_social": QUESTION_SOCIAL,
        "personality_study": QUESTION_STUDY,
        "personality_area": QUESTION_AREA,
    }

    BOOST_EQUALITY_TRAITS = ("wake_time", "guest_policy", "cooking_habits", "temperature_preference")

    def breakdown(self, requester: Profile, candidate: Profile) -> Dict[str, float]:
        w = self.weights
        terms: Dict[str, float] = {}

        # 1. Budget similarity
        terms["budget"] = closeness(requester.budget, candidate.budget, w["budget"], self.BUDGET_STEP)

        # 2. Exact matches
        terms["room_type"] = w["room_type"] if same(requester.room_type, candidate.room_type) else 0.0
        terms["university"] = w["university"] if same(requester.university, candidate.university) else 0.0

        # 3. Onboarding answers, compared by question key
        for term, question in self.PERSONALITY_QUESTIONS.items():
            mine = requester.personality_answers.get(question)
            theirs = candidate.personality_answers.get(question)
            terms[term] = w[term] if same(mine, theirs) else 0.0

        # 4. Boost bonus
        terms.update(self._boost_terms(requester.boost_profile, candidate.boost_profile))
        return terms

    def _boost_terms(self, mine: Optional[BoostProfile], theirs: Optional[BoostProfile]) -> Dict[str, float]:
        if mine is None or theirs is None:
            return {}
        w = self.weights
        terms = {}
        for trait in self.BOOST_EQUALITY_TRAITS:
            terms[trait] = w[trait] if same(getattr(mine, trait), getattr(theirs, trait)) else 0.0
        for trait, divisor in self.CLOSENESS_DIVISORS.items():
            terms[trait] = closeness(getattr(mine, trait), getattr(theirs, trait), w[trait], divisor)
        return terms

    def reasons(self, requester: Profile, candidate: Profile, score: int) -> List[str]:
        return explanations.roommate_reasons(requester, candidate, score)


class DormScorer(CompatibilityScorer):
    """
    Student-to-dorm rubric. The candidate's budget is the monthly price.

    Terms can sum past 100; the final score is clamped.
    """

    variant = "dorm"

    WEIGHTS = {
        "budget_close": 30.0,      # |price - budget| < $100
        "budget_within": 15.0,     # Further away but still affordable
        "university": 20.0,
        "area": 20.0,
        "room_type": 15.0,
        "amenity": 10.0,
    }

    CLOSE_BUDGET_DELTA = 100.0

    def breakdown(self, requester: Profile, dorm: Profile) -> Dict[str, float]:
        w = self.weights
        terms: Dict[str, float] = {}

        terms["budget"] = 0.0
        if requester.budget is not None and dorm.budget is not None:
            if abs(requester.budget - dorm.budget) < self.CLOSE_BUDGET_DELTA:
                terms["budget"] = w["budget_close"]
            elif dorm.budget <= requester.budget:
                terms["budget"] = w["budget_within"]

        terms["university"] = w["university"] if contains_ci(dorm.university, requester.university) else 0.0
        terms["area"] = w["area"] if contains_ci(dorm.area, requester.area) else 0.0
        terms["room_type"] = w["room_type"] if contains_ci(dorm.room_type, requester.room_type) else 0.0
        terms["amenity"] = w["amenity"] if explanations.matched_amenities(requester, dorm) else 0.0
        return terms

    def reasons(self, requester: Profile, dorm: Profile, score: int) -> List[str]:
        return explanations.dorm_reasons(requester, dorm, score)


# =============================================================================
# VARIANT REGISTRY
# =============================================================================

SCORERS = {
    RoommateScorer.variant: RoommateScorer,
    DormScorer.variant: DormScorer,
}


def get_scorer(variant: str, weights: Optional[Dict[str, float]] = None) -> CompatibilityScorer:
    """Build a scorer for a named rubric variant"""
    if variant not in SCORERS:
        raise ValueError(f"Unknown rubric variant '{variant}'. Available: {sorted(SCORERS)}")
    return SCORERS[variant](weights=weights)
