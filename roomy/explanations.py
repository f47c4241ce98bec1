"""
Match explanations - up to 3 human-readable reasons per scored candidate.

Reasons come from the same comparisons the scorers use, in a fixed order:
budget first, then room type / university (or location for dorms), then
personality or amenities, then the high-score call-out. The list is always
truncated to the first MAX_REASONS.
"""

from typing import List

from roomy.profile_schema import Profile
from roomy.normalizers import QUESTION_SOCIAL, contains_ci

MAX_REASONS = 3
EXCELLENT_THRESHOLD = 80

VERY_SIMILAR_BUDGET_DELTA = 100
COMPATIBLE_BUDGET_DELTA = 200

DORM_FILLER_REASONS = ["Verified listing", "Great location"]


def matched_amenities(requester: Profile, dorm: Profile) -> List[str]:
    """Dorm amenities that satisfy any amenity the requester asked for"""
    return [
        amenity for amenity in dorm.amenities
        if any(contains_ci(amenity, wanted) for wanted in requester.amenities)
    ]


def roommate_reasons(requester: Profile, candidate: Profile, score: int) -> List[str]:
    reasons: List[str] = []

    if requester.budget is not None and candidate.budget is not None:
        budget_diff = abs(requester.budget - candidate.budget)
        if budget_diff < VERY_SIMILAR_BUDGET_DELTA:
            reasons.append("Very similar budget")
        elif budget_diff < COMPATIBLE_BUDGET_DELTA:
            reasons.append("Compatible budget range")

    if candidate.room_type and requester.room_type == candidate.room_type:
        reasons.append(f"Both prefer {candidate.room_type}")

    if candidate.university and requester.university == candidate.university:
        reasons.append(f"Same university: {candidate.university}")

    mine = requester.personality_answers.get(QUESTION_SOCIAL)
    if mine and mine == candidate.personality_answers.get(QUESTION_SOCIAL):
        reasons.append(f"Both {mine.lower()}")

    if score >= EXCELLENT_THRESHOLD:
        reasons.append("Excellent compatibility!")

    return reasons[:MAX_REASONS]


def dorm_reasons(requester: Profile, dorm: Profile, score: int) -> List[str]:
    """Dorm variant; falls back to filler reasons when nothing matched"""
    reasons: List[str] = []

    if requester.budget is not None and dorm.budget is not None:
        if abs(requester.budget - dorm.budget) < VERY_SIMILAR_BUDGET_DELTA:
            reasons.append(f"Close to your budget at ${dorm.budget:.0f}/month")
        elif dorm.budget <= requester.budget:
            reasons.append(f"Within your ${requester.budget:.0f}/month budget")

    if contains_ci(dorm.university, requester.university):
        reasons.append(f"Near {requester.university}")

    if contains_ci(dorm.area, requester.area):
        reasons.append(f"Located in your preferred area: {dorm.area}")

    if contains_ci(dorm.room_type, requester.room_type):
        reasons.append(f"Offers {requester.room_type} rooms")

    amenities = matched_amenities(requester, dorm)
    if amenities:
        reasons.append(f"Includes {' & '.join(amenities[:2])}")

    if score >= EXCELLENT_THRESHOLD:
        reasons.append("Excellent compatibility!")

    if not reasons:
        return list(DORM_FILLER_REASONS)
    return reasons[:MAX_REASONS]
