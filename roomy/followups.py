"""
Smart follow-up suggestions shown under a chat reply.

Dorm suggestions get "more in this area" plus either a cheaper or a premium
search depending on whether anything shown is over budget. Roommate answers
get roommate-flow actions. With no results, the generic actions come from
what we already know about the student. Never more than MAX_FOLLOWUPS.
"""

import math
from typing import List, Optional, Sequence

from roomy.chat_schema import FollowUpAction
from roomy.profile_schema import Dorm

MAX_FOLLOWUPS = 3
PREMIUM_BUDGET_FACTOR = 1.15


def _dorm_followups(dorms: Sequence[Dorm], budget: Optional[float]) -> List[FollowUpAction]:
    followups = []
    first = dorms[0]

    if first.area:
        followups.append(FollowUpAction(
            label=f"Show more dorms in {first.area}",
            query=f"Show more dorms like {first.dorm_name} in {first.area}",
        ))

    if budget:
        over_budget = [d for d in dorms if d.monthly_price is not None and d.monthly_price > budget]
        if over_budget:
            followups.append(FollowUpAction(
                label="Show cheaper options",
                query=f"Find dorms under ${budget:.0f}",
            ))
        else:
            followups.append(FollowUpAction(
                label="Explore premium options",
                query=f"Show me dorms up to ${math.floor(budget * PREMIUM_BUDGET_FACTOR)}",
            ))
    return followups


def _roommate_followups() -> List[FollowUpAction]:
    return [
        FollowUpAction(label="Filter by budget", query="Find roommates with similar budget to mine"),
        FollowUpAction(label="Find dorms together", query="Find dorms for me and a roommate"),
        FollowUpAction(
            label="Get better matches",
            query="How do I complete my personality test for better roommate matches?",
        ),
    ]


def _generic_followups(university: Optional[str], budget: Optional[float]) -> List[FollowUpAction]:
    followups = []
    if university:
        followups.append(FollowUpAction(
            label=f"Show dorms near {university}",
            query=f"Find dorms near {university}",
        ))
    if budget:
        followups.append(FollowUpAction(
            label="Find within my budget",
            query=f"Show dorms under ${budget:.0f}",
        ))
    return followups


def generate_followups(
    dorms: Sequence[Dorm],
    roommate_count: int,
    is_roommate_query: bool,
    budget: Optional[float] = None,
    university: Optional[str] = None
) -> List[FollowUpAction]:
    """
    Context-sensitive next actions for a chat reply.

    Args:
        dorms: Dorms suggested in this reply, best first
        roommate_count: Number of roommate matches suggested
        is_roommate_query: Whether the student asked about roommates
        budget: Known budget (this turn's filter, else stored preference)
        university: Known university

    Returns:
        At most MAX_FOLLOWUPS actions
    """
    followups: List[FollowUpAction] = []

    if not is_roommate_query and dorms:
        followups.extend(_dorm_followups(dorms, budget))

    if is_roommate_query and roommate_count > 0:
        followups.extend(_roommate_followups())

    if not followups:
        followups.extend(_generic_followups(university, budget))

    return followups[:MAX_FOLLOWUPS]
