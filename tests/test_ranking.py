"""
Unittest suite for the candidate filter and ranker.
"""

import unittest

from roomy.normalizers import QUESTION_SOCIAL
from roomy.profile_schema import FilterSpec, Profile
from roomy.ranking_service import RankingService, passes_filters, rank_candidates


def student(id, **fields) -> Profile:
    return Profile(id=id, **fields)


class TestFilterSpec(unittest.TestCase):

    def test_all_sentinels_are_inactive(self) -> None:
        spec = FilterSpec(university="All Universities", room_type="  ", personality="any")
        self.assertEqual(spec.active_filters(), [])

    def test_reversed_range_is_swapped(self) -> None:
        spec = FilterSpec(budget_min=800, budget_max=300)
        self.assertEqual((spec.budget_min, spec.budget_max), (300, 800))

    def test_missing_budget_fails_active_range(self) -> None:
        spec = FilterSpec(budget_max=600)
        self.assertFalse(passes_filters(Profile(), spec))
        self.assertTrue(passes_filters(Profile(budget=600), spec))


class TestRankingService(unittest.TestCase):

    def setUp(self) -> None:
        self.service = RankingService("roommate")
        self.me = Profile(budget=500, university="AUB", room_type="Single",
                          personality_answers={QUESTION_SOCIAL: "Quiet"})
        self.candidates = [
            student("a", full_name="Rami Haddad", budget=510, university="AUB", room_type="Single",
                    personality_answers={QUESTION_SOCIAL: "Quiet"}),
            student("b", full_name="Maya Khoury", budget=900, university="LAU", room_type="Shared",
                    personality_answers={QUESTION_SOCIAL: "Social"}),
            student("c", full_name="Lara Saab", budget=520, university="AUB", room_type="Shared",
                    personality_answers={QUESTION_SOCIAL: "Quiet"}),
            student("d", full_name="Omar Nasser", university="AUB", room_type="Single"),
        ]

    def test_sorted_descending(self) -> None:
        ranked = self.service.rank(self.me, self.candidates)
        scores = [r.score for r in ranked]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual(ranked[0].candidate.id, "a")

    def test_every_result_satisfies_every_filter(self) -> None:
        spec = FilterSpec(budget_min=400, budget_max=600, university="AUB",
                          personality="Quiet", name="a")
        ranked = self.service.rank(self.me, self.candidates, spec)
        self.assertEqual([r.candidate.id for r in ranked], ["a", "c"])
        for result in ranked:
            self.assertTrue(passes_filters(result.candidate, spec))

    def test_filters_do_not_depend_on_score(self) -> None:
        spec = FilterSpec(room_type="Shared")
        ranked = self.service.rank(self.me, self.candidates, spec)
        self.assertEqual({r.candidate.id for r in ranked}, {"b", "c"})

    def test_limit(self) -> None:
        self.assertEqual(len(self.service.rank(self.me, self.candidates, limit=2)), 2)
        self.assertEqual(len(self.service.rank(self.me, self.candidates, limit=10)), 4)

    def test_ties_keep_input_order(self) -> None:
        twins = [student(str(i), budget=500, university="AUB") for i in range(6)]
        ranked = self.service.rank(self.me, twins)
        self.assertEqual([r.candidate.id for r in ranked], ["0", "1", "2", "3", "4", "5"])

    def test_empty_requester_keeps_input_order(self) -> None:
        ranked = self.service.rank(Profile(), self.candidates)
        self.assertEqual([r.candidate.id for r in ranked], ["a", "b", "c", "d"])
        self.assertTrue(all(r.score == 0 for r in ranked))

    def test_reasons_attached(self) -> None:
        ranked = self.service.rank(self.me, self.candidates[:1])
        self.assertEqual(ranked[0].reasons[0], "Very similar budget")
        self.assertLessEqual(len(ranked[0].reasons), 3)

    def test_default_limit_per_variant(self) -> None:
        many = [student(str(i), budget=500 + i) for i in range(15)]
        self.assertEqual(len(rank_candidates(self.me, many)), 10)
        self.assertEqual(len(rank_candidates(self.me, many, variant="dorm")), 3)

    def test_rank_response_metadata(self) -> None:
        response = self.service.rank_response(self.me, self.candidates, limit=1)
        self.assertEqual(response.variant, "roommate")
        self.assertEqual(response.total_candidates, 4)
        self.assertEqual(response.returned, 1)


if __name__ == "__main__":
    unittest.main()
