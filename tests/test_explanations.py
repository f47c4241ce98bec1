"""
Unittest suite for match reasons.
"""

import unittest

from roomy.explanations import DORM_FILLER_REASONS, dorm_reasons, roommate_reasons
from roomy.normalizers import QUESTION_SOCIAL
from roomy.profile_schema import Profile


class TestRoommateReasons(unittest.TestCase):

    def test_worked_example_order(self) -> None:
        me = Profile.model_validate({"budget": 500, "university": "AUB", "roomType": "Single"})
        them = Profile.model_validate({"budget": 520, "university": "AUB", "roomType": "Single"})
        # A $20 difference is inside the <$100 tier
        self.assertEqual(
            roommate_reasons(me, them, 50),
            ["Very similar budget", "Both prefer Single", "Same university: AUB"],
        )

    def test_compatible_budget_tier(self) -> None:
        reasons = roommate_reasons(Profile(budget=500), Profile(budget=650), 20)
        self.assertEqual(reasons, ["Compatible budget range"])
        self.assertEqual(roommate_reasons(Profile(budget=500), Profile(budget=700), 0), [])

    def test_personality_and_excellent(self) -> None:
        answers = {QUESTION_SOCIAL: "Quiet"}
        me = Profile(personality_answers=answers, university="LAU")
        them = Profile(personality_answers=answers, university="LAU")
        self.assertEqual(
            roommate_reasons(me, them, 85),
            ["Same university: LAU", "Both quiet", "Excellent compatibility!"],
        )

    def test_truncated_to_three(self) -> None:
        me = Profile(budget=500, room_type="Single", university="AUB",
                     personality_answers={QUESTION_SOCIAL: "Social"})
        reasons = roommate_reasons(me, me, 95)
        self.assertEqual(len(reasons), 3)
        self.assertEqual(reasons[0], "Very similar budget")

    def test_empty_profiles_are_safe(self) -> None:
        self.assertEqual(roommate_reasons(Profile(), Profile(), 0), [])


class TestDormReasons(unittest.TestCase):

    def test_matches(self) -> None:
        student = Profile(budget=500, university="AUB", area="Hamra", amenities=["wifi", "gym"])
        dorm = Profile(budget=450, university="AUB", area="Hamra", amenities=["WiFi", "Gym", "Pool"])
        self.assertEqual(
            dorm_reasons(student, dorm, 70),
            ["Close to your budget at $450/month", "Near AUB", "Located in your preferred area: Hamra"],
        )

    def test_within_budget_and_amenities(self) -> None:
        student = Profile(budget=800, room_type="Studio", amenities=["wifi", "gym"])
        dorm = Profile(budget=500, room_type="Studio", amenities=["WiFi", "Gym", "Pool"])
        self.assertEqual(
            dorm_reasons(student, dorm, 40),
            ["Within your $800/month budget", "Offers Studio rooms", "Includes WiFi & Gym"],
        )

    def test_filler_when_nothing_matches(self) -> None:
        self.assertEqual(dorm_reasons(Profile(), Profile(), 0), DORM_FILLER_REASONS)
        self.assertEqual(dorm_reasons(Profile(budget=300), Profile(budget=900), 0), DORM_FILLER_REASONS)


if __name__ == "__main__":
    unittest.main()
