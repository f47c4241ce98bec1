"""
Unittest suite for the DuckDB-backed session, preference and dorm stores.
Every test runs against a fresh in-memory database.
"""

import tempfile
import time
import unittest

from roomy.chat_schema import StudentPreferences
from roomy.errors import SessionConflictError, StoreUnavailableError
from roomy.normalizers import QUESTION_SOCIAL
from roomy.session_store import (
    DuckDBDormRepository,
    DuckDBPreferenceStore,
    DuckDBSessionStore,
    RoomyDatabase,
)

from tests.support import SAMPLE_DORMS, closed_database


class TestSessionStore(unittest.TestCase):

    def setUp(self) -> None:
        self.db = RoomyDatabase(":memory:")
        self.store = DuckDBSessionStore(self.db, ttl_seconds=3600)

    def tearDown(self) -> None:
        self.db.close()

    def test_get_or_create_is_idempotent(self) -> None:
        created = self.store.get_or_create("s1", "u1")
        self.assertEqual(created.version, 0)
        again = self.store.get_or_create("s1", "u1")
        self.assertEqual(again.session_id, "s1")
        self.assertEqual(again.user_id, "u1")
        self.assertIsNone(self.store.get("missing"))

    def test_update_persists_and_bumps_version(self) -> None:
        session = self.store.get_or_create("s1")
        session.append("user", "dorms near AUB", limit=20)
        session.context = {"university": "AUB"}
        saved = self.store.update(session)
        self.assertEqual(saved.version, 1)

        loaded = self.store.get("s1")
        self.assertEqual(loaded.version, 1)
        self.assertEqual(loaded.context, {"university": "AUB"})
        self.assertEqual([e.content for e in loaded.history], ["dorms near AUB"])

    def test_stale_version_conflicts(self) -> None:
        first = self.store.get_or_create("s1")
        second = self.store.get("s1")
        self.store.update(first)
        with self.assertRaises(SessionConflictError):
            self.store.update(second)

    def test_delete(self) -> None:
        self.store.get_or_create("s1")
        self.assertTrue(self.store.delete("s1"))
        self.assertIsNone(self.store.get("s1"))
        self.assertFalse(self.store.delete("s1"))

    def test_expired_session_is_dropped_on_read(self) -> None:
        self.store.get_or_create("old")
        self.db.execute(
            "UPDATE chat_sessions SET updated_at = ? WHERE session_id = 'old'",
            [time.time() - 7200], fetch=False,
        )
        self.assertIsNone(self.store.get("old"))
        self.assertEqual(self.db.execute("SELECT COUNT(*) FROM chat_sessions")[0][0], 0)

    def test_purge_expired(self) -> None:
        self.store.get_or_create("s1")
        self.store.get_or_create("s2")
        self.assertEqual(self.store.purge_expired(), 0)
        self.assertEqual(self.store.purge_expired(now=time.time() + 7200), 2)

    def test_zero_ttl_never_expires(self) -> None:
        store = DuckDBSessionStore(self.db, ttl_seconds=0)
        store.get_or_create("s1")
        self.assertEqual(store.purge_expired(now=time.time() + 10 ** 9), 0)

    def test_closed_database_is_unavailable(self) -> None:
        db = RoomyDatabase(":memory:")
        db.close()
        with self.assertRaises(StoreUnavailableError):
            DuckDBSessionStore(db, ttl_seconds=60).get("s1")

    def test_closed_database_fails_every_store(self) -> None:
        preferences = DuckDBPreferenceStore(closed_database())
        dorms = DuckDBDormRepository(closed_database())
        for call in (
            lambda: preferences.get("u1"),
            lambda: preferences.learn("u1", "area", "hamra"),
            lambda: preferences.reset("u1"),
            lambda: preferences.list_students(None),
            lambda: dorms.search({"university": "AUB"}),
        ):
            with self.assertRaises(StoreUnavailableError):
                call()

    def test_unopenable_path_is_unavailable_until_first_use(self) -> None:
        with tempfile.TemporaryDirectory() as workdir:
            # A directory cannot be opened as a database file
            db = RoomyDatabase(workdir)
            store = DuckDBSessionStore(db, ttl_seconds=60)
            with self.assertRaises(StoreUnavailableError):
                store.get("s1")
            with self.assertRaises(StoreUnavailableError):
                store.get("s1")
            db.close()


class TestPreferenceStore(unittest.TestCase):

    def setUp(self) -> None:
        self.db = RoomyDatabase(":memory:")
        self.store = DuckDBPreferenceStore(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_learn_creates_and_raises_confidence(self) -> None:
        prefs = self.store.learn("u1", "area", "hamra")
        self.assertEqual(prefs.favorite_areas, ["hamra"])
        self.assertEqual(prefs.ai_confidence_score, 55)
        prefs = self.store.learn("u1", "roomType", "single")
        self.assertEqual(self.store.get("u1").ai_confidence_score, 60)
        self.assertEqual(prefs.preferred_room_types, ["single"])

    def test_known_value_is_not_learned_twice(self) -> None:
        self.store.learn("u1", "amenity", "wifi")
        prefs = self.store.learn("u1", "amenity", "WiFi")
        self.assertEqual(prefs.preferred_amenities, ["wifi"])
        self.assertEqual(prefs.ai_confidence_score, 55)

    def test_confidence_is_capped(self) -> None:
        self.store.save(StudentPreferences(user_id="u1", ai_confidence_score=98))
        self.assertEqual(self.store.learn("u1", "area", "verdun").ai_confidence_score, 100)
        self.assertEqual(self.store.learn("u1", "area", "hamra").ai_confidence_score, 100)

    def test_unknown_key_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.learn("u1", "pets", "cat")

    def test_reset_keeps_gender(self) -> None:
        self.store.save(StudentPreferences(
            user_id="u1", budget=500, preferred_university="AUB", favorite_areas=["Hamra"],
            gender="Female", ai_confidence_score=80,
        ))
        self.store.reset("u1")
        prefs = self.store.get("u1")
        self.assertTrue(prefs.is_empty)
        self.assertEqual(prefs.gender, "Female")
        self.assertEqual(prefs.ai_confidence_score, 50)

    def test_answers_round_trip_and_survive_reset(self) -> None:
        answers = {QUESTION_SOCIAL: "Quiet", "boost_profile": {"wakeTime": "early", "cleanliness": 4}}
        self.store.save(StudentPreferences(user_id="u1", budget=500, personality_answers=answers))
        self.assertEqual(self.store.get("u1").personality_answers, answers)
        self.store.reset("u1")
        self.assertEqual(self.store.get("u1").personality_answers, answers)

    def test_list_students_excludes_requester(self) -> None:
        for uid in ("u3", "u1", "u2"):
            self.store.save(StudentPreferences(user_id=uid, budget=400))
        self.assertEqual([p.user_id for p in self.store.list_students("u1")], ["u2", "u3"])
        self.assertEqual(len(self.store.list_students(None)), 3)
        self.assertEqual(len(self.store.list_students(None, limit=1)), 1)


class TestDormRepository(unittest.TestCase):

    def setUp(self) -> None:
        self.db = RoomyDatabase(":memory:")
        self.repo = DuckDBDormRepository(self.db)
        for dorm in SAMPLE_DORMS:
            self.repo.add(dorm)

    def tearDown(self) -> None:
        self.db.close()

    def names(self, filters, gender=None) -> list:
        return [dorm.dorm_name for dorm in self.repo.search(filters, gender)]

    def test_only_verified_sorted_by_name(self) -> None:
        self.assertEqual(self.names({}), ["Byblos Suites", "Cedar House", "Olive Residence"])

    def test_budget_is_an_upper_bound(self) -> None:
        self.assertEqual(self.names({"budget": 450}), ["Cedar House", "Olive Residence"])

    def test_text_filters_are_case_insensitive(self) -> None:
        self.assertEqual(self.names({"university": "aub", "amenity": "wifi"}), ["Cedar House"])
        self.assertEqual(self.names({"area": "jbeil", "roomType": "studio"}), ["Byblos Suites"])
        self.assertEqual(self.names({"roomType": "shared"}), ["Cedar House", "Olive Residence"])

    def test_gender_policy(self) -> None:
        self.assertEqual(self.names({}, gender="Male"), ["Byblos Suites", "Cedar House"])
        self.assertEqual(
            self.names({}, gender="female"),
            ["Byblos Suites", "Cedar House", "Olive Residence"],
        )

    def test_round_trip_fields(self) -> None:
        cedar = self.repo.search({"area": "Hamra", "amenity": "laundry"})[0]
        self.assertEqual(cedar.amenities, ["WiFi", "Laundry"])
        self.assertEqual(cedar.monthly_price, 450)
        self.assertEqual(cedar.gender_preference, "Mixed")


if __name__ == "__main__":
    unittest.main()
