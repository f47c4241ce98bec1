"""
Session Store - Chat memory, learned preferences and dorm listings
==================================================================

Three small repositories the chat turn depends on:

- SessionStore: per-session rolling history + carried-forward filters
  (get-or-create, update with version check, delete, TTL purge)
- PreferenceStore: long-term per-student preferences and AI confidence
- DormRepository: verified dorm listings, queried with chat filters

The shipped implementations share one embedded DuckDB connection. JSON-ish
columns (history, context, lists) are stored as JSON text. Every database
failure surfaces as StoreUnavailableError so callers can degrade instead
of crash.
"""

import json
import time
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

import duckdb

from roomy.config import get_config
from roomy.errors import SessionConflictError, StoreUnavailableError
from roomy.chat_schema import ChatSessionContext, HistoryEntry, StudentPreferences
from roomy.profile_schema import Dorm

# Logging
logger = logging.getLogger(__name__)


# =============================================================================
# DATABASE
# =============================================================================

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS chat_sessions (
        session_id VARCHAR PRIMARY KEY,
        user_id VARCHAR,
        history VARCHAR,
        context VARCHAR,
        version INTEGER,
        updated_at DOUBLE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS student_preferences (
        user_id VARCHAR PRIMARY KEY,
        budget DOUBLE,
        preferred_university VARCHAR,
        favorite_areas VARCHAR,
        preferred_room_types VARCHAR,
        preferred_amenities VARCHAR,
        gender VARCHAR,
        ai_confidence_score INTEGER,
        personality_answers VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dorms (
        id VARCHAR PRIMARY KEY,
        dorm_name VARCHAR,
        area VARCHAR,
        university VARCHAR,
        monthly_price DOUBLE,
        room_types VARCHAR,
        amenities VARCHAR,
        gender_preference VARCHAR,
        verification_status VARCHAR
    )
    """,
]


class RoomyDatabase:
    """
    One DuckDB connection shared by the repositories.

    The connection is opened on first use, not at construction, so an
    unreachable database only fails the statements that need it. A failed
    open is retried on the next statement. DuckDB connections are not safe
    for concurrent use, so every statement runs under a lock.

    Usage:
        db = RoomyDatabase(":memory:")
        rows = db.execute("SELECT COUNT(*) FROM dorms")
    """

    def __init__(self, path: str):
        self.path = path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None
        self.closed = False
        self.lock = Lock()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        """Open the connection and create the schema (call with lock held)"""
        if self.closed:
            raise StoreUnavailableError()
        if self.conn is not None:
            return self.conn
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(self.path)
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        except (duckdb.Error, OSError) as e:
            logger.error(f"Could not open DuckDB at {self.path}: {e}")
            raise StoreUnavailableError() from e
        self.conn = conn
        logger.info(f"Roomy database ready at {self.path}")
        return conn

    def execute(self, sql: str, params: Optional[List[Any]] = None, fetch: bool = True) -> List[tuple]:
        """Run one parameterized statement and return its rows"""
        with self.lock:
            conn = self._connect()
            try:
                result = conn.execute(sql, params or [])
                return result.fetchall() if fetch else []
            except duckdb.ConstraintException:
                raise
            except duckdb.Error as e:
                logger.error(f"DuckDB statement failed: {e}")
                raise StoreUnavailableError() from e

    def close(self) -> None:
        with self.lock:
            self.closed = True
            if self.conn is not None:
                self.conn.close()
                self.conn = None


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning(f"Discarding unreadable JSON column value: {str(value)[:50]!r}")
        return default


# =============================================================================
# SESSION STORE
# =============================================================================

class SessionStore:
    """Session repository interface"""

    def get(self, session_id: str) -> Optional[ChatSessionContext]:
        raise NotImplementedError

    def get_or_create(self, session_id: str, user_id: Optional[str] = None) -> ChatSessionContext:
        raise NotImplementedError

    def update(self, session: ChatSessionContext) -> ChatSessionContext:
        raise NotImplementedError

    def delete(self, session_id: str) -> bool:
        raise NotImplementedError

    def purge_expired(self, now: Optional[float] = None) -> int:
        raise NotImplementedError


class DuckDBSessionStore(SessionStore):
    """
    Sessions in the `chat_sessions` table.

    update() only succeeds when the stored version still equals the version
    the caller read; otherwise SessionConflictError. Sessions idle for longer
    than `ttl_seconds` are removed lazily on read (0 disables expiry).
    """

    def __init__(self, db: RoomyDatabase, ttl_seconds: Optional[int] = None):
        self.db = db
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_config().session_ttl_seconds

    def _is_expired(self, updated_at: Optional[float], now: float) -> bool:
        return bool(self.ttl_seconds) and updated_at is not None and now - updated_at > self.ttl_seconds

    def get(self, session_id: str) -> Optional[ChatSessionContext]:
        rows = self.db.execute(
            "SELECT session_id, user_id, history, context, version, updated_at "
            "FROM chat_sessions WHERE session_id = ?",
            [session_id],
        )
        if not rows:
            return None

        sid, user_id, history, context, version, updated_at = rows[0]
        if self._is_expired(updated_at, time.time()):
            logger.info(f"Session {sid} expired, removing")
            self.delete(sid)
            return None

        return ChatSessionContext(
            session_id=sid,
            user_id=user_id,
            history=[HistoryEntry(**entry) for entry in _loads(history, [])],
            context=_loads(context, {}),
            version=version or 0,
            updated_at=updated_at or time.time(),
        )

    def get_or_create(self, session_id: str, user_id: Optional[str] = None) -> ChatSessionContext:
        existing = self.get(session_id)
        if existing is not None:
            return existing

        session = ChatSessionContext(session_id=session_id, user_id=user_id)
        try:
            self.db.execute(
                "INSERT INTO chat_sessions VALUES (?, ?, ?, ?, ?, ?)",
                [session.session_id, session.user_id, _dumps([]), _dumps({}),
                 session.version, session.updated_at],
            )
        except duckdb.ConstraintException:
            # Another request created it first
            existing = self.get(session_id)
            if existing is not None:
                return existing
            raise StoreUnavailableError()
        logger.info(f"Created chat session {session_id}")
        return session

    def update(self, session: ChatSessionContext) -> ChatSessionContext:
        now = time.time()
        history = [entry.model_dump() for entry in session.history]
        rows = self.db.execute(
            "UPDATE chat_sessions "
            "SET user_id = ?, history = ?, context = ?, version = version + 1, updated_at = ? "
            "WHERE session_id = ? AND version = ?",
            [session.user_id, _dumps(history), _dumps(session.context), now,
             session.session_id, session.version],
        )
        updated = rows[0][0] if rows else 0
        if not updated:
            raise SessionConflictError(session.session_id, session.version)
        return session.model_copy(update={"version": session.version + 1, "updated_at": now})

    def delete(self, session_id: str) -> bool:
        rows = self.db.execute("DELETE FROM chat_sessions WHERE session_id = ?", [session_id])
        return bool(rows and rows[0][0])

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Delete every session idle past the TTL; returns how many"""
        if not self.ttl_seconds:
            return 0
        cutoff = (now if now is not None else time.time()) - self.ttl_seconds
        rows = self.db.execute("DELETE FROM chat_sessions WHERE updated_at < ?", [cutoff])
        purged = rows[0][0] if rows else 0
        if purged:
            logger.info(f"Purged {purged} expired chat sessions")
        return purged


# =============================================================================
# PREFERENCE STORE
# =============================================================================

# Learned preference key -> list column it is remembered in
LEARNED_PREFERENCE_FIELDS = {
    "area": "favorite_areas",
    "roomType": "preferred_room_types",
    "amenity": "preferred_amenities",
}

MAX_CONFIDENCE = 100


class PreferenceStore:
    """Long-term preference repository interface"""

    def get(self, user_id: str) -> Optional[StudentPreferences]:
        raise NotImplementedError

    def list_students(self, exclude_user_id: Optional[str] = None, limit: int = 50) -> List[StudentPreferences]:
        raise NotImplementedError

    def save(self, prefs: StudentPreferences) -> StudentPreferences:
        raise NotImplementedError

    def learn(self, user_id: str, key: str, value: str, confidence_step: int = 5) -> StudentPreferences:
        raise NotImplementedError

    def reset(self, user_id: str) -> None:
        raise NotImplementedError


class DuckDBPreferenceStore(PreferenceStore):
    """Preferences in the `student_preferences` table"""

    COLUMNS = (
        "user_id, budget, preferred_university, favorite_areas, preferred_room_types, "
        "preferred_amenities, gender, ai_confidence_score, personality_answers"
    )

    def __init__(self, db: RoomyDatabase):
        self.db = db

    def _from_row(self, row: tuple) -> StudentPreferences:
        uid, budget, university, areas, room_types, amenities, gender, confidence, answers = row
        return StudentPreferences(
            user_id=uid,
            budget=budget,
            preferred_university=university,
            favorite_areas=_loads(areas, []),
            preferred_room_types=_loads(room_types, []),
            preferred_amenities=_loads(amenities, []),
            gender=gender,
            ai_confidence_score=confidence if confidence is not None else 50,
            personality_answers=_loads(answers, {}),
        )

    def get(self, user_id: str) -> Optional[StudentPreferences]:
        rows = self.db.execute(
            f"SELECT {self.COLUMNS} FROM student_preferences WHERE user_id = ?", [user_id]
        )
        return self._from_row(rows[0]) if rows else None

    def list_students(self, exclude_user_id: Optional[str] = None, limit: int = 50) -> List[StudentPreferences]:
        """Other students' preferences, for roommate suggestions"""
        rows = self.db.execute(
            f"SELECT {self.COLUMNS} FROM student_preferences "
            "WHERE user_id IS DISTINCT FROM ? ORDER BY user_id LIMIT ?",
            [exclude_user_id, limit],
        )
        return [self._from_row(row) for row in rows]

    def save(self, prefs: StudentPreferences) -> StudentPreferences:
        values = [
            prefs.budget, prefs.preferred_university, _dumps(prefs.favorite_areas),
            _dumps(prefs.preferred_room_types), _dumps(prefs.preferred_amenities),
            prefs.gender, prefs.ai_confidence_score, _dumps(prefs.personality_answers),
        ]
        rows = self.db.execute(
            "UPDATE student_preferences SET budget = ?, preferred_university = ?, "
            "favorite_areas = ?, preferred_room_types = ?, preferred_amenities = ?, "
            "gender = ?, ai_confidence_score = ?, personality_answers = ? WHERE user_id = ?",
            values + [prefs.user_id],
        )
        if not (rows and rows[0][0]):
            self.db.execute(
                f"INSERT INTO student_preferences ({self.COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [prefs.user_id] + values,
            )
        return prefs

    def learn(self, user_id: str, key: str, value: str, confidence_step: int = 5) -> StudentPreferences:
        """
        Remember one learned preference.

        A value the student already has on file is not learned twice, so
        confidence only grows on new information.
        """
        field_name = LEARNED_PREFERENCE_FIELDS.get(key)
        if field_name is None:
            raise ValueError(f"Unknown learned preference '{key}'")

        prefs = self.get(user_id) or StudentPreferences(user_id=user_id)
        known = getattr(prefs, field_name)
        if any(item.lower() == value.lower() for item in known):
            return prefs

        updated = prefs.model_copy(update={
            field_name: known + [value],
            "ai_confidence_score": min(MAX_CONFIDENCE, prefs.ai_confidence_score + confidence_step),
        })
        logger.info(f"Learned {key}={value} for {user_id} (confidence {updated.ai_confidence_score}%)")
        return self.save(updated)

    def reset(self, user_id: str) -> None:
        """Forget everything learned; profile facts (gender, onboarding answers) stay"""
        self.db.execute(
            "UPDATE student_preferences SET budget = NULL, preferred_university = NULL, "
            "favorite_areas = '[]', preferred_room_types = '[]', preferred_amenities = '[]', "
            "ai_confidence_score = 50 WHERE user_id = ?",
            [user_id],
        )
        logger.info(f"Reset AI memory for {user_id}")


# =============================================================================
# DORM REPOSITORY
# =============================================================================

# Gender -> dorm gender policies that accept it (NULL always accepts)
GENDER_COMPATIBLE_POLICIES = {
    "male": ["male", "mixed", "any"],
    "female": ["female", "mixed", "any"],
}


class DormRepository:
    """Dorm listing repository interface"""

    def search(self, filters: Dict[str, Any], gender: Optional[str] = None) -> List[Dorm]:
        raise NotImplementedError

    def add(self, dorm: Dorm) -> Dorm:
        raise NotImplementedError


class DuckDBDormRepository(DormRepository):
    """Dorms in the `dorms` table"""

    COLUMNS = (
        "id, dorm_name, area, university, monthly_price, room_types, amenities, "
        "gender_preference, verification_status"
    )

    # Chat filter key -> column matched with ILIKE '%value%'
    CONTAINS_FILTERS = {
        "university": "university",
        "area": "area",
        "roomType": "room_types",
        "amenity": "amenities",
    }

    def __init__(self, db: RoomyDatabase):
        self.db = db

    def add(self, dorm: Dorm) -> Dorm:
        self.db.execute(
            f"INSERT INTO dorms ({self.COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [dorm.id, dorm.dorm_name, dorm.area, dorm.university, dorm.monthly_price,
             dorm.room_types, _dumps(dorm.amenities), dorm.gender_preference,
             dorm.verification_status],
        )
        return dorm

    def search(self, filters: Dict[str, Any], gender: Optional[str] = None) -> List[Dorm]:
        """
        Verified dorms matching the chat filters.

        Args:
            filters: Chat filters (budget is an upper bound on monthly price)
            gender: Student gender; excludes dorms whose policy rejects it

        Returns:
            Matching dorms ordered by name
        """
        # Build WHERE clause - USING PARAMETERIZED QUERIES
        where_clauses = ["verification_status = 'Verified'"]
        params: List[Any] = []

        policies = GENDER_COMPATIBLE_POLICIES.get((gender or "").lower())
        if policies:
            placeholders = ", ".join("?" for _ in policies)
            where_clauses.append(
                f"(gender_preference IS NULL OR LOWER(gender_preference) IN ({placeholders}))"
            )
            params.extend(policies)

        if filters.get("budget"):
            where_clauses.append("monthly_price <= ?")
            params.append(filters["budget"])

        for key, column in self.CONTAINS_FILTERS.items():
            if filters.get(key):
                where_clauses.append(f"{column} ILIKE '%' || ? || '%'")
                params.append(str(filters[key]))

        rows = self.db.execute(
            f"SELECT {self.COLUMNS} FROM dorms WHERE {' AND '.join(where_clauses)} ORDER BY dorm_name",
            params,
        )
        return [
            Dorm(
                id=row[0], dorm_name=row[1], area=row[2], university=row[3],
                monthly_price=row[4], room_types=row[5], amenities=_loads(row[6], []),
                gender_preference=row[7], verification_status=row[8],
            )
            for row in rows
        ]


# =============================================================================
# GLOBAL INSTANCES
# =============================================================================

_database: Optional[RoomyDatabase] = None


def get_database() -> RoomyDatabase:
    """Get the shared database opened at DUCKDB_PATH"""
    global _database
    if _database is None:
        _database = RoomyDatabase(get_config().duckdb_path)
    return _database


def close_database() -> None:
    global _database
    if _database is not None:
        _database.close()
        _database = None
