"""
Chat Service - One Roomy AI chat turn, end to end
=================================================

Turn pipeline:

1. Validate + sanitize the message, apply the per-client rate limit
2. Memory commands short-circuit ("reset my memory", "what do you
   remember", "reset chat")
3. Load the session (get-or-create) and the student's stored preferences
4. Extract filters from the message, merged with session context and
   stored preferences; persist newly learned preferences
5. Rank dorms (or roommates) with the matching rubric, top 3
6. Build the system prompt and make exactly one gateway call
7. Append the turn to the session history (capped) and save it

Store failures never fail a turn: the turn continues with the current
message only. Gateway failures propagate as UpstreamError.
"""

import time
import logging
from typing import Any, Dict, List, Optional, Tuple

from roomy.config import Config, get_config
from roomy.errors import (
    ChatValidationError, RateLimitedError, SessionConflictError, StoreUnavailableError,
)
from roomy.chat_schema import (
    ChatRequest, ChatResponse, ChatSessionContext, StudentPreferences, sanitize_message,
)
from roomy.profile_schema import Dorm, Profile, ScoredCandidate
from roomy.query_preprocessor import (
    ChatCommand, ChatQueryPreprocessor, detect_command, get_preprocessor, is_roommate_query,
)
from roomy.ranking_service import RankingService
from roomy.session_store import (
    DormRepository, PreferenceStore, SessionStore,
    DuckDBDormRepository, DuckDBPreferenceStore, DuckDBSessionStore, get_database,
)
from roomy.followups import generate_followups
from roomy.openai_config import ChatGateway, get_gateway
from roomy.api_enhancements import RateLimiter, get_chat_rate_limiter

# Logging
logger = logging.getLogger(__name__)


# =============================================================================
# FIXED REPLIES
# =============================================================================

MEMORY_RESET_REPLY = (
    "✨ AI memory reset! I've forgotten all your preferences. "
    "Let's start fresh — tell me what you're looking for!"
)
CHAT_RESET_REPLY = "Chat reset! 🔄 Let's start fresh. How can I help you find your perfect dorm?"
NO_MEMORY_REPLY = (
    "I don't have any stored preferences yet! I'm just getting to know you. 😊\n\n"
    "Tell me what you're looking for and I'll remember it for next time!"
)

EMPTY_MESSAGE_ERROR = "Message cannot be empty"

GUEST_PREFIX = "guest_"
PROMPT_HISTORY_TURNS = 10
CHAT_ROOMMATE_SUGGESTIONS = 3


def _money(value: float) -> str:
    return f"{int(value)}" if float(value).is_integer() else f"{value:.2f}"


def confidence_emoji(score: int) -> str:
    if score >= 80:
        return "🎯"
    if score >= 60:
        return "📊"
    return "🌱"


def format_memory(prefs: Optional[StudentPreferences]) -> str:
    """Read-only dump of stored preferences for "what do you remember" """
    if prefs is None or prefs.is_empty:
        return NO_MEMORY_REPLY

    memories = []
    if prefs.budget:
        memories.append(f"💰 Budget: ${_money(prefs.budget)}/month")
    if prefs.preferred_university:
        memories.append(f"🎓 University: {prefs.preferred_university}")
    if prefs.favorite_areas:
        memories.append(f"📍 Favorite areas: {', '.join(prefs.favorite_areas)}")
    if prefs.preferred_room_types:
        memories.append(f"🛏️ Room types: {', '.join(prefs.preferred_room_types)}")
    if prefs.preferred_amenities:
        memories.append(f"✨ Amenities: {', '.join(prefs.preferred_amenities)}")

    score = prefs.ai_confidence_score
    return (
        "Here's what I remember about you:\n\n"
        + "\n".join(memories)
        + f"\n\n{confidence_emoji(score)} AI Confidence: {score}%\n\n"
        + "The more we chat, the better I understand your preferences!"
    )


# =============================================================================
# SYSTEM PROMPT
# =============================================================================

BASE_PROMPT = """You are Roomy AI, a personalized housing assistant for students in Lebanon with long-term memory.

CORE PERSONALITY:
- Warm, conversational, and intelligent
- Remember student preferences and learn from every interaction
- Use emojis naturally (🏠 💰 🎓 ✨)

ADVISOR MODE:
1. When users ask about dorms or roommates, RECOMMEND the top matches with reasons
2. If a dorm is near or above the budget, mention it proactively
3. Only ask about preferences you do not already know
4. Always end with 2-3 actionable follow-up suggestions"""


def _preferences_section(prefs: Optional[StudentPreferences]) -> str:
    if prefs is None or prefs.is_empty:
        return ""
    known = []
    if prefs.budget:
        known.append(f"budget of ${_money(prefs.budget)}")
    if prefs.preferred_university:
        known.append(f"prefers {prefs.preferred_university}")
    if prefs.favorite_areas:
        known.append(f"likes areas: {', '.join(prefs.favorite_areas)}")
    if prefs.preferred_room_types:
        known.append(f"prefers {' or '.join(prefs.preferred_room_types)} rooms")
    if prefs.preferred_amenities:
        known.append(f"values: {', '.join(prefs.preferred_amenities)}")
    return (
        f"\n\nKnown student preferences (confidence: {prefs.ai_confidence_score}%):\n"
        + "; ".join(known)
        + "\nUse these to provide personalized recommendations. Only ask about missing preferences.\n"
    )


def _history_section(session: Optional[ChatSessionContext]) -> str:
    if session is None or not session.history:
        return ""
    lines = [
        f"{'User' if entry.role == 'user' else 'Assistant'}: {entry.content}"
        for entry in session.history[-PROMPT_HISTORY_TURNS:]
    ]
    return "\n\nPrevious conversation:\n" + "\n".join(lines) + "\n"


def _dorms_section(matches: List[Tuple[Dorm, ScoredCandidate]], filters: Dict[str, Any]) -> str:
    if not matches:
        if filters:
            return (
                "\n\nNo dorms match the criteria. Suggest adjusting budget, location, "
                "or room type. Ask what matters most."
            )
        return ""

    lines = ["\n\nHere are the top matching dorms from our database (ranked by fit):\n"]
    for idx, (dorm, scored) in enumerate(matches, start=1):
        price = f"${_money(dorm.monthly_price)}/month" if dorm.monthly_price else "Not specified"
        lines.append(f"{idx}. {dorm.dorm_name}")
        lines.append(f"   📍 Area: {dorm.area or 'Not specified'}")
        lines.append(f"   🎓 University: {dorm.university or 'Not specified'}")
        lines.append(f"   💰 Price: {price}")
        lines.append(f"   🛏️ Room Types: {dorm.room_types or 'Not specified'}")
        lines.append(f"   ✨ Amenities: {', '.join(dorm.amenities) or 'Not specified'}")
        if dorm.gender_preference:
            lines.append(f"   🚻 Gender Policy: {dorm.gender_preference}")
        lines.append(f"   🎯 Match Score: {scored.score}/100 ({'; '.join(scored.reasons)})")
        lines.append("")
    lines.append("Present these dorms conversationally and explain why each one fits.")
    return "\n".join(lines)


def _roommates_section(matches: List[ScoredCandidate]) -> str:
    if not matches:
        return "\n\nNo roommate profiles match your criteria yet. New students join daily!"

    lines = ["\n\nHere are potential roommates from our database:\n"]
    for idx, scored in enumerate(matches, start=1):
        student = scored.candidate
        budget = f"${_money(student.budget)}/month" if student.budget else "Not specified"
        lines.append(f"{idx}. Student {idx}")
        lines.append(f"   🎓 University: {student.university or 'Not specified'}")
        lines.append(f"   💰 Budget: {budget}")
        lines.append(f"   🛏️ Room Preference: {student.room_type or 'Not specified'}")
        lines.append(f"   🎯 Compatibility: {scored.score}/100 ({'; '.join(scored.reasons) or 'new match'})")
        lines.append("")
    lines.append("Present these roommate matches conversationally. Highlight shared preferences.")
    return "\n".join(lines)


def build_system_prompt(
    prefs: Optional[StudentPreferences],
    session: Optional[ChatSessionContext],
    filters: Dict[str, Any],
    dorm_matches: List[Tuple[Dorm, ScoredCandidate]],
    roommate_matches: Optional[List[ScoredCandidate]] = None
) -> str:
    """Assemble the system prompt for one turn"""
    prompt = BASE_PROMPT + _preferences_section(prefs) + _history_section(session)
    if roommate_matches is not None:
        prompt += _roommates_section(roommate_matches)
    else:
        prompt += _dorms_section(dorm_matches, filters)
    return prompt + "\n\nKeep responses concise but warm. Always end with follow-up suggestions."


# =============================================================================
# CHAT SERVICE
# =============================================================================

def requester_from_filters(filters: Dict[str, Any], prefs: Optional[StudentPreferences] = None) -> Profile:
    """Build the scoring requester for this turn from the merged filters"""
    return Profile(
        id=prefs.user_id if prefs else None,
        budget=filters.get("budget"),
        university=filters.get("university"),
        area=filters.get("area"),
        room_type=filters.get("roomType"),
        amenities=[filters["amenity"]] if filters.get("amenity") else [],
        gender=prefs.gender if prefs else None,
    )


class ChatService:
    """
    Handles chat turns against injected stores and gateway.

    Usage:
        service = ChatService(sessions, preferences, dorms, gateway)
        response = service.handle_turn(ChatRequest(message="dorms near AUB"), "ip:1.2.3.4")
    """

    def __init__(
        self,
        sessions: SessionStore,
        preferences: PreferenceStore,
        dorms: DormRepository,
        gateway: ChatGateway,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[Config] = None,
        preprocessor: Optional[ChatQueryPreprocessor] = None
    ):
        self.sessions = sessions
        self.preferences = preferences
        self.dorms = dorms
        self.gateway = gateway
        self.rate_limiter = rate_limiter
        self.config = config or get_config()
        self.preprocessor = preprocessor or get_preprocessor()
        self.dorm_ranker = RankingService("dorm")
        self.roommate_ranker = RankingService("roommate")

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def handle_turn(self, request: ChatRequest, client_id: str = "anonymous") -> ChatResponse:
        """
        Run one chat turn.

        Raises:
            ChatValidationError: empty or too-long message (400)
            RateLimitedError: too many turns from this client (429)
            UpstreamError: gateway rejected or failed the completion
        """
        start = time.time()
        max_length = self.config.max_message_length

        if len(request.message or "") > max_length:
            raise ChatValidationError(
                f"Message too long. Please keep it under {max_length} characters."
            )
        message = sanitize_message(request.message, max_length)

        rate_key = request.user_id or client_id
        if self.rate_limiter is not None and not self.rate_limiter.allow(rate_key):
            logger.warning(f"Chat rate limit exceeded for {rate_key}")
            raise RateLimitedError(retry_after=self.rate_limiter.get_wait_time(rate_key))

        if not message:
            raise ChatValidationError(EMPTY_MESSAGE_ERROR)

        user_id = request.user_id
        authenticated = bool(user_id) and not user_id.startswith(GUEST_PREFIX)
        effective_user = user_id or f"{GUEST_PREFIX}{int(time.time() * 1000)}"
        session_id = request.session_id or effective_user

        command = detect_command(message)
        if command is not None:
            return self._handle_command(command, session_id, user_id if authenticated else None)

        prefs = self._load_preferences(user_id) if authenticated else None
        session = self._load_session(session_id, effective_user)

        extracted = self.preprocessor.extract(message, session.context if session else {}, prefs)
        filters = extracted.filters
        if authenticated and extracted.learned_prefs:
            prefs = self._learn(user_id, extracted.learned_prefs) or prefs

        roommate_query = is_roommate_query(message)
        dorm_matches: List[Tuple[Dorm, ScoredCandidate]] = []
        roommate_matches: Optional[List[ScoredCandidate]] = None
        if roommate_query:
            roommate_matches = self._suggest_roommates(user_id, filters, prefs)
        else:
            dorm_matches = self._suggest_dorms(filters, prefs)

        system_prompt = build_system_prompt(prefs, session, filters, dorm_matches, roommate_matches)
        reply = self.gateway.complete(system_prompt, message)

        saved = self._save_turn(session, message, reply, filters) if session else None

        known_budget = prefs.budget if prefs and prefs.budget else filters.get("budget")
        followups = generate_followups(
            dorms=[dorm for dorm, _ in dorm_matches],
            roommate_count=len(roommate_matches or []),
            is_roommate_query=roommate_query,
            budget=known_budget,
            university=filters.get("university"),
        )

        logger.info(
            f"Chat turn for session {session_id}: filters={filters}, "
            f"dorms={len(dorm_matches)}, roommates={len(roommate_matches or [])}, "
            f"saved={saved is not None} ({int((time.time() - start) * 1000)}ms)"
        )
        return ChatResponse(
            response=reply,
            session_id=session_id,
            has_context=session is not None,
            filters=filters or None,
            followups=followups or None,
        )

    # -------------------------------------------------------------------------
    # Memory commands
    # -------------------------------------------------------------------------

    def _handle_command(self, command: ChatCommand, session_id: str, user_id: Optional[str]) -> ChatResponse:
        """
        Run a memory command. A store outage is logged and the command is
        still acknowledged; recall then answers as if nothing is stored.
        """
        logger.info(f"Chat command {command.value} for session {session_id}")

        if command == ChatCommand.RESET_MEMORY:
            if user_id:
                self._forget(lambda: self.preferences.reset(user_id), f"preferences of {user_id}")
            self._forget(lambda: self.sessions.delete(session_id), f"session {session_id}")
            return ChatResponse(response=MEMORY_RESET_REPLY, session_reset=True, memory_reset=True)

        if command == ChatCommand.RECALL_MEMORY:
            prefs = self._load_preferences(user_id) if user_id else None
            return ChatResponse(response=format_memory(prefs))

        self._forget(lambda: self.sessions.delete(session_id), f"session {session_id}")
        return ChatResponse(response=CHAT_RESET_REPLY, session_reset=True)

    def _forget(self, action, what: str) -> None:
        try:
            action()
        except StoreUnavailableError:
            logger.error(f"Store unavailable; could not clear {what}")

    # -------------------------------------------------------------------------
    # Store access (degrades to "no signal")
    # -------------------------------------------------------------------------

    def _load_preferences(self, user_id: str) -> Optional[StudentPreferences]:
        try:
            return self.preferences.get(user_id)
        except StoreUnavailableError:
            logger.warning(f"Preference store unavailable; continuing without stored preferences for {user_id}")
            return None

    def _load_session(self, session_id: str, user_id: str) -> Optional[ChatSessionContext]:
        try:
            return self.sessions.get_or_create(session_id, user_id)
        except StoreUnavailableError:
            logger.warning(f"Session store unavailable; continuing without context for {session_id}")
            return None

    def _learn(self, user_id: str, learned: Dict[str, str]) -> Optional[StudentPreferences]:
        prefs = None
        try:
            for key, value in learned.items():
                prefs = self.preferences.learn(user_id, key, value, self.config.confidence_step)
        except StoreUnavailableError:
            logger.warning(f"Could not persist learned preferences for {user_id}: {learned}")
        return prefs

    def _suggest_dorms(
        self,
        filters: Dict[str, Any],
        prefs: Optional[StudentPreferences]
    ) -> List[Tuple[Dorm, ScoredCandidate]]:
        try:
            dorms = self.dorms.search(filters, gender=prefs.gender if prefs else None)
        except StoreUnavailableError:
            logger.warning("Dorm repository unavailable; answering without listings")
            return []

        by_id = {dorm.id: dorm for dorm in dorms}
        ranked = self.dorm_ranker.rank(
            requester_from_filters(filters, prefs),
            [dorm.to_profile() for dorm in dorms],
            limit=self.config.dorm_top_n,
        )
        return [(by_id[scored.candidate.id], scored) for scored in ranked]

    def _suggest_roommates(
        self,
        user_id: Optional[str],
        filters: Dict[str, Any],
        prefs: Optional[StudentPreferences]
    ) -> List[ScoredCandidate]:
        try:
            students = self.preferences.list_students(exclude_user_id=user_id)
        except StoreUnavailableError:
            logger.warning("Preference store unavailable; answering without roommate matches")
            return []

        requester = prefs.to_profile() if prefs else requester_from_filters(filters)
        return self.roommate_ranker.rank(
            requester,
            [student.to_profile() for student in students],
            limit=CHAT_ROOMMATE_SUGGESTIONS,
        )

    def _save_turn(
        self,
        session: ChatSessionContext,
        message: str,
        reply: str,
        filters: Dict[str, Any]
    ) -> Optional[ChatSessionContext]:
        """
        Append the turn and save with the version check.

        On a conflict the session is reloaded once and the turn re-appended
        to the fresh copy.
        """
        limit = self.config.chat_history_limit
        for attempt in range(2):
            session.append("user", message, limit)
            session.append("assistant", reply, limit)
            session.context = dict(filters)
            try:
                return self.sessions.update(session)
            except SessionConflictError as e:
                if attempt:
                    logger.error(f"Dropping turn for session {session.session_id}: {e}")
                    return None
                logger.warning(f"{e}; reloading and retrying")
                try:
                    session = self.sessions.get_or_create(session.session_id, session.user_id)
                except StoreUnavailableError:
                    logger.warning(f"Session store unavailable; turn not saved for {session.session_id}")
                    return None
            except StoreUnavailableError:
                logger.warning(f"Session store unavailable; turn not saved for {session.session_id}")
                return None
        return None


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """Chat service wired to the DuckDB stores and the AI gateway"""
    global _chat_service
    if _chat_service is None:
        db = get_database()
        _chat_service = ChatService(
            sessions=DuckDBSessionStore(db),
            preferences=DuckDBPreferenceStore(db),
            dorms=DuckDBDormRepository(db),
            gateway=get_gateway(),
            rate_limiter=get_chat_rate_limiter(),
        )
    return _chat_service


def reset_chat_service() -> None:
    global _chat_service
    _chat_service = None
