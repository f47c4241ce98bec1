"""
Chat Schema - Pydantic models for the Roomy AI chat turn
========================================================
Request/response bodies, the per-session memory record and the long-term
student preference record.

Input Sanitization:
- sanitize_message strips HTML tags, SQL keywords, angle brackets,
  `javascript:` and inline event handlers, then trims and truncates
- Runs before any extraction or prompt building
"""

import re
import time
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator

from roomy.normalizers import clean_list, normalize_budget, normalize_text
from roomy.profile_schema import Profile


# ============================================================================
# HELPER FUNCTIONS FOR SANITIZATION
# ============================================================================

MAX_MESSAGE_LENGTH = 500

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_SQL_KEYWORD_RE = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|EXECUTE|UNION|SCRIPT)\b",
    re.IGNORECASE,
)
_ANGLE_RE = re.compile(r"[<>]")
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+=", re.IGNORECASE)


def sanitize_message(value: Optional[str], max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Clean a chat message before use.

    Example:
        >>> sanitize_message("<b>hi</b> DROP table near AUB")
        'hi  table near AUB'
    """
    if not value or not isinstance(value, str):
        return ""
    sanitized = _HTML_TAG_RE.sub("", value)
    sanitized = _SQL_KEYWORD_RE.sub("", sanitized)
    sanitized = sanitized.strip()[:max_length]
    sanitized = _ANGLE_RE.sub("", sanitized)
    sanitized = _JS_SCHEME_RE.sub("", sanitized)
    sanitized = _EVENT_HANDLER_RE.sub("", sanitized)
    return sanitized.strip()


# ============================================================================
# CHAT TURN - REQUEST / RESPONSE
# ============================================================================

class ChatRequest(BaseModel):
    """Body of POST /api/roomy-chat"""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field("", description="Raw user message (validated after sanitization)")
    user_id: Optional[str] = Field(None, alias="userId")
    session_id: Optional[str] = Field(None, alias="sessionId")

    @field_validator('user_id', 'session_id', mode='before')
    @classmethod
    def clean_ids(cls, v):
        return normalize_text(v)


class FollowUpAction(BaseModel):
    """Suggested next message shown as a chip under the reply"""
    label: str
    query: str


class ChatResponse(BaseModel):
    """Successful chat turn (serialize with by_alias=True, exclude_none=True)"""
    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: Optional[str] = Field(None, alias="sessionId")
    has_context: Optional[bool] = Field(None, alias="hasContext")
    session_reset: Optional[bool] = Field(None, alias="sessionReset")
    memory_reset: Optional[bool] = Field(None, alias="memoryReset")
    filters: Optional[Dict[str, Any]] = None
    followups: Optional[List[FollowUpAction]] = None

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# SESSION MEMORY
# ============================================================================

class HistoryEntry(BaseModel):
    """One chat message in a session's rolling history"""
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str
    timestamp: float = Field(default_factory=time.time)


class ChatSessionContext(BaseModel):
    """
    Per-session memory: rolling history plus the last extracted filters.

    `version` increments on every successful store update (optimistic
    concurrency). History never exceeds the configured limit; the oldest
    entries are dropped first.
    """
    session_id: str
    user_id: Optional[str] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    version: int = 0
    updated_at: float = Field(default_factory=time.time)

    def append(self, role: str, content: str, limit: int) -> None:
        """Append one entry and trim to the most recent `limit`"""
        self.history.append(HistoryEntry(role=role, content=content))
        if len(self.history) > limit:
            self.history = self.history[-limit:]


# ============================================================================
# LONG-TERM PREFERENCES
# ============================================================================

class StudentPreferences(BaseModel):
    """Learned, cross-session preferences of an authenticated student"""
    user_id: str
    budget: Optional[float] = None
    preferred_university: Optional[str] = None
    favorite_areas: List[str] = Field(default_factory=list)
    preferred_room_types: List[str] = Field(default_factory=list)
    preferred_amenities: List[str] = Field(default_factory=list)
    gender: Optional[str] = None
    ai_confidence_score: int = Field(50, ge=0, le=100)
    # Onboarding answers; the boost questionnaire nests under "boost_profile"
    personality_answers: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('budget', mode='before')
    @classmethod
    def clean_budget(cls, v):
        return normalize_budget(v)

    @field_validator('favorite_areas', 'preferred_room_types', 'preferred_amenities', mode='before')
    @classmethod
    def clean_lists(cls, v):
        return clean_list(v)

    @property
    def is_empty(self) -> bool:
        return not any([
            self.budget, self.preferred_university, self.favorite_areas,
            self.preferred_room_types, self.preferred_amenities,
        ])

    def as_filters(self) -> Dict[str, Any]:
        """Stored preferences as chat filters (most recently learned value wins)"""
        filters: Dict[str, Any] = {}
        if self.budget:
            filters["budget"] = int(self.budget)
        if self.preferred_university:
            filters["university"] = self.preferred_university
        if self.favorite_areas:
            filters["area"] = self.favorite_areas[-1]
        if self.preferred_room_types:
            filters["roomType"] = self.preferred_room_types[-1]
        if self.preferred_amenities:
            filters["amenity"] = self.preferred_amenities[-1]
        return filters

    def to_profile(self) -> Profile:
        """Preferences plus onboarding answers as a roommate-scoring profile"""
        return Profile(
            id=self.user_id,
            budget=self.budget,
            university=self.preferred_university,
            room_type=self.preferred_room_types[-1] if self.preferred_room_types else None,
            area=self.favorite_areas[-1] if self.favorite_areas else None,
            amenities=self.preferred_amenities,
            gender=self.gender,
            personality_answers=self.personality_answers,
        )
