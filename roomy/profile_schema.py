"""
Profile Schema - Pydantic models for compatibility ranking
==========================================================
Defines the scoring inputs (Profile, BoostProfile), the ranking request
(FilterSpec, RankingRequest) and the ranking output (ScoredCandidate).

Input Sanitization:
- Raw records pass through normalizers.normalize_profile_dict first
- Accepts camelCase (web client) and snake_case (database) keys
- Missing/empty values become None - "no signal", never an error
"""

from typing import List, Optional, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from roomy.normalizers import (
    normalize_profile_dict, normalize_boost_profile, normalize_text,
    normalize_budget, clean_list, QUESTION_SOCIAL,
)


# ============================================================================
# SCORING INPUTS
# ============================================================================

class BoostProfile(BaseModel):
    """Opt-in lifestyle questionnaire - every trait optional"""
    wake_time: Optional[str] = None
    cleanliness: Optional[float] = None
    noise_tolerance: Optional[float] = None
    guest_policy: Optional[str] = None
    cooking_habits: Optional[str] = None
    social_energy: Optional[float] = None
    organization_style: Optional[float] = None
    temperature_preference: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def normalize_traits(cls, data):
        if isinstance(data, dict):
            return normalize_boost_profile(data)
        return data


class Profile(BaseModel):
    """
    A requester or candidate record (student or dorm listing).

    Profiles are read-only inputs to scoring; the data store owns them.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: Optional[str] = None
    full_name: Optional[str] = None
    budget: Optional[float] = Field(None, description="Monthly budget, or monthly price for dorms")
    university: Optional[str] = None
    room_type: Optional[str] = None
    area: Optional[str] = None
    amenities: List[str] = Field(default_factory=list)
    gender: Optional[str] = None
    personality_answers: Dict[str, str] = Field(default_factory=dict)
    boost_profile: Optional[BoostProfile] = None

    @model_validator(mode='before')
    @classmethod
    def normalize_raw(cls, data):
        return normalize_profile_dict(data)

    @property
    def personality(self) -> Optional[str]:
        """Social-vs-quiet answer, used by the personality filter"""
        return self.personality_answers.get(QUESTION_SOCIAL)


class Dorm(BaseModel):
    """Dorm listing as stored by the dorm repository"""
    id: str
    dorm_name: str
    area: Optional[str] = None
    university: Optional[str] = None
    monthly_price: Optional[float] = None
    room_types: Optional[str] = None
    amenities: List[str] = Field(default_factory=list)
    gender_preference: Optional[str] = None
    verification_status: str = "Verified"

    @field_validator('monthly_price', mode='before')
    @classmethod
    def clean_price(cls, v):
        return normalize_budget(v)

    @field_validator('amenities', mode='before')
    @classmethod
    def clean_amenities(cls, v):
        return clean_list(v)

    def to_profile(self) -> Profile:
        """Dorm as a scoring candidate (price stands in for budget)"""
        return Profile(
            id=self.id,
            full_name=self.dorm_name,
            budget=self.monthly_price,
            university=self.university,
            room_type=self.room_types,
            area=self.area,
            amenities=self.amenities,
            gender=self.gender_preference,
        )


# ============================================================================
# FILTERS
# ============================================================================

ALL_SENTINELS = {"all", "all universities", "any"}


class FilterSpec(BaseModel):
    """
    Hard filters applied to raw candidate attributes (AND logic).

    A filter left as None is inactive.
    """
    budget_min: Optional[float] = Field(None, ge=0, description="Inclusive lower budget bound")
    budget_max: Optional[float] = Field(None, ge=0, description="Inclusive upper budget bound")
    university: Optional[str] = None
    room_type: Optional[str] = None
    personality: Optional[str] = Field(None, description="Social-vs-quiet answer to match")
    name: Optional[str] = Field(None, description="Case-insensitive substring of the name")

    @model_validator(mode='before')
    @classmethod
    def clean_filters(cls, data):
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for key in ("university", "room_type", "personality", "name"):
            value = normalize_text(cleaned.get(key))
            # "All" / "All Universities" are the UI's "no filter" sentinels
            if value and value.lower() in ALL_SENTINELS:
                value = None
            cleaned[key] = value
        return cleaned

    @model_validator(mode='after')
    def validate_range(self):
        if self.budget_min is not None and self.budget_max is not None:
            if self.budget_min > self.budget_max:
                # Auto-swap if reversed
                self.budget_min, self.budget_max = self.budget_max, self.budget_min
        return self

    @property
    def has_budget_range(self) -> bool:
        return self.budget_min is not None or self.budget_max is not None

    def active_filters(self) -> List[str]:
        """Names of the filters that constrain the result"""
        active = []
        if self.has_budget_range:
            active.append("budget")
        for key in ("university", "room_type", "personality", "name"):
            if getattr(self, key):
                active.append(key)
        return active


# ============================================================================
# RANKING REQUEST / RESPONSE
# ============================================================================

class ScoredCandidate(BaseModel):
    """Candidate plus its compatibility score and reasons (request-scoped)"""
    candidate: Profile
    score: int = Field(..., ge=0, le=100)
    reasons: List[str] = Field(default_factory=list, max_length=3)


class RankingRequest(BaseModel):
    """Body of the ranking endpoints"""
    requester: Profile = Field(default_factory=Profile)
    candidates: List[Profile] = Field(default_factory=list)
    filters: FilterSpec = Field(default_factory=FilterSpec)
    limit: Optional[int] = Field(None, ge=1, le=100, description="Top-N; defaults per variant")


class RankingResponse(BaseModel):
    """Ranked candidates"""
    variant: str
    total_candidates: int
    returned: int
    took_ms: int = 0
    results: List[ScoredCandidate] = Field(default_factory=list)
