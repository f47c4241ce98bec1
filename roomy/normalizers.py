"""
Attribute Normalizers for Compatibility Scoring
================================================
Raw profile records arrive in several shapes: camelCase from the web client,
snake_case from the database, dorm listings with `monthly_price` and a
comma-separated amenities string, boost traits nested inside the onboarding
answers. Everything here maps those shapes onto one canonical dict.

Contract: a missing or unusable value becomes None ("no signal"). Nothing in
this module raises on bad input.
"""

import re
from typing import Any, Dict, List, Optional


# =============================================================================
# KEY ALIASES - Map raw field names to canonical names
# =============================================================================

PROFILE_KEY_ALIASES: Dict[str, List[str]] = {
    "id": ["id", "user_id", "userId"],
    "full_name": ["full_name", "fullName", "name", "dorm_name", "dormName"],
    "budget": ["budget", "monthly_price", "monthlyPrice", "price"],
    "university": ["university", "preferred_university", "preferredUniversity"],
    "room_type": ["room_type", "roomType", "room_types", "roomTypes"],
    "area": ["area", "residential_area", "residentialArea", "preferred_housing_area"],
    "amenities": ["amenities", "services_amenities", "preferred_amenities", "preferredAmenities"],
    "gender": ["gender", "gender_preference", "genderPreference"],
    "personality_answers": ["personality_answers", "personalityAnswers", "preferences"],
    "boost_profile": ["boost_profile", "boostProfile"],
}

BOOST_KEY_ALIASES: Dict[str, List[str]] = {
    "wake_time": ["wake_time", "wakeTime"],
    "cleanliness": ["cleanliness"],
    "noise_tolerance": ["noise_tolerance", "noiseTolerance"],
    "guest_policy": ["guest_policy", "guestPolicy"],
    "cooking_habits": ["cooking_habits", "cookingHabits"],
    "social_energy": ["social_energy", "socialEnergy"],
    "organization_style": ["organization_style", "organizationStyle"],
    "temperature_preference": ["temperature_preference", "temperaturePreference"],
}

# Boost traits compared by closeness; the rest are compared by equality
BOOST_NUMERIC_TRAITS = {"cleanliness", "noise_tolerance", "social_energy", "organization_style"}


# =============================================================================
# PERSONALITY QUESTIONS - Onboarding question keys used by the rubric
# =============================================================================

QUESTION_SOCIAL = "Would you describe yourself as more Social or Quiet?"
QUESTION_STUDY = "Do you prefer to study alone or with others?"
QUESTION_AREA = "Which area or campus would you prefer to live near?"


# =============================================================================
# VALUE NORMALIZERS
# =============================================================================

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def normalize_text(text: Optional[Any]) -> Optional[str]:
    """Trim a label; empty or non-string input is no signal"""
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        text = str(text)
    if not isinstance(text, str):
        return None
    cleaned = " ".join(text.split())
    return cleaned or None


def normalize_number(value: Optional[Any]) -> Optional[float]:
    """Coerce a numeric field ("$500", "4", 4.0) to float"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if match:
            return float(match.group(0))
    return None


def normalize_budget(value: Optional[Any]) -> Optional[float]:
    """Budgets must be positive; zero means the user never set one"""
    number = normalize_number(value)
    if number is None or number <= 0:
        return None
    return number


def clean_list(items: Optional[Any]) -> List[str]:
    """Clean a list of labels - accepts a list or a comma-separated string"""
    if not items:
        return []
    if isinstance(items, str):
        items = items.split(",")
    if not isinstance(items, (list, tuple, set)):
        return []
    result = []
    for item in items:
        cleaned = normalize_text(item)
        if cleaned and cleaned not in result:
            result.append(cleaned)
    return result


def normalize_answers(answers: Optional[Any]) -> Dict[str, str]:
    """Keep only answered onboarding questions"""
    if not isinstance(answers, dict):
        return {}
    cleaned = {}
    for question, answer in answers.items():
        if question == "boost_profile":
            continue
        text = normalize_text(answer)
        if isinstance(question, str) and text:
            cleaned[question.strip()] = text
    return cleaned


def normalize_boost_profile(raw: Optional[Any]) -> Optional[Dict[str, Any]]:
    """Map boost traits to canonical keys; numeric traits become floats"""
    if not isinstance(raw, dict):
        return None
    boost: Dict[str, Any] = {}
    for canonical, aliases in BOOST_KEY_ALIASES.items():
        value = _first_present(raw, aliases)
        if canonical in BOOST_NUMERIC_TRAITS:
            number = normalize_number(value)
            # Trait scales start at 1; 0 is an unanswered slider
            boost[canonical] = number if number else None
        else:
            boost[canonical] = normalize_text(value)
    return boost


def _first_present(raw: Dict[str, Any], aliases: List[str]) -> Any:
    for alias in aliases:
        if alias in raw and raw[alias] is not None:
            return raw[alias]
    return None


# =============================================================================
# PROFILE NORMALIZER
# =============================================================================

def normalize_profile_dict(raw: Any) -> Dict[str, Any]:
    """
    Normalize a raw student or dorm record into canonical profile fields.

    Args:
        raw: dict in any of the supported shapes (non-dicts are returned as-is
             so pydantic can validate model instances)

    Returns:
        dict with canonical keys; absent fields are None or empty

    Example:
        >>> normalize_profile_dict({"roomType": " Single ", "budget": "$500"})["room_type"]
        'Single'
    """
    if not isinstance(raw, dict):
        return raw

    answers_raw = _first_present(raw, PROFILE_KEY_ALIASES["personality_answers"])
    boost_raw = _first_present(raw, PROFILE_KEY_ALIASES["boost_profile"])
    if boost_raw is None and isinstance(answers_raw, dict):
        # Onboarding stores the boost questionnaire inside the answers blob
        boost_raw = answers_raw.get("boost_profile")
    if hasattr(boost_raw, "model_dump"):
        boost_raw = boost_raw.model_dump()

    room_type = _first_present(raw, PROFILE_KEY_ALIASES["room_type"])
    if isinstance(room_type, (list, tuple)):
        room_type = ", ".join(clean_list(room_type))

    return {
        "id": normalize_text(_first_present(raw, PROFILE_KEY_ALIASES["id"])),
        "full_name": normalize_text(_first_present(raw, PROFILE_KEY_ALIASES["full_name"])),
        "budget": normalize_budget(_first_present(raw, PROFILE_KEY_ALIASES["budget"])),
        "university": normalize_text(_first_present(raw, PROFILE_KEY_ALIASES["university"])),
        "room_type": normalize_text(room_type),
        "area": normalize_text(_first_present(raw, PROFILE_KEY_ALIASES["area"])),
        "amenities": clean_list(_first_present(raw, PROFILE_KEY_ALIASES["amenities"])),
        "gender": normalize_text(_first_present(raw, PROFILE_KEY_ALIASES["gender"])),
        "personality_answers": normalize_answers(answers_raw),
        "boost_profile": normalize_boost_profile(boost_raw),
    }


def contains_ci(haystack: Optional[str], needle: Optional[str]) -> bool:
    """Case-insensitive containment; absent values never match"""
    if not haystack or not needle:
        return False
    return needle.lower() in haystack.lower()
