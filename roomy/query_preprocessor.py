"""
Chat Query Preprocessor - Filters and intents from free-text chat
==================================================================

Students type things like:
- "I want dorms under $450 near AUB with wifi"
- "something cheaper"
- "single room in hamra with parking"
- "reset chat"

Our job: turn each message into dorm-search filters, note which of them are
durable preferences worth remembering, and spot the memory commands.

Extraction is an ORDERED table of (predicate, extractor) rules. Each rule
sees the lowercased message, the carried-forward session context and what
earlier rules already extracted. Later rules may override earlier ones for
the same key (the last amenity mentioned wins).
"""

import re
import math
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field

from roomy.chat_schema import StudentPreferences


# =============================================================================
# KEYWORD TABLES
# =============================================================================

UNIVERSITIES = ["lau", "aub", "usek", "usj", "balamand", "bau", "lu", "haigazian"]

AREAS = [
    "hamra", "jbeil", "byblos", "verdun", "raoucheh", "hazmieh",
    "badaro", "dekowaneh", "manara", "blat", "fidar",
]

ROOM_TYPES = ["shared", "single", "private", "studio", "apartment"]

# Canonical amenity -> trigger keywords, in evaluation order
AMENITY_KEYWORDS = {
    "parking": ["parking", "garage"],
    "wifi": ["wifi", "internet"],
    "gym": ["gym", "fitness"],
    "laundry": ["laundry"],
}

CHEAPER_KEYWORDS = ["cheaper", "lower"]
CHEAPER_FACTOR = 0.8

ROOMMATE_KEYWORDS = ["roommate", "room mate", "find me someone"]

BUDGET_PATTERN = re.compile(r"\$?(\d{2,4})")


# =============================================================================
# MEMORY COMMANDS
# =============================================================================

class ChatCommand(str, Enum):
    RESET_MEMORY = "reset_memory"
    RECALL_MEMORY = "recall_memory"
    RESET_CHAT = "reset_chat"


# Checked in order; the first match short-circuits the turn
COMMAND_PHRASES = [
    (ChatCommand.RESET_MEMORY, ["reset my memory", "reset ai memory"]),
    (ChatCommand.RECALL_MEMORY, ["what do you remember", "what do you know about me"]),
    (ChatCommand.RESET_CHAT, ["reset chat", "start over"]),
]


def detect_command(message: str) -> Optional[ChatCommand]:
    """Case-insensitive substring match against the command phrases"""
    text = message.lower()
    for command, phrases in COMMAND_PHRASES:
        if any(phrase in text for phrase in phrases):
            return command
    return None


def is_roommate_query(message: str) -> bool:
    text = message.lower()
    return any(keyword in text for keyword in ROOMMATE_KEYWORDS)


# =============================================================================
# EXTRACTION RULES
# =============================================================================

@dataclass
class RuleInput:
    """What a rule can look at"""
    text: str                                   # Lowercased message
    context: Dict[str, Any]                     # Filters carried from earlier turns
    found: Dict[str, Any] = field(default_factory=dict)  # Extracted so far this turn


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    predicate: Callable[[RuleInput], bool]
    extractor: Callable[[RuleInput], Dict[str, Any]]
    learned: bool = False   # Extracted values are durable preferences


def _first_keyword(text: str, keywords: List[str], whole_word: bool = False) -> Optional[str]:
    for keyword in keywords:
        if whole_word:
            if re.search(r"\b" + re.escape(keyword) + r"\b", text):
                return keyword
        elif keyword in text:
            return keyword
    return None


def _wants_cheaper(rule_input: RuleInput) -> bool:
    return (
        "budget" not in rule_input.found
        and bool(rule_input.context.get("budget"))
        and _first_keyword(rule_input.text, CHEAPER_KEYWORDS) is not None
    )


def _cheaper_budget(rule_input: RuleInput) -> Dict[str, Any]:
    return {"budget": int(math.floor(rule_input.context["budget"] * CHEAPER_FACTOR))}


def _amenity_rule(amenity: str, keywords: List[str]) -> ExtractionRule:
    return ExtractionRule(
        name=f"amenity:{amenity}",
        predicate=lambda r: _first_keyword(r.text, keywords) is not None,
        extractor=lambda r: {"amenity": amenity},
        learned=True,
    )


EXTRACTION_RULES: List[ExtractionRule] = [
    ExtractionRule(
        name="budget",
        predicate=lambda r: BUDGET_PATTERN.search(r.text) is not None,
        extractor=lambda r: {"budget": int(BUDGET_PATTERN.search(r.text).group(1))},
    ),
    ExtractionRule(
        name="cheaper",
        predicate=_wants_cheaper,
        extractor=_cheaper_budget,
    ),
    ExtractionRule(
        name="university",
        # Short abbreviations ("lu", "bau") need word boundaries
        predicate=lambda r: _first_keyword(r.text, UNIVERSITIES, whole_word=True) is not None,
        extractor=lambda r: {"university": _first_keyword(r.text, UNIVERSITIES, whole_word=True).upper()},
    ),
    ExtractionRule(
        name="area",
        predicate=lambda r: _first_keyword(r.text, AREAS) is not None,
        extractor=lambda r: {"area": _first_keyword(r.text, AREAS)},
        learned=True,
    ),
    ExtractionRule(
        name="roomType",
        predicate=lambda r: _first_keyword(r.text, ROOM_TYPES) is not None,
        extractor=lambda r: {"roomType": _first_keyword(r.text, ROOM_TYPES)},
        learned=True,
    ),
] + [_amenity_rule(amenity, keywords) for amenity, keywords in AMENITY_KEYWORDS.items()]


# =============================================================================
# PREPROCESSOR
# =============================================================================

@dataclass
class ExtractedFilters:
    """Structured extraction from one chat message"""
    original_message: str
    filters: Dict[str, Any] = field(default_factory=dict)        # Merged filters for this turn
    from_message: Dict[str, Any] = field(default_factory=dict)   # Only what this message said
    learned_prefs: Dict[str, str] = field(default_factory=dict)
    matched_rules: List[str] = field(default_factory=list)


class ChatQueryPreprocessor:
    """
    Applies the rule table and merges with session context and stored
    preferences.

    Precedence per key: this message > session context > stored preferences.
    """

    def __init__(self, rules: Optional[List[ExtractionRule]] = None):
        self.rules = list(rules) if rules is not None else list(EXTRACTION_RULES)

    def extract(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        stored_prefs: Optional[StudentPreferences] = None
    ) -> ExtractedFilters:
        context = dict(context or {})
        result = ExtractedFilters(original_message=message)
        rule_input = RuleInput(text=message.lower(), context=context)

        for rule in self.rules:
            if not rule.predicate(rule_input):
                continue
            values = rule.extractor(rule_input)
            rule_input.found.update(values)
            result.matched_rules.append(rule.name)
            if rule.learned:
                result.learned_prefs.update({k: str(v) for k, v in values.items()})

        result.from_message = dict(rule_input.found)

        # New values override carried-forward context; other keys persist
        merged = {**context, **rule_input.found}
        if stored_prefs is not None:
            for key, value in stored_prefs.as_filters().items():
                merged.setdefault(key, value)
        result.filters = merged
        return result


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_preprocessor: Optional[ChatQueryPreprocessor] = None


def get_preprocessor() -> ChatQueryPreprocessor:
    """Get singleton preprocessor instance"""
    global _preprocessor
    if _preprocessor is None:
        _preprocessor = ChatQueryPreprocessor()
    return _preprocessor


def extract_filters(
    message: str,
    context: Optional[Dict[str, Any]] = None,
    stored_prefs: Optional[StudentPreferences] = None
) -> ExtractedFilters:
    """Convenience function to extract filters from a chat message"""
    return get_preprocessor().extract(message, context, stored_prefs)
