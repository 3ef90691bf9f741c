"""Rule-based interpreter for spoken or typed investigator queries.

`parse_voice_command` turns an utterance such as
"show me all armed robberies this month" into a `ParsedCommand`: an intent,
the entities found in the text, a heuristic confidence in [0, 1] and, when
confidence is below `CLARIFICATION_THRESHOLD`, a follow-up question.

Everything here is pure and synchronous. The lookup tables are module-level
constants and are never mutated, so the functions are safe to call from any
number of request threads.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CLARIFICATION_THRESHOLD = 0.7


class CommandIntent(str, Enum):
    SEARCH_CASES = "search_cases"
    FILTER_CASES = "filter_cases"
    TEMPORAL_QUERY = "temporal_query"
    LOCATION_QUERY = "location_query"
    SUSPECT_QUERY = "suspect_query"
    CRIME_TYPE_QUERY = "crime_type_query"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TimeRange:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    relative: Optional[str] = None  # e.g. "this month", "last week"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.start is not None:
            out["start"] = self.start.isoformat()
        if self.end is not None:
            out["end"] = self.end.isoformat()
        if self.relative is not None:
            out["relative"] = self.relative
        return out


@dataclass(frozen=True)
class CommandEntities:
    """Entities pulled out of one utterance. `None` means "not detected"."""
    crime_type: Optional[Tuple[str, ...]] = None
    location: Optional[str] = None
    time_range: Optional[TimeRange] = None
    suspect: Optional[str] = None
    case_id: Optional[str] = None
    keywords: Optional[Tuple[str, ...]] = None

    def count(self) -> int:
        return sum(1 for f in fields(self) if getattr(self, f.name) is not None)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.crime_type is not None:
            out["crimeType"] = list(self.crime_type)
        if self.location is not None:
            out["location"] = self.location
        if self.time_range is not None:
            out["timeRange"] = self.time_range.to_dict()
        if self.suspect is not None:
            out["suspect"] = self.suspect
        if self.case_id is not None:
            out["caseId"] = self.case_id
        if self.keywords is not None:
            out["keywords"] = list(self.keywords)
        return out


@dataclass(frozen=True)
class ParsedCommand:
    intent: CommandIntent
    entities: CommandEntities
    confidence: float
    raw_text: str
    needs_clarification: bool
    clarification_question: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "intent": self.intent.value,
            "entities": self.entities.to_dict(),
            "confidence": round(self.confidence, 4),
            "rawText": self.raw_text,
            "needsClarification": self.needs_clarification,
        }
        if self.clarification_question is not None:
            out["clarificationQuestion"] = self.clarification_question
        return out


CRIME_TYPES = (
    "armed robbery",
    "robbery",
    "burglary",
    "theft",
    "assault",
    "homicide",
    "murder",
    "fraud",
    "arson",
    "kidnapping",
    "vandalism",
    "drug trafficking",
    "weapons violation",
)


def _plural(phrase: str) -> str:
    if phrase.endswith("y") and phrase[-2:-1] not in ("a", "e", "i", "o", "u"):
        return phrase[:-1] + "ies"
    return phrase + "s"


# canonical phrase -> surface forms that count as a mention of it
CRIME_TYPE_FORMS = {term: (term, _plural(term)) for term in CRIME_TYPES}

# Iteration order matters: the first phrase found wins.
TEMPORAL_KEYWORDS = {
    "today": {"days": 0},
    "yesterday": {"days": 1},
    "this week": {"days": 7},
    "last week": {"days": 14, "offset": 7},
    "this month": {"days": 30},
    "last month": {"days": 60, "offset": 30},
    "this year": {"days": 365},
}

SEARCH_TRIGGERS = ("show", "find", "search", "get")
FILTER_TRIGGERS = ("filter", "narrow", "matching")
SUSPECT_TRIGGERS = ("suspect", "perpetrator")
LOCATION_CUES = ("in ", "near ", "at ", "around ", "sector", "district")

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "show", "find", "search", "get", "me", "all",
}

# Tried in order; the first pattern that matches supplies the location.
LOCATION_PATTERNS = (
    re.compile(r"(?:in|near|at|around)\s+([a-z0-9\s]+?)(?:\s|$)", re.IGNORECASE),
    re.compile(r"sector\s+(\d+)", re.IGNORECASE),
    re.compile(r"district\s+([a-z0-9\s]+)", re.IGNORECASE),
)
SUSPECT_PATTERN = re.compile(r"suspect(?:\s+named)?\s+([a-z\s]+?)(?:\s|$)", re.IGNORECASE)
CASE_ID_PATTERN = re.compile(r"case\s+(?:id\s+)?([a-z0-9-]+)", re.IGNORECASE)
DATE_PATTERN = re.compile(r"(\d{1,2}/\d{1,2}/\d{4})")

CLARIFY_UNKNOWN = "I didn't quite understand that. Could you please rephrase your query?"
CLARIFY_MORE_DETAILS = "Could you please specify more details, such as crime type, location, or time period?"
CLARIFY_MULTIPLE_CRIMES = "I detected multiple crime types: {types}. Which one would you like to search for?"
CLARIFY_TIME = "What time period would you like to search? For example: this month, last week, or a specific date?"
CLARIFY_LOCATION = "Which location or sector would you like to search?"
CLARIFY_FALLBACK = "Could you please provide more specific details for your search?"


def parse_voice_command(text: str, now: Optional[datetime] = None) -> ParsedCommand:
    """Parse a natural-language command into a structured `ParsedCommand`.

    Never raises. Unrecognised input comes back with intent `unknown`, low
    confidence and a clarification question.
    """
    normalized = normalize(text)
    intent = determine_intent(normalized)
    entities = extract_entities(normalized, now=now)
    confidence = calculate_confidence(intent, entities, normalized)

    needs_clarification = confidence < CLARIFICATION_THRESHOLD
    question = generate_clarification_question(intent, entities) if needs_clarification else None

    logger.debug("parsed %r -> intent=%s confidence=%.2f entities=%s",
                 text, intent.value, confidence, entities.to_dict())
    return ParsedCommand(
        intent=intent,
        entities=entities,
        confidence=confidence,
        raw_text=text,
        needs_clarification=needs_clarification,
        clarification_question=question,
    )


def normalize(text: Optional[str]) -> str:
    return (text or "").lower().strip()


# ---- Intent ----

def contains_crime_type(text: str) -> bool:
    return any(form in text for forms in CRIME_TYPE_FORMS.values() for form in forms)


def contains_location(text: str) -> bool:
    # literal substring checks: "within " counts as "in "
    return any(cue in text for cue in LOCATION_CUES)


def contains_time_reference(text: str) -> bool:
    return any(keyword in text for keyword in TEMPORAL_KEYWORDS)


def determine_intent(text: str) -> CommandIntent:
    if any(word in text for word in SEARCH_TRIGGERS):
        if contains_crime_type(text):
            return CommandIntent.CRIME_TYPE_QUERY
        if contains_location(text):
            return CommandIntent.LOCATION_QUERY
        if contains_time_reference(text):
            return CommandIntent.TEMPORAL_QUERY
        return CommandIntent.SEARCH_CASES

    if any(word in text for word in FILTER_TRIGGERS):
        return CommandIntent.FILTER_CASES
    if contains_time_reference(text):
        return CommandIntent.TEMPORAL_QUERY
    if contains_location(text):
        return CommandIntent.LOCATION_QUERY
    if any(word in text for word in SUSPECT_TRIGGERS):
        return CommandIntent.SUSPECT_QUERY
    return CommandIntent.UNKNOWN


# ---- Entities ----

def extract_entities(text: str, now: Optional[datetime] = None) -> CommandEntities:
    crime_types = extract_crime_types(text)
    keywords = extract_keywords(text)
    return CommandEntities(
        crime_type=tuple(crime_types) or None,
        location=extract_location(text),
        time_range=extract_time_range(text, now=now),
        suspect=extract_suspect(text),
        case_id=extract_case_id(text),
        keywords=tuple(keywords) or None,
    )


def extract_crime_types(text: str) -> List[str]:
    """All vocabulary phrases mentioned, in vocabulary order, without subsumption."""
    return [term for term, forms in CRIME_TYPE_FORMS.items() if any(f in text for f in forms)]


def extract_location(text: str) -> Optional[str]:
    for pattern in LOCATION_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1).strip()
    return None


def extract_time_range(text: str, now: Optional[datetime] = None) -> Optional[TimeRange]:
    for keyword, window in TEMPORAL_KEYWORDS.items():
        if keyword in text:
            current = now or datetime.now()
            start = current - timedelta(days=window["days"])
            end = current
            if window.get("offset"):
                end = end - timedelta(days=window["offset"])
            return TimeRange(start=start, end=end, relative=keyword)

    m = DATE_PATTERN.search(text)
    if m:
        try:
            date = datetime.strptime(m.group(1), "%m/%d/%Y")
        except ValueError:
            # shaped like a date but not on the calendar, e.g. 13/45/2024
            return None
        return TimeRange(start=date, end=date)
    return None


def extract_suspect(text: str) -> Optional[str]:
    m = SUSPECT_PATTERN.search(text)
    return m.group(1).strip() if m else None


def extract_case_id(text: str) -> Optional[str]:
    m = CASE_ID_PATTERN.search(text)
    return m.group(1) if m else None


def extract_keywords(text: str) -> List[str]:
    words = (re.sub(r"[^a-z0-9]", "", word.lower()) for word in text.split())
    seen: Dict[str, None] = {}
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


# ---- Scoring & clarification ----

def calculate_confidence(intent: CommandIntent, entities: CommandEntities, text: str) -> float:
    score = 0.0
    if intent is not CommandIntent.UNKNOWN:
        score += 0.3

    score += min(entities.count() * 0.2, 0.4)

    # longer, more specific commands are more likely to be understood
    word_count = len(text.split())
    if word_count >= 4:
        score += 0.2
    if word_count >= 8:
        score += 0.1

    return min(score, 1.0)


def generate_clarification_question(intent: CommandIntent, entities: CommandEntities) -> str:
    if intent is CommandIntent.UNKNOWN:
        return CLARIFY_UNKNOWN
    if entities.crime_type is None and entities.location is None and entities.time_range is None:
        return CLARIFY_MORE_DETAILS
    if entities.crime_type and len(entities.crime_type) > 1:
        return CLARIFY_MULTIPLE_CRIMES.format(types=", ".join(entities.crime_type))
    if entities.time_range is None:
        return CLARIFY_TIME
    if entities.location is None:
        return CLARIFY_LOCATION
    return CLARIFY_FALLBACK


def format_command_summary(parsed: ParsedCommand) -> str:
    """One-line description of what a command will search for."""
    entities = parsed.entities
    parts: List[str] = []
    if entities.crime_type:
        parts.append(f"Crime: {', '.join(entities.crime_type)}")
    if entities.location:
        parts.append(f"Location: {entities.location}")
    if entities.time_range is not None and entities.time_range.relative:
        parts.append(f"Time: {entities.time_range.relative}")
    if entities.suspect:
        parts.append(f"Suspect: {entities.suspect}")
    if entities.case_id:
        parts.append(f"Case ID: {entities.case_id}")
    return " | ".join(parts) if parts else "General search"


__all__ = [
    "CommandIntent",
    "TimeRange",
    "CommandEntities",
    "ParsedCommand",
    "parse_voice_command",
    "format_command_summary",
]
