import dataclasses
from datetime import datetime, timedelta

import pytest

from crimedesk.nlp_processor import (
    CLARIFY_FALLBACK,
    CLARIFY_LOCATION,
    CLARIFY_MORE_DETAILS,
    CLARIFY_TIME,
    CLARIFY_UNKNOWN,
    CommandEntities,
    CommandIntent,
    TimeRange,
    calculate_confidence,
    contains_location,
    determine_intent,
    extract_keywords,
    extract_location,
    extract_time_range,
    format_command_summary,
    generate_clarification_question,
    parse_voice_command,
)

NOW = datetime(2024, 6, 15, 12, 0, 0)

UTTERANCES = [
    "",
    "   ",
    "hello",
    "show me all armed robberies this month",
    "find cases near sector 9 from last week",
    "show robbery and burglary cases",
    "case id CASE-2024-001",
    "filter by fraud",
    "any perpetrator or suspect named marcus",
    "get me every homicide and murder in downtown district 4 reported yesterday by patrol",
    "cases reported 03/15/2024",
]


def test_armed_robberies_this_month():
    parsed = parse_voice_command("show me all armed robberies this month", now=NOW)
    assert parsed.intent is CommandIntent.CRIME_TYPE_QUERY
    assert parsed.entities.crime_type == ("armed robbery", "robbery")
    assert parsed.entities.time_range.relative == "this month"
    assert parsed.entities.time_range.start == NOW - timedelta(days=30)
    assert parsed.entities.time_range.end == NOW
    assert parsed.confidence >= 0.7
    assert parsed.needs_clarification is False
    assert parsed.clarification_question is None


def test_near_sector_uses_preposition_pattern_first():
    parsed = parse_voice_command("find cases near sector 9 from last week", now=NOW)
    assert parsed.intent is CommandIntent.LOCATION_QUERY
    assert parsed.entities.location == "sector"
    tr = parsed.entities.time_range
    assert tr.relative == "last week"
    assert tr.start == NOW - timedelta(days=14)
    assert tr.end == NOW - timedelta(days=7)


def test_sector_and_district_patterns():
    assert extract_location("show cases from sector 9") == "9"
    assert extract_location("list burglaries for district 12") == "12"
    assert extract_location("nothing to see here") is None
    # non-greedy: only the first word after the preposition
    assert extract_location("robbery around the docks") == "the"


def test_location_cue_is_literal_substring():
    assert contains_location("cases within reach")
    assert determine_intent("cases within reach") is CommandIntent.LOCATION_QUERY
    assert not contains_location("find cases")


def test_empty_input():
    parsed = parse_voice_command("")
    assert parsed.intent is CommandIntent.UNKNOWN
    assert parsed.entities == CommandEntities()
    assert parsed.entities.to_dict() == {}
    assert parsed.confidence == 0
    assert parsed.needs_clarification is True
    assert parsed.clarification_question == CLARIFY_UNKNOWN


def test_multiple_crime_types_in_vocabulary_order():
    parsed = parse_voice_command("show robbery and burglary cases", now=NOW)
    assert parsed.entities.crime_type == ("robbery", "burglary")
    question = generate_clarification_question(parsed.intent, parsed.entities)
    assert question == (
        "I detected multiple crime types: robbery, burglary. Which one would you like to search for?"
    )


def test_vocabulary_order_not_text_order():
    parsed = parse_voice_command("show fraud and theft", now=NOW)
    assert parsed.entities.crime_type == ("theft", "fraud")


def test_case_id_is_lowercased():
    parsed = parse_voice_command("case id CASE-2024-001", now=NOW)
    assert parsed.entities.case_id == "case-2024-001"
    assert parsed.raw_text == "case id CASE-2024-001"
    assert parsed.intent is CommandIntent.UNKNOWN
    assert parsed.clarification_question == CLARIFY_UNKNOWN


def test_case_id_needs_whitespace_after_case():
    assert parse_voice_command("show burglary cases", now=NOW).entities.case_id is None


def test_suspect_name():
    parsed = parse_voice_command("any perpetrator or suspect named marcus", now=NOW)
    assert parsed.intent is CommandIntent.SUSPECT_QUERY
    assert parsed.entities.suspect == "marcus"


@pytest.mark.parametrize("text,intent", [
    ("search everything", CommandIntent.SEARCH_CASES),
    ("get reports from yesterday", CommandIntent.TEMPORAL_QUERY),
    ("narrow results", CommandIntent.FILTER_CASES),
    ("incidents this week", CommandIntent.TEMPORAL_QUERY),
    ("the docks district", CommandIntent.LOCATION_QUERY),
    ("who is the perpetrator", CommandIntent.SUSPECT_QUERY),
    ("hello there", CommandIntent.UNKNOWN),
])
def test_intent_cascade(text, intent):
    assert determine_intent(text) is intent


def test_first_relative_keyword_wins():
    tr = extract_time_range("today or this year", now=NOW)
    assert tr.relative == "today"
    assert tr.start == NOW and tr.end == NOW


def test_absolute_date():
    tr = extract_time_range("cases reported 3/15/2024", now=NOW)
    assert tr == TimeRange(start=datetime(2024, 3, 15), end=datetime(2024, 3, 15))
    assert tr.relative is None


def test_relative_keyword_beats_absolute_date():
    assert extract_time_range("03/15/2024 or last month", now=NOW).relative == "last month"


def test_impossible_date_is_ignored():
    assert extract_time_range("cases from 13/45/2024", now=NOW) is None
    assert extract_time_range("no dates here", now=NOW) is None


def test_keywords_strip_punctuation_and_dedupe():
    assert extract_keywords("show the burglary, burglary reports!") == ["burglary", "reports"]
    assert extract_keywords("") == []


def test_confidence_components():
    empty = CommandEntities()
    assert calculate_confidence(CommandIntent.UNKNOWN, empty, "") == 0.0
    assert calculate_confidence(CommandIntent.UNKNOWN, empty, "one two three four") == pytest.approx(0.2)
    assert calculate_confidence(CommandIntent.UNKNOWN, empty, "a b c d e f g h") == pytest.approx(0.3)
    many = CommandEntities(crime_type=("theft",), location="x", suspect="y", keywords=("z",))
    assert calculate_confidence(CommandIntent.SEARCH_CASES, many, "a b c d e f g h") == pytest.approx(1.0)


def test_clarification_priority():
    intent = CommandIntent.SEARCH_CASES
    assert generate_clarification_question(intent, CommandEntities(keywords=("x",))) == CLARIFY_MORE_DETAILS
    assert generate_clarification_question(intent, CommandEntities(crime_type=("theft",))) == CLARIFY_TIME
    tr = TimeRange(start=NOW, end=NOW, relative="today")
    assert generate_clarification_question(intent, CommandEntities(time_range=tr)) == CLARIFY_LOCATION
    full = CommandEntities(crime_type=("theft",), location="docks", time_range=tr)
    assert generate_clarification_question(intent, full) == CLARIFY_FALLBACK


@pytest.mark.parametrize("text", UTTERANCES)
def test_invariants_hold_for_any_input(text):
    parsed = parse_voice_command(text, now=NOW)
    assert 0.0 <= parsed.confidence <= 1.0
    assert parsed.needs_clarification == (parsed.confidence < 0.7)
    assert (parsed.clarification_question is not None) == parsed.needs_clarification
    assert isinstance(format_command_summary(parsed), str)


@pytest.mark.parametrize("text", UTTERANCES)
def test_parsing_is_repeatable(text):
    assert parse_voice_command(text, now=NOW) == parse_voice_command(text, now=NOW)


def test_summary():
    parsed = parse_voice_command("show me all armed robberies this month", now=NOW)
    assert format_command_summary(parsed) == "Crime: armed robbery, robbery | Time: this month"
    assert format_command_summary(parse_voice_command("hello")) == "General search"
    dated = parse_voice_command("case id ab-1 on 03/15/2024", now=NOW)
    assert format_command_summary(dated) == "Case ID: ab-1"


def test_to_dict_uses_client_field_names():
    body = parse_voice_command("show me all armed robberies this month", now=NOW).to_dict()
    assert body["intent"] == "crime_type_query"
    assert body["rawText"] == "show me all armed robberies this month"
    assert body["needsClarification"] is False
    assert "clarificationQuestion" not in body
    assert body["entities"]["timeRange"]["relative"] == "this month"
    assert "location" not in body["entities"]


def test_parsed_command_is_immutable():
    parsed = parse_voice_command("show robbery and burglary reports", now=NOW)
    assert isinstance(parsed.entities.crime_type, tuple)
    assert isinstance(parsed.entities.keywords, tuple)
    with pytest.raises(AttributeError):
        parsed.entities.crime_type.append("fraud")
    with pytest.raises(dataclasses.FrozenInstanceError):
        parsed.entities.location = "docks"
    assert hash(parsed) == hash(parse_voice_command("show robbery and burglary reports", now=NOW))
    assert parsed.to_dict()["entities"]["crimeType"] == ["robbery", "burglary"]
