"""Run an interpreted voice/typed command against published cases."""
from __future__ import annotations
import logging
import sqlite3
from datetime import date, datetime
from typing import Iterable, List, Optional

from crimedesk import db
from crimedesk.nlp_processor import CommandEntities, ParsedCommand, TimeRange

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50


def _reported_on(case: dict) -> Optional[date]:
    raw = case.get('date_reported')
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace('Z', '+00:00')).date()
    except ValueError:
        return None


def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle.lower() in value.lower()


def _in_range(case: dict, time_range: TimeRange) -> bool:
    reported = _reported_on(case)
    if reported is None:
        return False
    if time_range.start is not None and reported < time_range.start.date():
        return False
    if time_range.end is not None and reported > time_range.end.date():
        return False
    return True


def _matches_keywords(case: dict, keywords: Iterable[str]) -> bool:
    haystack = ' '.join(str(case.get(k) or '') for k in ('title', 'description', 'crime_type', 'location')).lower()
    return any(k in haystack for k in keywords)


def has_structured_filters(entities: CommandEntities) -> bool:
    return any(v is not None for v in (
        entities.crime_type, entities.location, entities.time_range, entities.suspect, entities.case_id,
    ))


def matches(case: dict, entities: CommandEntities) -> bool:
    """True when a case satisfies every entity present in the command.

    Keywords are only consulted when the command carries no structured entity;
    otherwise they would reject cases for filler words like "cases".
    """
    if entities.crime_type and not any(_contains(case.get('crime_type'), t) for t in entities.crime_type):
        return False
    if entities.location and not _contains(case.get('location'), entities.location):
        return False
    if entities.time_range is not None and not _in_range(case, entities.time_range):
        return False
    if entities.suspect and not _contains(case.get('primary_suspect'), entities.suspect):
        return False
    if entities.case_id and (case.get('case_number') or '').lower() != entities.case_id.lower():
        return False
    if not has_structured_filters(entities) and entities.keywords:
        return _matches_keywords(case, entities.keywords)
    return True


def search_cases(conn: sqlite3.Connection, parsed: ParsedCommand, limit: int = DEFAULT_LIMIT) -> List[dict]:
    published = db.list_cases(conn, stage='published')
    hits = [c for c in published if matches(c, parsed.entities)]
    hits.sort(key=lambda c: c.get('date_reported') or '', reverse=True)
    logger.info("search %r matched %d of %d published cases", parsed.raw_text, len(hits), len(published))
    return hits[:limit]


def record_search(conn: sqlite3.Connection, user_id: int, parsed: ParsedCommand, results_count: int) -> int:
    filters = parsed.entities.to_dict()
    filters['intent'] = parsed.intent.value
    return db.insert_search(conn, user_id, parsed.raw_text, filters, results_count)
