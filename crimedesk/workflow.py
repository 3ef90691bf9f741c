"""Review workflow for submitted cases.

A case enters at `pending_review` and is only visible to investigators once an
admin publishes it. Every transition is written to the activity log and
broadcast on the event bus.
"""
from __future__ import annotations
import logging
import sqlite3
from typing import Any, Dict, Optional

from crimedesk import db
from crimedesk.events_bus import publish_event
from crimedesk.validation import validate_case_submission

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    status_code = 400


class CaseNotFound(WorkflowError):
    status_code = 404


def _actor(user: Optional[Dict[str, Any]]) -> tuple[Optional[int], Optional[str]]:
    if not user:
        return None, None
    return user.get('id'), user.get('username')


def log_activity(conn: sqlite3.Connection, user: Optional[Dict[str, Any]], action: str, details: str | None = None):
    uid, name = _actor(user)
    db.insert_activity(conn, uid, name, action, details)


def submit_case(conn: sqlite3.Connection, payload: Dict[str, Any], user: Optional[Dict[str, Any]] = None) -> dict:
    """Validate and store a new case at `pending_review`.

    Raises CaseValidationError before touching the database, and WorkflowError
    when the case number is already taken.
    """
    record = validate_case_submission(payload)
    if db.get_case_by_number(conn, record['case_number']):
        raise WorkflowError(f"case number {record['case_number']} already exists")
    uid, _ = _actor(user)
    case_id = db.insert_case(conn, record, assigned_officer=uid)
    log_activity(conn, user, 'case_submitted', f"Case {record['case_number']} has been added to the database")
    publish_event('case_submitted', {'id': case_id, 'case_number': record['case_number']})
    logger.info("case %s submitted as %s", record['case_number'], case_id)
    return db.get_case(conn, case_id)


def update_stage(conn: sqlite3.Connection, case_id: str, stage: str, user: Optional[Dict[str, Any]] = None) -> dict:
    if stage not in db.WORKFLOW_STAGES:
        raise WorkflowError(f"invalid stage '{stage}'; expected one of {', '.join(db.WORKFLOW_STAGES)}")
    case = db.get_case(conn, case_id)
    if not case:
        raise CaseNotFound('case not found')
    previous = case['workflow_stage']
    db.update_case_stage(conn, case_id, stage)
    log_activity(conn, user, 'stage_changed', f"Case {case['case_number']}: {previous} -> {stage}")
    event = 'case_published' if stage == 'published' else 'stage_changed'
    publish_event(event, {'id': case_id, 'case_number': case['case_number'], 'from': previous, 'to': stage})
    logger.info("case %s moved %s -> %s", case['case_number'], previous, stage)
    return db.get_case(conn, case_id)


def approve_case(conn: sqlite3.Connection, case_id: str, user: Optional[Dict[str, Any]] = None) -> dict:
    return update_stage(conn, case_id, 'published', user)


def review_queue(conn: sqlite3.Connection, stage: Optional[str] = None) -> list[dict]:
    """Unpublished cases, most recently updated first; optionally one stage only."""
    if stage:
        if stage not in db.WORKFLOW_STAGES or stage == 'published':
            raise WorkflowError(f"invalid review stage '{stage}'")
        return db.list_cases(conn, stage=stage)
    return db.list_cases(conn, exclude_stage='published')


def stage_counts(conn: sqlite3.Connection) -> dict[str, int]:
    return db.stage_counts(conn)


def add_comment(conn: sqlite3.Connection, case_id: str, user: Dict[str, Any], text: str) -> dict:
    text = (text or '').strip()
    if not text:
        raise WorkflowError('comment text required')
    if not db.get_case(conn, case_id):
        raise CaseNotFound('case not found')
    uid, name = _actor(user)
    cid = db.insert_comment(conn, case_id, uid, name or 'unknown', text)
    return {'id': cid, 'case_id': case_id, 'user_id': uid, 'user_name': name, 'comment': text}
