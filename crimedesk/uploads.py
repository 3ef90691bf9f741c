"""Bulk case ingestion from CSV, JSON or XML files uploaded by admins.

Each upload gets an `uploaded_files` record that starts as `processing`.
Rows are validated with the same rules as manual entry; valid rows land in
the review queue at `pending_review`, invalid rows are reported back by row
number. A file pandas cannot read marks the record `failed`.
"""
from __future__ import annotations
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from crimedesk import db
from crimedesk.events_bus import publish_event
from crimedesk.validation import CaseValidationError, validate_case_submission

logger = logging.getLogger(__name__)

ALLOWED_TYPES = ('csv', 'json', 'xml')


class UnsupportedFileType(ValueError):
    pass


def detect_file_type(filename: str) -> str:
    ext = Path(filename or '').suffix.lower().lstrip('.')
    if ext not in ALLOWED_TYPES:
        raise UnsupportedFileType('Invalid file type: only csv, json and xml are accepted')
    return ext


def read_records(path: Path, file_type: str) -> List[Dict[str, Any]]:
    if file_type == 'csv':
        df = pd.read_csv(path, dtype=str)
    elif file_type == 'json':
        df = pd.read_json(path, orient='records', dtype=False)
    elif file_type == 'xml':
        df = pd.read_xml(path, parser='etree', dtype=str)
    else:
        raise UnsupportedFileType(f'unsupported file type {file_type}')
    df = df.rename(columns=lambda c: str(c).strip().lower())
    records = []
    for row in df.to_dict(orient='records'):
        records.append({k: (None if pd.isna(v) else str(v).strip()) for k, v in row.items()})
    return records


def _ingest_rows(conn: sqlite3.Connection, rows: List[Dict[str, Any]], user_id: Optional[int]) -> tuple[int, list]:
    inserted = 0
    errors: list[dict] = []
    for i, row in enumerate(rows, start=1):
        try:
            record = validate_case_submission(row)
        except CaseValidationError as e:
            errors.append({'row': i, 'errors': e.errors})
            continue
        if db.get_case_by_number(conn, record['case_number']):
            errors.append({'row': i, 'errors': {'case_number': f"Case number {record['case_number']} already exists"}})
            continue
        db.insert_case(conn, record, assigned_officer=user_id)
        inserted += 1
    return inserted, errors


def ingest_file(conn: sqlite3.Connection, path: Path, filename: str, user: Dict[str, Any]) -> dict:
    """Parse a saved upload, insert its valid rows and return the final upload record."""
    file_type = detect_file_type(filename)
    size = Path(path).stat().st_size
    user_id = user.get('id')
    upload_id = db.insert_upload(conn, filename, file_type, size, user_id)
    try:
        rows = read_records(Path(path), file_type)
    except (ValueError, SyntaxError, OSError) as e:
        logger.warning("upload %s (%s) could not be parsed: %s", upload_id, filename, e)
        db.finish_upload(conn, upload_id, 'failed', None, [str(e)])
    else:
        try:
            inserted, errors = _ingest_rows(conn, rows, user_id)
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("upload %s (%s) failed while storing rows: %s", upload_id, filename, e)
            db.finish_upload(conn, upload_id, 'failed', None, [f"database error: {e}"])
        else:
            db.finish_upload(conn, upload_id, 'completed', inserted, errors)
            db.insert_activity(conn, user_id, user.get('username'), 'file_uploaded',
                               f"{filename}: {inserted} cases imported, {len(errors)} rows rejected")
            logger.info("upload %s (%s): %d inserted, %d rejected", upload_id, filename, inserted, len(errors))
    record = db.get_upload(conn, upload_id)
    publish_event('upload_processed', {'id': upload_id, 'status': record['status'],
                                       'records_count': record['records_count']})
    return record
