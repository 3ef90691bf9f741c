from __future__ import annotations
import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from crimedesk import config

logger = logging.getLogger(__name__)

DB_PATH: Path = config.DB_PATH

USER_ROLES = ('admin', 'senior_investigator', 'investigator')
WORKFLOW_STAGES = ('pending_review', 'under_review', 'needs_editing', 'approved', 'published')
UPLOAD_STATUSES = ('processing', 'completed', 'failed')


def get_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _now() -> str:
    return datetime.now().isoformat(timespec='seconds')


def init_db():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        """CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'investigator', -- admin | senior_investigator | investigator
            full_name TEXT,
            badge_number TEXT,
            department TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_login TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    cur.execute(
        """CREATE TABLE IF NOT EXISTS cases (
            id TEXT PRIMARY KEY,
            case_number TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            crime_type TEXT NOT NULL,
            severity TEXT NOT NULL CHECK (severity IN ('low','medium','high','critical')),
            status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open','under_investigation','closed','cold_case')),
            location TEXT,
            date_reported TEXT NOT NULL,
            primary_suspect TEXT,
            assigned_officer INTEGER REFERENCES users(id) ON DELETE SET NULL,
            evidence_summary TEXT,
            workflow_stage TEXT NOT NULL DEFAULT 'pending_review'
                CHECK (workflow_stage IN ('pending_review','under_review','needs_editing','approved','published')),
            last_updated TEXT DEFAULT CURRENT_TIMESTAMP,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    cur.execute(
        """CREATE TABLE IF NOT EXISTS timeline_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id TEXT NOT NULL REFERENCES cases(id) ON DELETE CASCADE,
            date TEXT NOT NULL,
            event_type TEXT NOT NULL,
            description TEXT NOT NULL,
            officer TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    # Reviewer discussion attached to a case while it moves through the workflow
    cur.execute(
        """CREATE TABLE IF NOT EXISTS case_comments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id TEXT NOT NULL REFERENCES cases(id) ON DELETE CASCADE,
            user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            user_name TEXT NOT NULL,
            comment TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    cur.execute(
        """CREATE TABLE IF NOT EXISTS activity_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            user_name TEXT,
            action TEXT NOT NULL,
            details TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    cur.execute(
        """CREATE TABLE IF NOT EXISTS search_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            query TEXT NOT NULL,
            filters TEXT, -- JSON serialized parsed entities
            results_count INTEGER NOT NULL DEFAULT 0,
            is_bookmarked INTEGER NOT NULL DEFAULT 0,
            searched_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    cur.execute(
        """CREATE TABLE IF NOT EXISTS uploaded_files (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            filename TEXT NOT NULL,
            file_type TEXT NOT NULL, -- csv | json | xml
            size_bytes INTEGER NOT NULL,
            uploaded_by INTEGER NOT NULL REFERENCES users(id),
            status TEXT NOT NULL CHECK (status IN ('processing','completed','failed')),
            records_count INTEGER,
            errors TEXT, -- JSON serialized list
            uploaded_at TEXT DEFAULT CURRENT_TIMESTAMP
        )"""
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_cases_stage ON cases(workflow_stage)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_search_user ON search_history(user_id)")
    conn.commit()
    conn.close()
    logger.info("database ready at %s", DB_PATH)


def row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    d = dict(row)
    for key in ('is_active', 'is_bookmarked'):
        if key in d and d[key] is not None:
            d[key] = bool(d[key])
    for key in ('filters', 'errors'):
        if d.get(key):
            d[key] = json.loads(d[key])
    return d


# ---- User helpers ----
def create_user(conn: sqlite3.Connection, username: str, password_hash: str, role: str = 'investigator',
                full_name: str | None = None, badge_number: str | None = None, department: str | None = None) -> int:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO users(username, password_hash, role, full_name, badge_number, department) VALUES (?,?,?,?,?,?)",
        (username, password_hash, role, full_name, badge_number, department),
    )
    conn.commit()
    return int(cur.lastrowid)


def find_user(conn: sqlite3.Connection, username: str) -> Optional[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE username=?", (username,))
    row = cur.fetchone()
    return row_to_dict(row) if row else None


def get_user(conn: sqlite3.Connection, user_id: int) -> Optional[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM users WHERE id=?", (user_id,))
    row = cur.fetchone()
    return row_to_dict(row) if row else None


def list_users(conn: sqlite3.Connection) -> List[dict]:
    cur = conn.cursor()
    cur.execute(
        "SELECT id, username, role, full_name, badge_number, department, is_active, last_login, created_at "
        "FROM users ORDER BY created_at ASC, id ASC"
    )
    return [row_to_dict(r) for r in cur.fetchall()]


def set_user_role(conn: sqlite3.Connection, user_id: int, role: str) -> bool:
    cur = conn.cursor()
    cur.execute("UPDATE users SET role=? WHERE id=?", (role, user_id))
    conn.commit()
    return cur.rowcount > 0


def set_user_active(conn: sqlite3.Connection, user_id: int, active: bool) -> bool:
    cur = conn.cursor()
    cur.execute("UPDATE users SET is_active=? WHERE id=?", (1 if active else 0, user_id))
    conn.commit()
    return cur.rowcount > 0


def touch_last_login(conn: sqlite3.Connection, user_id: int):
    cur = conn.cursor()
    cur.execute("UPDATE users SET last_login=? WHERE id=?", (_now(), user_id))
    conn.commit()


# ---- Cases helpers ----
def insert_case(conn: sqlite3.Connection, record: dict, assigned_officer: int | None = None,
                workflow_stage: str = 'pending_review') -> str:
    """Insert a validated case record and return its generated id."""
    case_id = uuid.uuid4().hex
    now = _now()
    cur = conn.cursor()
    cur.execute(
        """INSERT INTO cases(id, case_number, title, description, crime_type, severity, status, location,
               date_reported, primary_suspect, assigned_officer, evidence_summary, workflow_stage, last_updated)
           VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
        (
            case_id, record['case_number'], record['title'], record.get('description'), record['crime_type'],
            record['severity'], record.get('status') or 'open', record.get('location'),
            record.get('date_reported') or now, record.get('primary_suspect'), assigned_officer,
            record.get('evidence_summary'), workflow_stage, now,
        ),
    )
    conn.commit()
    return case_id


def get_case(conn: sqlite3.Connection, case_id: str) -> Optional[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM cases WHERE id=?", (case_id,))
    row = cur.fetchone()
    return dict(row) if row else None


def get_case_by_number(conn: sqlite3.Connection, case_number: str) -> Optional[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM cases WHERE lower(case_number)=lower(?)", (case_number,))
    row = cur.fetchone()
    return dict(row) if row else None


def list_cases(conn: sqlite3.Connection, stage: Optional[str] = None, exclude_stage: Optional[str] = None,
               limit: int | None = None) -> List[dict]:
    cur = conn.cursor()
    sql = "SELECT * FROM cases"
    params: list[Any] = []
    if stage:
        sql += " WHERE workflow_stage=?"
        params.append(stage)
    elif exclude_stage:
        sql += " WHERE workflow_stage<>?"
        params.append(exclude_stage)
    sql += " ORDER BY last_updated DESC, created_at DESC"
    if limit:
        sql += " LIMIT ?"
        params.append(int(limit))
    cur.execute(sql, params)
    return [dict(r) for r in cur.fetchall()]


def update_case_stage(conn: sqlite3.Connection, case_id: str, stage: str) -> bool:
    cur = conn.cursor()
    cur.execute("UPDATE cases SET workflow_stage=?, last_updated=? WHERE id=?", (stage, _now(), case_id))
    conn.commit()
    return cur.rowcount > 0


def stage_counts(conn: sqlite3.Connection) -> dict[str, int]:
    cur = conn.cursor()
    cur.execute("SELECT workflow_stage, COUNT(*) AS c FROM cases GROUP BY workflow_stage")
    counts = {stage: 0 for stage in WORKFLOW_STAGES}
    for r in cur.fetchall():
        counts[r['workflow_stage']] = int(r['c'])
    return counts


# ---- Timeline & comments ----
def insert_timeline_event(conn: sqlite3.Connection, case_id: str, date: str, event_type: str, description: str,
                          officer: str | None = None) -> int:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO timeline_events(case_id, date, event_type, description, officer) VALUES (?,?,?,?,?)",
        (case_id, date, event_type, description, officer),
    )
    conn.commit()
    return int(cur.lastrowid)


def list_timeline(conn: sqlite3.Connection, case_id: str) -> list[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM timeline_events WHERE case_id=? ORDER BY date ASC, id ASC", (case_id,))
    return [dict(r) for r in cur.fetchall()]


def insert_comment(conn: sqlite3.Connection, case_id: str, user_id: int | None, user_name: str, comment: str) -> int:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO case_comments(case_id, user_id, user_name, comment) VALUES (?,?,?,?)",
        (case_id, user_id, user_name, comment),
    )
    conn.commit()
    return int(cur.lastrowid)


def list_comments(conn: sqlite3.Connection, case_id: str) -> list[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM case_comments WHERE case_id=? ORDER BY id ASC", (case_id,))
    return [dict(r) for r in cur.fetchall()]


# ---- Activity log ----
def insert_activity(conn: sqlite3.Connection, user_id: int | None, user_name: str | None, action: str,
                    details: str | None = None) -> int:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO activity_logs(user_id, user_name, action, details) VALUES (?,?,?,?)",
        (user_id, user_name, action, details),
    )
    conn.commit()
    return int(cur.lastrowid)


def list_activity(conn: sqlite3.Connection, limit: int = 50) -> list[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM activity_logs ORDER BY id DESC LIMIT ?", (int(limit),))
    return [dict(r) for r in cur.fetchall()]


# ---- Search history ----
def insert_search(conn: sqlite3.Connection, user_id: int, query: str, filters: dict | None, results_count: int) -> int:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO search_history(user_id, query, filters, results_count) VALUES (?,?,?,?)",
        (user_id, query, json.dumps(filters) if filters else None, int(results_count)),
    )
    conn.commit()
    return int(cur.lastrowid)


def list_searches(conn: sqlite3.Connection, user_id: int, bookmarked_only: bool = False, limit: int = 50) -> list[dict]:
    cur = conn.cursor()
    sql = "SELECT * FROM search_history WHERE user_id=?"
    if bookmarked_only:
        sql += " AND is_bookmarked=1"
    sql += " ORDER BY id DESC LIMIT ?"
    cur.execute(sql, (user_id, int(limit)))
    return [row_to_dict(r) for r in cur.fetchall()]


def set_bookmark(conn: sqlite3.Connection, search_id: int, user_id: int, bookmarked: bool) -> bool:
    cur = conn.cursor()
    cur.execute(
        "UPDATE search_history SET is_bookmarked=? WHERE id=? AND user_id=?",
        (1 if bookmarked else 0, search_id, user_id),
    )
    conn.commit()
    return cur.rowcount > 0


# ---- Uploaded files ----
def insert_upload(conn: sqlite3.Connection, filename: str, file_type: str, size_bytes: int, uploaded_by: int) -> int:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO uploaded_files(filename, file_type, size_bytes, uploaded_by, status) VALUES (?,?,?,?,'processing')",
        (filename, file_type, int(size_bytes), uploaded_by),
    )
    conn.commit()
    return int(cur.lastrowid)


def finish_upload(conn: sqlite3.Connection, upload_id: int, status: str, records_count: int | None,
                  errors: list | None = None):
    cur = conn.cursor()
    cur.execute(
        "UPDATE uploaded_files SET status=?, records_count=?, errors=? WHERE id=?",
        (status, records_count, json.dumps(errors) if errors else None, upload_id),
    )
    conn.commit()


def get_upload(conn: sqlite3.Connection, upload_id: int) -> Optional[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM uploaded_files WHERE id=?", (upload_id,))
    row = cur.fetchone()
    return row_to_dict(row) if row else None


def list_uploads(conn: sqlite3.Connection, limit: int = 100) -> list[dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM uploaded_files ORDER BY id DESC LIMIT ?", (int(limit),))
    return [row_to_dict(r) for r in cur.fetchall()]
