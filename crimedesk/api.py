from __future__ import annotations
import logging
import sqlite3
import time
from functools import wraps

import jwt  # PyJWT
from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS
from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

from crimedesk import config, db
from crimedesk.case_matcher import MatchingError, match_case
from crimedesk.case_search import record_search, search_cases
from crimedesk.db import get_conn, init_db
from crimedesk.events_bus import sse_stream_generator
from crimedesk.uploads import UnsupportedFileType, detect_file_type, ingest_file
from crimedesk.validation import CaseValidationError
from crimedesk.voice import TranscriptEvent, handle_transcript
from crimedesk.workflow import WorkflowError, add_comment, approve_case, log_activity, review_queue, stage_counts, \
    submit_case, update_stage

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

init_db()


@app.get("/")
def index():
    return jsonify({
        "service": "CrimeDesk API",
        "endpoints": {
            "POST /api/auth/register": "Create an investigator account",
            "POST /api/auth/login": "Get an API token (JWT)",
            "GET /api/auth/me": "Current user for the bearer token",
            "POST /api/voice/parse": "Interpret a final transcript into intent, entities and confidence",
            "POST /api/voice/search": "Interpret a command and search published cases",
            "GET /api/search/history": "Your recent searches (?bookmarked=1 for bookmarks)",
            "POST /api/search/history/<id>/bookmark": "Bookmark or un-bookmark a search",
            "GET /api/cases": "Published cases (admins may pass ?stage=)",
            "GET /api/cases/<id>": "Case detail with timeline and comments",
            "POST /api/cases": "Submit a case for review (admin)",
            "GET|POST /api/cases/<id>/comments": "Reviewer comments",
            "POST /api/cases/<id>/timeline": "Add a timeline event (admin)",
            "GET /api/workflow": "Review queue and stage counts (admin)",
            "PATCH /api/cases/<id>/stage": "Move a case to another workflow stage (admin)",
            "POST /api/cases/<id>/approve": "Publish a case (admin)",
            "POST /api/match": "Rank published cases similar to the submitted details",
            "GET /api/admin/users": "List users (admin)",
            "PATCH /api/admin/users/<id>/role": "Change a user's role (admin)",
            "PATCH /api/admin/users/<id>/active": "Activate / deactivate a user (admin)",
            "GET /api/activity": "Recent activity log (admin)",
            "GET|POST /api/uploads": "List or upload csv/json/xml case batches (admin)",
            "GET /api/stream": "Server-sent events for workflow and upload changes",
        }
    })


# ---- Error mapping ----

@app.errorhandler(CaseValidationError)
def _validation_failed(e: CaseValidationError):
    return jsonify({'error': 'validation failed', 'errors': e.errors}), 400


@app.errorhandler(WorkflowError)
def _workflow_failed(e: WorkflowError):
    return jsonify({'error': str(e)}), e.status_code


@app.errorhandler(MatchingError)
def _matching_failed(e: MatchingError):
    return jsonify({'error': str(e)}), e.status_code


@app.errorhandler(sqlite3.Error)
def _storage_failed(e: sqlite3.Error):
    logger.error("storage error: %s", e)
    return jsonify({'error': str(e)}), 500


# ---- Auth Utilities ----

def _issue_jwt(user: dict) -> str:
    payload = {
        'sub': str(user.get('id')),
        'username': user.get('username'),
        'role': user.get('role'),
        'iat': int(time.time()),
        'exp': int(time.time()) + config.JWT_EXP_SECONDS
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def _decode_jwt(token: str) -> dict | None:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.PyJWTError:
        return None


def auth_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        header = request.headers.get('Authorization')
        token = None
        if header and header.lower().startswith('bearer '):
            token = header.split(None, 1)[1]
        if not token:
            return jsonify({'error': 'auth required'}), 401
        claims = _decode_jwt(token)
        if not claims:
            return jsonify({'error': 'invalid token'}), 401
        # role and active flag are re-read so admin changes apply immediately
        with get_conn() as conn:
            user = db.get_user(conn, int(claims['sub']))
        if not user or not user.get('is_active'):
            return jsonify({'error': 'account disabled'}), 403
        request.user = {'id': user['id'], 'username': user['username'], 'role': user['role']}  # type: ignore
        return fn(*args, **kwargs)
    return wrapper


def role_required(*roles: str):
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(request, 'user', None)
            if not user or user.get('role') not in roles:
                return jsonify({'error': 'forbidden'}), 403
            return fn(*args, **kwargs)
        return wrapper
    return deco


def _is_admin() -> bool:
    user = getattr(request, 'user', None) or {}
    return user.get('role') == 'admin'


def _limit_arg(default: int = 50, maximum: int = 500) -> int:
    try:
        lim = int(request.args.get('limit', str(default)))
    except ValueError:
        lim = default
    return max(1, min(maximum, lim))


@app.post('/api/auth/register')
def api_register():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip().lower()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({'error': 'username and password required'}), 400
    with get_conn() as conn:
        if db.find_user(conn, username):
            return jsonify({'error': 'username exists'}), 409
        uid = db.create_user(conn, username, generate_password_hash(password), role='investigator',
                             full_name=data.get('full_name') or username, badge_number=data.get('badge_number'),
                             department=data.get('department'))
        user = {'id': uid, 'username': username, 'role': 'investigator'}
        log_activity(conn, user, 'user_registered')
    return jsonify({'ok': True, 'jwt': _issue_jwt(user), 'user': user}), 201


@app.post('/api/auth/login')
def api_login():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip().lower()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({'error': 'username and password required'}), 400
    with get_conn() as conn:
        user = db.find_user(conn, username)
        if not user or not check_password_hash(user['password_hash'], password):
            return jsonify({'error': 'invalid credentials'}), 401
        if not user.get('is_active'):
            return jsonify({'error': 'account disabled'}), 403
        db.touch_last_login(conn, user['id'])
    return jsonify({'ok': True, 'jwt': _issue_jwt(user)})


@app.get('/api/auth/me')
@auth_required
def api_auth_me():
    return jsonify({'ok': True, 'user': request.user})  # type: ignore


# ---- Voice commands ----

def _transcript_from_request() -> TranscriptEvent:
    data = request.get_json(silent=True) or {}
    text = data.get('transcript', data.get('text'))
    is_final = data.get('is_final', True)
    if isinstance(is_final, str):
        is_final = is_final.strip().lower() not in ('false', '0', 'no')
    return TranscriptEvent(transcript=str(text or ''), is_final=bool(is_final))


@app.post('/api/voice/parse')
@auth_required
def api_voice_parse():
    """Interpret one utterance. Interim transcripts are acknowledged but not parsed."""
    event = _transcript_from_request()
    result = handle_transcript(event)
    if result is None:
        return jsonify({'ok': True, 'interpreted': False, 'transcript': event.transcript})
    return jsonify({'ok': True, 'interpreted': True, **result.to_dict()})


@app.post('/api/voice/search')
@auth_required
def api_voice_search():
    event = _transcript_from_request()
    if not event.transcript.strip():
        return jsonify({'error': 'text required'}), 400
    result = handle_transcript(TranscriptEvent(event.transcript, is_final=True))
    body = {'ok': True, **result.to_dict()}
    if result.parsed.needs_clarification:
        body.update({'results': [], 'count': 0})
        return jsonify(body)
    with get_conn() as conn:
        results = search_cases(conn, result.parsed)
        body['search_id'] = record_search(conn, request.user['id'], result.parsed, len(results))  # type: ignore
    body.update({'results': results, 'count': len(results)})
    return jsonify(body)


@app.get('/api/search/history')
@auth_required
def api_search_history():
    bookmarked = request.args.get('bookmarked') == '1'
    with get_conn() as conn:
        rows = db.list_searches(conn, request.user['id'], bookmarked_only=bookmarked, limit=_limit_arg())  # type: ignore
    return jsonify({'searches': rows, 'count': len(rows)})


@app.post('/api/search/history/<int:search_id>/bookmark')
@auth_required
def api_bookmark_search(search_id: int):
    data = request.get_json(silent=True) or {}
    with get_conn() as conn:
        ok = db.set_bookmark(conn, search_id, request.user['id'], bool(data.get('bookmarked', True)))  # type: ignore
    if not ok:
        return jsonify({'error': 'search not found'}), 404
    return jsonify({'ok': True})


# ---- Cases ----

@app.get('/api/cases')
@auth_required
def api_list_cases():
    stage = request.args.get('stage')
    if stage and not _is_admin():
        return jsonify({'error': 'forbidden'}), 403
    with get_conn() as conn:
        rows = db.list_cases(conn, stage=stage or 'published', limit=_limit_arg(100, 1000))
    return jsonify({'cases': rows, 'count': len(rows)})


@app.get('/api/cases/<case_id>')
@auth_required
def api_get_case(case_id: str):
    with get_conn() as conn:
        case = db.get_case(conn, case_id)
        # unpublished cases are invisible to non-admins
        if not case or (case['workflow_stage'] != 'published' and not _is_admin()):
            return jsonify({'error': 'case not found'}), 404
        case['timeline'] = db.list_timeline(conn, case_id)
        case['comments'] = db.list_comments(conn, case_id)
    return jsonify(case)


@app.post('/api/cases')
@auth_required
@role_required('admin')
def api_create_case():
    data = request.get_json(silent=True) or {}
    with get_conn() as conn:
        case = submit_case(conn, data, request.user)  # type: ignore
    return jsonify({'ok': True, 'case': case}), 201


@app.get('/api/cases/<case_id>/comments')
@auth_required
def api_list_comments(case_id: str):
    with get_conn() as conn:
        case = db.get_case(conn, case_id)
        if not case or (case['workflow_stage'] != 'published' and not _is_admin()):
            return jsonify({'error': 'case not found'}), 404
        return jsonify({'comments': db.list_comments(conn, case_id)})


@app.post('/api/cases/<case_id>/comments')
@auth_required
@role_required('admin', 'senior_investigator')
def api_add_comment(case_id: str):
    data = request.get_json(silent=True) or {}
    with get_conn() as conn:
        comment = add_comment(conn, case_id, request.user, data.get('comment', ''))  # type: ignore
    return jsonify({'ok': True, 'comment': comment}), 201


@app.post('/api/cases/<case_id>/timeline')
@auth_required
@role_required('admin')
def api_add_timeline_event(case_id: str):
    data = request.get_json(silent=True) or {}
    date = (data.get('date') or '').strip()
    event_type = (data.get('event_type') or '').strip()
    description = (data.get('description') or '').strip()
    if not date or not event_type or not description:
        return jsonify({'error': 'date, event_type and description required'}), 400
    with get_conn() as conn:
        if not db.get_case(conn, case_id):
            return jsonify({'error': 'case not found'}), 404
        eid = db.insert_timeline_event(conn, case_id, date, event_type, description, data.get('officer'))
    return jsonify({'ok': True, 'id': eid}), 201


# ---- Workflow ----

@app.get('/api/workflow')
@auth_required
@role_required('admin')
def api_workflow():
    with get_conn() as conn:
        queue = review_queue(conn, request.args.get('stage'))
        counts = stage_counts(conn)
    return jsonify({'cases': queue, 'counts': counts})


@app.patch('/api/cases/<case_id>/stage')
@auth_required
@role_required('admin')
def api_update_stage(case_id: str):
    data = request.get_json(silent=True) or {}
    with get_conn() as conn:
        case = update_stage(conn, case_id, data.get('stage', ''), request.user)  # type: ignore
    return jsonify({'ok': True, 'case': case})


@app.post('/api/cases/<case_id>/approve')
@auth_required
@role_required('admin')
def api_approve_case(case_id: str):
    with get_conn() as conn:
        case = approve_case(conn, case_id, request.user)  # type: ignore
    return jsonify({'ok': True, 'case': case})


# ---- AI case matching ----

@app.post('/api/match')
@auth_required
def api_match_case():
    data = request.get_json(silent=True) or {}
    details = data.get('caseDetails')
    if not details or not isinstance(details, dict):
        return jsonify({'error': 'Invalid case details'}), 400
    with get_conn() as conn:
        analysis = match_case(conn, details)
        log_activity(conn, request.user, 'case_matched',  # type: ignore
                     f"{len(analysis['matches'])} matches via {analysis['backend']}")
    return jsonify({'success': True, 'analysis': analysis})


# ---- Administration ----

@app.get('/api/admin/users')
@auth_required
@role_required('admin')
def api_list_users():
    with get_conn() as conn:
        users = db.list_users(conn)
    return jsonify({'users': users, 'count': len(users)})


@app.patch('/api/admin/users/<int:user_id>/role')
@auth_required
@role_required('admin')
def api_update_role(user_id: int):
    data = request.get_json(silent=True) or {}
    role = data.get('role')
    if role not in db.USER_ROLES:
        return jsonify({'error': f"role must be one of {', '.join(db.USER_ROLES)}"}), 400
    with get_conn() as conn:
        if not db.set_user_role(conn, user_id, role):
            return jsonify({'error': 'user not found'}), 404
        log_activity(conn, request.user, 'role_updated', f"user {user_id} -> {role}")  # type: ignore
    return jsonify({'ok': True})


@app.patch('/api/admin/users/<int:user_id>/active')
@auth_required
@role_required('admin')
def api_update_active(user_id: int):
    data = request.get_json(silent=True) or {}
    if 'is_active' not in data:
        return jsonify({'error': 'is_active required'}), 400
    if user_id == request.user['id'] and not data['is_active']:  # type: ignore
        return jsonify({'error': 'cannot deactivate yourself'}), 400
    with get_conn() as conn:
        if not db.set_user_active(conn, user_id, bool(data['is_active'])):
            return jsonify({'error': 'user not found'}), 404
        log_activity(conn, request.user, 'user_status_changed',  # type: ignore
                     f"user {user_id} active={bool(data['is_active'])}")
    return jsonify({'ok': True})


@app.get('/api/activity')
@auth_required
@role_required('admin')
def api_activity():
    with get_conn() as conn:
        logs = db.list_activity(conn, _limit_arg())
    return jsonify({'logs': logs, 'count': len(logs)})


@app.get('/api/uploads')
@auth_required
@role_required('admin')
def api_list_uploads():
    with get_conn() as conn:
        files = db.list_uploads(conn, _limit_arg(100, 1000))
    return jsonify({'files': files, 'count': len(files)})


@app.post('/api/uploads')
@auth_required
@role_required('admin')
def api_upload_cases():
    """Upload a csv/json/xml batch of cases (multipart field `file`)."""
    if 'file' not in request.files:
        return jsonify({'error': 'file required'}), 400
    upload = request.files['file']
    safe_name = secure_filename(upload.filename or '')
    try:
        detect_file_type(safe_name)
    except UnsupportedFileType as e:
        return jsonify({'error': str(e)}), 400
    config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    local_path = config.UPLOAD_DIR / f"{int(time.time() * 1000)}_{safe_name}"
    upload.save(local_path)
    with get_conn() as conn:
        record = ingest_file(conn, local_path, safe_name, request.user)  # type: ignore
    status = 201 if record['status'] == 'completed' else 422
    return jsonify({'ok': record['status'] == 'completed', 'file': record}), status


# ---- Realtime ----

@app.get('/api/stream')
def api_stream():
    return Response(stream_with_context(sse_stream_generator()), mimetype='text/event-stream')


if __name__ == "__main__":
    config.configure_logging()
    app.run(host="0.0.0.0", port=5000, debug=False, threaded=True)
