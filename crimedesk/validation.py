"""Field checks for case submissions and case-matching requests.

Both entry points collect every violation before raising, so a client can
show all field errors at once. Nothing is persisted until validation passes.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional

SEVERITIES = ('low', 'medium', 'high', 'critical')
CASE_STATUSES = ('open', 'under_investigation', 'closed', 'cold_case')
# M/D/YYYY is what the voice interpreter reads, so batch files may use it too
DATE_FORMATS = ('%m/%d/%Y',)


class CaseValidationError(ValueError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__('; '.join(f"{k}: {v}" for k, v in errors.items()))


def _text(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        return value  # type errors are reported by the caller
    value = value.strip()
    return value or None


def _check_length(errors: Dict[str, str], data: Dict[str, Any], key: str, label: str,
                  min_len: int = 0, max_len: int | None = None, required: bool = False):
    value = _text(data, key)
    if value is None:
        if required:
            errors[key] = f"{label} is required"
        return
    if not isinstance(value, str):
        errors[key] = f"{label} must be a string"
        return
    if len(value) < min_len:
        errors[key] = f"{label} must be at least {min_len} characters"
    elif max_len is not None and len(value) > max_len:
        errors[key] = f"{label} must be at most {max_len} characters"


def _check_severity(errors: Dict[str, str], data: Dict[str, Any]):
    if data.get('severity') not in SEVERITIES:
        errors['severity'] = 'Severity must be low, medium, high, or critical'


def parse_reported_date(value: Any) -> Optional[datetime]:
    """ISO 8601 or M/D/YYYY; None when the value is not a calendar date."""
    raw = str(value).strip()
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def validate_case_submission(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a manually entered case and return the cleaned record fields."""
    if not isinstance(data, dict):
        raise CaseValidationError({'case': 'Case details must be an object'})
    errors: Dict[str, str] = {}
    _check_length(errors, data, 'case_number', 'Case number', min_len=3, required=True)
    _check_length(errors, data, 'title', 'Title', min_len=5, max_len=200, required=True)
    _check_length(errors, data, 'description', 'Description', min_len=20, max_len=2000, required=True)
    _check_length(errors, data, 'crime_type', 'Crime type', min_len=1, max_len=100, required=True)
    _check_severity(errors, data)
    _check_length(errors, data, 'location', 'Location', min_len=1, max_len=200, required=True)
    _check_length(errors, data, 'primary_suspect', 'Primary suspect', max_len=500)
    _check_length(errors, data, 'evidence_summary', 'Evidence summary', max_len=1000)
    status = data.get('status')
    if status is not None and status not in CASE_STATUSES:
        errors['status'] = 'Status must be one of ' + ', '.join(CASE_STATUSES)
    reported = None
    if _text(data, 'date_reported') is not None:
        reported = parse_reported_date(data['date_reported'])
        if reported is None:
            errors['date_reported'] = 'Date reported must be YYYY-MM-DD or MM/DD/YYYY'
    if errors:
        raise CaseValidationError(errors)
    record = {
        'case_number': _text(data, 'case_number'),
        'title': _text(data, 'title'),
        'description': _text(data, 'description'),
        'crime_type': _text(data, 'crime_type'),
        'severity': data['severity'],
        'status': status or 'open',
        'location': _text(data, 'location'),
        'primary_suspect': _text(data, 'primary_suspect'),
        'evidence_summary': _text(data, 'evidence_summary'),
    }
    if reported is not None:
        record['date_reported'] = reported.isoformat(timespec='seconds')
    return record


def validate_match_request(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate the case details sent for AI matching (looser than a submission)."""
    if not isinstance(data, dict):
        raise CaseValidationError({'caseDetails': 'Invalid case details'})
    errors: Dict[str, str] = {}
    _check_length(errors, data, 'title', 'Title', min_len=5, max_len=200, required=True)
    _check_length(errors, data, 'description', 'Description', min_len=20, max_len=2000, required=True)
    _check_length(errors, data, 'crime_type', 'Crime type', min_len=3, max_len=100, required=True)
    _check_severity(errors, data)
    _check_length(errors, data, 'location', 'Location', max_len=200)
    _check_length(errors, data, 'suspect_description', 'Suspect description', max_len=1000)
    _check_length(errors, data, 'evidence_description', 'Evidence description', max_len=1000)
    if errors:
        raise CaseValidationError(errors)
    keys = ('title', 'description', 'crime_type', 'location', 'suspect_description', 'evidence_description')
    cleaned = {k: _text(data, k) for k in keys}
    cleaned['severity'] = data['severity']
    return cleaned
