import pytest

from crimedesk.validation import CaseValidationError, validate_case_submission, validate_match_request


def test_valid_submission_is_cleaned(case_payload):
    case_payload['title'] = '  ' + case_payload['title'] + '  '
    case_payload['evidence_summary'] = ''
    record = validate_case_submission(case_payload)
    assert record['title'] == 'Armed robbery at corner store'
    assert record['evidence_summary'] is None
    assert record['status'] == 'open'


def test_all_field_errors_are_reported_together(case_payload):
    case_payload.update({'case_number': 'AB', 'title': 'Hey', 'severity': 'extreme', 'location': ''})
    del case_payload['description']
    with pytest.raises(CaseValidationError) as exc:
        validate_case_submission(case_payload)
    assert set(exc.value.errors) == {'case_number', 'title', 'description', 'severity', 'location'}
    assert exc.value.errors['severity'] == 'Severity must be low, medium, high, or critical'


def test_length_limits(case_payload):
    case_payload['title'] = 'x' * 201
    case_payload['primary_suspect'] = 'y' * 501
    with pytest.raises(CaseValidationError) as exc:
        validate_case_submission(case_payload)
    assert exc.value.errors == {
        'title': 'Title must be at most 200 characters',
        'primary_suspect': 'Primary suspect must be at most 500 characters',
    }


def test_non_string_field(case_payload):
    case_payload['title'] = 12345
    with pytest.raises(CaseValidationError) as exc:
        validate_case_submission(case_payload)
    assert exc.value.errors == {'title': 'Title must be a string'}


@pytest.mark.parametrize('raw,stored', [
    ('2024-05-01', '2024-05-01T00:00:00'),
    ('2024-05-01T08:30:00', '2024-05-01T08:30:00'),
    ('3/15/2024', '2024-03-15T00:00:00'),
])
def test_reported_date_is_stored_as_iso(case_payload, raw, stored):
    record = validate_case_submission({**case_payload, 'date_reported': raw})
    assert record['date_reported'] == stored


@pytest.mark.parametrize('raw', ['not a date', '13/45/2024', '2024-02-30'])
def test_unparseable_reported_date(case_payload, raw):
    with pytest.raises(CaseValidationError) as exc:
        validate_case_submission({**case_payload, 'date_reported': raw})
    assert set(exc.value.errors) == {'date_reported'}


def test_reported_date_is_optional(case_payload):
    assert 'date_reported' not in validate_case_submission(case_payload)
    assert 'date_reported' not in validate_case_submission({**case_payload, 'date_reported': ' '})


def test_match_request_rules():
    details = {
        'title': 'Night burglary',
        'description': 'Rear window forced, electronics taken overnight.',
        'crime_type': 'burglary',
        'severity': 'medium',
    }
    assert validate_match_request(details)['location'] is None
    with pytest.raises(CaseValidationError) as exc:
        validate_match_request({**details, 'crime_type': 'xy', 'suspect_description': 's' * 1001})
    assert set(exc.value.errors) == {'crime_type', 'suspect_description'}
    with pytest.raises(CaseValidationError):
        validate_match_request('not a dict')
