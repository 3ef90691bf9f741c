import json
import sqlite3

import pytest

from crimedesk import db, uploads
from crimedesk.case_search import search_cases
from crimedesk.nlp_processor import parse_voice_command
from crimedesk.uploads import UnsupportedFileType, detect_file_type, ingest_file

CSV = """case_number,title,description,crime_type,severity,location,date_reported
CSV-1,Burglary on Elm Street,Rear door forced and jewellery taken overnight.,burglary,medium,district 4,2024-05-01
CSV-2,Vandalism at the park,Benches and lights destroyed by a group of youths.,vandalism,low,central park,
CSV-3,Bad,too short,theft,unknown,,
"""


@pytest.fixture
def admin(conn):
    uid = db.create_user(conn, 'chief', 'x', role='admin')
    return {'id': uid, 'username': 'chief'}


def test_detect_file_type():
    assert detect_file_type('batch.CSV') == 'csv'
    with pytest.raises(UnsupportedFileType):
        detect_file_type('batch.xlsx')


def test_csv_rows_are_validated_individually(conn, admin, tmp_path):
    path = tmp_path / 'batch.csv'
    path.write_text(CSV)
    record = ingest_file(conn, path, 'batch.csv', admin)
    assert record['status'] == 'completed'
    assert record['records_count'] == 2
    assert record['file_type'] == 'csv'
    assert [e['row'] for e in record['errors']] == [3]
    assert set(record['errors'][0]['errors']) >= {'title', 'description', 'severity', 'location'}
    queued = {c['case_number']: c for c in db.list_cases(conn, stage='pending_review')}
    assert set(queued) == {'CSV-1', 'CSV-2'}
    assert queued['CSV-1']['date_reported'] == '2024-05-01T00:00:00'


def test_json_batch_skips_existing_case_numbers(conn, admin, tmp_path):
    rows = [
        {'case_number': 'J-1', 'title': 'Arson at warehouse', 'description': 'Fire started at loading bay at 2am.',
         'crime_type': 'arson', 'severity': 'critical', 'location': 'docks'},
    ]
    path = tmp_path / 'batch.json'
    path.write_text(json.dumps(rows * 2))
    record = ingest_file(conn, path, 'batch.json', admin)
    assert record['records_count'] == 1
    assert record['errors'][0]['row'] == 2
    assert 'case_number' in record['errors'][0]['errors']


def test_xml_batch(conn, admin, tmp_path):
    path = tmp_path / 'batch.xml'
    path.write_text(
        "<cases><case><case_number>X-1</case_number><title>Kidnapping report</title>"
        "<description>Child reported missing after school pickup.</description>"
        "<crime_type>kidnapping</crime_type><severity>critical</severity><location>north side</location>"
        "</case></cases>"
    )
    record = ingest_file(conn, path, 'batch.xml', admin)
    assert record['status'] == 'completed'
    assert record['records_count'] == 1


def test_unreadable_file_marks_upload_failed(conn, admin, tmp_path):
    path = tmp_path / 'broken.xml'
    path.write_text('<cases><case>')
    record = ingest_file(conn, path, 'broken.xml', admin)
    assert record['status'] == 'failed'
    assert record['records_count'] is None
    assert record['errors']
    assert db.list_cases(conn) == []


def test_reported_dates_are_normalized_and_searchable(conn, admin, tmp_path):
    path = tmp_path / 'dated.csv'
    path.write_text(
        "case_number,title,description,crime_type,severity,location,date_reported\n"
        "P-1,Burglary at pharmacy,Back window smashed and cash register emptied.,burglary,medium,docks,03/15/2024\n"
        "P-2,Burglary at bakery,Side door pried open and safe removed overnight.,burglary,medium,docks,not a date\n"
    )
    record = ingest_file(conn, path, 'dated.csv', admin)
    assert record['records_count'] == 1
    assert record['errors'] == [{'row': 2, 'errors': {'date_reported': 'Date reported must be YYYY-MM-DD or MM/DD/YYYY'}}]
    case = db.get_case_by_number(conn, 'P-1')
    assert case['date_reported'] == '2024-03-15T00:00:00'

    db.update_case_stage(conn, case['id'], 'published')
    hits = search_cases(conn, parse_voice_command('show burglary cases on 03/15/2024'))
    assert [c['case_number'] for c in hits] == ['P-1']


def test_database_error_marks_upload_failed(conn, admin, tmp_path, monkeypatch):
    path = tmp_path / 'batch.csv'
    path.write_text(CSV)

    def clash(*args, **kwargs):
        raise sqlite3.IntegrityError('UNIQUE constraint failed: cases.case_number')

    monkeypatch.setattr(uploads.db, 'insert_case', clash)
    record = ingest_file(conn, path, 'batch.csv', admin)
    assert record['status'] == 'failed'
    assert record['records_count'] is None
    assert 'UNIQUE constraint failed' in record['errors'][0]
