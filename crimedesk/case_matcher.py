"""Find published cases that resemble a newly submitted one.

Tiered strategy, like the analysis helpers this project started from:
  1. OPENAI_API_KEY set  -> OpenAI chat completion with a forced function call
  2. GEMINI_API_KEY set  -> Gemini prompt answering in JSON
  3. otherwise           -> local heuristic (difflib text similarity + field agreement)

Provider failures are not retried. A 429 becomes `RateLimitError`, an
exhausted quota or a 402 becomes `QuotaExhaustedError`, anything else a
plain `MatchingError`. The API maps each to its own status and message.
"""
from __future__ import annotations
import difflib
import json
import logging
import os
import sqlite3
from typing import Any, Dict, List

from crimedesk import config, db
from crimedesk.validation import validate_match_request

logger = logging.getLogger(__name__)

MAX_MATCHES = 5
GEMINI_MODEL = 'gemini-1.5-flash'

SYSTEM_PROMPT = """You are an expert criminal case analyst. Your task is to analyze a submitted case and find the most relevant matching cases from a database based on:
- Crime type similarity
- Modus operandi patterns
- Suspect descriptions
- Location patterns
- Evidence types
- Severity levels

Provide a detailed analysis with similarity scores (0-100) for the top 5 most relevant matches."""

MATCH_TOOL = {
    'type': 'function',
    'function': {
        'name': 'analyze_case_matches',
        'description': 'Return top 5 case matches with similarity scores and reasoning',
        'parameters': {
            'type': 'object',
            'properties': {
                'matches': {
                    'type': 'array',
                    'items': {
                        'type': 'object',
                        'properties': {
                            'case_id': {'type': 'string', 'description': 'ID of the matching case'},
                            'case_number': {'type': 'string', 'description': 'Case number'},
                            'similarity_score': {'type': 'number', 'description': 'Similarity score from 0-100'},
                            'matching_factors': {
                                'type': 'array',
                                'items': {'type': 'string'},
                                'description': 'Key factors that make this case similar',
                            },
                            'reasoning': {'type': 'string', 'description': 'Detailed explanation of why this case matches'},
                        },
                        'required': ['case_id', 'case_number', 'similarity_score', 'matching_factors', 'reasoning'],
                        'additionalProperties': False,
                    },
                },
                'overall_assessment': {'type': 'string', 'description': 'Overall assessment and recommendations'},
            },
            'required': ['matches', 'overall_assessment'],
            'additionalProperties': False,
        },
    },
}

POOL_FIELDS = ('id', 'case_number', 'title', 'description', 'crime_type', 'severity', 'status', 'location',
               'date_reported', 'primary_suspect', 'evidence_summary')


class MatchingError(Exception):
    status_code = 500


class RateLimitError(MatchingError):
    status_code = 429

    def __init__(self, message: str = 'Rate limit exceeded. Please try again later.'):
        super().__init__(message)


class QuotaExhaustedError(MatchingError):
    status_code = 402

    def __init__(self, message: str = 'AI credits exhausted. Please add credits to your workspace.'):
        super().__init__(message)


def _truncate(txt: str, max_chars: int = 24000) -> str:
    if len(txt) <= max_chars:
        return txt
    return txt[: max_chars - 20] + "... <truncated>"


def candidate_pool(conn: sqlite3.Connection, limit: int | None = None) -> List[dict]:
    rows = db.list_cases(conn, stage='published', limit=limit or config.MATCH_POOL_SIZE)
    return [{k: r.get(k) for k in POOL_FIELDS} for r in rows]


def build_user_prompt(details: Dict[str, Any], pool: List[dict]) -> str:
    return (
        "Analyze this submitted case and find the most relevant matches:\n\n"
        f"SUBMITTED CASE:\n{json.dumps(details, indent=2)}\n\n"
        f"EXISTING CASES DATABASE:\n{_truncate(json.dumps(pool, indent=2))}\n\n"
        "Provide your analysis of the top 5 most relevant matches."
    )


def _call_openai(prompt: str) -> Dict[str, Any]:
    import openai
    from openai import OpenAI

    client = OpenAI()
    try:
        resp = client.chat.completions.create(
            model=config.MATCH_MODEL,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': prompt},
            ],
            tools=[MATCH_TOOL],
            tool_choice={'type': 'function', 'function': {'name': 'analyze_case_matches'}},
            temperature=0.2,
        )
    except openai.RateLimitError as e:
        if getattr(e, 'code', None) == 'insufficient_quota':
            raise QuotaExhaustedError() from e
        raise RateLimitError() from e
    except openai.APIStatusError as e:
        if e.status_code == 402:
            raise QuotaExhaustedError() from e
        logger.error("AI gateway error: %s %s", e.status_code, e.message)
        raise MatchingError('AI analysis failed') from e
    except openai.OpenAIError as e:
        logger.error("AI gateway error: %s", e)
        raise MatchingError('AI analysis failed') from e

    tool_calls = resp.choices[0].message.tool_calls if resp.choices else None
    if not tool_calls or not tool_calls[0].function.arguments:
        raise MatchingError('No structured output received from AI')
    try:
        return json.loads(tool_calls[0].function.arguments)
    except json.JSONDecodeError as e:
        raise MatchingError('AI returned malformed match data') from e


def _call_gemini(prompt: str) -> Dict[str, Any]:
    import google.generativeai as genai
    from google.api_core import exceptions as google_exceptions

    genai.configure(api_key=os.environ.get('GEMINI_API_KEY'))
    model = genai.GenerativeModel(GEMINI_MODEL, system_instruction=SYSTEM_PROMPT)
    schema_hint = json.dumps(MATCH_TOOL['function']['parameters'])
    try:
        response = model.generate_content(
            f"{prompt}\n\nRespond with JSON matching this schema:\n{schema_hint}",
            generation_config={'response_mime_type': 'application/json', 'temperature': 0.2},
        )
    except google_exceptions.ResourceExhausted as e:
        raise RateLimitError() from e
    except google_exceptions.GoogleAPIError as e:
        logger.error("Gemini error: %s", e)
        raise MatchingError('AI analysis failed') from e
    try:
        return json.loads(response.text)
    except (ValueError, json.JSONDecodeError) as e:
        raise MatchingError('No structured output received from AI') from e


def _tokens(text: str | None) -> set[str]:
    return {t for t in (text or '').lower().replace(',', ' ').split() if len(t) > 2}


def _heuristic_matches(details: Dict[str, Any], pool: List[dict]) -> Dict[str, Any]:
    submitted_text = f"{details.get('title') or ''} {details.get('description') or ''}".lower()
    crime = (details.get('crime_type') or '').lower()
    location_tokens = _tokens(details.get('location'))
    suspect_tokens = _tokens(details.get('suspect_description'))
    evidence_tokens = _tokens(details.get('evidence_description'))

    scored = []
    for case in pool:
        factors: List[str] = []
        case_text = f"{case.get('title') or ''} {case.get('description') or ''}".lower()
        text_sim = difflib.SequenceMatcher(None, submitted_text, case_text).ratio()
        score = 40.0 * text_sim
        if text_sim >= 0.35:
            factors.append('Similar narrative')
        case_crime = (case.get('crime_type') or '').lower()
        if crime and case_crime == crime:
            score += 30
            factors.append(f"Same crime type ({case.get('crime_type')})")
        elif crime and case_crime and (crime in case_crime or case_crime in crime):
            score += 15
            factors.append('Related crime type')
        if location_tokens and location_tokens & _tokens(case.get('location')):
            score += 15
            factors.append('Location overlap')
        if details.get('severity') and case.get('severity') == details.get('severity'):
            score += 10
            factors.append('Same severity')
        if suspect_tokens and suspect_tokens & _tokens(case.get('primary_suspect')):
            score += 5
            factors.append('Suspect description overlap')
        if evidence_tokens and evidence_tokens & _tokens(case.get('evidence_summary')):
            score += 5
            factors.append('Evidence overlap')
        if not factors:
            continue
        scored.append({
            'case_id': case.get('id'),
            'case_number': case.get('case_number'),
            'similarity_score': round(score, 1),
            'matching_factors': factors,
            'reasoning': f"Heuristic comparison: {'; '.join(factors)} (text similarity {text_sim:.2f}).",
        })

    assessment = (
        f"Compared against {len(pool)} published cases without an AI backend; "
        "scores reflect field agreement and text overlap only."
    )
    return {'matches': scored, 'overall_assessment': assessment}


def normalize_analysis(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Clamp scores to 0-100, sort best first and keep at most MAX_MATCHES."""
    matches = []
    for m in raw.get('matches') or []:
        if not isinstance(m, dict):
            continue
        try:
            score = float(m.get('similarity_score', 0))
        except (TypeError, ValueError):
            score = 0.0
        matches.append({
            'case_id': str(m.get('case_id') or ''),
            'case_number': str(m.get('case_number') or ''),
            'similarity_score': max(0.0, min(100.0, score)),
            'matching_factors': [str(f) for f in (m.get('matching_factors') or [])],
            'reasoning': str(m.get('reasoning') or ''),
        })
    matches.sort(key=lambda m: m['similarity_score'], reverse=True)
    return {
        'matches': matches[:MAX_MATCHES],
        'overall_assessment': str(raw.get('overall_assessment') or ''),
    }


def match_case(conn: sqlite3.Connection, case_details: Dict[str, Any]) -> Dict[str, Any]:
    """Validate `case_details` and rank up to five similar published cases.

    Raises CaseValidationError for bad input and a MatchingError subclass
    for provider failures.
    """
    details = validate_match_request(case_details)
    pool = candidate_pool(conn)
    if config.openai_available():
        backend = 'openai'
        raw = _call_openai(build_user_prompt(details, pool))
    elif config.gemini_available():
        backend = 'gemini'
        raw = _call_gemini(build_user_prompt(details, pool))
    else:
        backend = 'heuristic'
        raw = _heuristic_matches(details, pool)
    analysis = normalize_analysis(raw)
    logger.info("case matching via %s returned %d matches from a pool of %d",
                backend, len(analysis['matches']), len(pool))
    return {'backend': backend, **analysis}
