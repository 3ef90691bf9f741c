"""Runtime configuration read from environment variables.

Environment Variables:
  CRIMEDESK_DB_PATH      -> SQLite database file (default data/crimedesk.db)
  CRIMEDESK_UPLOAD_DIR   -> where uploaded case batches are saved (default uploads/)
  CRIMEDESK_JWT_SECRET   -> HS256 signing key (random per process if unset)
  CRIMEDESK_JWT_EXP      -> token lifetime in seconds (default 86400)
  CRIMEDESK_LOG_LEVEL    -> root log level (default INFO)
  CRIMEDESK_LOG_FILE     -> optional log file in addition to stdout
  CRIMEDESK_MATCH_MODEL  -> OpenAI model used for case matching
  CRIMEDESK_MATCH_POOL   -> how many published cases the matcher may compare against
  OPENAI_API_KEY / GEMINI_API_KEY -> enable the AI matching backends
"""
from __future__ import annotations
import logging
import os
import secrets
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

DB_PATH = Path(os.environ.get('CRIMEDESK_DB_PATH') or BASE_DIR / 'data' / 'crimedesk.db')
UPLOAD_DIR = Path(os.environ.get('CRIMEDESK_UPLOAD_DIR') or BASE_DIR / 'uploads')

JWT_SECRET = os.environ.get('CRIMEDESK_JWT_SECRET') or secrets.token_hex(32)
JWT_ALG = 'HS256'
JWT_EXP_SECONDS = int(os.environ.get('CRIMEDESK_JWT_EXP', '86400'))  # 24h default

MATCH_MODEL = os.environ.get('CRIMEDESK_MATCH_MODEL', 'gpt-4o-mini')
MATCH_POOL_SIZE = int(os.environ.get('CRIMEDESK_MATCH_POOL', '50'))

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Install stdout (and optional file) handlers on the root logger."""
    level_name = (level or os.environ.get('CRIMEDESK_LOG_LEVEL') or 'INFO').upper()
    log_file = log_file or os.environ.get('CRIMEDESK_LOG_FILE')
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def openai_available() -> bool:
    return bool(os.environ.get('OPENAI_API_KEY'))


def gemini_available() -> bool:
    return bool(os.environ.get('GEMINI_API_KEY'))
