"""Convenience entrypoint so you can run:  python app.py

Configures logging, then serves the Flask app defined in crimedesk/api.py.
"""
from __future__ import annotations

from crimedesk.config import configure_logging

configure_logging()

from crimedesk.api import app  # noqa: E402  # logging must be configured before the db initializes


if __name__ == "__main__":
    # threaded so /api/stream SSE clients don't block other requests
    app.run(host="0.0.0.0", port=5000, debug=False, threaded=True)
