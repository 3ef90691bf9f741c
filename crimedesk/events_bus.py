"""In-memory event bus feeding the admin dashboard over server-sent events (SSE).

Workflow and upload code call `publish_event` (case_submitted, stage_changed,
case_published, upload_processed). Each open `/api/stream` connection owns one
subscriber queue and drains it until the client disconnects; a heartbeat is
sent when idle. Events are not persisted and are lost on restart.
"""
from __future__ import annotations
import json
import logging
import threading
import time
from queue import Empty, Full, Queue
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

_sub_lock = threading.Lock()
_subscribers: List[Queue] = []


def publish_event(event_type: str, payload: Dict[str, Any]):
    evt = {
        'type': event_type,
        'ts': time.time(),
        'payload': payload,
    }
    with _sub_lock:
        subs = list(_subscribers)
    for q in subs:
        try:
            q.put(evt, block=False)
        except Full:
            logger.warning("dropping %s event for a slow subscriber", event_type)


def subscribe_queue() -> Queue:
    q: Queue = Queue(maxsize=1000)
    with _sub_lock:
        _subscribers.append(q)
    return q


def unsubscribe_queue(q: Queue):
    with _sub_lock:
        try:
            _subscribers.remove(q)
        except ValueError:
            pass


def subscriber_count() -> int:
    with _sub_lock:
        return len(_subscribers)


def sse_stream_generator(heartbeat_interval: float = 15.0):
    """Yield SSE formatted lines for a single subscriber until disconnect."""
    q = subscribe_queue()
    last_sent = time.time()
    try:
        while True:
            try:
                evt = q.get(timeout=1.0)
                yield f"data: {json.dumps(evt)}\n\n"
                last_sent = time.time()
            except Empty:
                if time.time() - last_sent >= heartbeat_interval:
                    yield "event: heartbeat\ndata: {}\n\n"
                    last_sent = time.time()
    finally:
        unsubscribe_queue(q)
