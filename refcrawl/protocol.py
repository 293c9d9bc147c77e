"""JSON-lines messages exchanged between the scheduler and crawl units.

Scheduler to unit:
    {"type": "crawl", "spec": {...}, "options": {...}}
    {"type": "fetch", "reqId": 1, "url": ..., "status": ..., "headers": ..., "body": ...}
    {"type": "fetch", "reqId": 1, "error": "..."}

Unit to scheduler:
    {"type": "fetch", "reqId": 1, "url": ..., "headers": {...}}
    {"type": "result", "result": {...}}
    {"type": "error", "error": "..."}
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from .document import CrawlResult, SpecDescriptor
from .fetch import FetchResponse

CRAWL = "crawl"
FETCH = "fetch"
RESULT = "result"
ERROR = "error"

# Crawl results of large specs easily exceed asyncio's default line limit.
STREAM_LIMIT = 256 * 1024 * 1024


class ProtocolError(ValueError):
    """Raised on malformed messages."""


def encode(message: Dict[str, Any]) -> bytes:
    return json.dumps(message, ensure_ascii=False).encode("utf-8") + b"\n"


def decode(line: bytes) -> Dict[str, Any]:
    try:
        message = json.loads(line.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"Malformed message: {exc}") from exc
    if not isinstance(message, dict) or "type" not in message:
        raise ProtocolError(f"Malformed message: {line[:200]!r}")
    return message


def crawl_request(spec: SpecDescriptor, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"type": CRAWL, "spec": spec.to_dict(), "options": options or {}}


def fetch_request(req_id: int, url: str, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {"type": FETCH, "reqId": req_id, "url": url, "headers": headers or {}}


def fetch_reply(
    req_id: Any,
    response: Optional[FetchResponse] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": FETCH, "reqId": req_id}
    if response is not None:
        message.update(response.to_dict())
    else:
        message["error"] = error or "Fetch failed"
    return message


def result_message(result: CrawlResult) -> Dict[str, Any]:
    return {"type": RESULT, "result": result.to_dict()}


def error_message(error: str) -> Dict[str, Any]:
    return {"type": ERROR, "error": error}
