"""Serialize parsed sessions and reader results to JSON."""

import json
from dataclasses import asdict
from typing import Any

from .core import ParsedMessage, ParsedSession, ReaderResult


def message_to_dict(msg: ParsedMessage) -> dict:
    return {
        "role": msg.role,
        "content": msg.content,
        "timestamp": msg.timestamp,
    }


def session_to_dict(session: ParsedSession) -> dict:
    """Convert a ParsedSession to a JSON-serializable dict."""
    return {
        "id": session.id,
        "title": session.custom_title,
        "created_at": session.created_at,
        "last_modified": session.last_modified,
        "metadata": asdict(session.metadata),
        "messages": [message_to_dict(m) for m in session.messages],
    }


def session_summary(session: ParsedSession) -> dict:
    """Session fields without the message bodies, for listings."""
    return {
        "id": session.id,
        "title": session.custom_title,
        "created_at": session.created_at,
        "last_modified": session.last_modified,
        "message_count": session.metadata.message_count,
    }


def result_to_dict(result: ReaderResult, include_messages: bool = True) -> dict:
    convert = session_to_dict if include_messages else session_summary
    breaker_state = result.metadata.breaker_state
    return {
        "success": result.success,
        "error": result.error,
        "error_kind": result.error_kind.value if result.error_kind else None,
        "sessions": [convert(s) for s in result.sessions],
        "metadata": {
            "total_sessions": result.metadata.total_sessions,
            "processing_time": result.metadata.processing_time,
            "breaker_state": breaker_state.value if breaker_state else None,
        },
    }


def session_to_json(session: ParsedSession) -> str:
    """Export a session and its messages as structured JSON."""
    return to_json(session_to_dict(session))


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)
