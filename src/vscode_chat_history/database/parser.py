"""Validate and normalize raw ``interactive.sessions`` JSON.

The data is owned by the editor and has no guaranteed shape, so every entry is
checked and problems are reported as warnings on the result. Nothing here
raises past ``parse_session_data``.
"""

import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from ..core import (
    ParsedMessage,
    ParsedSession,
    ParseResult,
    ParsingStats,
    SessionMetadata,
    ValidationOptions,
)
from .query import coerce_datetime

logger = logging.getLogger(__name__)

VALID_ROLES = ("user", "assistant")
ONE_YEAR_MS = 365 * 24 * 60 * 60 * 1000


class SessionParseError(Exception):
    """A single session or message failed validation."""


class SessionDataParser:
    """Turn raw session JSON into ``ParsedSession`` records.

    In strict mode the first invalid message rejects its whole session; in
    lenient mode invalid messages are skipped with a warning.
    """

    def __init__(self, options: Optional[ValidationOptions] = None):
        self.options = options or ValidationOptions()

    def parse_session_data(self, raw: Any) -> ParseResult:
        """Parse a JSON array (or one session object, or JSON text) of sessions.

        Succeeds when at least one session is valid. Synthesized session ids
        embed the current time and are the only non-deterministic output.
        """
        start = time.perf_counter()
        warnings: list[str] = []

        try:
            if raw is None:
                return self._failure("No data provided for parsing", warnings, start)

            if isinstance(raw, (str, bytes)):
                try:
                    raw = json.loads(raw)
                except json.JSONDecodeError as e:
                    return self._failure(f"Session data is not valid JSON: {e}", warnings, start)

            if isinstance(raw, list):
                entries = raw
            elif isinstance(raw, dict):
                entries = [raw]
                warnings.append("Single session object converted to array")
            else:
                return self._failure(
                    "Raw data is not in expected format (array or object)", warnings, start
                )

            sessions = []
            invalid = 0
            for index, entry in enumerate(entries):
                session_warnings: list[str] = []
                try:
                    sessions.append(self._parse_session(entry, index, session_warnings))
                except SessionParseError as e:
                    invalid += 1
                    session_warnings.append(f"Session {index}: {e}")
                warnings.extend(session_warnings)

            stats = ParsingStats(
                total_sessions=len(entries),
                valid_sessions=len(sessions),
                invalid_sessions=invalid,
                total_messages=sum(len(s.messages) for s in sessions),
                processing_time=_elapsed_ms(start),
            )
            success = bool(sessions)
            if invalid:
                logger.debug("Skipped %d of %d sessions", invalid, len(entries))
            return ParseResult(
                success=success,
                data=sessions,
                error=None if success else "No valid sessions could be parsed",
                warnings=warnings,
                stats=stats,
            )
        except Exception as e:
            logger.exception("Unexpected error while parsing sessions")
            return self._failure(f"Parsing failed: {e}", warnings, start)

    def update_validation_options(self, **changes) -> None:
        self.options = replace(self.options, **changes)

    def get_validation_options(self) -> ValidationOptions:
        return replace(self.options)

    # ── Private helpers ──────────────────────────────────────────────

    def _parse_session(self, entry: Any, index: int, warnings: list[str]) -> ParsedSession:
        if not isinstance(entry, dict):
            raise SessionParseError("Session data is not an object")

        session_id = self._extract_session_id(entry, index)
        if session_id is None:
            raise SessionParseError("Session ID is required but not found")

        raw_messages = entry.get("messages")
        if raw_messages is None:
            raw_messages = []
        messages = self._parse_messages(raw_messages, warnings)

        if not messages and not self.options.allow_empty_sessions:
            raise SessionParseError("Empty sessions are not allowed")

        return ParsedSession(
            id=session_id,
            messages=messages,
            custom_title=_first_string(entry, "customTitle", "title"),
            created_at=_iso_timestamp(entry.get("createdAt")),
            last_modified=_iso_timestamp(entry.get("lastModified")),
            metadata=calculate_session_metadata(messages),
        )

    def _extract_session_id(self, entry: dict, index: int) -> Optional[str]:
        session_id = _first_string(entry, "id", "sessionId")
        if session_id:
            return session_id
        if not self.options.require_session_id:
            return f"generated_session_{index}_{int(time.time() * 1000)}"
        return None

    def _parse_messages(self, raw_messages: Any, warnings: list[str]) -> list[ParsedMessage]:
        if not isinstance(raw_messages, list):
            raise SessionParseError("Messages data is not an array")

        messages = []
        for index, raw in enumerate(raw_messages):
            message_warnings: list[str] = []
            try:
                messages.append(self._parse_message(raw, message_warnings))
            except SessionParseError as e:
                if self.options.strict_mode:
                    warnings.extend(message_warnings)
                    raise SessionParseError(f"Invalid message at index {index}: {e}") from None
                message_warnings.append(f"Skipped invalid message at index {index}: {e}")
            warnings.extend(message_warnings)
        return messages

    def _parse_message(self, raw: Any, warnings: list[str]) -> ParsedMessage:
        if not isinstance(raw, dict):
            raise SessionParseError("Message data is not an object")

        role = raw.get("role")
        if role not in VALID_ROLES:
            raise SessionParseError(f"Invalid or missing role: {role}")

        content = raw.get("content")
        if not isinstance(content, str):
            raise SessionParseError("Message content must be a string")

        timestamp = self._parse_timestamp(raw.get("timestamp"), warnings)
        return ParsedMessage(role=role, content=content, timestamp=timestamp)

    def _parse_timestamp(self, value: Any, warnings: list[str]) -> Optional[float]:
        if value is None:
            return None

        timestamp: Optional[float] = None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            timestamp = value
        elif isinstance(value, str):
            parsed = coerce_datetime(value)
            if parsed is None:
                warnings.append(f"Invalid timestamp format: {value}")
            else:
                timestamp = int(parsed.timestamp() * 1000)
        else:
            warnings.append(f"Timestamp is not a number or string: {type(value).__name__}")

        if self.options.validate_timestamps and timestamp is not None:
            now = time.time() * 1000
            if timestamp > now:
                warnings.append("Timestamp is in the future")
            elif timestamp < now - ONE_YEAR_MS:
                warnings.append("Timestamp is older than one year")
        return timestamp

    def _failure(self, error: str, warnings: list[str], start: float) -> ParseResult:
        return ParseResult(
            success=False,
            error=error,
            warnings=warnings,
            stats=ParsingStats(processing_time=_elapsed_ms(start)),
        )


def calculate_session_metadata(messages: list[ParsedMessage]) -> SessionMetadata:
    metadata = SessionMetadata(message_count=len(messages))
    for message in messages:
        metadata.total_characters += len(message.content)
        if message.role == "user":
            metadata.user_message_count += 1
        elif message.role == "assistant":
            metadata.assistant_message_count += 1

        ts = message.timestamp
        if ts is None:
            continue
        if metadata.first_message_timestamp is None or ts < metadata.first_message_timestamp:
            metadata.first_message_timestamp = ts
        if metadata.last_message_timestamp is None or ts > metadata.last_message_timestamp:
            metadata.last_message_timestamp = ts
    return metadata


def _first_string(entry: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _iso_timestamp(value: Any) -> Optional[str]:
    """Keep strings as stored; render epoch milliseconds as ISO 8601 UTC."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
        try:
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None
        return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return None


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
