"""Tests for session data parsing and validation."""

import json
import time

import pytest

from vscode_chat_history.core import ValidationOptions
from vscode_chat_history.database import SessionDataParser

from conftest import CREATED_MS, SAMPLE_SESSIONS


def now_ms():
    return int(time.time() * 1000)


def session(session_id="s1", messages=None, **fields):
    data = {"id": session_id, "messages": messages if messages is not None else []}
    data.update(fields)
    return data


def message(role="user", content="hello", timestamp=None):
    data = {"role": role, "content": content}
    if timestamp is not None:
        data["timestamp"] = timestamp
    return data


@pytest.fixture
def parser():
    return SessionDataParser()


@pytest.fixture
def lenient():
    return SessionDataParser(ValidationOptions(strict_mode=False))


class TestParseSessions:
    def test_minimal_session(self, parser):
        result = parser.parse_session_data([
            {"id": "s1", "messages": [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
            ]},
        ])
        assert result.success
        assert len(result.data) == 1
        parsed = result.data[0]
        assert parsed.id == "s1"
        assert parsed.metadata.message_count == 2
        assert parsed.metadata.user_message_count == 1
        assert parsed.metadata.assistant_message_count == 1

    def test_parses_sample_sessions(self, parser):
        result = parser.parse_session_data(SAMPLE_SESSIONS)
        assert result.success
        assert [s.id for s in result.data] == ["session-001", "session-002"]
        first, second = result.data
        assert first.custom_title == "Fix auth bug"
        assert first.created_at == "2025-01-15T10:00:00.000Z"
        assert second.custom_title == "Add dark mode"
        assert second.created_at == "2025-03-02T09:30:00.000Z"
        assert result.stats.total_sessions == 2
        assert result.stats.valid_sessions == 2
        assert result.stats.total_messages == 5

    def test_message_fields_preserved(self, parser):
        ts = now_ms()
        result = parser.parse_session_data([session(messages=[
            message("user", "Hello", ts),
            message("assistant", "Hi there!", ts + 1000),
        ])])
        assert result.success
        assert result.warnings == []
        parsed = result.data[0]
        assert [(m.role, m.content, m.timestamp) for m in parsed.messages] == [
            ("user", "Hello", ts),
            ("assistant", "Hi there!", ts + 1000),
        ]

    def test_session_metadata(self, parser):
        ts = now_ms()
        result = parser.parse_session_data([session(messages=[
            message("user", "abc", ts + 500),
            message("assistant", "defgh", ts),
            message("user", "ij"),
        ])])
        meta = result.data[0].metadata
        assert meta.message_count == 3
        assert meta.user_message_count == 2
        assert meta.assistant_message_count == 1
        assert meta.total_characters == 10
        assert meta.first_message_timestamp == ts
        assert meta.last_message_timestamp == ts + 500

    def test_parse_is_idempotent(self, parser):
        first = parser.parse_session_data(SAMPLE_SESSIONS)
        second = parser.parse_session_data(SAMPLE_SESSIONS)
        assert first.data == second.data
        assert first.warnings == second.warnings

    def test_accepts_json_text(self, parser):
        result = parser.parse_session_data(json.dumps(SAMPLE_SESSIONS))
        assert result.success
        assert len(result.data) == 2

    def test_rejects_invalid_json_text(self, parser):
        result = parser.parse_session_data("[{not json")
        assert not result.success
        assert result.error.startswith("Session data is not valid JSON")

    def test_single_object_is_wrapped(self, parser):
        result = parser.parse_session_data(session(messages=[message()]))
        assert result.success
        assert len(result.data) == 1
        assert "Single session object converted to array" in result.warnings

    def test_none_input(self, parser):
        result = parser.parse_session_data(None)
        assert not result.success
        assert result.error == "No data provided for parsing"

    def test_unexpected_type(self, parser):
        result = parser.parse_session_data(42)
        assert not result.success
        assert "expected format" in result.error

    def test_no_valid_sessions(self, parser):
        result = parser.parse_session_data(["not a session", session(messages=[])])
        assert not result.success
        assert result.error == "No valid sessions could be parsed"
        assert result.stats.invalid_sessions == 2
        assert "Session 0: Session data is not an object" in result.warnings

    def test_invalid_sessions_are_skipped(self, parser):
        result = parser.parse_session_data([session("bad", messages="nope"), session("good", [message()])])
        assert result.success
        assert [s.id for s in result.data] == ["good"]
        assert result.stats.invalid_sessions == 1
        assert "Session 0: Messages data is not an array" in result.warnings

    def test_missing_messages_counts_as_empty(self, parser):
        result = parser.parse_session_data([{"id": "no-messages"}])
        assert not result.success
        assert "Session 0: Empty sessions are not allowed" in result.warnings


class TestStrictness:
    def test_strict_rejects_session_with_invalid_role(self, parser):
        result = parser.parse_session_data([session(messages=[
            message("user", "hi"),
            message("system", "You are helpful"),
        ])])
        assert not result.success
        assert any("Invalid message at index 1" in w for w in result.warnings)

    def test_lenient_skips_invalid_message(self, lenient):
        result = lenient.parse_session_data([session(messages=[
            message("user", "hi"),
            message("system", "You are helpful"),
            message("assistant", "hello"),
        ])])
        assert result.success
        assert [m.role for m in result.data[0].messages] == ["user", "assistant"]
        assert "Skipped invalid message at index 1: Invalid or missing role: system" in result.warnings

    def test_lenient_still_rejects_session_left_empty(self, lenient):
        result = lenient.parse_session_data([session(messages=[message("tool", "x")])])
        assert not result.success

    def test_non_string_content_is_invalid(self, lenient):
        result = lenient.parse_session_data([session(messages=[
            {"role": "user", "content": {"parts": []}},
            message(),
        ])])
        assert len(result.data[0].messages) == 1
        assert any("Message content must be a string" in w for w in result.warnings)

    def test_empty_sessions_allowed_when_enabled(self):
        parser = SessionDataParser(ValidationOptions(allow_empty_sessions=True))
        result = parser.parse_session_data([session(messages=[])])
        assert result.success
        assert result.data[0].messages == []
        assert result.data[0].metadata.message_count == 0


class TestSessionIds:
    def test_session_id_field(self, parser):
        result = parser.parse_session_data([{"sessionId": "abc", "messages": [message()]}])
        assert result.data[0].id == "abc"

    def test_missing_id_rejected_when_required(self, parser):
        result = parser.parse_session_data([{"messages": [message()]}])
        assert not result.success
        assert "Session 0: Session ID is required but not found" in result.warnings

    def test_missing_id_generated_when_optional(self):
        parser = SessionDataParser(ValidationOptions(require_session_id=False))
        result = parser.parse_session_data([session("keep", [message()]), {"messages": [message()]}])
        assert result.success
        assert result.data[0].id == "keep"
        assert result.data[1].id.startswith("generated_session_1_")


class TestTimestamps:
    def test_iso_string_converted_to_epoch_ms(self, parser):
        result = parser.parse_session_data([session(messages=[
            message(timestamp="2025-01-15T10:00:00.000Z"),
        ])])
        assert result.data[0].messages[0].timestamp == CREATED_MS

    def test_invalid_string_kept_as_none(self, parser):
        result = parser.parse_session_data([session(messages=[message(timestamp="not a date")])])
        assert result.success
        assert result.data[0].messages[0].timestamp is None
        assert "Invalid timestamp format: not a date" in result.warnings

    def test_wrong_type_warns(self, parser):
        result = parser.parse_session_data([session(messages=[message(timestamp=[1])])])
        assert result.data[0].messages[0].timestamp is None
        assert "Timestamp is not a number or string: list" in result.warnings

    def test_future_timestamp_warns(self, parser):
        future = now_ms() + 24 * 60 * 60 * 1000
        result = parser.parse_session_data([session(messages=[message(timestamp=future)])])
        assert result.success
        assert result.data[0].messages[0].timestamp == future
        assert "Timestamp is in the future" in result.warnings

    def test_old_timestamp_warns(self, parser):
        old = now_ms() - 2 * 365 * 24 * 60 * 60 * 1000
        result = parser.parse_session_data([session(messages=[message(timestamp=old)])])
        assert "Timestamp is older than one year" in result.warnings

    def test_plausibility_checks_can_be_disabled(self):
        parser = SessionDataParser(ValidationOptions(validate_timestamps=False))
        result = parser.parse_session_data([session(messages=[message(timestamp=1)])])
        assert result.warnings == []


def test_validation_options_are_copied(parser):
    options = parser.get_validation_options()
    options.strict_mode = False
    assert parser.options.strict_mode

    parser.update_validation_options(strict_mode=False, require_session_id=False)
    assert parser.get_validation_options() == ValidationOptions(
        strict_mode=False, require_session_id=False
    )
