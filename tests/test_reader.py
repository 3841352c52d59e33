"""
Unit tests for the session log reader.

Tests line parsing, corrupt data tolerance, staleness filtering and the
sync record export.
"""

import os
import time
from datetime import datetime, timedelta, timezone

import pytest

from ai_usage_guard.core.token_counter import TokenUsage
from ai_usage_guard.storage.models import UsageEvent
from ai_usage_guard.storage.reader import (
    UsageLogRepository,
    build_usage_sessions,
    find_jsonl_files,
    hash_project_path,
    parse_jsonl_file,
    parse_log_line,
)

from conftest import log_entry, write_jsonl


class TestParseLogLine:
    """Test parsing of individual log lines."""

    def test_assistant_line_with_usage(self):
        """Verify a usage line becomes an event with a parsed UTC timestamp."""
        line = '{"timestamp": "2026-02-19T10:00:05.000Z", "cwd": "/work/api", ' \
               '"message": {"model": "claude-opus-4", "usage": ' \
               '{"input_tokens": 100, "output_tokens": 300, "cache_read_input_tokens": 2000}}}'
        event = parse_log_line(line, session_id="abc")

        assert event is not None
        assert event.timestamp == datetime(2026, 2, 19, 10, 0, 5, tzinfo=timezone.utc)
        assert event.raw_timestamp == "2026-02-19T10:00:05.000Z"
        assert event.total_tokens == 400
        assert event.usage.cache_read_input_tokens == 2000
        assert event.model == "claude-opus-4"
        assert event.cwd == "/work/api"
        assert event.session_id == "abc"

    def test_offset_timestamp_normalized_to_utc(self):
        line = '{"timestamp": "2026-02-19T12:00:00+02:00", "message": {"usage": {"input_tokens": 1}}}'
        event = parse_log_line(line)
        assert event.timestamp == datetime(2026, 2, 19, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "{not json",
        "[1, 2, 3]",
        '"just a string"',
        '{"type": "user", "timestamp": "2026-02-19T10:00:00Z", "message": {"role": "user"}}',
        '{"timestamp": "2026-02-19T10:00:00Z", "message": {"usage": "none"}}',
        '{"timestamp": "2026-02-19T10:00:00Z", "message": "text"}',
        '{"message": {"usage": {"input_tokens": 5}}}',
        '{"timestamp": "yesterday", "message": {"usage": {"input_tokens": 5}}}',
    ])
    def test_lines_without_usage_are_dropped(self, line):
        """Verify malformed or usage-free lines yield None."""
        assert parse_log_line(line) is None

    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity", "1e400"])
    def test_non_finite_counts_read_as_zero(self, literal):
        """Verify non-finite token counts do not abort parsing."""
        line = (
            '{"timestamp": "2026-02-18T11:00:00Z", "message": {"usage": '
            '{"input_tokens": ' + literal + ', "output_tokens": 5}}}'
        )
        event = parse_log_line(line)

        assert event is not None
        assert event.input_tokens == 0
        assert event.total_tokens == 5

    def test_missing_cwd_and_model(self):
        line = '{"timestamp": "2026-02-19T10:00:00Z", "message": {"usage": {"output_tokens": 7}}}'
        event = parse_log_line(line)
        assert event.cwd is None
        assert event.model is None
        assert event.total_tokens == 7


class TestParseFile:
    """Test whole-file parsing."""

    def test_corrupt_lines_are_skipped(self, tmp_path):
        """Verify good lines survive around corrupt ones."""
        path = write_jsonl(tmp_path / "session-1.jsonl", [
            log_entry("2026-02-19T10:00:00Z", 100, 50),
            "{corrupt",
            {"type": "user", "timestamp": "2026-02-19T10:00:30Z", "message": {"role": "user"}},
            log_entry("2026-02-19T10:01:00Z", 200, 100),
        ])
        events = parse_jsonl_file(path)

        assert [e.total_tokens for e in events] == [150, 300]
        assert all(e.session_id == "session-1" for e in events)

    def test_overflowing_line_does_not_abort_repository(self, tmp_path):
        """Verify one line with an overflowing count leaves the rest readable."""
        write_jsonl(tmp_path / "proj" / "s.jsonl", [
            '{"timestamp": "2026-02-18T11:00:00Z", "message": {"usage": {"input_tokens": 1e400}}}',
            log_entry("2026-02-18T11:05:00Z", 100, 50),
        ])
        events = UsageLogRepository(tmp_path).get_recent_events()

        assert sorted(e.total_tokens for e in events) == [0, 150]

    def test_unreadable_file_yields_nothing(self, tmp_path):
        assert parse_jsonl_file(tmp_path / "missing.jsonl") == []

    def test_find_jsonl_files_recurses(self, tmp_path):
        write_jsonl(tmp_path / "a" / "one.jsonl", [])
        write_jsonl(tmp_path / "a" / "deeper" / "two.jsonl", [])
        (tmp_path / "b").mkdir()
        (tmp_path / "b" / "notes.txt").write_text("ignored")

        names = sorted(p.name for p in find_jsonl_files(tmp_path))
        assert names == ["one.jsonl", "two.jsonl"]


class TestUsageLogRepository:
    """Test reading a whole log tree."""

    def test_missing_directory_yields_empty(self, tmp_path):
        """Verify a missing root is not an error."""
        repository = UsageLogRepository(tmp_path / "does-not-exist")
        assert repository.get_recent_events() == []

    def test_reads_all_recent_files(self, tmp_path):
        """Verify events from every project directory are merged."""
        write_jsonl(tmp_path / "proj-a" / "s1.jsonl", [
            log_entry("2026-02-19T10:00:00Z", 100, 50),
            log_entry("2026-02-19T10:05:00Z", 100, 50),
        ])
        write_jsonl(tmp_path / "proj-b" / "s2.jsonl", [
            log_entry("2026-02-19T11:00:00Z", 10, 5, cwd="/home/dev/project-b"),
        ])
        write_jsonl(tmp_path / "proj-b" / "s3.jsonl", ["garbage"])

        events = UsageLogRepository(tmp_path).get_recent_events()

        assert len(events) == 3
        assert sum(e.total_tokens for e in events) == 315
        assert {e.session_id for e in events} == {"s1", "s2"}

    def test_stale_files_are_skipped(self, tmp_path):
        """Verify files untouched beyond the staleness window are not read."""
        write_jsonl(tmp_path / "proj" / "fresh.jsonl", [log_entry("2026-02-19T10:00:00Z")])
        stale = write_jsonl(tmp_path / "proj" / "stale.jsonl", [log_entry("2026-02-01T10:00:00Z")])
        eight_days_ago = time.time() - 8 * 24 * 3600
        os.utime(stale, (eight_days_ago, eight_days_ago))

        events = UsageLogRepository(tmp_path, staleness=timedelta(days=7)).get_recent_events()

        assert [e.session_id for e in events] == ["fresh"]

    def test_get_recent_sessions(self, tmp_path):
        """Verify sync records are newest first, hashed and limited."""
        write_jsonl(tmp_path / "proj" / "s.jsonl", [
            log_entry("2026-02-19T10:00:00Z", 1, 1),
            log_entry("2026-02-19T12:00:00Z", 2, 2, cwd=None),
            log_entry("2026-02-19T11:00:00Z", 3, 3),
        ])
        repository = UsageLogRepository(tmp_path)

        sessions = repository.get_recent_sessions(limit=2)

        assert [s.timestamp for s in sessions] == [
            "2026-02-19T12:00:00Z",
            "2026-02-19T11:00:00Z",
        ]
        assert sessions[0].project_hash == "unknown"
        assert sessions[1].project_hash == hash_project_path("/home/dev/project-a")
        assert sessions[1].tokens_input == 3


class TestUsageEvent:
    """Test event normalization."""

    def test_naive_timestamp_is_taken_as_utc(self):
        event = UsageEvent(
            timestamp=datetime(2026, 2, 18, 11, 0),
            usage=TokenUsage(input_tokens=10, output_tokens=5),
        )
        assert event.timestamp == datetime(2026, 2, 18, 11, 0, tzinfo=timezone.utc)

    def test_offset_timestamp_is_converted(self):
        event = UsageEvent(
            timestamp=datetime(2026, 2, 18, 13, 0, tzinfo=timezone(timedelta(hours=2))),
            usage=TokenUsage(input_tokens=1, output_tokens=0),
        )
        assert event.timestamp.tzinfo == timezone.utc
        assert event.timestamp.hour == 11


class TestUsageSessions:
    """Test sync record construction."""

    def test_since_is_exclusive(self, make_event):
        base = datetime(2026, 2, 19, 10, tzinfo=timezone.utc)
        events = [make_event(base, 1, 1), make_event(base + timedelta(minutes=1), 2, 2)]

        sessions = build_usage_sessions(events, since=base)

        assert len(sessions) == 1
        assert sessions[0].tokens_input == 2
        assert sessions[0].model == "claude-sonnet-4-6"

    def test_project_hash_is_stable(self):
        digest = hash_project_path("/home/dev/project-a")
        assert len(digest) == 16
        assert digest == hash_project_path("/home/dev/project-a")
        assert digest != hash_project_path("/home/dev/project-b")
