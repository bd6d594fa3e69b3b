"""
Unit tests for partition reading and scanning.
"""

import gzip
import logging

import pytest

from agent_telemetry.storage.models import EventType
from agent_telemetry.storage.reader import (
    Parsed,
    Skipped,
    list_partition_files,
    open_line_stream,
    parse_line,
    partition_date,
    partition_name,
    scan,
)


def _collect(event, acc):
    acc.append(event)


class TestPartitionFiles:
    """Test partition naming and listing."""

    def test_partition_name_and_date(self):
        """Test names round trip through partition_date."""
        assert partition_name("2024-05-01") == "events-2024-05-01.ndjson"
        assert partition_name("2024-05-01", compressed=True) == "events-2024-05-01.ndjson.gz"
        assert partition_date("events-2024-05-01.ndjson.gz") == "2024-05-01"
        assert partition_date("notes.txt") is None

    def test_list_filters_by_date_and_ignores_other_files(self, telemetry_dir):
        """Test listing honours since/until dates and skips foreign files."""
        for name in (
            "events-2024-05-03.ndjson", "events-2024-05-01.ndjson.gz",
            "events-2024-05-02.ndjson", "events-2024-05-04.ndjson", "README.md",
        ):
            (telemetry_dir / name).write_bytes(b"")

        files = list_partition_files(telemetry_dir, "2024-05-02T13:00:00.000Z", "2024-05-03T01:00:00.000Z")
        everything = list_partition_files(telemetry_dir)

        assert [p.name for p in files] == ["events-2024-05-02.ndjson", "events-2024-05-03.ndjson"]
        assert [p.name for p in everything][0] == "events-2024-05-01.ndjson.gz"
        assert len(everything) == 4

    def test_missing_directory_lists_nothing(self, tmp_path):
        """Test a missing directory is an empty store."""
        assert list_partition_files(tmp_path / "missing") == []


class TestLineParsing:
    """Test line decoding outcomes."""

    def test_parse_outcomes(self):
        """Test valid, blank, invalid and non-object lines."""
        assert parse_line('{"a": 1}') == Parsed({"a": 1})
        assert parse_line("   ") == Skipped("blank line")
        assert isinstance(parse_line("{oops"), Skipped)
        assert parse_line("[1, 2]") == Skipped("record is not a JSON object")

    def test_parse_raw_bytes(self):
        """Test raw lines are decoded one at a time."""
        assert parse_line(b'{"a": "\xc3\xa9"}') == Parsed({"a": "\u00e9"})
        assert parse_line(b'{"a": "\xff"}') == Skipped("invalid UTF-8")

    def test_open_line_stream_reads_gzip(self, telemetry_dir):
        """Test compressed partitions are decompressed transparently."""
        path = telemetry_dir / "events-2024-05-01.ndjson.gz"
        with gzip.open(path, "wt", encoding="utf-8") as f:
            f.write('{"a": 1}\n{"b": 2}\n')

        assert list(open_line_stream(path)) == [b'{"a": 1}', b'{"b": 2}']


class TestScan:
    """Test streaming scans."""

    def test_filters_run_before_matching(self, telemetry_dir, write_events):
        """Test type, since, until and project filters."""
        paths = write_events([
            {"type": "run.started", "timestamp": "2024-05-01T09:00:00.000Z", "project": "a"},
            {"type": "run.completed", "timestamp": "2024-05-01T10:00:00.000Z", "project": "a", "success": True},
            {"type": "run.completed", "timestamp": "2024-05-01T11:00:00.000Z", "project": "b", "success": True},
            {"type": "run.completed", "timestamp": "2024-05-01T12:00:00.000Z", "project": "a", "success": True},
            {"type": "run.completed", "timestamp": "2024-05-01T13:00:00.000Z", "project": "a", "success": True},
        ])
        found = []

        stats = scan(
            paths, [EventType.RUN_COMPLETED], "2024-05-01T10:00:00.000Z", "a",
            found, _collect, until="2024-05-01T12:00:00.000Z"
        )

        assert [e.timestamp[11:13] for e in found] == ["10", "12"]
        assert stats.matched == 2
        assert stats.lines == 5
        assert stats.skipped == 0

    def test_skipped_lines_are_counted_and_logged(self, telemetry_dir, write_events, caplog):
        """Test malformed lines are counted, blank lines are not."""
        path = write_events([
            {"type": "task.created", "timestamp": "2024-05-01T09:00:00.000Z"},
        ])[0]
        with open(path, "a", encoding="utf-8") as f:
            f.write("\n")
            f.write("garbage\n")
            f.write('{"type": "task.created", "timestamp": "2024-05-01T10:00:00.000Z"}\n')
        found = []

        with caplog.at_level(logging.DEBUG, logger="agent_telemetry.storage.reader"):
            stats = scan([path], [EventType.TASK_CREATED], None, None, found, _collect)

        assert len(found) == 1
        assert stats.skipped == 2  # garbage + record without id
        assert "Skipped 2 malformed line(s)" in caplog.text

    def test_legacy_status_is_normalized(self, telemetry_dir, write_events):
        """Test a legacy status string becomes the success flag."""
        paths = write_events([
            {"type": "run.completed", "timestamp": "2024-05-01T09:00:00.000Z", "status": "success"},
            {"type": "run.completed", "timestamp": "2024-05-01T10:00:00.000Z", "status": "failed"},
        ])
        found = []

        scan(paths, [EventType.RUN_COMPLETED], None, None, found, _collect)

        assert [e.success for e in found] == [True, False]
        assert all("status" not in e.attributes for e in found)

    def test_missing_and_corrupt_files_are_skipped(self, telemetry_dir, write_events, caplog):
        """Test a vanished file and a damaged gzip don't stop the scan."""
        good = write_events([{"type": "task.created", "timestamp": "2024-05-02T09:00:00.000Z"}])[0]
        corrupt = telemetry_dir / "events-2024-05-01.ndjson.gz"
        corrupt.write_bytes(b"definitely not gzip")
        missing = telemetry_dir / "events-2024-04-30.ndjson"
        found = []

        stats = scan([missing, corrupt, good], [EventType.TASK_CREATED], None, None, found, _collect)

        assert len(found) == 1
        assert stats.files == 3
        assert "Unreadable partition" in caplog.text

    def test_compressed_partitions_scan_like_plain(self, telemetry_dir, write_events):
        """Test gzip and plain partitions yield the same events."""
        records = [
            {"id": "evt_1", "type": "run.tokens", "timestamp": "2024-05-01T09:00:00.000Z",
             "inputTokens": 10, "outputTokens": 5},
        ]
        plain = write_events(records)
        compressed = write_events(
            [dict(records[0], timestamp="2024-05-02T09:00:00.000Z")], compressed=True
        )
        from_plain, from_gzip = [], []

        scan(plain, [EventType.RUN_TOKENS], None, None, from_plain, _collect)
        scan(compressed, [EventType.RUN_TOKENS], None, None, from_gzip, _collect)

        assert from_plain[0].tokens == from_gzip[0].tokens == 15

    @pytest.mark.parametrize("compressed", [False, True])
    def test_bad_values_and_encoding_are_skipped(self, telemetry_dir, compressed):
        """Test bad types, non-finite numbers and bad bytes only cost their own line."""
        lines = [
            b'{"id": "a", "type": "run.started", "timestamp": "2024-05-01T09:00:00.000Z"}',
            b'{"id": "b", "type": ["run.started"], "timestamp": "2024-05-01T09:01:00.000Z"}',
            b'{"id": "c", "type": {"kind": "run"}, "timestamp": "2024-05-01T09:02:00.000Z"}',
            b'{"id": "d", "type": "run.tokens", "timestamp": "2024-05-01T09:03:00.000Z", "inputTokens": NaN}',
            b'{"id": "e", "type": "run.tokens", "timestamp": "2024-05-01T09:04:00.000Z", "outputTokens": 1e400}',
            b'{"id": "f", "type": "run.started", "timestamp": "2024-05-01T09:05:00.000Z", "agent": "\xff"}',
            b'{"id": "g", "type": "run.completed", "timestamp": "2024-05-01T09:06:00.000Z", "success": true}',
        ]
        path = telemetry_dir / partition_name("2024-05-01", compressed=compressed)
        data = b"\n".join(lines) + b"\n"
        if compressed:
            with gzip.open(path, "wb") as f:
                f.write(data)
        else:
            path.write_bytes(data)
        found = []

        stats = scan([path], list(EventType), None, None, found, _collect)

        assert [e.id for e in found] == ["a", "g"]
        assert stats.lines == 7
        assert stats.matched == 2
        assert stats.skipped == 5
