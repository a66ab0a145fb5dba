"""Tests for the campaign history log."""

import json
import os
import tempfile

from rampbench.evidence import append_event, create_event, read_events
from rampbench.models import BusinessEstimate, Campaign, CampaignStatus


def _campaign(url="http://svc", status=CampaignStatus.DONE, breaking_point=200):
    return Campaign(url=url, status=status, breaking_point=breaking_point, last_healthy=150)


class TestCreateEvent:
    def test_basic_event(self):
        event = create_event(_campaign())
        assert event.url == "http://svc"
        assert event.status == "done"
        assert event.breaking_point == 200
        assert event.last_healthy == 150
        assert event.steps == 0
        assert event.tier is None
        assert "T" in event.ts  # ISO 8601

    def test_event_with_estimate(self):
        estimate = BusinessEstimate(
            safe_rate=150, requests_per_day=12_960_000, daily_active_users=259_200,
            tier="National", recommended_rate=120,
        )
        event = create_event(_campaign(status=CampaignStatus.INCOMPLETE), estimate)
        assert event.status == "incomplete"
        assert event.tier == "National"


class TestAppendAndRead:
    def test_append_creates_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "history.jsonl")
            assert not os.path.exists(log_path)

            append_event(create_event(_campaign()), log_path)

            assert os.path.isfile(log_path)
            with open(log_path, "r") as f:
                lines = f.readlines()
            assert len(lines) == 1
            parsed = json.loads(lines[0])
            assert parsed["url"] == "http://svc"
            assert parsed["breaking_point"] == 200

    def test_append_does_not_overwrite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "history.jsonl")
            append_event(create_event(_campaign(url="http://one")), log_path)
            append_event(create_event(_campaign(url="http://two")), log_path)

            events = read_events(log_path)
            assert [e.url for e in events] == ["http://one", "http://two"]

    def test_read_nonexistent_returns_empty(self):
        assert read_events("/tmp/nonexistent_rampbench_history.jsonl") == []

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "nested", "dir", "history.jsonl")
            append_event(create_event(_campaign()), log_path)
            assert os.path.isfile(log_path)

    def test_malformed_lines_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "history.jsonl")
            with open(log_path, "w") as f:
                f.write('{"url":"http://good","ts":"2026-01-01T00:00:00Z","status":"done"}\n')
                f.write("this is not json\n")
                f.write("[1, 2]\n")
                f.write('{"url":"http://also-good","ts":"2026-01-02T00:00:00Z","status":"incomplete"}\n')

            events = read_events(log_path)
            assert len(events) == 2
            assert events[0].url == "http://good"
            assert events[1].status == "incomplete"
