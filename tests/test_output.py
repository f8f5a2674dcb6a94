"""Tests for ui.output -- wire events, JSON export, plain text and CSV."""

import json
import os
import tempfile
import unittest

from meter.models import (
    FailureReason,
    Measurement,
    Phase,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    Progress,
    RunCompleted,
    RunFailed,
    Sample,
    TestRun,
)
from ui.output import (
    _csv_escape,
    event_to_dict,
    format_csv_header,
    format_csv_row,
    format_text_result,
    run_to_dict,
    save_json,
)


def _completed_run():
    run = TestRun()
    run.record(Measurement(Phase.PING, duration_seconds=0.5, sample_count=9, latency_ms=18, jitter_ms=2.5))
    run.record(Measurement(Phase.DOWNLOAD, speed_mbps=94.123, duration_seconds=3.0,
                           sample_count=30, peak_mbps=120.0, bytes_total=36_000_000))
    run.record(Measurement(Phase.UPLOAD, speed_mbps=21.5, duration_seconds=2.0,
                           sample_count=20, peak_mbps=25.0, bytes_total=5_242_880))
    run.finish()
    return run


class TestEventToDict(unittest.TestCase):
    def test_phase_started(self):
        self.assertEqual(
            event_to_dict(PhaseStarted(Phase.DOWNLOAD)),
            {"type": "phase-started", "phase": "download", "message": "Testing download..."},
        )

    def test_progress_without_fraction(self):
        payload = event_to_dict(Progress(Phase.DOWNLOAD, Sample(elapsed_seconds=0.5, bytes=6_553_600)))
        self.assertEqual(payload["type"], "progress")
        self.assertEqual(payload["phase"], "download")
        self.assertEqual(payload["speed"], 100.0)
        self.assertEqual(payload["bytes"], 6_553_600)
        self.assertNotIn("progress", payload)

    def test_progress_with_fraction(self):
        payload = event_to_dict(Progress(Phase.UPLOAD, Sample(0.25, 65536), fraction=0.5))
        self.assertEqual(payload["progress"], 50.0)

    def test_phase_completed(self):
        m = Measurement(Phase.PING, duration_seconds=0.3, sample_count=3, latency_ms=20, jitter_ms=1.0)
        payload = event_to_dict(PhaseCompleted(Phase.PING, m))
        self.assertEqual(payload["type"], "phase-completed")
        self.assertEqual(payload["measurement"]["latency_ms"], 20)

    def test_phase_failed(self):
        payload = event_to_dict(PhaseFailed(Phase.PING, "All ping endpoints failed"))
        self.assertEqual(payload, {
            "type": "phase-failed", "phase": "ping", "message": "All ping endpoints failed",
        })

    def test_run_completed(self):
        run = _completed_run()
        payload = event_to_dict(RunCompleted(run))
        self.assertEqual(payload["type"], "complete")
        self.assertEqual(payload["results"]["id"], run.id)
        self.assertEqual(payload["results"]["status"], "completed")
        json.dumps(payload)

    def test_run_failed(self):
        payload = event_to_dict(RunFailed(FailureReason.DOWNLOAD_FAILED, "no sources", Phase.DOWNLOAD))
        self.assertEqual(payload, {
            "type": "error", "reason": "download_failed", "phase": "download", "message": "no sources",
        })

    def test_run_failed_without_phase(self):
        payload = event_to_dict(RunFailed(FailureReason.TIMEOUT, "too slow"))
        self.assertIsNone(payload["phase"])

    def test_unknown_event(self):
        with self.assertRaises(TypeError):
            event_to_dict(object())


class TestRunToDict(unittest.TestCase):
    def test_timestamp_is_completion_time(self):
        run = _completed_run()
        result = run_to_dict(run)
        self.assertEqual(result["timestamp"], run.completed_at.isoformat())
        self.assertEqual(result["download"]["peak_mbps"], 120.0)

    def test_running_uses_start_time(self):
        run = TestRun()
        self.assertEqual(run_to_dict(run)["timestamp"], run.started_at.isoformat())


class TestSaveJson(unittest.TestCase):
    def test_writes_and_cleans_up(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "result.json")
            save_json({"status": "completed"}, path)
            with open(path) as f:
                self.assertEqual(json.load(f), {"status": "completed"})
            self.assertEqual(os.listdir(tmpdir), ["result.json"])

    def test_unwritable_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(IOError):
                save_json({}, os.path.join(tmpdir, "missing", "result.json"))


class TestTextResult(unittest.TestCase):
    def test_contents(self):
        text = format_text_result(18, 94.123, 21.5, 120.0)
        self.assertIn("Ping: 18 ms", text)
        self.assertIn("Download: 94.12 Mbps (peak 120.00 Mbps)", text)
        self.assertIn("Upload: 21.50 Mbps", text)

    def test_missing_ping(self):
        self.assertIn("Ping: n/a", format_text_result(None, 1.0, 1.0))


class TestCsv(unittest.TestCase):
    def test_plain_value(self):
        self.assertEqual(_csv_escape("completed"), "completed")

    def test_value_with_comma(self):
        self.assertEqual(_csv_escape("a,b"), '"a,b"')

    def test_value_with_quotes(self):
        self.assertEqual(_csv_escape('Say "hello"'), '"Say ""hello"""')

    def test_header_matches_row(self):
        header = format_csv_header().split(",")
        row = format_csv_row(_completed_run()).split(",")
        self.assertEqual(len(header), len(row))

    def test_completed_row(self):
        run = _completed_run()
        fields = format_csv_row(run).split(",")
        self.assertEqual(fields[1], run.id)
        self.assertEqual(fields[2:], ["completed", "18", "94.12", "120.00", "21.50"])

    def test_failed_row_leaves_blanks(self):
        run = TestRun()
        run.fail(FailureReason.TIMEOUT, discard=True)
        fields = format_csv_row(run).split(",")
        self.assertEqual(fields[2:], ["failed", "", "", "", ""])


if __name__ == "__main__":
    unittest.main()
