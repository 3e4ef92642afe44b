from __future__ import annotations

import io
from contextlib import redirect_stdout
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

import orjson
import structlog

from margin_manager.cli import main
from tests.support import make_signal


class TestMarginReplayCli(TestCase):
    def setUp(self) -> None:
        self.addCleanup(structlog.reset_defaults)
        tmpdir = TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)

    def _write(self, name: str, payload: object) -> Path:
        path = self.root / name
        path.write_bytes(orjson.dumps(payload))
        return path

    def test_writes_replay_report_to_output(self) -> None:
        signals = self._write(
            "signals.json",
            [make_signal("em-1", signal_type="EMERGENCY", severity="CRITICAL"), None],
        )
        output = self.root / "out" / "report.json"

        exit_code = main([str(signals), "--mode", "EMERGENCY", "--output", str(output)])

        self.assertEqual(exit_code, 0)
        report = orjson.loads(output.read_bytes())
        self.assertEqual(set(report), {"mode", "result", "status", "metrics", "forecast"})
        self.assertEqual(report["mode"], "EMERGENCY")
        self.assertEqual(len(report["result"]["allocations"]), 4)
        self.assertTrue(report["result"]["deployments"])
        self.assertEqual(report["forecast"]["time_horizon"], 7)

    def test_prints_to_stdout_with_custom_horizon_and_config(self) -> None:
        signals = self._write("signals.json", [make_signal()])
        config = self._write("config.json", {"marginCapacities": {"financial": 5000}})
        buffer = io.StringIO()

        with redirect_stdout(buffer):
            exit_code = main([str(signals), "--horizon", "14", "--config", str(config)])

        self.assertEqual(exit_code, 0)
        report = orjson.loads(buffer.getvalue())
        self.assertEqual(report["forecast"]["time_horizon"], 14)
        self.assertEqual(report["status"]["allocations"][3]["total"], "5000")

    def test_rejects_non_list_batch(self) -> None:
        signals = self._write("signals.json", {"id": "not-a-list"})
        self.assertEqual(main([str(signals)]), 1)
