from __future__ import annotations

import json
import os
import sys
import tempfile
import textwrap
import time
import unittest
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from bigzip_backend.api import create_app, event_stream
from bigzip_backend.config import Settings
from bigzip_backend.events import EventLog
from bigzip_backend.service_container import build_services

_TERMINAL_EVENTS = {"run_completed", "run_failed", "run_rejected", "run_cancelled", "run_crashed"}


def _write_fake_bz(directory: Path, body: str) -> Path:
    script = directory / "bz"
    script.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    script.chmod(0o755)
    return script


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        settings = Settings(
            executable_name="bz",
            executable_dir=str(root),
            runtime_config_path=str(root / "runtime-config.json"),
        )
        self.services = build_services(settings)
        self.client = TestClient(create_app(self.services))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})

    def test_integrations_report_missing_executable(self) -> None:
        body = self.client.get("/health/integrations").json()
        self.assertFalse(body["executable_available"])
        self.assertEqual(body["executable_name"], "bz")

    def test_patch_session_routes_paths(self) -> None:
        response = self.client.patch("/v1/session", json={"input_path": r"C:\files\archive.bigzip"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["output_path"], r"C:\files\archive")
        self.assertTrue(body["decompress"])
        self.assertFalse(body["mode_enabled"])
        self.assertEqual(body["phase"], "idle")
        self.assertEqual(body["run_button_text"], "Run BigZip")

        body = self.client.patch("/v1/session", json={"decompress": False, "factor": "512"}).json()
        self.assertEqual(body["output_path"], r"C:\files\archive.bigzip.bigzip")
        self.assertEqual(body["factor"], "512")

    def test_invalid_session_values_return_400(self) -> None:
        response = self.client.patch("/v1/session", json={"fill_pattern": "ones"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("fill_pattern", response.json()["detail"])

    def test_runtime_config_round_trip_and_validation(self) -> None:
        body = self.client.get("/v1/runtime/config").json()
        self.assertEqual(body["executable_name"], "bz")

        body = self.client.patch("/v1/runtime/config", json={"progress_interval_ms": 250}).json()
        self.assertEqual(body["progress_interval_ms"], 250)

        response = self.client.patch("/v1/runtime/config", json={"default_factor": "7"})
        self.assertEqual(response.status_code, 400)

    def test_cancel_when_idle(self) -> None:
        body = self.client.post("/v1/session/cancel").json()
        self.assertFalse(body["cancelled"])
        self.assertEqual(body["session"]["phase"], "idle")

    def test_events_record_state_changes(self) -> None:
        self.client.patch("/v1/session", json={"input_path": "/data/photo.jpg"})

        events = self.client.get("/v1/session/events", params={"after_id": 0}).json()
        changes = [(event["payload"]["field"], event["payload"]["value"]) for event in events]
        self.assertEqual(changes, [("input_path", "/data/photo.jpg"), ("output_path", "/data/photo.jpg.bigzip")])

        later = self.client.get("/v1/session/events", params={"after_id": events[-1]["id"]}).json()
        self.assertEqual(later, [])


@unittest.skipIf(os.name == "nt", "fake executables are POSIX shebang scripts")
class ApiRunTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.input_file = self.root / "in.txt"
        self.input_file.write_text("abc", encoding="utf-8")
        self.output_file = self.root / "in.txt.bigzip"
        self.args_file = self.root / "args.txt"
        self.pid_file = self.root / "pid.txt"
        settings = Settings(
            executable_name="bz",
            executable_dir=str(self.root),
            progress_interval_ms=50,
            runtime_config_path=str(self.root / "runtime-config.json"),
        )
        self.services = build_services(settings)
        self.app = create_app(self.services)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _install_writer(self) -> None:
        _write_fake_bz(
            self.root,
            """
            import sys
            from pathlib import Path
            args = sys.argv[1:]
            Path(__file__).with_name("args.txt").write_text("\\n".join(args))
            output = args[args.index("-o") + 1]
            print(f"Wrote {output} (size: 3 bytes)")
            """,
        )

    def _install_sleeper(self) -> None:
        _write_fake_bz(
            self.root,
            """
            import os, time
            from pathlib import Path
            Path(__file__).with_name("pid.txt").write_text(str(os.getpid()))
            time.sleep(30)
            """,
        )

    def _select_input(self, client: TestClient) -> None:
        body = client.patch("/v1/session", json={"input_path": str(self.input_file)}).json()
        self.assertEqual(body["output_path"], str(self.output_file))

    def _wait_until_finished(self, client: TestClient) -> dict[str, Any]:
        deadline = time.monotonic() + 15
        while time.monotonic() < deadline:
            events = client.get("/v1/session/events", params={"limit": 1000}).json()
            session = client.get("/v1/session").json()
            finished = any(event["type"] in _TERMINAL_EVENTS for event in events)
            if finished and session["phase"] == "idle" and session["status_message"]:
                return session
            time.sleep(0.05)
        self.fail("run did not return to idle")

    def _wait_for_child(self) -> int:
        deadline = time.monotonic() + 15
        while time.monotonic() < deadline:
            if self.pid_file.exists() and self.pid_file.read_text().strip():
                return int(self.pid_file.read_text())
            time.sleep(0.05)
        self.fail("child process never started")

    def test_run_without_overwrite_answer_rejects_existing_output(self) -> None:
        self._install_writer()
        self.output_file.write_text("old", encoding="utf-8")

        with TestClient(self.app) as client:
            self._select_input(client)
            body = client.post("/v1/session/run", json={}).json()
            self.assertEqual(body["status"], "started")
            session = self._wait_until_finished(client)

        self.assertEqual(
            session["status_message"],
            "Error: Output file already exists and no confirmation dialog available",
        )
        self.assertFalse(self.args_file.exists())

    def test_run_with_overwrite_declined_launches_nothing(self) -> None:
        self._install_writer()
        self.output_file.write_text("old", encoding="utf-8")

        with TestClient(self.app) as client:
            self._select_input(client)
            client.post("/v1/session/run", json={"overwrite": False})
            session = self._wait_until_finished(client)

        self.assertEqual(session["status_message"], "Overwrite declined")
        self.assertFalse(self.args_file.exists())

    def test_run_with_overwrite_accepted_forces_and_reports_success(self) -> None:
        self._install_writer()
        self.output_file.write_text("old", encoding="utf-8")

        with TestClient(self.app) as client:
            self._select_input(client)
            client.post("/v1/session/run", json={"overwrite": True})
            session = self._wait_until_finished(client)

        self.assertEqual(session["status_message"], f"Success: {self.output_file}")
        self.assertEqual(session["last_result"], {"success": True, "message": str(self.output_file)})
        self.assertEqual(session["progress"], 0.0)
        self.assertFalse(session["is_running"])
        self.assertIn("-force", self.args_file.read_text().splitlines())

    def test_run_without_existing_output_needs_no_answer(self) -> None:
        self._install_writer()

        with TestClient(self.app) as client:
            self._select_input(client)
            client.post("/v1/session/run", json={})
            session = self._wait_until_finished(client)

        self.assertEqual(session["status_message"], f"Success: {self.output_file}")
        self.assertNotIn("-force", self.args_file.read_text().splitlines())

    def test_cancel_mid_run_kills_child_and_returns_to_idle(self) -> None:
        self._install_sleeper()

        with TestClient(self.app) as client:
            self._select_input(client)
            client.post("/v1/session/run", json={})
            pid = self._wait_for_child()

            running = client.get("/v1/session").json()
            self.assertEqual(running["run_button_text"], "Cancel")
            self.assertFalse(running["mode_enabled"])

            body = client.post("/v1/session/cancel").json()
            self.assertTrue(body["cancelled"])
            session = self._wait_until_finished(client)

        self.assertEqual(session["status_message"], "Cancelled")
        self.assertFalse(session["progress_visible"])
        self.assertIsNone(session["last_result"])
        with self.assertRaises(ProcessLookupError):
            os.kill(pid, 0)

    def test_run_request_while_running_cancels(self) -> None:
        self._install_sleeper()

        with TestClient(self.app) as client:
            self._select_input(client)
            client.post("/v1/session/run", json={})
            pid = self._wait_for_child()

            body = client.post("/v1/session/run", json={}).json()
            self.assertEqual(body["status"], "cancelling")
            session = self._wait_until_finished(client)

        self.assertEqual(session["status_message"], "Cancelled")
        with self.assertRaises(ProcessLookupError):
            os.kill(pid, 0)

    def test_shutdown_cancels_in_flight_run(self) -> None:
        self._install_sleeper()

        with TestClient(self.app) as client:
            self._select_input(client)
            client.post("/v1/session/run", json={})
            pid = self._wait_for_child()

        with self.assertRaises(ProcessLookupError):
            os.kill(pid, 0)
        self.assertFalse(self.services.controller.in_flight)
        self.assertEqual(self.services.controller.status_message, "Cancelled")


class EventStreamTests(unittest.IsolatedAsyncioTestCase):
    async def test_frames_carry_id_type_and_payload(self) -> None:
        log = EventLog()
        log.add_event("state_changed", {"field": "input_path", "value": "/data/photo.jpg"})
        second = log.add_event("run_started", {"input_path": "/data/photo.jpg"})

        stream = event_stream(log, since_id=1, poll_interval=0.01)
        try:
            frame = await stream.__anext__()
        finally:
            await stream.aclose()

        lines = frame.split("\n")
        self.assertEqual(lines[0], f"id: {second.id}")
        self.assertEqual(lines[1], "event: run_started")
        data = json.loads(lines[2].removeprefix("data: "))
        self.assertEqual(data["type"], "run_started")
        self.assertEqual(data["payload"], {"input_path": "/data/photo.jpg"})
        self.assertTrue(frame.endswith("\n\n"))

    async def test_idle_stream_sends_ping_then_new_events(self) -> None:
        log = EventLog()
        stream = event_stream(log, poll_interval=0.01)
        try:
            self.assertEqual(await stream.__anext__(), ": ping\n\n")
            event = log.add_event("run_completed", {"output_path": "/out", "exit_code": 0})
            frame = await stream.__anext__()
            while frame == ": ping\n\n":
                frame = await stream.__anext__()
        finally:
            await stream.aclose()

        self.assertTrue(frame.startswith(f"id: {event.id}\nevent: run_completed\n"))


if __name__ == "__main__":
    unittest.main()
