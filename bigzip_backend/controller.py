from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Protocol

from .dispatcher import Action, Dispatcher, SynchronousDispatcher
from .events import EventLog
from .output_parser import is_summary_line, parse_actual_output_path
from .paths import PathRouter
from .runner import PROGRESS_MAX_INCREMENTAL, PROGRESS_PROCESS_STARTED
from .types import (
    FACTORS,
    FILL_PATTERNS,
    Collaborators,
    ProgressCallback,
    ProgressSample,
    RunOutcome,
    RunPhase,
    RunRequest,
    RunResult,
    SessionState,
)

logger = logging.getLogger(__name__)

RUN_BUTTON_TEXT = "Run BigZip"
CANCEL_BUTTON_TEXT = "Cancel"


class ValidationError(Exception):
    """A run request was rejected before anything was launched.

    The message becomes the status text unless the rejection was already
    shown to the user through the message collaborator.
    """

    def __init__(self, message: str, *, reported: bool = False) -> None:
        super().__init__(message)
        self.reported = reported


class Runner(Protocol):
    @property
    def executable_name(self) -> str: ...

    def resolve_executable(self) -> str | None: ...

    async def run(self, request: RunRequest, *, progress: ProgressCallback | None = None) -> RunResult: ...


class RunController:
    """Session state machine: idle -> validating -> running -> cancelling -> idle.

    Only one run is in flight at a time; :meth:`run_or_cancel` cancels the
    in-flight run instead of starting a second one. Mutations made while a run
    is in progress are posted to ``dispatcher`` so progress ticks, the process
    exit continuation and this orchestration never write state concurrently.
    """

    def __init__(
        self,
        runner: Runner,
        *,
        dispatcher: Dispatcher | None = None,
        collaborators: Collaborators | None = None,
        events: EventLog | None = None,
        default_factor: str = "64",
        default_fill_pattern: str = "repeat",
    ) -> None:
        self.runner = runner
        self.dispatcher: Dispatcher = dispatcher or SynchronousDispatcher()
        self.collaborators = collaborators or Collaborators()
        self.events = events or EventLog()
        self.session = SessionState(factor=default_factor, fill_pattern=default_fill_pattern)
        self.router = PathRouter(on_change=self._notify)
        self._scope: asyncio.Task[RunResult] | None = None
        self._driver: asyncio.Task[None] | None = None
        self._cancel_requested = False
        self._validating = False

    # -- observable state -------------------------------------------------

    @property
    def input_path(self) -> str:
        return self.router.input_path

    @property
    def output_path(self) -> str:
        return self.router.output_path

    @property
    def decompress(self) -> bool:
        return self.router.decompress

    @property
    def factor(self) -> str:
        return self.session.factor

    @property
    def fill_pattern(self) -> str:
        return self.session.fill_pattern

    @property
    def status_message(self) -> str:
        return self.session.status_message

    @property
    def phase(self) -> RunPhase:
        return self.session.phase

    @property
    def is_running(self) -> bool:
        return self.session.is_running

    @property
    def progress(self) -> float:
        return self.session.progress

    @property
    def progress_visible(self) -> bool:
        return self.session.progress_visible

    @property
    def last_result(self) -> RunOutcome | None:
        return self.session.last_result

    @property
    def run_button_text(self) -> str:
        return CANCEL_BUTTON_TEXT if self.session.is_running else RUN_BUTTON_TEXT

    @property
    def mode_enabled(self) -> bool:
        return not self.router.decompress

    @property
    def in_flight(self) -> bool:
        return self._scope is not None

    def snapshot(self) -> dict[str, Any]:
        last = self.session.last_result
        return {
            "input_path": self.input_path,
            "output_path": self.output_path,
            "decompress": self.decompress,
            "factor": self.factor,
            "fill_pattern": self.fill_pattern,
            "status_message": self.status_message,
            "phase": self.phase.value,
            "is_running": self.is_running,
            "progress": self.progress,
            "progress_visible": self.progress_visible,
            "run_button_text": self.run_button_text,
            "mode_enabled": self.mode_enabled,
            "last_result": asdict(last) if last is not None else None,
        }

    # -- user edits -------------------------------------------------------

    def set_input_path(self, value: str) -> None:
        self.router.set_input_path(value)

    def set_output_path(self, value: str) -> None:
        self.router.set_output_path(value)

    def set_decompress(self, value: bool) -> None:
        self.router.set_decompress(value)

    def set_factor(self, value: str) -> None:
        cleaned = str(value).strip()
        if cleaned not in FACTORS:
            raise ValueError(f"factor must be one of: {', '.join(FACTORS)}")
        self._set("factor", cleaned)

    def set_fill_pattern(self, value: str) -> None:
        cleaned = value.strip().lower()
        if cleaned not in FILL_PATTERNS:
            raise ValueError(f"fill_pattern must be one of: {', '.join(FILL_PATTERNS)}")
        self._set("fill_pattern", cleaned)

    def set_collaborators(self, **kwargs: Any) -> None:
        # Only supplied collaborators replace the current ones.
        for name, value in kwargs.items():
            if not hasattr(self.collaborators, name):
                raise TypeError(f"Unknown collaborator: {name}")
            if value is not None:
                setattr(self.collaborators, name, value)

    async def browse_input(self) -> None:
        picker = self.collaborators.open_picker
        if picker is None:
            return
        try:
            path = await picker()
            if path:
                self.set_input_path(path)
        except Exception as exc:
            logger.warning("Input picker failed: %s", exc)
            self._post(lambda: self._set("status_message", f"Error: {exc}"))
            await self.dispatcher.drain()

    async def browse_output(self) -> None:
        picker = self.collaborators.save_picker
        if picker is None:
            return
        try:
            path = await picker()
            if path:
                self.set_output_path(path)
        except Exception as exc:
            logger.warning("Output picker failed: %s", exc)
            self._post(lambda: self._set("status_message", f"Error: {exc}"))
            await self.dispatcher.drain()

    # -- run lifecycle ----------------------------------------------------

    async def run_or_cancel(self) -> None:
        if self._scope is not None:
            self.cancel()
            return
        if self._validating:
            logger.info("Run request ignored while validation is pending")
            return
        await self._execute_run()

    def start(self) -> str:
        """Start a run in the background, or cancel the one in flight."""

        if self._scope is not None:
            return "cancelling" if self.cancel() else "finishing"
        if self._validating or (self._driver is not None and not self._driver.done()):
            return "validating"
        self._validating = True
        self._driver = asyncio.create_task(self._execute_run())
        return "started"

    def cancel(self) -> bool:
        scope = self._scope
        if scope is None or scope.done():
            return False
        if self._cancel_requested:
            return True

        self._cancel_requested = True

        def reset_optimistically() -> None:
            self._set("is_running", False)
            self._set("progress_visible", False)
            self._set("progress", 0.0)
            self._set("phase", RunPhase.CANCELLING)
            self._set("status_message", "Cancelling...")

        self._post(reset_optimistically)
        scope.cancel()
        logger.info("Cancel requested input=%s", self.input_path)
        return True

    async def shutdown(self) -> None:
        self.cancel()
        if self._driver is not None:
            await asyncio.gather(self._driver, return_exceptions=True)
            self._driver = None

    async def _execute_run(self) -> None:
        self._validating = True
        self._post(lambda: self._set("phase", RunPhase.VALIDATING))
        try:
            try:
                request = await self._build_request()
            finally:
                self._validating = False
            await self._invoke(request)
        except ValidationError as exc:
            status = str(exc)
            logger.info("Run rejected reason=%s", status)
            self.events.add_event("run_rejected", {"reason": status})
            if not exc.reported:
                self._post(lambda: self._set("status_message", status))
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            logger.info("Run cancelled input=%s", self.input_path)
            self.events.add_event("run_cancelled", {"reason": "user_request"})
            self._post(lambda: self._set("status_message", "Cancelled"))
        except Exception as exc:
            logger.exception("Run crashed input=%s", self.input_path)
            self.events.add_event("run_crashed", {"error": str(exc)})
            message = f"Error: {exc}"
            self._post(lambda: self._set("status_message", message))
        finally:
            await self._finalize()

    async def _build_request(self) -> RunRequest:
        input_path = self.input_path
        if not input_path.strip():
            if self.collaborators.show_message is not None:
                await self.collaborators.show_message("You must select a file first")
                raise ValidationError("Error: Input file is required", reported=True)
            raise ValidationError("Error: Input file is required")

        if not Path(input_path).is_file():
            raise ValidationError("Error: Input file does not exist")

        force_overwrite = False
        output_path = self.output_path
        if output_path.strip() and Path(output_path).exists():
            confirm = self.collaborators.confirm
            if confirm is None:
                raise ValidationError("Error: Output file already exists and no confirmation dialog available")
            if not await confirm(f"The file '{output_path}' already exists"):
                raise ValidationError("Overwrite declined")
            force_overwrite = True

        if self.runner.resolve_executable() is None:
            raise ValidationError(f"Error: {self.runner.executable_name} not found")

        return RunRequest(
            input_path=input_path,
            output_path=output_path if output_path.strip() else None,
            decompress=self.decompress,
            factor=self.factor,
            fill_pattern=self.fill_pattern,
            force_overwrite=force_overwrite,
        )

    async def _invoke(self, request: RunRequest) -> None:
        self._cancel_requested = False

        def prepare() -> None:
            self._set("is_running", True)
            self._set("progress_visible", True)
            self._set("progress", 0.0)
            self._set("phase", RunPhase.RUNNING)
            self._set("status_message", "Starting operation...")

        self._post(prepare)
        scope = asyncio.create_task(self.runner.run(request, progress=self._on_progress))
        self._scope = scope
        logger.info(
            "Run started input=%s output=%s decompress=%s force=%s",
            request.input_path,
            request.output_path,
            request.decompress,
            request.force_overwrite,
        )
        self.events.add_event("run_started", asdict(request))

        result = await scope
        if result.exit_code == 0:
            await self._handle_success(request, result)
        else:
            await self._handle_failure(result)

    async def _handle_success(self, request: RunRequest, result: RunResult) -> None:
        resolved = parse_actual_output_path(result.stdout, request.decompress)
        stdout = result.stdout.strip()
        if "\n" in stdout and not is_summary_line(stdout, request.decompress):
            logger.warning("Summary line not recognized in multi-line output; reporting raw output")

        outcome = RunOutcome(success=True, message=resolved)

        def apply() -> None:
            self._set("status_message", f"Success: {resolved}")
            self._set("last_result", outcome)

        self._post(apply)
        logger.info("Run completed output=%s", resolved)
        self.events.add_event("run_completed", {"output_path": resolved, "exit_code": result.exit_code})

        if self.collaborators.show_result is not None:
            await self.collaborators.show_result(True, resolved)
        elif self.collaborators.show_message is not None:
            await self.collaborators.show_message(f"Finished: {resolved}")

    async def _handle_failure(self, result: RunResult) -> None:
        error = result.stderr.strip()
        outcome = RunOutcome(success=False, message=error)

        def apply() -> None:
            self._set("status_message", f"Error: {error}")
            self._set("last_result", outcome)

        self._post(apply)
        logger.warning("Run failed exit_code=%s stderr=%s", result.exit_code, error[:500])
        self.events.add_event("run_failed", {"exit_code": result.exit_code, "error": error})

        if self.collaborators.show_result is not None:
            await self.collaborators.show_result(False, error)
        elif self.collaborators.show_message is not None:
            await self.collaborators.show_message(f"Error: {error}")

    async def _finalize(self) -> None:
        self._scope = None
        self._cancel_requested = False

        def reset() -> None:
            self._set("is_running", False)
            self._set("progress_visible", False)
            self._set("progress", 0.0)
            self._set("phase", RunPhase.IDLE)

        self._post(reset)
        await self.dispatcher.drain()

    def _on_progress(self, sample: ProgressSample) -> None:
        self._post(lambda: self._apply_progress(sample))

    def _apply_progress(self, sample: ProgressSample) -> None:
        # Ticks queued behind a cancel or the final reset must not resurrect the progress bar.
        if self._cancel_requested or not self.session.is_running:
            return
        self._set("progress", sample.fraction)
        if sample.fraction < PROGRESS_PROCESS_STARTED:
            self._set("status_message", "Preparing...")
        elif sample.fraction < PROGRESS_MAX_INCREMENTAL:
            self._set("status_message", "Processing...")
        else:
            self._set("status_message", "Finalizing...")

    # -- plumbing ---------------------------------------------------------

    def _post(self, action: Action) -> None:
        self.dispatcher.post(action)

    def _set(self, name: str, value: Any) -> None:
        if getattr(self.session, name) == value:
            return
        setattr(self.session, name, value)
        self._notify(name, value)

    def _notify(self, name: str, value: Any) -> None:
        if isinstance(value, RunPhase):
            value = value.value
        elif isinstance(value, RunOutcome):
            value = asdict(value)
        self.events.add_event("state_changed", {"field": name, "value": value})
