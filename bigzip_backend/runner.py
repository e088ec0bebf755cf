from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

from .integrations import resolve_executable
from .runtime_config import RuntimeConfig, RuntimeConfigStore
from .types import ProgressCallback, ProgressSample, RunRequest, RunResult
from .utils import single_line

logger = logging.getLogger(__name__)

PROGRESS_INIT = 0.1
PROGRESS_ARGS_READY = 0.2
PROGRESS_PROCESS_STARTED = 0.3
PROGRESS_INCREMENT = 0.02
PROGRESS_MAX_INCREMENTAL = 0.95
PROGRESS_COMPLETE = 1.0

EXIT_CODE_NOT_STARTED = -1
DECOMPRESS_FLAG = "-uz"
FORCE_FLAG = "-force"


def build_arguments(request: RunRequest) -> list[str]:
    args: list[str] = []
    if request.decompress:
        args.append(DECOMPRESS_FLAG)

    args.extend(["-i", request.input_path])

    if request.output_path and request.output_path.strip():
        args.extend(["-o", request.output_path])

    if not request.decompress:
        args.extend(["-f", request.factor, "-mode", request.fill_pattern])

    if request.force_overwrite:
        args.append(FORCE_FLAG)
    return args


class ProcessRunner:
    """Runs the bz executable once per request.

    The executable reports nothing until it exits, so progress is estimated:
    three fixed checkpoints while launching, then a ticker that creeps towards
    ``PROGRESS_MAX_INCREMENTAL``. Cancelling the task that awaits :meth:`run`
    stops the ticker, kills the child and waits for it before the
    ``CancelledError`` propagates.
    """

    def __init__(
        self,
        *,
        runtime_config_store: RuntimeConfigStore | None = None,
        runtime_config: RuntimeConfig | None = None,
    ) -> None:
        self.runtime_config_store = runtime_config_store
        self._fallback_config = runtime_config or RuntimeConfig()

    def _runtime_config(self) -> RuntimeConfig:
        if self.runtime_config_store is not None:
            return self.runtime_config_store.get()
        return self._fallback_config

    @property
    def executable_name(self) -> str:
        return self._runtime_config().executable_name

    def resolve_executable(self) -> str | None:
        runtime = self._runtime_config()
        return resolve_executable(runtime.executable_name, runtime.executable_dir)

    async def run(self, request: RunRequest, *, progress: ProgressCallback | None = None) -> RunResult:
        runtime = self._runtime_config()
        exe_path = resolve_executable(runtime.executable_name, runtime.executable_dir)
        if exe_path is None:
            logger.warning("Executable not found name=%s dir=%s", runtime.executable_name, runtime.executable_dir)
            return RunResult(EXIT_CODE_NOT_STARTED, "", f"{runtime.executable_name} not found")

        _report(progress, PROGRESS_INIT)

        argv = [exe_path, *build_arguments(request)]
        _report(progress, PROGRESS_ARGS_READY)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(Path(exe_path).parent),
            )
        except OSError as exc:
            logger.error("Failed to start process exe=%s error=%s", exe_path, exc)
            return RunResult(EXIT_CODE_NOT_STARTED, "", f"Failed to start process: {exc}")

        logger.info("Process started pid=%s argv=%s", process.pid, single_line(" ".join(argv)))
        _report(progress, PROGRESS_PROCESS_STARTED)

        ticker = asyncio.create_task(self._tick(progress, runtime.progress_interval_ms / 1000.0))
        try:
            # communicate() drains stdout and stderr concurrently while waiting for exit.
            stdout, stderr = await process.communicate()
        except BaseException:
            await _stop_ticker(ticker)
            await _terminate(process)
            raise

        await _stop_ticker(ticker)
        _report(progress, PROGRESS_COMPLETE)

        exit_code = process.returncode if process.returncode is not None else EXIT_CODE_NOT_STARTED
        logger.info("Process finished pid=%s exit_code=%s", process.pid, exit_code)
        return RunResult(
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def _tick(self, progress: ProgressCallback | None, interval_seconds: float) -> None:
        current = PROGRESS_PROCESS_STARTED
        while True:
            await asyncio.sleep(interval_seconds)
            current = min(current + PROGRESS_INCREMENT, PROGRESS_MAX_INCREMENTAL)
            _report(progress, current)


def _report(progress: ProgressCallback | None, fraction: float) -> None:
    if progress is not None:
        progress(ProgressSample(fraction))


async def _stop_ticker(ticker: asyncio.Task[None]) -> None:
    ticker.cancel()
    await asyncio.gather(ticker, return_exceptions=True)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        logger.info("Killing process pid=%s", process.pid)
        with contextlib.suppress(ProcessLookupError):
            process.kill()
    await process.wait()
