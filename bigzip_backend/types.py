from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

FACTORS = ("32", "64", "128", "256", "512")
FILL_PATTERNS = ("repeat", "zero", "random")


class RunPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    CANCELLING = "cancelling"


@dataclass(slots=True, frozen=True)
class RunRequest:
    input_path: str
    output_path: str | None
    decompress: bool
    factor: str
    fill_pattern: str
    force_overwrite: bool = False


@dataclass(slots=True)
class RunResult:
    exit_code: int
    stdout: str
    stderr: str


@dataclass(slots=True, frozen=True)
class ProgressSample:
    fraction: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.fraction <= 1.0:
            raise ValueError(f"Progress fraction out of range: {self.fraction}")


@dataclass(slots=True)
class PathState:
    input_path: str = ""
    output_path: str = ""
    decompress: bool = False
    # Input the current output was last derived from; used to tell auto-derived outputs from edits.
    previous_input: str = ""


@dataclass(slots=True)
class RunOutcome:
    success: bool
    message: str


@dataclass(slots=True)
class SessionState:
    factor: str = "64"
    fill_pattern: str = "repeat"
    status_message: str = ""
    phase: RunPhase = RunPhase.IDLE
    is_running: bool = False
    progress: float = 0.0
    progress_visible: bool = False
    last_result: RunOutcome | None = None


@dataclass(slots=True)
class ControllerEvent:
    id: int
    type: str
    created_at: str
    payload: dict[str, Any] = field(default_factory=dict)


PathPicker = Callable[[], Awaitable[str | None]]
MessagePresenter = Callable[[str], Awaitable[None]]
ConfirmPresenter = Callable[[str], Awaitable[bool]]
ResultPresenter = Callable[[bool, str], Awaitable[None]]
ProgressCallback = Callable[[ProgressSample], None]


@dataclass(slots=True)
class Collaborators:
    open_picker: PathPicker | None = None
    save_picker: PathPicker | None = None
    show_message: MessagePresenter | None = None
    confirm: ConfirmPresenter | None = None
    show_result: ResultPresenter | None = None
