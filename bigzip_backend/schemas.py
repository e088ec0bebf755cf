from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class RuntimeConfigUpdateRequest(BaseModel):
    executable_name: str | None = None
    executable_dir: str | None = None
    clear_executable_dir: bool = False
    progress_interval_ms: int | None = None
    default_factor: str | None = None
    default_fill_pattern: str | None = None


class RuntimeConfigResponse(BaseModel):
    executable_name: str
    executable_dir: str | None = None
    progress_interval_ms: int
    default_factor: str
    default_fill_pattern: str
    config_path: str


class SessionPatchRequest(BaseModel):
    input_path: str | None = None
    output_path: str | None = None
    decompress: bool | None = None
    factor: str | None = None
    fill_pattern: str | None = None


class RunResultResponse(BaseModel):
    success: bool
    message: str


class SessionResponse(BaseModel):
    input_path: str
    output_path: str
    decompress: bool
    factor: str
    fill_pattern: str
    status_message: str
    phase: Literal["idle", "validating", "running", "cancelling"]
    is_running: bool
    progress: float = Field(ge=0.0, le=1.0)
    progress_visible: bool
    run_button_text: str
    mode_enabled: bool
    last_result: RunResultResponse | None = None


class RunSubmitRequest(BaseModel):
    # Answer to the overwrite prompt for this run; null means no confirmation is available.
    overwrite: bool | None = None


class RunSubmitResponse(BaseModel):
    status: Literal["started", "cancelling", "finishing", "validating"]
    session: SessionResponse


class CancelResponse(BaseModel):
    cancelled: bool
    session: SessionResponse


class EventResponse(BaseModel):
    id: int
    type: str
    created_at: str
    payload: dict[str, Any] = Field(default_factory=dict)
