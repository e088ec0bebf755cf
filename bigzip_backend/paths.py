from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .types import PathState
from .utils import strip_extension

ARCHIVE_EXTENSION = ".bigzip"

ChangeListener = Callable[[str, Any], None]


def is_archive(path: str | None) -> bool:
    if not path:
        return False
    return path.lower().endswith(ARCHIVE_EXTENSION)


def append_marker(path: str) -> str:
    return path + ARCHIVE_EXTENSION


def derive_output_path(input_path: str) -> str:
    if is_archive(input_path):
        return strip_extension(input_path)
    return append_marker(input_path)


class PathRouter:
    """Keeps the output path and mode flag in step with the input path.

    Setters only notify when a value actually changes, mirroring observable
    properties: changing the input may flip the mode flag, and a flipped mode
    flag always recomputes the output from the current input, even when the
    output was edited by hand.
    """

    def __init__(self, on_change: ChangeListener | None = None) -> None:
        self.state = PathState()
        self._on_change = on_change

    @property
    def input_path(self) -> str:
        return self.state.input_path

    @property
    def output_path(self) -> str:
        return self.state.output_path

    @property
    def decompress(self) -> bool:
        return self.state.decompress

    def set_input_path(self, value: str) -> None:
        if value == self.state.input_path:
            return
        self.state.input_path = value
        self._emit("input_path", value)
        self._on_input_path_changed(value)

    def set_output_path(self, value: str) -> None:
        if value == self.state.output_path:
            return
        self.state.output_path = value
        self._emit("output_path", value)

    def set_decompress(self, value: bool) -> None:
        if value == self.state.decompress:
            return
        self.state.decompress = value
        self._emit("decompress", value)
        self._on_decompress_changed(value)

    def is_auto_derived(self, output_path: str, previous_input: str) -> bool:
        if not previous_input:
            return False
        return output_path in (append_marker(previous_input), strip_extension(previous_input))

    def _on_input_path_changed(self, value: str) -> None:
        previous = self.state.previous_input
        archive = is_archive(value)

        if value.strip():
            output = self.state.output_path
            if not output.strip() or self.is_auto_derived(output, previous):
                self.set_output_path(derive_output_path(value))

        self.set_decompress(archive)
        self.state.previous_input = value

    def _on_decompress_changed(self, value: bool) -> None:
        current_input = self.state.input_path
        if not current_input.strip():
            return
        if value:
            self.set_output_path(strip_extension(current_input) if is_archive(current_input) else current_input)
        else:
            self.set_output_path(append_marker(current_input))

    def _emit(self, name: str, value: Any) -> None:
        if self._on_change is not None:
            self._on_change(name, value)
