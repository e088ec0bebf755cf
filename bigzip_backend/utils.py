from __future__ import annotations

from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def strip_extension(path: str) -> str:
    # Cut at the last "." of the final component; "/" and "\\" both separate components.
    # A leading dot counts, so "/dir/.bigzip" becomes "/dir/".
    separator = max(path.rfind("/"), path.rfind("\\"))
    dot = path.rfind(".")
    if dot <= separator:
        return path
    return path[:dot]


def single_line(value: str, *, max_len: int = 300) -> str:
    return value.replace("\r", " ").replace("\n", " ")[:max_len]
