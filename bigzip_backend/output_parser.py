from __future__ import annotations

COMPRESS_PREFIX = "Wrote "
COMPRESS_MARKER = " (size:"
DECOMPRESS_PREFIX = "Restored original to "
DECOMPRESS_MARKER = " (mode:"


def parse_actual_output_path(stdout: str, decompress: bool) -> str:
    """Return the path named in the executable's summary line.

    Falls back to the trimmed output when the expected prefix and marker are
    not both present.
    """

    line = stdout.strip()
    prefix, marker = (DECOMPRESS_PREFIX, DECOMPRESS_MARKER) if decompress else (COMPRESS_PREFIX, COMPRESS_MARKER)
    if line.startswith(prefix):
        start = len(prefix)
        end = line.rfind(marker)
        if end > start:
            return line[start:end]
    return line


def is_summary_line(stdout: str, decompress: bool) -> bool:
    line = stdout.strip()
    return parse_actual_output_path(line, decompress) != line
