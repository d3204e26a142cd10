"""Shared utilities for container operations."""

import codecs
from typing import Iterable, List, Optional, Sequence

DEFAULT_INVOKER = ("/usr/bin/python",)
DEFAULT_RUNNER_CONTAINER_PATH = "/runner.py"

# Partial lines longer than this are emitted without waiting for a newline
MAX_PENDING_LINE_BYTES = 64 * 1024


def build_run_command(
    invoker: Sequence[str],
    script_path: Optional[str],
    args: Iterable[str],
) -> List[str]:
    """Build the container command that runs the task through the runner script.

    Returns a new list; ``args`` is never modified.

    Args:
        invoker: Interpreter command, e.g. ``["/usr/bin/python"]``
        script_path: Container-side path of the runner script, or None to
            run ``args`` directly
        args: Caller command and arguments

    Returns:
        ``[*invoker, script_path, *args]``
    """
    if not script_path:
        return list(args)
    return [*invoker, script_path, *args]


def short_id(container_id: Optional[str]) -> str:
    """Truncate a container id for log output."""
    return container_id[:12] if container_id else "none"


class LineSplitter:
    """Turns a stream of byte chunks into decoded text lines.

    Docker log streams deliver arbitrary chunks, not lines. Complete lines
    are returned as soon as they are seen; the trailing partial line is
    held back, but never beyond ``max_pending`` bytes.
    """

    def __init__(self, max_pending: int = MAX_PENDING_LINE_BYTES, encoding: str = "utf-8"):
        self._pending = b""
        self._max_pending = max_pending
        self._encoding = encoding
        self._decoder_factory = codecs.getincrementaldecoder(encoding)

    def feed(self, chunk: bytes) -> List[str]:
        if not chunk:
            return []
        data = self._pending + chunk
        *complete, self._pending = data.split(b"\n")
        lines = [self._decode(raw) for raw in complete]
        while len(self._pending) > self._max_pending:
            lines.append(self._cut_pending())
        return lines

    def flush(self) -> List[str]:
        """Return whatever partial line is left at end of stream."""
        if not self._pending:
            return []
        raw, self._pending = self._pending, b""
        return [self._decode(raw)]

    def _cut_pending(self) -> str:
        """Emit the first ``max_pending`` bytes, never splitting a character."""
        head = self._pending[: self._max_pending]
        decoder = self._decoder_factory(errors="replace")
        text = decoder.decode(head)
        undecoded, _ = decoder.getstate()
        if not text:
            # Limit smaller than one character
            text, undecoded = self._decode(head), b""
        self._pending = undecoded + self._pending[self._max_pending :]
        return text.rstrip("\r")

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self._encoding, errors="replace").rstrip("\r")
