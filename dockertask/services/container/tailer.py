"""Relays container output to the host's stdout/stderr."""

import sys
import threading
from typing import Any, Optional, TextIO

import structlog

from ...models.lifecycle import StreamState
from .utils import LineSplitter, short_id

logger = structlog.get_logger(__name__)

STDOUT = "stdout"
STDERR = "stderr"


class LogTailer:
    """Background reader for one output stream of a container.

    Each line is written through to the matching host stream as soon as it
    arrives. The tailer stops when the engine closes the stream (container
    exited) or when ``interrupt()`` is called; a broken stream is logged
    and ends the tailer without raising.
    """

    def __init__(self, engine, output: Optional[TextIO] = None):
        """Initialize the tailer.

        Args:
            engine: DockerEngine (or compatible) providing ``logs()``
            output: Destination stream; defaults to the host stream matching
                the selected container stream, looked up at write time
        """
        self._engine = engine
        self._output = output
        self._lock = threading.Lock()
        self._interrupted = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stream: Any = None
        self._stream_name = STDOUT
        self._container_id: Optional[str] = None
        self.state = StreamState.IDLE
        self.lines_written = 0

    @property
    def stream_name(self) -> str:
        return self._stream_name

    def start(self, container_id: str, stream: str = STDOUT) -> bool:
        """Launch the background reader. Returns False if already started."""
        if stream not in (STDOUT, STDERR):
            raise ValueError(f"Unknown stream '{stream}'")
        with self._lock:
            if self.state != StreamState.IDLE:
                return False
            self.state = StreamState.RUNNING
            self._container_id = container_id
            self._stream_name = stream
            self._thread = threading.Thread(
                target=self._run,
                name=f"{stream}Thread",
                daemon=True,
            )
        self._thread.start()
        return True

    def interrupt(self) -> None:
        """Ask the reader to stop.

        Closing the underlying stream unblocks a pending read; a read that is
        already inside the engine call still has to return on its own.
        """
        self._interrupted.set()
        with self._lock:
            stream = self._stream
        if stream is not None:
            self._close_stream(stream)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the reader to exit. Returns True if it has exited."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def is_alive(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _target(self) -> TextIO:
        if self._output is not None:
            return self._output
        return sys.stdout if self._stream_name == STDOUT else sys.stderr

    def _write(self, line: str) -> None:
        out = self._target()
        out.write(line + "\n")
        out.flush()
        self.lines_written += 1

    def _run(self) -> None:
        stream = None
        container = short_id(self._container_id)
        try:
            stream = self._engine.logs(
                self._container_id,
                stdout=self._stream_name == STDOUT,
                stderr=self._stream_name == STDERR,
            )
            with self._lock:
                self._stream = stream
            if self._interrupted.is_set():
                return

            splitter = LineSplitter()
            for chunk in stream:
                for line in splitter.feed(chunk):
                    self._write(line)
                if self._interrupted.is_set():
                    break
            else:
                for line in splitter.flush():
                    self._write(line)
        except Exception as e:
            if self._interrupted.is_set():
                logger.debug(
                    "Log stream ended after interrupt",
                    stream=self._stream_name,
                    container_id=container,
                    error=str(e),
                )
            else:
                logger.warning(
                    "Log stream disconnected",
                    stream=self._stream_name,
                    container_id=container,
                    error=str(e),
                )
        finally:
            if stream is not None:
                self._close_stream(stream)
            with self._lock:
                self._stream = None
                self.state = StreamState.STOPPED
            logger.info(
                f"{self._stream_name} closed",
                container_id=container,
                lines=self.lines_written,
            )

    def _close_stream(self, stream: Any) -> None:
        close = getattr(stream, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as e:
            logger.debug("Error closing log stream", stream=self._stream_name, error=str(e))
