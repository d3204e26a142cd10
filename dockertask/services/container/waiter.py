"""Background wait for container exit."""

import threading
from typing import Callable, Optional

import structlog
from docker.errors import NotFound

from ...models.lifecycle import ExitRecord, NOT_OBSERVED
from .utils import short_id

logger = structlog.get_logger(__name__)


class ExitWaiter:
    """Makes a single blocking wait call for a container and records the code.

    There is no retry: a container exits once. If the container disappears
    before its exit is observed the record stays unobserved.
    """

    def __init__(self, engine, on_exit: Optional[Callable[[int], None]] = None):
        self._engine = engine
        self._on_exit = on_exit
        self._cond = threading.Condition()
        self._record: ExitRecord = NOT_OBSERVED
        self._done = False
        self._interrupted = False
        self._thread: Optional[threading.Thread] = None
        self._container_id: Optional[str] = None

    @property
    def record(self) -> ExitRecord:
        with self._cond:
            return self._record

    @property
    def settled(self) -> bool:
        """True once the exit is known or waiting callers were released."""
        with self._cond:
            return self._done or self._interrupted

    def start(self, container_id: str) -> bool:
        """Launch the wait thread. Returns False if already started."""
        with self._cond:
            if self._thread is not None:
                return False
            self._container_id = container_id
            self._thread = threading.Thread(target=self._run, name="waitThread", daemon=True)
        self._thread.start()
        return True

    def wait(self, timeout: Optional[float]) -> ExitRecord:
        """Block until the exit is recorded, the waiter is interrupted, or timeout.

        Returns the current record, which is unobserved on timeout.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._done or self._interrupted, timeout)
            return self._record

    def interrupt(self) -> None:
        """Release callers blocked in ``wait()``.

        The engine wait call itself keeps running until the engine answers.
        """
        with self._cond:
            self._interrupted = True
            self._cond.notify_all()

    def is_alive(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def _set_record(self, code: int) -> bool:
        with self._cond:
            if self._record.observed:
                logger.warning(
                    "Exit code already recorded, ignoring",
                    recorded=self._record.code,
                    ignored=code,
                )
                return False
            self._record = ExitRecord(code)
            return True

    def _run(self) -> None:
        container = short_id(self._container_id)
        try:
            code = self._engine.wait(self._container_id)
            if self._set_record(code):
                logger.info("Container exited", container_id=container, exit_code=code)
                if self._on_exit is not None:
                    self._on_exit(code)
        except NotFound as e:
            logger.warning(
                "Container vanished before its exit was observed",
                container_id=container,
                error=str(e),
            )
        except Exception as e:
            logger.warning(
                "Waiting for container exit failed",
                container_id=container,
                error=str(e),
            )
        finally:
            with self._cond:
                self._done = True
                self._cond.notify_all()
            logger.debug("waitThread end", container_id=container)
