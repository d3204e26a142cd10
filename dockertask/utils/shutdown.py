"""Shutdown handling: cancellation token and process termination hook."""

import atexit
import signal
import threading
from typing import Dict, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class CancellationToken:
    """One-way flag shared by the main path and the shutdown path.

    Blocking operations check it between bounded waits; cancelling never
    aborts an engine call that is already in flight.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Cancel the token. Returns False if it was already cancelled."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
        logger.debug("Cancellation requested")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class TerminationHook:
    """Tears down a task run when the process is asked to terminate.

    Installed once per process before the run begins. On SIGTERM, SIGINT,
    SIGHUP or interpreter exit it cancels the run's token and calls
    ``runner.shutdown()`` on a dedicated thread, so the cleanup races
    with (rather than replaces) the main thread's own ``finish()``.
    """

    _installed = False
    _install_lock = threading.Lock()

    def __init__(self, runner, join_timeout: float = 90.0):
        """Initialize the hook.

        Args:
            runner: Object exposing ``token`` and ``shutdown()``
            join_timeout: Bound on waiting for the shutdown thread at exit
        """
        self._runner = runner
        self._join_timeout = join_timeout
        # Reentrant: trigger() also runs from signal handlers on the main thread
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._previous_handlers: Dict[int, object] = {}
        self._atexit_registered = False

    @property
    def triggered(self) -> bool:
        return self._thread is not None

    def install(self, signals: Iterable[int] = DEFAULT_SIGNALS, use_atexit: bool = True) -> bool:
        """Register signal handlers. Must run on the main thread.

        Returns False if a hook is already installed in this process.
        """
        with TerminationHook._install_lock:
            if TerminationHook._installed:
                logger.warning("Termination hook already installed, ignoring")
                return False
            TerminationHook._installed = True

        for sig in signals:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)
        if use_atexit:
            atexit.register(self._at_exit)
            self._atexit_registered = True
        logger.debug("Termination hook installed", signals=[int(s) for s in signals])
        return True

    def uninstall(self) -> None:
        """Restore the previous signal handlers."""
        self._restore_handlers()
        if self._atexit_registered:
            atexit.unregister(self._at_exit)
            self._atexit_registered = False
        with TerminationHook._install_lock:
            TerminationHook._installed = False

    def _restore_handlers(self, force: bool = False) -> None:
        """Put back the handlers that were active before ``install()``.

        With ``force``, interpreter defaults become SIG_DFL so the next
        signal ends the process even while the shutdown thread is running.
        """
        for sig, handler in self._previous_handlers.items():
            if handler is None or (
                force and handler in (signal.SIG_DFL, signal.default_int_handler)
            ):
                handler = signal.SIG_DFL
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    def trigger(self, reason: str = "requested") -> bool:
        """Start the shutdown thread. Returns False if it already ran."""
        with self._lock:
            if self._thread is not None:
                return False
            self._thread = threading.Thread(
                target=self._run, args=(reason,), name="shutdownWork"
            )
        self._runner.token.cancel()
        self._thread.start()
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the shutdown thread. Returns True if it finished (or never ran)."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _handle_signal(self, signum, frame) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Termination signal received", signal=name)
        self.trigger(f"signal {name}")
        # A second signal force-quits a hung shutdown
        self._restore_handlers(force=True)

    def _at_exit(self) -> None:
        if getattr(self._runner, "needs_cleanup", False):
            self.trigger("interpreter exit")
        self.join(self._join_timeout)

    def _run(self, reason: str) -> None:
        logger.info("shutdownhook start", reason=reason)
        try:
            self._runner.shutdown()
        except Exception as e:
            logger.error("Shutdown hook failed", error=str(e), exc_info=True)
        logger.info("shutdownhook end")
