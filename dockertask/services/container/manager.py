"""Container task lifecycle management.

ContainerTaskRunner drives one task run: pull, create, start, relay
output, wait for exit, and clean up. Its operations may be called from
the main thread and from the termination hook's thread at the same time;
every engine side effect (stop, remove, close) is claimed through a state
transition so exactly one caller performs it.
"""

import threading
import time
from typing import Iterable, List, Optional

import structlog
from docker.errors import DockerException
from requests.exceptions import RequestException

from ...config import settings, DockerConfig
from ...models.errors import (
    ExitCode,
    TaskRunnerException,
    PullFailedError,
    CreateFailedError,
    StartFailedError,
    TaskCancelledError,
)
from ...models.lifecycle import (
    ExitRecord,
    LifecycleState,
    NOT_OBSERVED,
    REMOVABLE_STATES,
)
from ...models.task import TaskSpec
from ...utils.shutdown import CancellationToken
from .client import DockerEngine, is_stop_race
from .tailer import LogTailer, STDERR, STDOUT
from .utils import build_run_command, short_id
from .waiter import ExitWaiter

logger = structlog.get_logger(__name__)

# Engine errors raised while talking to the daemon
ENGINE_ERRORS = (DockerException, RequestException)

# How often a blocked wait re-checks the cancellation token
TOKEN_POLL_INTERVAL = 0.5


class ContainerTaskRunner:
    """Runs a single container task and guarantees its cleanup.

    Public operations:
        start()          pull, create and start; returns once running
        wait_for_exit()  block up to a timeout for the exit code
        stop()           graceful stop, idempotent
        finish()         stop if needed, remove, drain output, close client
        shutdown()       termination path used by the termination hook
        run_task()       start + wait + finish, returning an exit code
    """

    def __init__(
        self,
        spec: TaskSpec,
        engine: Optional[DockerEngine] = None,
        token: Optional[CancellationToken] = None,
        stream_timeout: Optional[float] = None,
    ):
        """Initialize the runner.

        Args:
            spec: Task to run
            engine: Engine facade; built from settings and the spec's endpoint
                on first use when omitted
            token: Cancellation token shared with the termination hook
            stream_timeout: Bound on draining each output stream in finish()
        """
        self.spec = spec
        self.token = token or CancellationToken()
        self._engine = engine
        self._stream_timeout = stream_timeout or settings.stream_timeout
        self._cond = threading.Condition()
        self._engine_lock = threading.Lock()
        self._cleanup_lock = threading.Lock()
        self._state = LifecycleState.UNSTARTED
        self.container_id: Optional[str] = None
        self._stdout_tailer: Optional[LogTailer] = None
        self._stderr_tailer: Optional[LogTailer] = None
        self._waiter: Optional[ExitWaiter] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        with self._cond:
            return self._state

    @property
    def needs_cleanup(self) -> bool:
        """True while the run still owns engine resources."""
        with self._cond:
            active = self._state != LifecycleState.UNSTARTED and not self._state.is_terminal
        engine = self._engine
        return active or (engine is not None and not engine.closed)

    def _transition(self, expected: Iterable[LifecycleState], target: LifecycleState) -> bool:
        """Move to ``target`` only if the current state is one of ``expected``.

        The caller that gets True owns the side effect of the transition.
        """
        with self._cond:
            if self._state not in expected:
                return False
            logger.debug(
                "Lifecycle transition",
                container_id=short_id(self.container_id),
                previous=self._state.value,
                state=target.value,
            )
            self._state = target
            self._cond.notify_all()
            return True

    def _force_state(self, target: LifecycleState) -> None:
        with self._cond:
            self._state = target
            self._cond.notify_all()

    def _await_stop_settled(self) -> None:
        """Wait, bounded, for another caller's in-flight stop to finish."""
        timeout = self.spec.stop_timeout + settings.client_timeout
        with self._cond:
            settled = self._cond.wait_for(
                lambda: self._state != LifecycleState.STOPPING, timeout
            )
        if not settled:
            logger.warning(
                "Stop still in progress, continuing cleanup",
                container_id=short_id(self.container_id),
                waited=timeout,
            )

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def _docker_config(self) -> DockerConfig:
        base = settings.docker
        return base.model_copy(
            update={
                "docker_host": self.spec.docker_host or base.docker_host,
                "docker_cert_path": self.spec.docker_cert_path or base.docker_cert_path,
            }
        )

    def _get_engine(self) -> DockerEngine:
        with self._engine_lock:
            if self._engine is None:
                self._engine = DockerEngine.from_config(self._docker_config())
            return self._engine

    def _close_engine(self) -> None:
        with self._engine_lock:
            engine = self._engine
        if engine is None:
            return
        # Never close underneath an in-flight remove
        acquired = self._cleanup_lock.acquire(timeout=settings.client_timeout)
        try:
            if engine.close():
                logger.info("Docker client released")
        finally:
            if acquired:
                self._cleanup_lock.release()

    def build_command(self) -> List[str]:
        runner = settings.runner
        script = runner.runner_container_path if self._runner_script_path() else None
        return build_run_command(runner.runner_invoker, script, self.spec.command)

    def build_binds(self) -> List[str]:
        binds = [volume.to_bind() for volume in self.spec.volumes]
        script_path = self._runner_script_path()
        if script_path:
            binds.append(f"{script_path}:{settings.runner_container_path}:ro")
        return binds

    def _runner_script_path(self) -> Optional[str]:
        return self.spec.runner_script_path or settings.runner_script_path

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Pull the image, create and start the container, launch the workers.

        Returns as soon as the container is running.

        Raises:
            PullFailedError: Image could not be fetched
            CreateFailedError: Engine rejected the container configuration
            StartFailedError: Engine refused to start the container
            TaskCancelledError: Shutdown was requested before the start
        """
        if not self._transition({LifecycleState.UNSTARTED}, LifecycleState.PULLING):
            raise TaskRunnerException(f"Task run already started (state={self.state.value})")
        self._check_cancelled()

        image = self.spec.image
        logger.info("Pulling docker image", image=image)
        try:
            engine = self._get_engine()
            engine.pull(image)
        except ENGINE_ERRORS as e:
            self._force_state(LifecycleState.FAILED)
            logger.error("Image pull failed", image=image, error=str(e))
            raise PullFailedError(image, message=f"Pull docker image {image} failed: {e}", cause=e) from e
        self._check_cancelled()

        command = self.build_command()
        logger.info("Creating docker container", image=image, command=command)
        try:
            container_id = engine.create(
                image,
                command=command,
                cpu_shares=self.spec.cpu_shares,
                memory_bytes=self.spec.memory_bytes,
                binds=self.build_binds(),
            )
        except ENGINE_ERRORS as e:
            self._force_state(LifecycleState.FAILED)
            logger.error("Container creation failed", image=image, error=str(e))
            raise CreateFailedError(f"Create docker container failed: {e}", cause=e) from e

        with self._cond:
            self.container_id = container_id
        self._transition({LifecycleState.PULLING}, LifecycleState.CREATED)
        if self.token.cancelled:
            self._abort_start()
            raise TaskCancelledError()

        logger.info("Starting docker container", container_id=short_id(container_id))
        try:
            engine.start(container_id)
        except ENGINE_ERRORS as e:
            logger.error(
                "Container start failed",
                container_id=short_id(container_id),
                error=str(e),
            )
            self._abort_start()
            raise StartFailedError(f"Start docker container failed: {e}", cause=e) from e

        if not self._transition({LifecycleState.CREATED}, LifecycleState.RUNNING):
            # The termination hook claimed the container between create and start
            self._abort_start()
            raise TaskCancelledError()

        self._launch_workers(engine, container_id)

    def _check_cancelled(self) -> None:
        if self.token.cancelled:
            self._force_state(LifecycleState.FAILED)
            raise TaskCancelledError()

    def _abort_start(self) -> None:
        """Remove a container that never reached the running state."""
        self._remove_container()
        self._force_state(LifecycleState.FAILED)

    def _launch_workers(self, engine: DockerEngine, container_id: str) -> None:
        stdout_tailer = LogTailer(engine)
        stderr_tailer = LogTailer(engine)
        waiter = ExitWaiter(engine, on_exit=self._on_container_exit)
        with self._cond:
            self._stdout_tailer = stdout_tailer
            self._stderr_tailer = stderr_tailer
            self._waiter = waiter

        stdout_tailer.start(container_id, STDOUT)
        stderr_tailer.start(container_id, STDERR)
        waiter.start(container_id)

        # Shutdown may have been requested while the workers were being created
        if self.token.cancelled:
            self._interrupt_workers()

    def _on_container_exit(self, exit_code: int) -> None:
        self._transition({LifecycleState.RUNNING}, LifecycleState.STOPPED)

    def wait_for_exit(self, timeout: Optional[float] = None) -> ExitRecord:
        """Block until the exit code is known or ``timeout`` elapses.

        Does not stop the container on timeout. Returns immediately with the
        recorded value when called again after the exit was observed.
        """
        waiter = self._waiter
        if waiter is None:
            return NOT_OBSERVED
        if timeout is None:
            timeout = self.spec.timeout
        deadline = time.monotonic() + timeout
        while not waiter.settled and not self.token.cancelled:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            waiter.wait(min(remaining, TOKEN_POLL_INTERVAL))
        record = waiter.record
        if not record.observed:
            if self.token.cancelled:
                logger.info("Wait interrupted by shutdown", container_id=short_id(self.container_id))
            else:
                logger.warning(
                    "Container did not exit within timeout",
                    container_id=short_id(self.container_id),
                    timeout=timeout,
                )
        return record

    def stop(self) -> bool:
        """Gracefully stop the container if it is running.

        The engine kills the container once the grace period runs out.
        Returns True only for the caller that issued the stop request.
        """
        if not self._transition({LifecycleState.RUNNING}, LifecycleState.STOPPING):
            return False

        container = short_id(self.container_id)
        logger.info("Stopping docker container", container_id=container)
        try:
            self._get_engine().stop(self.container_id, timeout=self.spec.stop_timeout)
            logger.info("Docker container stopped", container_id=container)
        except ENGINE_ERRORS as e:
            if is_stop_race(e):
                logger.info("Docker container already gone", container_id=container, error=str(e))
            else:
                logger.warning("Stop request failed", container_id=container, error=str(e))
        finally:
            self._transition({LifecycleState.STOPPING}, LifecycleState.STOPPED)
        return True

    def _remove_container(self) -> bool:
        """Remove the container. Returns True only for the caller that removed it."""
        acquired = self._cleanup_lock.acquire(timeout=settings.client_timeout)
        try:
            with self._cond:
                if self._state not in REMOVABLE_STATES or self.container_id is None:
                    return False
                self._state = LifecycleState.REMOVED
                self._cond.notify_all()
                container_id = self.container_id

            container = short_id(container_id)
            try:
                self._get_engine().remove(container_id)
                logger.info("Removed docker container", container_id=container)
            except ENGINE_ERRORS as e:
                if is_stop_race(e):
                    logger.info("Docker container already removed", container_id=container)
                else:
                    logger.warning(
                        "Failed to remove docker container",
                        container_id=container,
                        error=str(e),
                    )
            return True
        finally:
            if acquired:
                self._cleanup_lock.release()

    def _tailers(self) -> List[LogTailer]:
        with self._cond:
            return [t for t in (self._stderr_tailer, self._stdout_tailer) if t is not None]

    def _join_tailers(self) -> None:
        for tailer in self._tailers():
            if not tailer.join(self._stream_timeout):
                logger.warning(
                    "Log stream did not drain in time, interrupting",
                    stream=tailer.stream_name,
                    timeout=self._stream_timeout,
                )
                tailer.interrupt()

    def _interrupt_workers(self) -> None:
        for tailer in self._tailers():
            if tailer.is_alive():
                tailer.interrupt()
        waiter = self._waiter
        if waiter is not None:
            waiter.interrupt()

    def finish(self) -> None:
        """Stop if still running, remove the container, drain output, release the client.

        Safe to call any number of times and concurrently with ``shutdown()``.
        """
        logger.info("Finishing", container_id=short_id(self.container_id))
        self.stop()
        self._await_stop_settled()
        self._remove_container()
        self._join_tailers()
        self._close_engine()

    def shutdown(self) -> None:
        """Termination path: cancel, kill any pull, stop and remove, release everything."""
        self.token.cancel()
        waiter = self._waiter
        if waiter is not None:
            waiter.interrupt()
        with self._engine_lock:
            engine = self._engine
        if engine is not None:
            engine.kill_pull()
        if self.stop():
            logger.info("Container stopped by shutdown hook", container_id=short_id(self.container_id))
        self._await_stop_settled()
        self._remove_container()
        self._interrupt_workers()
        self._close_engine()

    def run_task(self) -> int:
        """Run the task to completion and return the process exit code.

        Cleanup always runs, including when start fails.
        """
        record = NOT_OBSERVED
        try:
            self.start()
            record = self.wait_for_exit(self.spec.timeout)
        except TaskRunnerException as e:
            logger.error("Task failed to start", **e.to_dict())
            return e.exit_code
        finally:
            self.finish()
        return record.exit_code_or(ExitCode.TIMEOUT)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_exit_status(self) -> Optional[int]:
        """Exit code of the container, or None while it has not been observed."""
        waiter = self._waiter
        if waiter is None:
            return None
        return waiter.record.code

    def get_progress(self) -> float:
        """Coarse progress: 0.0 until the exit is observed, then 1.0.

        Containers report no intermediate progress.
        """
        return 1.0 if self.get_exit_status() is not None else 0.0
