"""Pytest configuration and shared fixtures."""

import os
import queue
import threading
import time
from collections import Counter
from typing import Dict, Iterable, List, Optional
from unittest.mock import MagicMock

import pytest
from docker.errors import DockerException, NotFound

# Keep the developer's daemon settings out of the tests
os.environ.pop("DOCKER_HOST", None)
os.environ.pop("DOCKER_CERT_PATH", None)
os.environ.pop("RUNNER_SCRIPT_PATH", None)

from dockertask.models.task import TaskSpec
from dockertask.utils.logging import setup_logging
from dockertask.utils.shutdown import TerminationHook

# Log events go to stderr so tests can assert on relayed stdout
setup_logging(level="DEBUG")


CONTAINER_ID = "c0ffee" * 10 + "beef"


class FakeLogStream:
    """Log stream that delivers queued chunks and ends when the container exits."""

    def __init__(self, chunks: Iterable[bytes], ended: threading.Event):
        self._queue: "queue.Queue[bytes]" = queue.Queue()
        for chunk in chunks:
            self._queue.put(chunk)
        self._ended = ended
        self.closed = False

    def feed(self, chunk: bytes) -> None:
        self._queue.put(chunk)

    def __iter__(self):
        return self

    def __next__(self) -> bytes:
        while True:
            if self.closed:
                raise StopIteration
            try:
                return self._queue.get(timeout=0.02)
            except queue.Empty:
                if self._ended.is_set() and self._queue.empty():
                    raise StopIteration

    def close(self) -> None:
        self.closed = True


class FakeEngine:
    """Thread-safe stand-in for DockerEngine that counts every call."""

    def __init__(
        self,
        exit_code: int = 0,
        stdout: Iterable[bytes] = (),
        stderr: Iterable[bytes] = (),
        runs_until_stopped: bool = False,
        pull_error: Optional[Exception] = None,
        create_error: Optional[Exception] = None,
        start_error: Optional[Exception] = None,
        stop_error: Optional[Exception] = None,
        stop_delay: float = 0.0,
    ):
        self.calls: Counter = Counter()
        self.exit_code = exit_code
        self.stdout_chunks = list(stdout)
        self.stderr_chunks = list(stderr)
        self.runs_until_stopped = runs_until_stopped
        self.pull_error = pull_error
        self.create_error = create_error
        self.start_error = start_error
        self.stop_error = stop_error
        self.stop_delay = stop_delay
        self.stop_timeouts: List[int] = []
        self.create_kwargs: dict = {}
        self.streams: List[FakeLogStream] = []
        self.closed = False
        self._lock = threading.Lock()
        self._exited = threading.Event()
        self._vanished = False
        self._gates: Dict[str, threading.Event] = {}
        self._entered: Dict[str, threading.Event] = {}
        self.pull_killed = False

    def _count(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1

    def hold(self, name: str) -> None:
        """Make the next call to `name` block until `release(name)`."""
        self._gates[name] = threading.Event()
        self._entered[name] = threading.Event()

    def release(self, name: str) -> None:
        self._gates[name].set()

    def wait_entered(self, name: str, timeout: float = 5.0) -> bool:
        return self._entered[name].wait(timeout)

    def _pass_gate(self, name: str) -> None:
        gate = self._gates.get(name)
        if gate is not None:
            self._entered[name].set()
            gate.wait(5.0)

    def exit(self, code: int) -> None:
        """Make the container exit on its own."""
        self.exit_code = code
        self._exited.set()

    def pull(self, image: str) -> None:
        self._count("pull")
        self._pass_gate("pull")
        if self.pull_killed:
            raise DockerException(f"docker pull {image} was killed")
        if self.pull_error is not None:
            raise self.pull_error

    def create(self, image, command, cpu_shares, memory_bytes, binds) -> str:
        self._count("create")
        self._pass_gate("create")
        if self.create_error is not None:
            raise self.create_error
        self.create_kwargs = dict(
            image=image,
            command=command,
            cpu_shares=cpu_shares,
            memory_bytes=memory_bytes,
            binds=binds,
        )
        return CONTAINER_ID

    def start(self, container_id: str) -> None:
        self._count("start")
        self._pass_gate("start")
        if self.start_error is not None:
            raise self.start_error
        if not self.runs_until_stopped:
            self._exited.set()

    def stop(self, container_id: str, timeout: int) -> None:
        self._count("stop")
        self.stop_timeouts.append(timeout)
        if self.stop_delay:
            time.sleep(self.stop_delay)
        if self.stop_error is not None:
            raise self.stop_error
        self.exit(143)

    def remove(self, container_id: str) -> None:
        self._count("remove")
        with self._lock:
            if not self._exited.is_set():
                self._vanished = True
        self._exited.set()

    def wait(self, container_id: str) -> int:
        self._count("wait")
        self._exited.wait()
        with self._lock:
            if self._vanished:
                raise NotFound("No such container")
        return self.exit_code

    def logs(self, container_id: str, stdout: bool, stderr: bool) -> FakeLogStream:
        self._count("logs")
        stream = FakeLogStream(
            self.stdout_chunks if stdout else self.stderr_chunks, self._exited
        )
        with self._lock:
            self.streams.append(stream)
        return stream

    def kill_pull(self) -> bool:
        self._count("kill_pull")
        gate = self._gates.get("pull")
        if gate is None or gate.is_set():
            return False
        self.pull_killed = True
        gate.set()
        return True

    def close(self) -> bool:
        self._count("close")
        with self._lock:
            if self.closed:
                return False
            self.closed = True
            return True


@pytest.fixture
def task_spec():
    """A short echo task."""
    return TaskSpec(image="alpine", command=("echo", "hi"), timeout=5.0, stop_timeout=7)


@pytest.fixture
def fake_engine():
    return FakeEngine(stdout=[b"hi\n"])


@pytest.fixture
def make_engine():
    """Factory for engines with custom behaviour."""
    return FakeEngine


@pytest.fixture
def mock_docker_client():
    """Mock Docker SDK client for testing the engine facade."""
    client = MagicMock()
    client.api.create_host_config.return_value = {"HostConfig": "mocked"}
    client.api.create_container.return_value = {"Id": CONTAINER_ID, "Warnings": []}
    client.api.wait.return_value = {"StatusCode": 0}
    client.api.logs.return_value = iter([b"line\n"])
    return client


@pytest.fixture(autouse=True)
def reset_termination_hook():
    """Allow each test to install a fresh hook."""
    TerminationHook._installed = False
    yield
    TerminationHook._installed = False
