"""Docker client factory and engine facade.

DockerEngine narrows the Docker SDK down to the handful of primitives a
task run needs (pull, create, start, stop, remove, wait, logs) so the
lifecycle code never touches the SDK directly.
"""

import os
import subprocess
import threading
from datetime import datetime, timezone
from typing import List, Optional

import docker
import structlog
from docker.errors import APIError, DockerException, NotFound
from docker.tls import TLSConfig
from docker.utils import parse_repository_tag

from ...config import DockerConfig

logger = structlog.get_logger(__name__)

MANAGED_LABEL = "com.docker-task-runner.managed"


def is_stop_race(error: BaseException) -> bool:
    """True when an engine error only means the container is already gone.

    Covers not found, 304 (already stopped) and 409 (removal already in
    progress).
    """
    if isinstance(error, NotFound):
        return True
    if isinstance(error, APIError):
        return error.status_code in (304, 409)
    return False


class DockerClientFactory:
    """Builds Docker SDK clients from configuration."""

    @staticmethod
    def create_tls_config(cert_path: str) -> TLSConfig:
        """TLS config from a docker-machine style certificate directory."""
        return TLSConfig(
            client_cert=(
                os.path.join(cert_path, "cert.pem"),
                os.path.join(cert_path, "key.pem"),
            ),
            ca_cert=os.path.join(cert_path, "ca.pem"),
            verify=True,
        )

    @classmethod
    def create(cls, config: DockerConfig) -> docker.DockerClient:
        """Create a client for the configured engine endpoint.

        Falls back to the standard DOCKER_HOST environment when no
        endpoint is configured.
        """
        base_url = config.get_base_url()
        if base_url is None:
            logger.info("Initializing Docker client from environment")
            return docker.from_env(timeout=config.client_timeout)

        tls = cls.create_tls_config(config.docker_cert_path) if config.docker_cert_path else False
        logger.info(
            "Initializing Docker client",
            base_url=base_url,
            tls=bool(tls),
        )
        return docker.DockerClient(base_url=base_url, tls=tls, timeout=config.client_timeout)


class DockerEngine:
    """Capability facade over the Docker engine API."""

    def __init__(self, client: docker.DockerClient, config: Optional[DockerConfig] = None):
        """Initialize the engine facade.

        Args:
            client: Docker SDK client, owned by this facade from now on
            config: Engine settings (pull mode, timeouts)
        """
        self._client = client
        self._config = config or DockerConfig()
        self._lock = threading.Lock()
        self._closed = False
        self._pull_process: Optional[subprocess.Popen] = None

    @classmethod
    def from_config(cls, config: DockerConfig) -> "DockerEngine":
        return cls(DockerClientFactory.create(config), config)

    @property
    def closed(self) -> bool:
        return self._closed

    def pull(self, image: str) -> None:
        """Fetch an image, blocking until it is available locally."""
        if self._config.pull_via_cli:
            self._pull_with_cli(image)
            return
        repository, tag = parse_repository_tag(image)
        self._client.images.pull(repository, tag=tag or "latest")

    def _cli_host_args(self) -> List[str]:
        args: List[str] = []
        base_url = self._config.get_base_url()
        if base_url:
            # The CLI only understands tcp:// for remote daemons
            if base_url.startswith(("https://", "http://")):
                base_url = "tcp://" + base_url.split("://", 1)[1]
            args += ["--host", base_url]
        if self._config.docker_cert_path:
            cert_path = self._config.docker_cert_path
            args += [
                "--tlsverify",
                "--tlscacert", os.path.join(cert_path, "ca.pem"),
                "--tlscert", os.path.join(cert_path, "cert.pem"),
                "--tlskey", os.path.join(cert_path, "key.pem"),
            ]
        return args

    def _pull_with_cli(self, image: str) -> None:
        cmd = [self._config.docker_binary, *self._cli_host_args(), "pull", image]
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise DockerException(f"Could not run {cmd[0]}: {e}") from e

        with self._lock:
            self._pull_process = proc
        try:
            _, stderr = proc.communicate(timeout=self._config.pull_timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            raise DockerException(
                f"docker pull {image} timed out after {self._config.pull_timeout}s"
            )
        finally:
            with self._lock:
                self._pull_process = None

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            raise DockerException(
                f"docker pull {image} exited with {proc.returncode}: {message}"
            )

    def kill_pull(self) -> bool:
        """Kill an in-flight CLI pull. Returns True if one was killed."""
        with self._lock:
            proc = self._pull_process
        if proc is None or proc.poll() is not None:
            return False
        try:
            proc.kill()
        except ProcessLookupError:
            return False
        logger.info("Killed in-flight image pull", pid=proc.pid)
        return True

    def create(
        self,
        image: str,
        command: List[str],
        cpu_shares: int,
        memory_bytes: int,
        binds: List[str],
    ) -> str:
        """Create the container and return its id."""
        api = self._client.api
        host_config = api.create_host_config(
            binds=binds or None,
            cpu_shares=cpu_shares,
            mem_limit=memory_bytes,
        )
        result = api.create_container(
            image,
            command=command,
            host_config=host_config,
            labels={
                MANAGED_LABEL: "true",
                "com.docker-task-runner.created-at": datetime.now(timezone.utc).isoformat(),
            },
        )
        return result["Id"]

    def start(self, container_id: str) -> None:
        self._client.api.start(container_id)

    def stop(self, container_id: str, timeout: int) -> None:
        """Ask the container to stop; the engine kills it after ``timeout`` seconds."""
        self._client.api.stop(container_id, timeout=timeout)

    def remove(self, container_id: str) -> None:
        self._client.api.remove_container(container_id, force=True)

    def wait(self, container_id: str) -> int:
        """Block until the container exits and return its exit code."""
        # timeout=None overrides the client timeout; the call lasts as long as the container
        result = self._client.api.wait(container_id, timeout=None)
        if isinstance(result, dict):
            return int(result.get("StatusCode", -1))
        return int(result)

    def logs(self, container_id: str, stdout: bool, stderr: bool):
        """Follow one output stream of the container.

        Returns an iterator of byte chunks with a ``close()`` method that
        unblocks a pending read.
        """
        return self._client.api.logs(
            container_id,
            stdout=stdout,
            stderr=stderr,
            stream=True,
            follow=True,
            timestamps=False,
        )

    def close(self) -> bool:
        """Release the client connection. Returns True only for the call that closed it."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
        try:
            self._client.close()
        except Exception as e:
            logger.warning("Error closing Docker client", error=str(e))
        logger.debug("Docker client closed")
        return True
