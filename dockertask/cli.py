"""Command-line entry point.

Usage:
  python -m dockertask --image alpine -- echo hi
  docker-task-runner --image myrepo/job:1.2 --memory 2048 --cpu-shares 512 \\
      --volume /data/in:/in:ro --runner-script /opt/runner.py -- --epochs 3

Exit codes: 0 on success, 124 when the container did not exit in time,
2 for malformed input, 1 for any other failure, otherwise the container's
own exit code.
"""

import argparse
import sys
from typing import List, Optional

import structlog
from rich.console import Console

from .config import settings
from .models.errors import ExitCode, IllegalArgumentError
from .models.task import TaskSpec, parse_volume_bindings
from .services.container import ContainerTaskRunner
from .utils.logging import bind_context, setup_logging
from .utils.shutdown import TerminationHook

console = Console(stderr=True)
logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docker-task-runner",
        description="Run a single Docker container task and clean it up afterwards",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--image", required=True, help="Docker image to run")
    parser.add_argument(
        "--cpu-shares", type=int, default=settings.cpu_shares, help="Relative CPU weight"
    )
    parser.add_argument(
        "--memory", type=int, default=settings.memory_mb, help="Memory limit in MiB"
    )
    parser.add_argument(
        "--volume",
        action="append",
        default=[],
        metavar="HOST:CONTAINER[:ro|rw]",
        help="Bind a host path into the container (repeatable)",
    )
    parser.add_argument("--docker-host", default=settings.docker_host, help="Engine host:port")
    parser.add_argument(
        "--docker-cert-path",
        default=settings.docker_cert_path,
        help="Directory holding ca.pem, cert.pem and key.pem",
    )
    parser.add_argument(
        "--runner-script",
        default=settings.runner_script_path,
        help="Host path of the runner script mounted into the container",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.task_timeout,
        help="Seconds to wait for the container to exit",
    )
    parser.add_argument(
        "--stop-timeout",
        type=int,
        default=settings.stop_timeout,
        help="Grace period in seconds before a stopped container is killed",
    )
    parser.add_argument("--debug", action="store_true", default=settings.debug)
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    return parser


def parse_task_spec(args: argparse.Namespace) -> TaskSpec:
    """Build a validated TaskSpec from parsed arguments."""
    command: List[str] = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    return TaskSpec.build(
        image=args.image,
        command=tuple(command),
        cpu_shares=args.cpu_shares,
        memory_mb=args.memory,
        volumes=parse_volume_bindings(args.volume),
        docker_host=args.docker_host,
        docker_cert_path=args.docker_cert_path,
        runner_script_path=args.runner_script,
        timeout=args.timeout,
        stop_timeout=args.stop_timeout,
        debug=args.debug,
    )


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the task, and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        spec = parse_task_spec(args)
    except IllegalArgumentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        parser.print_usage(sys.stderr)
        return int(ExitCode.ILLEGAL_ARGUMENT)

    setup_logging(level="DEBUG" if spec.debug else None)
    bind_context(image=spec.image)

    runner = ContainerTaskRunner(spec)
    hook = TerminationHook(runner, join_timeout=spec.stop_timeout + settings.client_timeout)
    hook.install()
    try:
        result = runner.run_task()
    except Exception as e:
        logger.critical("Error running client", error=str(e), exc_info=True)
        result = int(ExitCode.FAIL)
    finally:
        # Let a running shutdown hook finish its cleanup before the process exits
        hook.join(spec.stop_timeout + settings.client_timeout)
        hook.uninstall()

    if result == ExitCode.SUCCESS:
        logger.info("docker task completed successfully")
    else:
        logger.info("Application failed to complete successfully", exit_code=result)
    return result


def main() -> None:
    try:
        sys.exit(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(int(ExitCode.FAIL))


if __name__ == "__main__":
    main()
