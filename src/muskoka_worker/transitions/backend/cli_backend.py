"""Subprocess-based backend runner for the transition CLI."""

from __future__ import annotations

import os
import shlex
import signal
import subprocess
import time
from pathlib import Path

from muskoka_worker.transitions.backend.base import TransitionRunRequest, TransitionRunResult
from muskoka_worker.transitions.errors import LaunchError

_TERMINATED_EXIT_CODE = 124
_POLL_SECONDS = 0.1
_TERMINATE_WAIT_SECONDS = 2


class CliTransitionBackend:
    """Run ``<cmd> --pre <pre> --post <post> <block_0> ...`` and capture both streams."""

    def run(self, request: TransitionRunRequest) -> TransitionRunResult:
        run_args = _build_run_args(
            command_template=request.command_template,
            pre_path=request.pre_path,
            post_path=request.post_path,
            block_paths=request.block_paths,
        )
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                # Own process group, so a timeout also stops whatever the tool spawned.
                start_new_session=True,
            )
        except FileNotFoundError as error:
            raise LaunchError(f"Transition command not found: {run_args[0]}") from error
        except PermissionError as error:
            raise LaunchError(f"Transition command is not executable: {run_args[0]}") from error
        except OSError as error:
            raise LaunchError(f"Transition command failed to start: {error}") from error

        return _wait_with_shutdown(
            process=process,
            timeout_seconds=request.timeout_seconds,
            success_exit_codes=request.success_exit_codes,
            shutdown_requested=request.shutdown_requested,
            graceful_shutdown_seconds=request.graceful_shutdown_seconds,
        )


def _build_run_args(
    *,
    command_template: str,
    pre_path: Path,
    post_path: Path,
    block_paths: list[Path],
) -> list[str]:
    try:
        command = shlex.split(command_template.strip())
    except ValueError as error:
        raise LaunchError(f"Transition command template is malformed: {error}") from error
    if not command:
        raise LaunchError("Transition command template is empty.")
    return [
        *command,
        "--pre",
        str(pre_path),
        "--post",
        str(post_path),
        *(str(path) for path in block_paths),
    ]


def _wait_with_shutdown(
    *,
    process: subprocess.Popen[bytes],
    timeout_seconds: int,
    success_exit_codes: tuple[int, ...],
    shutdown_requested,
    graceful_shutdown_seconds: int | None,
) -> TransitionRunResult:
    start_monotonic = time.monotonic()
    shutdown_deadline: float | None = None
    graceful_seconds = max(0, graceful_shutdown_seconds or 0)

    while True:
        try:
            stdout, stderr = process.communicate(timeout=_POLL_SECONDS)
        except subprocess.TimeoutExpired:
            pass
        else:
            exit_code = process.returncode
            return TransitionRunResult(
                exit_code=exit_code,
                success=exit_code in success_exit_codes,
                stdout=stdout or b"",
                stderr=stderr or b"",
                duration_seconds=time.monotonic() - start_monotonic,
            )

        now = time.monotonic()
        if timeout_seconds > 0 and now - start_monotonic >= timeout_seconds:
            stdout, stderr = _terminate_process(process)
            return TransitionRunResult(
                exit_code=_TERMINATED_EXIT_CODE,
                success=False,
                stdout=stdout,
                stderr=stderr,
                timed_out=True,
                duration_seconds=now - start_monotonic,
            )

        if shutdown_requested is not None and shutdown_requested():
            if shutdown_deadline is None:
                shutdown_deadline = now + graceful_seconds
            if now >= shutdown_deadline:
                stdout, stderr = _terminate_process(process)
                return TransitionRunResult(
                    exit_code=_TERMINATED_EXIT_CODE,
                    success=False,
                    stdout=stdout,
                    stderr=stderr,
                    interrupted=True,
                    duration_seconds=now - start_monotonic,
                )


def _terminate_process(process: subprocess.Popen[bytes]) -> tuple[bytes, bytes]:
    """SIGTERM the process group, then SIGKILL after 2 seconds.

    Returns whatever output was captured. A descendant that escaped the group and
    still holds the pipes cannot extend the wait beyond the kill deadline.
    """

    _signal_group(process, signal.SIGTERM)
    try:
        stdout, stderr = process.communicate(timeout=_TERMINATE_WAIT_SECONDS)
    except subprocess.TimeoutExpired:
        _signal_group(process, signal.SIGKILL)
        try:
            stdout, stderr = process.communicate(timeout=_TERMINATE_WAIT_SECONDS)
        except subprocess.TimeoutExpired as error:
            stdout, stderr = error.stdout, error.stderr
            _close_pipes(process)
    return stdout or b"", stderr or b""


def _signal_group(process: subprocess.Popen[bytes], signum: signal.Signals) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signum)
        elif signum == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except OSError:
        # Group already gone.
        pass


def _close_pipes(process: subprocess.Popen[bytes]) -> None:
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            try:
                stream.close()
            except OSError:
                pass
