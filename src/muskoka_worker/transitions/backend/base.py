"""Backend interface for running one transition."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class TransitionRunRequest:
    """Inputs required to execute one transition attempt."""

    command_template: str
    pre_path: Path
    post_path: Path
    block_paths: list[Path] = field(default_factory=list)
    timeout_seconds: int = 0
    success_exit_codes: tuple[int, ...] = (0,)
    shutdown_requested: Callable[[], bool] | None = None
    graceful_shutdown_seconds: int | None = None


@dataclass(slots=True)
class TransitionRunResult:
    """Execution outcome from the backend runner."""

    exit_code: int
    success: bool
    stdout: bytes
    stderr: bytes
    timed_out: bool = False
    interrupted: bool = False
    duration_seconds: float = 0.0


class TransitionBackend(Protocol):
    """Protocol implemented by backend runners."""

    def run(self, request: TransitionRunRequest) -> TransitionRunResult:
        """Run the transition; raise LaunchError if it cannot start."""
