"""Transition backend implementations."""

from muskoka_worker.transitions.backend.base import (
    TransitionBackend,
    TransitionRunRequest,
    TransitionRunResult,
)
from muskoka_worker.transitions.backend.cli_backend import CliTransitionBackend

__all__ = [
    "CliTransitionBackend",
    "TransitionBackend",
    "TransitionRunRequest",
    "TransitionRunResult",
]
