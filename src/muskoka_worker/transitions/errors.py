"""Error taxonomy for the transition pipeline."""

from __future__ import annotations

from muskoka_worker.transitions.models import FailureClass


class TransitionError(RuntimeError):
    """Base class for errors that end an attempt with a rejection."""

    failure_class: FailureClass = FailureClass.UNEXPECTED


class DecodeError(TransitionError):
    """Inbound message is not a well-formed task descriptor."""

    failure_class = FailureClass.DECODE_ERROR


class DirectoryError(TransitionError):
    """Staging directory could not be created."""

    failure_class = FailureClass.DIRECTORY_ERROR


class FetchError(TransitionError):
    """An input artifact could not be downloaded into the staging directory."""

    failure_class = FailureClass.FETCH_ERROR

    def __init__(self, message: str, *, artifact: str, object_key: str) -> None:
        super().__init__(message)
        self.artifact = artifact
        self.object_key = object_key


class LaunchError(TransitionError):
    """The transition command could not be started at all."""

    failure_class = FailureClass.LAUNCH_ERROR


class ExecutionTimeoutError(TransitionError):
    """The transition command exceeded its wall-clock budget and was terminated."""

    failure_class = FailureClass.EXECUTION_TIMEOUT


class ExecutionInterruptedError(TransitionError):
    """The transition command was terminated because the worker is shutting down."""

    failure_class = FailureClass.EXECUTION_INTERRUPTED


class PublishError(TransitionError):
    """The result record could not be emitted."""

    failure_class = FailureClass.PUBLISH_ERROR


class CleanupError(RuntimeError):
    """Staging directory removal failed. Logged, never raised past the manager."""
