"""Domain models for transition tasks, attempts and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class AttemptState(str, Enum):
    """Per-message lifecycle states."""

    RECEIVED = "received"
    DECODED = "decoded"
    STAGED = "staged"
    EXECUTED = "executed"
    FINGERPRINTED = "fingerprinted"
    PUBLISHED = "published"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class Decision(str, Enum):
    """What happens to the inbound message once the attempt ends."""

    ACK = "ack"
    NACK = "nack"


class FailureClass(str, Enum):
    """Normalized failure classes, one per rejection path."""

    DECODE_ERROR = "decode_error"
    DIRECTORY_ERROR = "directory_error"
    FETCH_ERROR = "fetch_error"
    LAUNCH_ERROR = "launch_error"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_INTERRUPTED = "execution_interrupted"
    PUBLISH_ERROR = "publish_error"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True, slots=True)
class TaskDescriptor:
    """One state-transition job as received from the subscription."""

    key: str
    blocks: int
    spec_version: str
    spec_config: str

    @property
    def input_names(self) -> list[str]:
        """Input artifact names in fetch order: pre-state, then blocks ascending."""

        return ["pre.ssz", *(f"block_{index}.ssz" for index in range(self.blocks))]


@dataclass(frozen=True, slots=True)
class Attempt:
    """One execution of a descriptor, namespaced by a never-reused attempt key."""

    descriptor: TaskDescriptor
    attempt_key: str
    staging_path: Path
    delivery_attempt: int | None = None

    @property
    def key(self) -> str:
        return self.descriptor.key

    @property
    def pre_path(self) -> Path:
        return self.staging_path / "pre.ssz"

    @property
    def post_path(self) -> Path:
        return self.staging_path / "post.ssz"

    @property
    def block_paths(self) -> list[Path]:
        return [self.staging_path / f"block_{index}.ssz" for index in range(self.descriptor.blocks)]


@dataclass(slots=True)
class ExecutionOutcome:
    """Captured result of running the transition command."""

    success: bool
    exit_code: int
    stdout: bytes
    stderr: bytes
    output_digest: bytes | None = None
    duration_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class ResultFiles:
    """URLs of the uploaded result artifacts."""

    post_state: str
    out_log: str
    err_log: str


@dataclass(slots=True)
class ResultRecord:
    """Published fact about one finished attempt."""

    key: str
    success: bool
    post_hash: str
    client_name: str
    client_version: str
    files: ResultFiles
    uploaded: dict[str, bool] = field(default_factory=dict)


@dataclass(slots=True)
class AttemptReport:
    """How the coordinator disposed of one inbound message."""

    state: AttemptState
    decision: Decision
    message_id: str
    reached_state: AttemptState = AttemptState.RECEIVED
    key: str | None = None
    attempt_key: str | None = None
    failure_class: FailureClass | None = None
    error_summary: str | None = None
    record: ResultRecord | None = None
