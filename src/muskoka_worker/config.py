"""Runtime configuration for the transition worker."""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path

SUPPORTED_TRANSPORTS = ("aws", "local")

_AWS_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True, slots=True)
class ClientSettings:
    """Identity of the client whose transitions this worker runs."""

    name: str = "eth2team"
    version: str = "v0.1.2_1a2b3c4"


@dataclass(frozen=True, slots=True)
class TransportSettings:
    """Which backend serves storage, subscription and result sink."""

    backend: str = "aws"
    local_root: Path = Path(".muskoka")
    aws_region: str | None = None
    aws_endpoint_url: str | None = None


@dataclass(frozen=True, slots=True)
class StorageSettings:
    """Object storage buckets for inputs and results."""

    inputs_bucket: str = "muskoka-transitions"
    results_bucket: str = "results-eth2team"
    public_base_url: str = "https://s3.amazonaws.com"
    timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class SubscriptionSettings:
    """Inbound task subscription."""

    name: str | None = None
    wait_seconds: int = 10


@dataclass(frozen=True, slots=True)
class ResultSinkSettings:
    """Outbound result topic."""

    topic: str | None = None
    timeout_seconds: float = 5.0


@dataclass(frozen=True, slots=True)
class ExecutionSettings:
    """External transition command and per-attempt staging."""

    cli_command: str = "zcli transition blocks"
    timeout_seconds: int = 600
    success_exit_codes: tuple[int, ...] = (0,)
    staging_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    cleanup: bool = True


@dataclass(frozen=True, slots=True)
class WorkerSettings:
    """Worker pool sizing and shutdown behavior."""

    concurrency: int = 4
    poll_interval_seconds: float = 1.0
    graceful_shutdown_seconds: int = 30


@dataclass(frozen=True, slots=True)
class Settings:
    """Application settings grouped by concern. Built once, never mutated."""

    spec_version: str = "v0.8.3"
    spec_config: str = "minimal"
    worker_id: str = "poc"
    client: ClientSettings = field(default_factory=ClientSettings)
    transport: TransportSettings = field(default_factory=TransportSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    subscription: SubscriptionSettings = field(default_factory=SubscriptionSettings)
    results: ResultSinkSettings = field(default_factory=ResultSinkSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from `MUSKOKA_*` environment variables."""

        return cls(
            spec_version=os.getenv("MUSKOKA_SPEC_VERSION", "v0.8.3"),
            spec_config=os.getenv("MUSKOKA_SPEC_CONFIG", "minimal"),
            worker_id=os.getenv("MUSKOKA_WORKER_ID", "poc"),
            client=ClientSettings(
                name=os.getenv("MUSKOKA_CLIENT_NAME", "eth2team"),
                version=os.getenv("MUSKOKA_CLIENT_VERSION", "v0.1.2_1a2b3c4"),
            ),
            transport=TransportSettings(
                backend=os.getenv("MUSKOKA_TRANSPORT", "aws").strip().lower(),
                local_root=Path(os.getenv("MUSKOKA_LOCAL_ROOT", ".muskoka")),
                aws_region=_env_optional("MUSKOKA_AWS_REGION"),
                aws_endpoint_url=_env_optional("MUSKOKA_AWS_ENDPOINT_URL"),
            ),
            storage=StorageSettings(
                inputs_bucket=os.getenv("MUSKOKA_INPUTS_BUCKET", "muskoka-transitions"),
                results_bucket=os.getenv("MUSKOKA_RESULTS_BUCKET", "results-eth2team"),
                public_base_url=os.getenv(
                    "MUSKOKA_STORAGE_PUBLIC_URL",
                    "https://s3.amazonaws.com",
                ).rstrip("/"),
                timeout_seconds=float(os.getenv("MUSKOKA_STORAGE_TIMEOUT_SECONDS", "10")),
            ),
            subscription=SubscriptionSettings(
                name=_env_optional("MUSKOKA_SUBSCRIPTION"),
                wait_seconds=int(os.getenv("MUSKOKA_SUBSCRIPTION_WAIT_SECONDS", "10")),
            ),
            results=ResultSinkSettings(
                topic=_env_optional("MUSKOKA_RESULTS_TOPIC"),
                timeout_seconds=float(os.getenv("MUSKOKA_RESULTS_TIMEOUT_SECONDS", "5")),
            ),
            execution=ExecutionSettings(
                cli_command=os.getenv("MUSKOKA_CLI_CMD", "zcli transition blocks"),
                timeout_seconds=int(os.getenv("MUSKOKA_TRANSITION_TIMEOUT_SECONDS", "600")),
                success_exit_codes=_env_int_tuple("MUSKOKA_SUCCESS_EXIT_CODES", default=(0,)),
                staging_root=Path(
                    os.getenv("MUSKOKA_STAGING_ROOT", tempfile.gettempdir()),
                ),
                cleanup=_env_bool("MUSKOKA_CLEANUP_TMP", default=True),
            ),
            worker=WorkerSettings(
                concurrency=int(os.getenv("MUSKOKA_CONCURRENCY", "4")),
                poll_interval_seconds=float(os.getenv("MUSKOKA_POLL_INTERVAL_SECONDS", "1.0")),
                graceful_shutdown_seconds=int(
                    os.getenv("MUSKOKA_GRACEFUL_SHUTDOWN_SECONDS", "30"),
                ),
            ),
        )

    def with_overrides(  # noqa: PLR0913
        self,
        *,
        spec_version: str | None = None,
        spec_config: str | None = None,
        client_name: str | None = None,
        client_version: str | None = None,
        worker_id: str | None = None,
        cli_command: str | None = None,
        cleanup: bool | None = None,
        concurrency: int | None = None,
    ) -> Settings:
        """Return a copy with CLI flag values applied over environment values."""

        client = self.client
        if client_name is not None or client_version is not None:
            client = replace(
                client,
                name=client_name if client_name is not None else client.name,
                version=client_version if client_version is not None else client.version,
            )
        execution = self.execution
        if cli_command is not None:
            execution = replace(execution, cli_command=cli_command)
        if cleanup is not None:
            execution = replace(execution, cleanup=cleanup)
        worker = self.worker
        if concurrency is not None:
            worker = replace(worker, concurrency=concurrency)
        return replace(
            self,
            spec_version=spec_version if spec_version is not None else self.spec_version,
            spec_config=spec_config if spec_config is not None else self.spec_config,
            worker_id=worker_id if worker_id is not None else self.worker_id,
            client=client,
            execution=execution,
            worker=worker,
        )

    @property
    def subscription_name(self) -> str:
        """Subscription id: ``<spec version>~<spec config>~<client name>~<worker id>``."""

        if self.subscription.name:
            return self.subscription.name
        return (
            f"{self.spec_version}~{self.spec_config}~{self.client.name}~{self.worker_id}"
        )

    @property
    def results_topic(self) -> str:
        """Result topic id: ``results~<client name>``."""

        if self.results.topic:
            return self.results.topic
        return f"results~{self.client.name}"

    def validate_for_worker(self) -> None:
        """Raise configuration error if the worker cannot run with these settings."""

        for name, value in (
            ("MUSKOKA_SPEC_VERSION", self.spec_version),
            ("MUSKOKA_SPEC_CONFIG", self.spec_config),
            ("MUSKOKA_CLIENT_NAME", self.client.name),
            ("MUSKOKA_CLIENT_VERSION", self.client.version),
            ("MUSKOKA_WORKER_ID", self.worker_id),
        ):
            if not value.strip():
                raise ValueError(f"{name} must not be empty.")
            if "/" in value:
                raise ValueError(f"{name} must not contain '/': {value!r}")
        if self.transport.backend not in SUPPORTED_TRANSPORTS:
            raise ValueError(
                f"Unsupported MUSKOKA_TRANSPORT: {self.transport.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_TRANSPORTS)}.",
            )
        if not self.execution.cli_command.strip():
            raise ValueError("MUSKOKA_CLI_CMD must not be empty.")
        if self.execution.timeout_seconds < 0:
            raise ValueError("MUSKOKA_TRANSITION_TIMEOUT_SECONDS must be >= 0.")
        if not self.execution.success_exit_codes:
            raise ValueError("MUSKOKA_SUCCESS_EXIT_CODES must list at least one exit code.")
        if self.worker.concurrency <= 0:
            raise ValueError("MUSKOKA_CONCURRENCY must be a positive integer.")
        if self.worker.graceful_shutdown_seconds < 0:
            raise ValueError("MUSKOKA_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("MUSKOKA_POLL_INTERVAL_SECONDS must be >= 0.")
        if not 0 <= self.subscription.wait_seconds <= 20:  # noqa: PLR2004
            raise ValueError("MUSKOKA_SUBSCRIPTION_WAIT_SECONDS must be within 0..20.")
        if self.storage.timeout_seconds <= 0 or self.results.timeout_seconds <= 0:
            raise ValueError("Storage and result sink timeouts must be > 0.")


def aws_resource_name(value: str) -> str:
    """Map a subscription/topic id onto the character set SQS and SNS accept."""

    return _AWS_NAME_UNSAFE.sub("_", value)


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _env_int_tuple(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    values: list[int] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            values.append(int(token))
        except ValueError as error:
            raise ValueError(f"Invalid integer in {name}: {token!r}") from error
    return tuple(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
