"""Controllers for transition worker CLI commands."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from muskoka_worker.config import Settings, aws_resource_name
from muskoka_worker.transitions.backend import CliTransitionBackend, TransitionBackend
from muskoka_worker.transitions.coordinator import TaskCoordinator
from muskoka_worker.transitions.inputs import InputMaterializer
from muskoka_worker.transitions.models import AttemptReport, Decision
from muskoka_worker.transitions.publisher import ResultPublisher
from muskoka_worker.transitions.workdir import StagingDirectoryManager
from muskoka_worker.transitions.worker import TransitionWorker
from muskoka_worker.transport import (
    DirectorySubscription,
    FileResultSink,
    InboundMessage,
    LocalObjectStore,
    ObjectStore,
    ResultSink,
    S3ObjectStore,
    SnsResultSink,
    SqsSubscription,
    Subscription,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SettingsOverrides:
    """CLI flag values that take precedence over ``MUSKOKA_*`` environment values."""

    spec_version: str | None = None
    spec_config: str | None = None
    client_name: str | None = None
    client_version: str | None = None
    worker_id: str | None = None
    cli_command: str | None = None
    cleanup: bool | None = None
    concurrency: int | None = None

    def apply(self, settings: Settings) -> Settings:
        return settings.with_overrides(
            spec_version=self.spec_version,
            spec_config=self.spec_config,
            client_name=self.client_name,
            client_version=self.client_version,
            worker_id=self.worker_id,
            cli_command=self.cli_command,
            cleanup=self.cleanup,
            concurrency=self.concurrency,
        )


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for the subscription-driven worker."""

    overrides: SettingsOverrides = field(default_factory=SettingsOverrides)
    once: bool = False
    max_messages: int | None = None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class ProcessCommand:
    """CLI input for running one task message from a file."""

    message_path: Path
    overrides: SettingsOverrides = field(default_factory=SettingsOverrides)


@dataclass(slots=True)
class CheckCommand:
    """CLI input for startup checks."""

    overrides: SettingsOverrides = field(default_factory=SettingsOverrides)


@dataclass(slots=True)
class ProcessResult:
    lines: list[str]
    acknowledged: bool


class WorkerCliController:
    """Builds the transport wiring from settings and drives the worker."""

    def __init__(self, *, backend: TransitionBackend | None = None) -> None:
        self.backend = backend

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = self._settings(command.overrides)
        subscription = build_subscription(settings)
        sink = build_result_sink(settings)
        subscription.ensure_exists()
        sink.ensure_exists()

        stop_event = threading.Event()
        worker = TransitionWorker(
            subscription=subscription,
            coordinator=build_coordinator(
                settings,
                sink=sink,
                backend=self.backend,
                stop_event=stop_event,
            ),
            concurrency=settings.worker.concurrency,
            poll_interval_seconds=settings.worker.poll_interval_seconds,
            graceful_shutdown_seconds=settings.worker.graceful_shutdown_seconds,
            stop_event=stop_event,
        )
        logger.info(
            "worker %s listening on %s (spec %s/%s, client %s %s, concurrency %d)",
            settings.worker_id,
            settings.subscription_name,
            settings.spec_version,
            settings.spec_config,
            settings.client.name,
            settings.client.version,
            settings.worker.concurrency,
        )
        summary = (
            worker.run_once()
            if command.once
            else worker.run_loop(
                max_messages=command.max_messages,
                max_idle_polls=command.max_idle_polls,
            )
        )
        return [
            "Worker summary: "
            f"received={summary.received} acknowledged={summary.acknowledged} "
            f"rejected={summary.rejected} skipped={summary.skipped} "
            f"abandoned={summary.abandoned} idle_polls={summary.idle_polls}",
        ]

    def process(self, command: ProcessCommand) -> ProcessResult:
        """Run one message file through the coordinator, without a subscription."""

        settings = self._settings(command.overrides)
        data = command.message_path.read_bytes()
        coordinator = build_coordinator(settings, backend=self.backend)
        report = coordinator.handle(
            InboundMessage(message_id=command.message_path.stem, data=data),
        )
        return ProcessResult(
            lines=render_report_lines(report),
            acknowledged=report.decision is Decision.ACK,
        )

    def check(self, command: CheckCommand) -> list[str]:
        """Validate settings and verify the subscription and results topic exist."""

        settings = self._settings(command.overrides)
        subscription = build_subscription(settings)
        sink = build_result_sink(settings)
        subscription.ensure_exists()
        sink.ensure_exists()
        return [
            f"Transport: {settings.transport.backend}",
            f"Spec: {settings.spec_version}/{settings.spec_config}",
            f"Client: {settings.client.name} {settings.client.version}",
            f"Subscription: {_transport_name(settings, settings.subscription_name)} (ok)",
            f"Results topic: {_transport_name(settings, settings.results_topic)} (ok)",
            f"Inputs bucket: {settings.storage.inputs_bucket}",
            f"Results bucket: {settings.storage.results_bucket}",
            f"Transition command: {settings.execution.cli_command}",
        ]

    @staticmethod
    def _settings(overrides: SettingsOverrides) -> Settings:
        settings = overrides.apply(Settings.from_env())
        settings.validate_for_worker()
        return settings


def build_object_store(settings: Settings, bucket: str) -> ObjectStore:
    if settings.transport.backend == "local":
        return LocalObjectStore(settings.transport.local_root / "buckets" / bucket)
    return S3ObjectStore(
        bucket,
        region=settings.transport.aws_region,
        endpoint_url=settings.transport.aws_endpoint_url,
        timeout_seconds=settings.storage.timeout_seconds,
        public_base_url=settings.storage.public_base_url,
    )


def build_subscription(settings: Settings) -> Subscription:
    if settings.transport.backend == "local":
        return DirectorySubscription(
            settings.transport.local_root / "inbox" / settings.subscription_name,
        )
    return SqsSubscription(
        aws_resource_name(settings.subscription_name),
        region=settings.transport.aws_region,
        endpoint_url=settings.transport.aws_endpoint_url,
        wait_seconds=settings.subscription.wait_seconds,
        timeout_seconds=settings.storage.timeout_seconds,
    )


def build_result_sink(settings: Settings) -> ResultSink:
    if settings.transport.backend == "local":
        return FileResultSink(settings.transport.local_root / "topics", settings.results_topic)
    return SnsResultSink(
        aws_resource_name(settings.results_topic),
        region=settings.transport.aws_region,
        endpoint_url=settings.transport.aws_endpoint_url,
        timeout_seconds=settings.results.timeout_seconds,
    )


def build_coordinator(
    settings: Settings,
    *,
    sink: ResultSink | None = None,
    backend: TransitionBackend | None = None,
    stop_event: threading.Event | None = None,
) -> TaskCoordinator:
    """Wire one coordinator from settings; a shared ``stop_event`` cuts running commands."""

    execution = settings.execution
    return TaskCoordinator(
        staging=StagingDirectoryManager(execution.staging_root),
        materializer=InputMaterializer(
            build_object_store(settings, settings.storage.inputs_bucket),
        ),
        backend=backend or CliTransitionBackend(),
        publisher=ResultPublisher(
            store=build_object_store(settings, settings.storage.results_bucket),
            sink=sink or build_result_sink(settings),
            client_name=settings.client.name,
            client_version=settings.client.version,
        ),
        spec_version=settings.spec_version,
        spec_config=settings.spec_config,
        command_template=execution.cli_command,
        timeout_seconds=execution.timeout_seconds,
        success_exit_codes=execution.success_exit_codes,
        cleanup=execution.cleanup,
        graceful_shutdown_seconds=settings.worker.graceful_shutdown_seconds,
        shutdown_requested=stop_event.is_set if stop_event is not None else None,
    )


def render_report_lines(report: AttemptReport) -> list[str]:
    lines = [
        f"Message: {report.message_id}",
        f"Key: {report.key or '-'}",
        f"Attempt: {report.attempt_key or '-'}",
        f"State: {report.state.value} (reached {report.reached_state.value})",
        f"Decision: {report.decision.value}",
    ]
    if report.failure_class is not None:
        lines.append(f"Failure: {report.failure_class.value}: {report.error_summary or ''}")
    record = report.record
    if record is not None:
        lines.extend(
            [
                f"Success: {str(record.success).lower()}",
                f"Post hash: {record.post_hash or '-'}",
                f"Post state: {record.files.post_state}",
                f"Out log: {record.files.out_log}",
                f"Err log: {record.files.err_log}",
            ],
        )
        missing = sorted(kind for kind, done in record.uploaded.items() if not done)
        if missing:
            lines.append(f"Not uploaded: {', '.join(missing)}")
    return lines


def _transport_name(settings: Settings, name: str) -> str:
    if settings.transport.backend == "aws":
        return aws_resource_name(name)
    return name
