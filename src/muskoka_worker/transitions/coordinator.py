"""Per-message lifecycle: decode, stage, execute, fingerprint, publish, clean up, ack."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from muskoka_worker.transitions.backend import (
    TransitionBackend,
    TransitionRunRequest,
    TransitionRunResult,
)
from muskoka_worker.transitions.contracts import decode_task_descriptor
from muskoka_worker.transitions.errors import (
    ExecutionInterruptedError,
    ExecutionTimeoutError,
    TransitionError,
)
from muskoka_worker.transitions.fingerprint import digest_post_state
from muskoka_worker.transitions.inputs import InputMaterializer
from muskoka_worker.transitions.models import (
    Attempt,
    AttemptReport,
    AttemptState,
    Decision,
    ExecutionOutcome,
    FailureClass,
    TaskDescriptor,
)
from muskoka_worker.transitions.publisher import ResultPublisher
from muskoka_worker.transitions.workdir import StagingDirectoryManager, new_attempt_key
from muskoka_worker.transport.subscription import InboundMessage, SubscriptionError

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 1200


class TaskCoordinator:
    """Runs one inbound message through the pipeline and acks or nacks it.

    Rejections rely on transport redelivery; there is no retry loop here. Each
    delivery gets a fresh attempt key, so redeliveries and concurrent duplicates
    of the same task never share a staging directory or result prefix.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        staging: StagingDirectoryManager,
        materializer: InputMaterializer,
        backend: TransitionBackend,
        publisher: ResultPublisher,
        spec_version: str,
        spec_config: str,
        command_template: str,
        timeout_seconds: int = 600,
        success_exit_codes: tuple[int, ...] = (0,),
        cleanup: bool = True,
        graceful_shutdown_seconds: int = 30,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.staging = staging
        self.materializer = materializer
        self.backend = backend
        self.publisher = publisher
        self.spec_version = spec_version
        self.spec_config = spec_config
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds
        self.success_exit_codes = success_exit_codes
        self.cleanup = cleanup
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.shutdown_requested = shutdown_requested

    def handle(self, message: InboundMessage) -> AttemptReport:
        report = AttemptReport(
            state=AttemptState.RECEIVED,
            decision=Decision.NACK,
            message_id=message.message_id,
        )
        try:
            descriptor = decode_task_descriptor(message.data)
        except TransitionError as error:
            logger.warning(
                "failed to decode task message %s: %s (msg: %r)",
                message.message_id,
                error,
                message.data[:_PREVIEW_CHARS],
            )
            report.failure_class = error.failure_class
            report.error_summary = str(error)
            return self._finish(message, report)

        report.key = descriptor.key
        report.reached_state = AttemptState.DECODED
        if not self._accepts(descriptor):
            return self._skip(message, report, descriptor)

        attempt_key = new_attempt_key()
        report.attempt_key = attempt_key
        logger.info(
            "key=%s attempt=%s processing (%d blocks, spec %s/%s, delivery %s)",
            descriptor.key,
            attempt_key,
            descriptor.blocks,
            descriptor.spec_version,
            descriptor.spec_config,
            message.delivery_attempt if message.delivery_attempt is not None else "?",
        )

        staging_path: Path | None = None
        try:
            staging_path = self.staging.allocate(descriptor.key, attempt_key)
            attempt = Attempt(
                descriptor=descriptor,
                attempt_key=attempt_key,
                staging_path=staging_path,
                delivery_attempt=message.delivery_attempt,
            )
            self.materializer.materialize(descriptor, staging_path)
            report.reached_state = AttemptState.STAGED

            outcome = self._execute(attempt)
            report.reached_state = AttemptState.EXECUTED

            outcome.output_digest = digest_post_state(staging_path)
            report.reached_state = AttemptState.FINGERPRINTED

            published = self.publisher.publish(attempt, outcome)
            report.record = published.record
            report.reached_state = AttemptState.PUBLISHED
            logger.info(
                "key=%s attempt=%s published result (success=%s post-hash=%s message=%s)",
                descriptor.key,
                attempt_key,
                published.record.success,
                published.record.post_hash or "<none>",
                published.message_id,
            )
        except TransitionError as error:
            report.failure_class = error.failure_class
            report.error_summary = str(error)
            logger.warning(
                "key=%s attempt=%s rejected after %s (%s): %s",
                descriptor.key,
                attempt_key,
                report.reached_state.value,
                error.failure_class.value,
                error,
            )
        except Exception as error:  # noqa: BLE001
            report.failure_class = FailureClass.UNEXPECTED
            report.error_summary = f"Unexpected error: {error}"
            logger.exception(
                "key=%s attempt=%s unexpected error after %s",
                descriptor.key,
                attempt_key,
                report.reached_state.value,
            )
        finally:
            if staging_path is not None and self.cleanup:
                self.staging.release(staging_path)

        return self._finish(message, report)

    def _accepts(self, descriptor: TaskDescriptor) -> bool:
        return (
            descriptor.spec_version == self.spec_version
            and descriptor.spec_config == self.spec_config
        )

    def _skip(
        self,
        message: InboundMessage,
        report: AttemptReport,
        descriptor: TaskDescriptor,
    ) -> AttemptReport:
        # Misrouted: redelivering would loop forever, so ack without running.
        logger.warning(
            "key=%s received transition for spec %s/%s, but was expecting %s/%s. "
            "Ack, but ignoring actual task.",
            descriptor.key,
            descriptor.spec_version,
            descriptor.spec_config,
            self.spec_version,
            self.spec_config,
        )
        report.state = AttemptState.SKIPPED
        report.decision = Decision.ACK
        self._settle(message, Decision.ACK, report)
        return report

    def _execute(self, attempt: Attempt) -> ExecutionOutcome:
        result = self.backend.run(
            TransitionRunRequest(
                command_template=self.command_template,
                pre_path=attempt.pre_path,
                post_path=attempt.post_path,
                block_paths=attempt.block_paths,
                timeout_seconds=self.timeout_seconds,
                success_exit_codes=self.success_exit_codes,
                shutdown_requested=self.shutdown_requested,
                graceful_shutdown_seconds=self.graceful_shutdown_seconds,
            ),
        )
        self._log_run(attempt, result)
        if result.timed_out:
            raise ExecutionTimeoutError(
                f"Transition exceeded its {self.timeout_seconds}s budget and was terminated.",
            )
        if result.interrupted:
            raise ExecutionInterruptedError(
                "Transition was terminated because the worker is shutting down.",
            )
        return ExecutionOutcome(
            success=result.success,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_seconds=result.duration_seconds,
        )

    def _log_run(self, attempt: Attempt, result: TransitionRunResult) -> None:
        if result.exit_code != 0:
            # Not an attempt failure: the tool may report a failed transition this way.
            logger.info(
                "key=%s attempt=%s transition command exited with status %d (success=%s)",
                attempt.key,
                attempt.attempt_key,
                result.exit_code,
                result.success,
            )
        logger.debug(
            "key=%s attempt=%s\nout:\n%s\nerr:\n%s",
            attempt.key,
            attempt.attempt_key,
            _preview(result.stdout),
            _preview(result.stderr),
        )

    def _finish(self, message: InboundMessage, report: AttemptReport) -> AttemptReport:
        if report.failure_class is None:
            report.state = AttemptState.ACKNOWLEDGED
            report.decision = Decision.ACK
        else:
            report.state = AttemptState.REJECTED
            report.decision = Decision.NACK
        self._settle(message, report.decision, report)
        if report.decision is Decision.ACK:
            logger.info(
                "key=%s attempt=%s successfully processed transition",
                report.key,
                report.attempt_key,
            )
        return report

    def _settle(self, message: InboundMessage, decision: Decision, report: AttemptReport) -> None:
        try:
            if decision is Decision.ACK:
                message.ack()
            else:
                message.nack()
        except SubscriptionError as error:
            # Unsettled deliveries come back after the transport's visibility timeout.
            logger.warning(
                "key=%s attempt=%s could not %s message %s: %s",
                report.key,
                report.attempt_key,
                decision.value,
                message.message_id,
                error,
            )


def _preview(data: bytes, *, limit: int = _PREVIEW_CHARS) -> str:
    text = data.decode("utf-8", errors="replace").strip()
    if len(text) <= limit:
        return text
    return text[:limit]
