"""Upload transition output and logs, then emit the result record."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from muskoka_worker.transitions.contracts import (
    ERR_LOG_FILE,
    OUT_LOG_FILE,
    POST_STATE_FILE,
    POST_STATE_NAME,
    STDERR_LOG_NAME,
    STDOUT_LOG_NAME,
    encode_result_record,
    result_prefix,
)
from muskoka_worker.transitions.errors import PublishError
from muskoka_worker.transitions.fingerprint import format_post_hash
from muskoka_worker.transitions.models import Attempt, ExecutionOutcome, ResultFiles, ResultRecord
from muskoka_worker.transport.sink import ResultSink, ResultSinkError
from muskoka_worker.transport.storage import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PublishOutcome:
    record: ResultRecord
    message_id: str


class ResultPublisher:
    """Best-effort uploads of three artifacts, then exactly one record emission."""

    def __init__(
        self,
        *,
        store: ObjectStore,
        sink: ResultSink,
        client_name: str,
        client_version: str,
    ) -> None:
        self.store = store
        self.sink = sink
        self.client_name = client_name
        self.client_version = client_version

    def result_keys(self, attempt: Attempt) -> dict[str, str]:
        """Object keys per result file kind, unique per attempt."""

        prefix = result_prefix(
            attempt.descriptor,
            client_name=self.client_name,
            client_version=self.client_version,
            attempt_key=attempt.attempt_key,
        )
        return {
            POST_STATE_FILE: f"{prefix}/{POST_STATE_NAME}",
            OUT_LOG_FILE: f"{prefix}/{STDOUT_LOG_NAME}",
            ERR_LOG_FILE: f"{prefix}/{STDERR_LOG_NAME}",
        }

    def publish(self, attempt: Attempt, outcome: ExecutionOutcome) -> PublishOutcome:
        keys = self.result_keys(attempt)
        uploaded = {
            POST_STATE_FILE: self._upload_post_state(attempt, keys[POST_STATE_FILE]),
            OUT_LOG_FILE: self._upload_bytes(attempt, keys[OUT_LOG_FILE], outcome.stdout),
            ERR_LOG_FILE: self._upload_bytes(attempt, keys[ERR_LOG_FILE], outcome.stderr),
        }
        record = ResultRecord(
            key=attempt.key,
            success=outcome.success,
            post_hash=format_post_hash(outcome.output_digest),
            client_name=self.client_name,
            client_version=self.client_version,
            files=ResultFiles(
                post_state=self.store.url_for(keys[POST_STATE_FILE]),
                out_log=self.store.url_for(keys[OUT_LOG_FILE]),
                err_log=self.store.url_for(keys[ERR_LOG_FILE]),
            ),
            uploaded=uploaded,
        )

        try:
            payload = encode_result_record(record)
            message_id = self.sink.publish(
                payload,
                attributes={"key": attempt.key, "attempt-key": attempt.attempt_key},
            )
        except (ResultSinkError, TypeError, ValueError) as error:
            raise PublishError(f"Failed to publish result record: {error}") from error
        return PublishOutcome(record=record, message_id=message_id)

    def _upload_post_state(self, attempt: Attempt, object_key: str) -> bool:
        if not attempt.post_path.is_file():
            logger.info(
                "key=%s attempt=%s no post state to upload",
                attempt.key,
                attempt.attempt_key,
            )
            return False
        try:
            self.store.upload_file(object_key, attempt.post_path)
        except ObjectStoreError as error:
            logger.warning(
                "key=%s attempt=%s could not upload post-state: %s",
                attempt.key,
                attempt.attempt_key,
                error,
            )
            return False
        return True

    def _upload_bytes(self, attempt: Attempt, object_key: str, data: bytes) -> bool:
        try:
            self.store.upload_bytes(object_key, data)
        except ObjectStoreError as error:
            logger.warning(
                "key=%s attempt=%s could not upload %s: %s",
                attempt.key,
                attempt.attempt_key,
                object_key.rsplit("/", 1)[-1],
                error,
            )
            return False
        return True
