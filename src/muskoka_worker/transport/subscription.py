"""Inbound task subscriptions with explicit ack/nack (local inbox + SQS)."""

from __future__ import annotations

import logging
import os
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_SQS_MAX_BATCH = 10


class SubscriptionError(RuntimeError):
    """Subscription is missing or a receive/ack/nack call failed."""


@dataclass(slots=True)
class InboundMessage:
    """One delivery. Unacknowledged deliveries are redelivered by the transport."""

    message_id: str
    data: bytes
    delivery_attempt: int | None = None
    _ack: Callable[[], None] = field(default=lambda: None, repr=False)
    _nack: Callable[[], None] = field(default=lambda: None, repr=False)

    def ack(self) -> None:
        self._ack()

    def nack(self) -> None:
        self._nack()


class Subscription(Protocol):
    def receive(self, max_messages: int) -> list[InboundMessage]:
        """Return up to ``max_messages`` deliveries (possibly none)."""

    def ensure_exists(self) -> None:
        """Raise SubscriptionError if the subscription cannot be used."""


class DirectorySubscription:
    """Inbox directory of ``*.json`` messages.

    A delivery claims a file by atomic rename to ``*.inflight``. Ack deletes it,
    nack renames it back with its mtime pushed ``nack_backoff_seconds`` into the
    future; ``receive`` skips files whose mtime is still ahead, so a message that
    keeps failing does not starve the rest of the inbox. Claims older than
    ``visibility_timeout_seconds`` are returned to the inbox, so abandoned
    deliveries are redelivered.
    """

    def __init__(
        self,
        inbox: Path,
        *,
        visibility_timeout_seconds: float = 900.0,
        nack_backoff_seconds: float = 10.0,
    ) -> None:
        self.inbox = inbox
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.nack_backoff_seconds = nack_backoff_seconds

    def ensure_exists(self) -> None:
        try:
            self.inbox.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise SubscriptionError(f"Cannot create inbox {self.inbox}: {error}") from error

    def enqueue(self, data: bytes, *, message_id: str | None = None) -> str:
        """Drop a message into the inbox; returns its id."""

        self.ensure_exists()
        message_id = message_id or f"{time.time_ns()}-{secrets.token_hex(4)}"
        tmp_path = self.inbox / f".{message_id}.tmp"
        tmp_path.write_bytes(data)
        os.replace(tmp_path, self.inbox / f"{message_id}.json")
        return message_id

    def receive(self, max_messages: int) -> list[InboundMessage]:
        if max_messages <= 0 or not self.inbox.exists():
            return []
        self._return_expired_claims()

        messages: list[InboundMessage] = []
        now = time.time()
        for path in sorted(self.inbox.glob("*.json")):
            if len(messages) >= max_messages:
                break
            try:
                if path.stat().st_mtime > now:
                    # Nacked recently; still backing off.
                    continue
            except FileNotFoundError:
                continue
            claimed = path.with_name(f"{path.name}.{secrets.token_hex(8)}.inflight")
            try:
                os.rename(path, claimed)
            except FileNotFoundError:
                # Claimed by a concurrent receiver.
                continue
            os.utime(claimed)
            try:
                data = claimed.read_bytes()
            except OSError as error:
                logger.warning("Cannot read claimed inbox message %s: %s", claimed, error)
                _rename_quietly(claimed, path)
                continue
            messages.append(
                InboundMessage(
                    message_id=path.stem,
                    data=data,
                    _ack=_unlink_action(claimed),
                    _nack=_rename_action(claimed, path, self.nack_backoff_seconds),
                ),
            )
        return messages

    def _return_expired_claims(self) -> None:
        if self.visibility_timeout_seconds <= 0:
            return
        cutoff = time.time() - self.visibility_timeout_seconds
        for claimed in self.inbox.glob("*.json.*.inflight"):
            try:
                expired = claimed.stat().st_mtime < cutoff
            except FileNotFoundError:
                continue
            if expired:
                original = claimed.with_name(claimed.name.split(".json.", 1)[0] + ".json")
                logger.info("Returning expired claim %s to inbox", claimed.name)
                _rename_quietly(claimed, original)


def _unlink_action(path: Path) -> Callable[[], None]:
    def _ack() -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as error:
            raise SubscriptionError(f"Cannot ack {path.name}: {error}") from error

    return _ack


def _rename_action(claimed: Path, original: Path, backoff_seconds: float) -> Callable[[], None]:
    def _nack() -> None:
        try:
            if backoff_seconds > 0:
                not_before = time.time() + backoff_seconds
                os.utime(claimed, (not_before, not_before))
            os.rename(claimed, original)
        except FileNotFoundError:
            return
        except OSError as error:
            raise SubscriptionError(f"Cannot nack {claimed.name}: {error}") from error

    return _nack


def _rename_quietly(source: Path, target: Path) -> None:
    try:
        os.rename(source, target)
    except OSError as error:
        logger.warning("Cannot move %s back to inbox: %s", source, error)


class SqsSubscription:
    """SQS queue as subscription: visibility timeout drives redelivery."""

    def __init__(  # noqa: PLR0913
        self,
        queue_name: str,
        *,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        wait_seconds: int = 10,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.queue_name = queue_name
        self.wait_seconds = wait_seconds
        self._queue_url: str | None = None
        if client is None:
            import boto3
            from botocore.config import Config
            from botocore.exceptions import BotoCoreError

            try:
                client = boto3.client(
                    "sqs",
                    region_name=region,
                    endpoint_url=endpoint_url,
                    config=Config(
                        connect_timeout=timeout_seconds,
                        # Long polls hold the connection open for wait_seconds.
                        read_timeout=timeout_seconds + wait_seconds,
                        retries={"max_attempts": 2, "mode": "standard"},
                    ),
                )
            except BotoCoreError as error:
                raise SubscriptionError(f"Cannot create SQS client: {error}") from error
        self._client = client

    @property
    def queue_url(self) -> str:
        if self._queue_url is None:
            self._queue_url = self._resolve_queue_url()
        return self._queue_url

    def ensure_exists(self) -> None:
        self._queue_url = self._resolve_queue_url()

    def _resolve_queue_url(self) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._client.get_queue_url(QueueName=self.queue_name)
        except ClientError as error:
            code = error.response.get("Error", {}).get("Code", "")
            if "NonExistentQueue" in code or "QueueDoesNotExist" in code:
                raise SubscriptionError(
                    f"Subscription {self.queue_name} does not exist. Either the worker was "
                    "misconfigured (try --spec-version, --spec-config, --client-name, "
                    "--worker-id) or a new subscription needs to be created and permissioned.",
                ) from error
            raise SubscriptionError(
                f"Could not check if subscription {self.queue_name} exists: {error}",
            ) from error
        except BotoCoreError as error:
            raise SubscriptionError(
                f"Could not check if subscription {self.queue_name} exists: {error}",
            ) from error
        return response["QueueUrl"]

    def receive(self, max_messages: int) -> list[InboundMessage]:
        from botocore.exceptions import BotoCoreError, ClientError

        if max_messages <= 0:
            return []
        queue_url = self.queue_url
        try:
            response = self._client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=min(max_messages, _SQS_MAX_BATCH),
                WaitTimeSeconds=self.wait_seconds,
                AttributeNames=["ApproximateReceiveCount"],
            )
        except (BotoCoreError, ClientError) as error:
            raise SubscriptionError(f"Failed to receive from {self.queue_name}: {error}") from error

        messages: list[InboundMessage] = []
        for raw in response.get("Messages", []):
            receipt_handle = raw["ReceiptHandle"]
            receive_count = raw.get("Attributes", {}).get("ApproximateReceiveCount")
            messages.append(
                InboundMessage(
                    message_id=raw["MessageId"],
                    data=raw.get("Body", "").encode("utf-8"),
                    delivery_attempt=int(receive_count) if receive_count else None,
                    _ack=self._ack_action(queue_url, receipt_handle),
                    _nack=self._nack_action(queue_url, receipt_handle),
                ),
            )
        return messages

    def _ack_action(self, queue_url: str, receipt_handle: str) -> Callable[[], None]:
        def _ack() -> None:
            from botocore.exceptions import BotoCoreError, ClientError

            try:
                self._client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)
            except (BotoCoreError, ClientError) as error:
                raise SubscriptionError(f"Failed to ack message: {error}") from error

        return _ack

    def _nack_action(self, queue_url: str, receipt_handle: str) -> Callable[[], None]:
        def _nack() -> None:
            from botocore.exceptions import BotoCoreError, ClientError

            try:
                self._client.change_message_visibility(
                    QueueUrl=queue_url,
                    ReceiptHandle=receipt_handle,
                    VisibilityTimeout=0,
                )
            except (BotoCoreError, ClientError) as error:
                raise SubscriptionError(f"Failed to nack message: {error}") from error

        return _nack
