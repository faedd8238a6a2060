"""Result sinks: where result records are published (local files + SNS)."""

from __future__ import annotations

import json
import os
import secrets
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol


class ResultSinkError(RuntimeError):
    """Result topic is missing or a publish call failed."""


class ResultSink(Protocol):
    def publish(self, data: bytes, attributes: dict[str, str] | None = None) -> str:
        """Emit one record; return the transport message id."""

    def ensure_exists(self) -> None:
        """Raise ResultSinkError if the topic cannot be used."""


class FileResultSink:
    """Writes one JSON envelope per published record under ``root/topic``."""

    def __init__(self, root: Path, topic: str) -> None:
        self.root = root
        self.topic = topic

    @property
    def topic_dir(self) -> Path:
        return self.root / self.topic

    def ensure_exists(self) -> None:
        try:
            self.topic_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise ResultSinkError(f"Cannot create topic dir {self.topic_dir}: {error}") from error

    def publish(self, data: bytes, attributes: dict[str, str] | None = None) -> str:
        message_id = f"{time.time_ns()}-{secrets.token_hex(4)}"
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as error:
            raise ResultSinkError(f"Result payload is not JSON: {error}") from error
        envelope = {
            "topic": self.topic,
            "message_id": message_id,
            "published_at_utc": datetime.now(tz=UTC).isoformat(),
            "attributes": attributes or {},
            "payload": payload,
        }
        path = self.topic_dir / f"{message_id}.json"
        try:
            self.topic_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(envelope, sort_keys=True) + "\n", encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as error:
            raise ResultSinkError(f"Failed to publish to {self.topic}: {error}") from error
        return message_id

    def read_payloads(self) -> list[dict[str, Any]]:
        """Published payloads in publish order."""

        if not self.topic_dir.exists():
            return []
        envelopes = [
            json.loads(path.read_text("utf-8")) for path in sorted(self.topic_dir.glob("*.json"))
        ]
        return [envelope["payload"] for envelope in envelopes]


class SnsResultSink:
    """SNS topic, resolved by name; every publish is bounded by the client timeouts."""

    def __init__(  # noqa: PLR0913
        self,
        topic_name: str,
        *,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.topic_name = topic_name
        self._topic_arn: str | None = None
        if client is None:
            import boto3
            from botocore.config import Config
            from botocore.exceptions import BotoCoreError

            try:
                client = boto3.client(
                    "sns",
                    region_name=region,
                    endpoint_url=endpoint_url,
                    config=Config(
                        connect_timeout=timeout_seconds,
                        read_timeout=timeout_seconds,
                        retries={"max_attempts": 2, "mode": "standard"},
                    ),
                )
            except BotoCoreError as error:
                raise ResultSinkError(f"Cannot create SNS client: {error}") from error
        self._client = client

    @property
    def topic_arn(self) -> str:
        if self._topic_arn is None:
            self._topic_arn = self._resolve_topic_arn()
        return self._topic_arn

    def ensure_exists(self) -> None:
        self._topic_arn = self._resolve_topic_arn()

    def _resolve_topic_arn(self) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        suffix = f":{self.topic_name}"
        try:
            paginator = self._client.get_paginator("list_topics")
            for page in paginator.paginate():
                for topic in page.get("Topics", []):
                    arn = topic.get("TopicArn", "")
                    if arn.endswith(suffix):
                        return arn
        except (BotoCoreError, ClientError) as error:
            raise ResultSinkError(
                f"Could not check if results topic {self.topic_name} exists: {error}",
            ) from error
        raise ResultSinkError(
            f"Cannot recognize provided options to find results topic: {self.topic_name}",
        )

    def publish(self, data: bytes, attributes: dict[str, str] | None = None) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        kwargs: dict[str, Any] = {
            "TopicArn": self.topic_arn,
            "Message": data.decode("utf-8"),
        }
        if attributes:
            kwargs["MessageAttributes"] = {
                name: {"DataType": "String", "StringValue": value}
                for name, value in attributes.items()
            }
        try:
            response = self._client.publish(**kwargs)
        except (BotoCoreError, ClientError) as error:
            raise ResultSinkError(f"Failed to publish to {self.topic_name}: {error}") from error
        return str(response.get("MessageId", ""))
