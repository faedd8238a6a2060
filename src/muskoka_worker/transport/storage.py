"""Object-store adapters for transition inputs and results (local + S3)."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any, Protocol

_COPY_CHUNK_BYTES = 1024 * 1024


class ObjectStoreError(RuntimeError):
    """Object could not be read or written."""

    def __init__(self, message: str, *, key: str, not_found: bool = False) -> None:
        super().__init__(message)
        self.key = key
        self.not_found = not_found


class ObjectStore(Protocol):
    def download(self, key: str, destination: Path) -> None:
        """Stream the object into ``destination``."""

    def upload_file(self, key: str, path: Path) -> str:
        """Upload a local file; return the object URL."""

    def upload_bytes(self, key: str, data: bytes) -> str:
        """Upload an in-memory payload; return the object URL."""

    def url_for(self, key: str) -> str:
        """URL under which the object is (or will be) retrievable."""


class LocalObjectStore:
    """Keys map to files under ``root``; used for local runs and tests."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _full_path(self, key: str) -> Path:
        return self.root / key.lstrip("/")

    def download(self, key: str, destination: Path) -> None:
        source = self._full_path(key)
        try:
            with source.open("rb") as reader, destination.open("wb") as writer:
                shutil.copyfileobj(reader, writer, _COPY_CHUNK_BYTES)
        except FileNotFoundError as error:
            raise ObjectStoreError(
                f"Object not found: {key}",
                key=key,
                not_found=not source.exists(),
            ) from error
        except OSError as error:
            raise ObjectStoreError(f"Failed to read object {key}: {error}", key=key) from error

    def upload_file(self, key: str, path: Path) -> str:
        target = self._full_path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target.with_suffix(target.suffix + ".tmp")
            shutil.copyfile(path, tmp_path)
            os.replace(tmp_path, target)
        except OSError as error:
            raise ObjectStoreError(f"Failed to write object {key}: {error}", key=key) from error
        return self.url_for(key)

    def upload_bytes(self, key: str, data: bytes) -> str:
        target = self._full_path(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = target.with_suffix(target.suffix + ".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, target)
        except OSError as error:
            raise ObjectStoreError(f"Failed to write object {key}: {error}", key=key) from error
        return self.url_for(key)

    def url_for(self, key: str) -> str:
        return self._full_path(key).resolve().as_uri()


class S3ObjectStore:
    """S3 bucket adapter; each call is bounded by the client's connect/read timeouts."""

    def __init__(  # noqa: PLR0913
        self,
        bucket: str,
        *,
        client: Any | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
        timeout_seconds: float = 10.0,
        public_base_url: str = "https://s3.amazonaws.com",
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        if client is None:
            import boto3
            from botocore.config import Config
            from botocore.exceptions import BotoCoreError

            try:
                client = boto3.client(
                    "s3",
                    region_name=region,
                    endpoint_url=endpoint_url,
                    config=Config(
                        connect_timeout=timeout_seconds,
                        read_timeout=timeout_seconds,
                        retries={"max_attempts": 2, "mode": "standard"},
                    ),
                )
            except BotoCoreError as error:
                raise ObjectStoreError(f"Cannot create S3 client: {error}", key="") from error
        self._client = client

    def download(self, key: str, destination: Path) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                with destination.open("wb") as writer:
                    shutil.copyfileobj(body, writer, _COPY_CHUNK_BYTES)
            finally:
                body.close()
        except ClientError as error:
            code = error.response.get("Error", {}).get("Code")
            raise ObjectStoreError(
                f"Failed to download s3://{self.bucket}/{key}: {code or error}",
                key=key,
                not_found=code in {"NoSuchKey", "404", "NotFound"},
            ) from error
        except (BotoCoreError, OSError) as error:
            raise ObjectStoreError(
                f"Failed to download s3://{self.bucket}/{key}: {error}",
                key=key,
            ) from error

    def upload_file(self, key: str, path: Path) -> str:
        try:
            with path.open("rb") as handle:
                return self._put(key, handle)
        except OSError as error:
            raise ObjectStoreError(f"Cannot read {path} for upload: {error}", key=key) from error

    def upload_bytes(self, key: str, data: bytes) -> str:
        return self._put(key, data)

    def _put(self, key: str, body: Any) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=body)
        except (BotoCoreError, ClientError) as error:
            raise ObjectStoreError(
                f"Failed to upload s3://{self.bucket}/{key}: {error}",
                key=key,
            ) from error
        return self.url_for(key)

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{key}"
