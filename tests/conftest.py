"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import sys
import threading
from pathlib import Path

import pytest

from muskoka_worker.transitions.backend import CliTransitionBackend
from muskoka_worker.transitions.coordinator import TaskCoordinator
from muskoka_worker.transitions.inputs import InputMaterializer
from muskoka_worker.transitions.publisher import ResultPublisher
from muskoka_worker.transitions.workdir import StagingDirectoryManager
from muskoka_worker.transport import InboundMessage, ObjectStoreError, ResultSinkError

COPY_AGENT_COMMAND = f"{sys.executable} -m muskoka_worker.transitions.backend.copy_agent"

SPEC_VERSION = "v0.8.3"
SPEC_CONFIG = "minimal"
CLIENT_NAME = "zrnt"
CLIENT_VERSION = "v0.1.2_1a2b3c4"


class MemoryObjectStore:
    """Object store kept in a dict; records every call in order."""

    def __init__(
        self,
        objects: dict[str, bytes] | None = None,
        *,
        fail_uploads: set[str] | None = None,
    ) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.fail_uploads = fail_uploads or set()
        self.downloads: list[str] = []
        self.uploads: list[str] = []
        self._lock = threading.Lock()

    def download(self, key: str, destination: Path) -> None:
        with self._lock:
            self.downloads.append(key)
        if key not in self.objects:
            raise ObjectStoreError(f"object not found: {key}", key=key, not_found=True)
        destination.write_bytes(self.objects[key])

    def upload_file(self, key: str, path: Path) -> str:
        return self.upload_bytes(key, path.read_bytes())

    def upload_bytes(self, key: str, data: bytes) -> str:
        name = key.rsplit("/", 1)[-1]
        if name in self.fail_uploads:
            raise ObjectStoreError(f"upload refused: {key}", key=key)
        with self._lock:
            self.uploads.append(key)
            self.objects[key] = data
        return self.url_for(key)

    def url_for(self, key: str) -> str:
        return f"mem://results/{key}"


class RecordingSink:
    """Result sink that keeps published payloads; optionally fails every publish."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[dict, dict[str, str]]] = []
        self._lock = threading.Lock()

    def ensure_exists(self) -> None:
        if self.fail:
            raise ResultSinkError("topic missing")

    def publish(self, data: bytes, attributes: dict[str, str] | None = None) -> str:
        if self.fail:
            raise ResultSinkError("publish refused")
        with self._lock:
            self.published.append((json.loads(data), dict(attributes or {})))
            return f"msg-{len(self.published)}"

    @property
    def payloads(self) -> list[dict]:
        return [payload for payload, _ in self.published]


class FakeMessage(InboundMessage):
    """Inbound message that remembers how it was settled."""

    def __init__(self, data: bytes, *, message_id: str = "m-1") -> None:
        super().__init__(message_id=message_id, data=data)
        self.settled: list[str] = []

    def ack(self) -> None:
        self.settled.append("ack")

    def nack(self) -> None:
        self.settled.append("nack")


def task_bytes(
    key: str = "t1",
    *,
    blocks: int = 2,
    spec_version: str = SPEC_VERSION,
    spec_config: str = SPEC_CONFIG,
) -> bytes:
    return json.dumps(
        {
            "blocks": blocks,
            "spec-version": spec_version,
            "spec-config": spec_config,
            "key": key,
        },
    ).encode("utf-8")


def seeded_inputs(key: str = "t1", *, blocks: int = 2) -> dict[str, bytes]:
    prefix = f"{SPEC_VERSION}/{SPEC_CONFIG}/{key}"
    objects = {f"{prefix}/pre.ssz": b"pre-state:" + key.encode("utf-8")}
    for index in range(blocks):
        objects[f"{prefix}/block_{index}.ssz"] = f"block {index}".encode()
    return objects


@pytest.fixture()
def staging_root(tmp_path: Path) -> Path:
    root = tmp_path / "staging"
    root.mkdir()
    return root


@pytest.fixture()
def make_coordinator(staging_root: Path):
    """Factory for a coordinator wired to in-memory stores and the copy agent."""

    def _make(  # noqa: PLR0913
        *,
        inputs: MemoryObjectStore | None = None,
        results: MemoryObjectStore | None = None,
        sink: RecordingSink | None = None,
        command: str = COPY_AGENT_COMMAND,
        timeout_seconds: int = 60,
        success_exit_codes: tuple[int, ...] = (0,),
        cleanup: bool = True,
        backend=None,
        shutdown_requested=None,
    ) -> TaskCoordinator:
        return TaskCoordinator(
            staging=StagingDirectoryManager(staging_root),
            materializer=InputMaterializer(inputs or MemoryObjectStore(seeded_inputs())),
            backend=backend or CliTransitionBackend(),
            publisher=ResultPublisher(
                store=results if results is not None else MemoryObjectStore(),
                sink=sink if sink is not None else RecordingSink(),
                client_name=CLIENT_NAME,
                client_version=CLIENT_VERSION,
            ),
            spec_version=SPEC_VERSION,
            spec_config=SPEC_CONFIG,
            command_template=command,
            timeout_seconds=timeout_seconds,
            success_exit_codes=success_exit_codes,
            cleanup=cleanup,
            graceful_shutdown_seconds=1,
            shutdown_requested=shutdown_requested,
        )

    return _make


@pytest.fixture()
def clean_env(monkeypatch):
    """Drop any MUSKOKA_* variables inherited from the developer shell."""

    for name in list(os.environ):
        if name.startswith("MUSKOKA_"):
            monkeypatch.delenv(name, raising=False)
