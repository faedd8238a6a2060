"""Download a task's input artifacts into its staging directory."""

from __future__ import annotations

import logging
from pathlib import Path

from muskoka_worker.transitions.contracts import input_object_key
from muskoka_worker.transitions.errors import FetchError
from muskoka_worker.transitions.models import TaskDescriptor
from muskoka_worker.transport.storage import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)


class InputMaterializer:
    """Fetches ``pre.ssz`` and ``block_0.ssz .. block_{n-1}.ssz`` in order.

    Stops at the first failure; no retry here, the message is redelivered instead.
    Partially written files are left for the staging cleanup.
    """

    def __init__(self, store: ObjectStore) -> None:
        self.store = store

    def materialize(self, descriptor: TaskDescriptor, staging_path: Path) -> list[Path]:
        fetched: list[Path] = []
        for name in descriptor.input_names:
            object_key = input_object_key(descriptor, name)
            destination = staging_path / name
            try:
                self.store.download(object_key, destination)
            except ObjectStoreError as error:
                raise FetchError(
                    f"Failed to load {name} for spec version {descriptor.spec_version} "
                    f"task {descriptor.key}: {error}",
                    artifact=name,
                    object_key=object_key,
                ) from error
            fetched.append(destination)
        logger.debug("key=%s fetched %d input artifacts", descriptor.key, len(fetched))
        return fetched
