from __future__ import annotations

import hashlib
from pathlib import Path

import allure
import pytest
from conftest import SPEC_CONFIG, SPEC_VERSION, MemoryObjectStore, seeded_inputs

from muskoka_worker.transitions.errors import FetchError
from muskoka_worker.transitions.fingerprint import digest_file, digest_post_state, format_post_hash
from muskoka_worker.transitions.inputs import InputMaterializer
from muskoka_worker.transitions.models import FailureClass, TaskDescriptor

pytestmark = [
    allure.epic("Transition Worker"),
    allure.feature("Inputs & Fingerprints"),
]


def _descriptor(blocks: int) -> TaskDescriptor:
    return TaskDescriptor(key="t1", blocks=blocks, spec_version=SPEC_VERSION, spec_config=SPEC_CONFIG)


def test_materialize_fetches_pre_state_then_blocks_in_order(tmp_path: Path) -> None:
    store = MemoryObjectStore(seeded_inputs(blocks=3))

    fetched = InputMaterializer(store).materialize(_descriptor(3), tmp_path)

    prefix = f"{SPEC_VERSION}/{SPEC_CONFIG}/t1"
    assert store.downloads == [
        f"{prefix}/pre.ssz",
        f"{prefix}/block_0.ssz",
        f"{prefix}/block_1.ssz",
        f"{prefix}/block_2.ssz",
    ]
    assert fetched == [
        tmp_path / "pre.ssz",
        tmp_path / "block_0.ssz",
        tmp_path / "block_1.ssz",
        tmp_path / "block_2.ssz",
    ]
    assert (tmp_path / "block_2.ssz").read_bytes() == b"block 2"


def test_materialize_with_zero_blocks_fetches_only_pre_state(tmp_path: Path) -> None:
    store = MemoryObjectStore(seeded_inputs(blocks=0))

    fetched = InputMaterializer(store).materialize(_descriptor(0), tmp_path)

    assert fetched == [tmp_path / "pre.ssz"]
    assert len(store.downloads) == 1


def test_materialize_stops_at_first_missing_artifact(tmp_path: Path) -> None:
    objects = seeded_inputs(blocks=3)
    del objects[f"{SPEC_VERSION}/{SPEC_CONFIG}/t1/block_1.ssz"]
    store = MemoryObjectStore(objects)

    with pytest.raises(FetchError, match="block_1.ssz") as error_info:
        InputMaterializer(store).materialize(_descriptor(3), tmp_path)

    assert error_info.value.artifact == "block_1.ssz"
    assert error_info.value.object_key == f"{SPEC_VERSION}/{SPEC_CONFIG}/t1/block_1.ssz"
    assert error_info.value.failure_class is FailureClass.FETCH_ERROR
    assert len(store.downloads) == 3
    assert not (tmp_path / "block_2.ssz").exists()


def test_digest_is_sha256_of_post_state(tmp_path: Path) -> None:
    (tmp_path / "post.ssz").write_bytes(b"state bytes")

    digest = digest_post_state(tmp_path)

    assert digest == hashlib.sha256(b"state bytes").digest()
    assert digest_post_state(tmp_path) == digest
    assert format_post_hash(digest) == "0x" + hashlib.sha256(b"state bytes").hexdigest()


def test_digest_of_missing_output_is_absent(tmp_path: Path) -> None:
    assert digest_post_state(tmp_path) is None
    assert digest_file(tmp_path / "nope") is None
    assert format_post_hash(None) == ""


def test_digest_of_empty_output_is_hash_of_empty_input(tmp_path: Path) -> None:
    (tmp_path / "post.ssz").write_bytes(b"")

    assert format_post_hash(digest_post_state(tmp_path)) == (
        "0xe3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
