from __future__ import annotations

import json

import allure
import pytest

from muskoka_worker.transitions.contracts import (
    decode_task_descriptor,
    encode_result_record,
    input_object_key,
    result_prefix,
)
from muskoka_worker.transitions.errors import DecodeError
from muskoka_worker.transitions.models import FailureClass, ResultFiles, ResultRecord, TaskDescriptor

pytestmark = [
    allure.epic("Transition Worker"),
    allure.feature("Wire Contracts"),
]


def test_decode_task_descriptor_reads_wire_field_names() -> None:
    descriptor = decode_task_descriptor(
        b'{"blocks": 3, "spec-version": "v0.8.3", "spec-config": "minimal", "key": "t1"}',
    )

    assert descriptor == TaskDescriptor(
        key="t1",
        blocks=3,
        spec_version="v0.8.3",
        spec_config="minimal",
    )
    assert descriptor.input_names == ["pre.ssz", "block_0.ssz", "block_1.ssz", "block_2.ssz"]


def test_decode_task_descriptor_ignores_unknown_fields() -> None:
    descriptor = decode_task_descriptor(
        json.dumps(
            {
                "blocks": 0,
                "spec-version": "v0.8.3",
                "spec-config": "mainnet",
                "key": "empty",
                "extra": {"nested": True},
            },
        ),
    )

    assert descriptor.blocks == 0
    assert descriptor.input_names == ["pre.ssz"]


@pytest.mark.parametrize(
    ("body", "match"),
    [
        (b"not json", "not valid JSON"),
        (b"\xff\xfe", "not valid JSON"),
        (b"[1, 2]", "JSON object"),
        (b'{"spec-version": "v", "spec-config": "c", "key": "k"}', "'blocks'"),
        (b'{"blocks": "2", "spec-version": "v", "spec-config": "c", "key": "k"}', "'blocks'"),
        (b'{"blocks": true, "spec-version": "v", "spec-config": "c", "key": "k"}', "'blocks'"),
        (b'{"blocks": -1, "spec-version": "v", "spec-config": "c", "key": "k"}', ">= 0"),
        (b'{"blocks": 1, "spec-config": "c", "key": "k"}', "'spec-version'"),
        (b'{"blocks": 1, "spec-version": "v", "spec-config": "", "key": "k"}', "'spec-config'"),
        (b'{"blocks": 1, "spec-version": "v", "spec-config": "c", "key": 7}', "'key'"),
        (b'{"blocks": 1, "spec-version": "v", "spec-config": "c", "key": "../x"}', "path segment"),
        (b'{"blocks": 1, "spec-version": "v", "spec-config": "c", "key": ".."}', "path segment"),
        (b'{"blocks": 1, "spec-version": "a/b", "spec-config": "c", "key": "k"}', "path segment"),
    ],
)
def test_decode_task_descriptor_rejects_malformed_messages(body: bytes, match: str) -> None:
    with pytest.raises(DecodeError, match=match) as error_info:
        decode_task_descriptor(body)

    assert error_info.value.failure_class is FailureClass.DECODE_ERROR


@pytest.mark.parametrize(
    "body",
    [
        b'{"blocks": ' + b"9" * 5000 + b', "spec-version": "v", "spec-config": "c", "key": "k"}',
        b"[" * 100_000 + b"]" * 100_000,
    ],
    ids=["integer-past-digit-limit", "nesting-past-recursion-limit"],
)
def test_decode_task_descriptor_rejects_pathological_json(body: bytes) -> None:
    with pytest.raises(DecodeError, match="not valid JSON"):
        decode_task_descriptor(body)


def test_result_record_payload_uses_wire_field_names() -> None:
    record = ResultRecord(
        key="t1",
        success=True,
        post_hash="0xabc",
        client_name="zrnt",
        client_version="v1",
        files=ResultFiles(post_state="u/post", out_log="u/out", err_log="u/err"),
        uploaded={"post-state": True, "out-log": True},
    )

    payload = json.loads(encode_result_record(record))

    assert payload == {
        "success": True,
        "post-hash": "0xabc",
        "client-name": "zrnt",
        "client-version": "v1",
        "key": "t1",
        "files": {"post-state": "u/post", "out-log": "u/out", "err-log": "u/err"},
        "uploaded": {"post-state": True, "out-log": True, "err-log": False},
    }


def test_object_key_layout() -> None:
    descriptor = TaskDescriptor(key="t1", blocks=2, spec_version="v0.8.3", spec_config="minimal")

    assert input_object_key(descriptor, "block_1.ssz") == "v0.8.3/minimal/t1/block_1.ssz"
    assert (
        result_prefix(descriptor, client_name="zrnt", client_version="v1", attempt_key="a1")
        == "v0.8.3/minimal/t1/zrnt/v1/a1"
    )
    assert result_prefix(
        descriptor,
        client_name="zrnt",
        client_version="v1",
        attempt_key="a1",
    ) != result_prefix(descriptor, client_name="zrnt", client_version="v1", attempt_key="a2")
