"""Wire contracts: inbound task messages, outbound result records, object layout."""

from __future__ import annotations

import json
from typing import Any

from muskoka_worker.transitions.errors import DecodeError
from muskoka_worker.transitions.models import ResultRecord, TaskDescriptor

PRE_STATE_NAME = "pre.ssz"
POST_STATE_NAME = "post.ssz"
STDOUT_LOG_NAME = "std_out_log.txt"
STDERR_LOG_NAME = "std_err_log.txt"

POST_STATE_FILE = "post-state"
OUT_LOG_FILE = "out-log"
ERR_LOG_FILE = "err-log"
RESULT_FILE_KINDS: tuple[str, ...] = (POST_STATE_FILE, OUT_LOG_FILE, ERR_LOG_FILE)

_REQUIRED_STRING_FIELDS: tuple[tuple[str, str], ...] = (
    ("key", "key"),
    ("spec-version", "spec_version"),
    ("spec-config", "spec_config"),
)


def decode_task_descriptor(data: bytes | str) -> TaskDescriptor:
    """Parse an inbound message body; raise DecodeError unless it is well formed."""

    try:
        payload = json.loads(data)
    except (ValueError, RecursionError) as error:
        # Also raised for integers past the interpreter digit limit.
        raise DecodeError(f"Task message is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise DecodeError(f"Task message must be a JSON object, got {type(payload).__name__}.")

    blocks = payload.get("blocks")
    # bool is an int subclass; "blocks": true is not a block count.
    if isinstance(blocks, bool) or not isinstance(blocks, int):
        raise DecodeError(f"Task field 'blocks' must be an integer, got {blocks!r}.")
    if blocks < 0:
        raise DecodeError(f"Task field 'blocks' must be >= 0, got {blocks}.")

    values: dict[str, str] = {}
    for wire_name, attr_name in _REQUIRED_STRING_FIELDS:
        value = payload.get(wire_name)
        if not isinstance(value, str) or not value.strip():
            raise DecodeError(f"Task field {wire_name!r} must be a non-empty string.")
        values[attr_name] = value

    _validate_path_segment("key", values["key"])
    _validate_path_segment("spec-version", values["spec_version"])
    _validate_path_segment("spec-config", values["spec_config"])

    return TaskDescriptor(
        key=values["key"],
        blocks=blocks,
        spec_version=values["spec_version"],
        spec_config=values["spec_config"],
    )


def result_record_to_payload(record: ResultRecord) -> dict[str, Any]:
    return {
        "success": record.success,
        "post-hash": record.post_hash,
        "client-name": record.client_name,
        "client-version": record.client_version,
        "key": record.key,
        "files": {
            POST_STATE_FILE: record.files.post_state,
            OUT_LOG_FILE: record.files.out_log,
            ERR_LOG_FILE: record.files.err_log,
        },
        "uploaded": {kind: bool(record.uploaded.get(kind, False)) for kind in RESULT_FILE_KINDS},
    }


def encode_result_record(record: ResultRecord) -> bytes:
    """Serialize a result record as published to the result sink."""

    return json.dumps(result_record_to_payload(record), sort_keys=True).encode("utf-8")


def input_prefix(descriptor: TaskDescriptor) -> str:
    return f"{descriptor.spec_version}/{descriptor.spec_config}/{descriptor.key}"


def input_object_key(descriptor: TaskDescriptor, name: str) -> str:
    """Object key of one input artifact, e.g. ``v0.8.3/minimal/t1/block_0.ssz``."""

    return f"{input_prefix(descriptor)}/{name}"


def result_prefix(
    descriptor: TaskDescriptor,
    *,
    client_name: str,
    client_version: str,
    attempt_key: str,
) -> str:
    """Per-attempt result namespace; distinct attempt keys never share a prefix."""

    return f"{input_prefix(descriptor)}/{client_name}/{client_version}/{attempt_key}"


def _validate_path_segment(field_name: str, value: str) -> None:
    if value in {".", ".."} or any(char in value for char in ("/", "\\", "\x00")):
        raise DecodeError(
            f"Task field {field_name!r} must be a single path segment, got {value!r}.",
        )
