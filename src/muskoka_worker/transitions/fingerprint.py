"""Content digests of transition output, for cheap cross-client comparison."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from muskoka_worker.transitions.contracts import POST_STATE_NAME

logger = logging.getLogger(__name__)

_CHUNK_BYTES = 1024 * 1024


def digest_file(path: Path) -> bytes | None:
    """SHA-256 of the file bytes, or None if the file cannot be read."""

    hasher = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_BYTES), b""):
                hasher.update(chunk)
    except OSError as error:
        logger.info("No digest for %s: %s", path, error)
        return None
    return hasher.digest()


def digest_post_state(staging_path: Path) -> bytes | None:
    return digest_file(staging_path / POST_STATE_NAME)


def format_post_hash(digest: bytes | None) -> str:
    """``0x``-prefixed hex, or an empty string when there is no output to hash."""

    if digest is None:
        return ""
    return "0x" + digest.hex()
