from __future__ import annotations

import sys
import time
from pathlib import Path

import allure
import pytest
from conftest import COPY_AGENT_COMMAND

from muskoka_worker.transitions.backend import CliTransitionBackend, TransitionRunRequest
from muskoka_worker.transitions.backend.cli_backend import _build_run_args
from muskoka_worker.transitions.errors import LaunchError

pytestmark = [
    allure.epic("Transition Worker"),
    allure.feature("Transition Command Execution"),
]


def _staged(tmp_path: Path, blocks: int = 2) -> tuple[Path, Path, list[Path]]:
    pre_path = tmp_path / "pre.ssz"
    pre_path.write_bytes(b"pre-state")
    block_paths = []
    for index in range(blocks):
        block_path = tmp_path / f"block_{index}.ssz"
        block_path.write_bytes(f"block {index}".encode())
        block_paths.append(block_path)
    return pre_path, tmp_path / "post.ssz", block_paths


def test_build_run_args_appends_pre_post_and_blocks_in_order() -> None:
    run_args = _build_run_args(
        command_template="zcli transition blocks",
        pre_path=Path("/s/pre.ssz"),
        post_path=Path("/s/post.ssz"),
        block_paths=[Path("/s/block_0.ssz"), Path("/s/block_1.ssz")],
    )

    assert run_args == [
        "zcli",
        "transition",
        "blocks",
        "--pre",
        "/s/pre.ssz",
        "--post",
        "/s/post.ssz",
        "/s/block_0.ssz",
        "/s/block_1.ssz",
    ]


def test_build_run_args_keeps_quoted_arguments_together() -> None:
    run_args = _build_run_args(
        command_template='runner --label "two words"',
        pre_path=Path("pre.ssz"),
        post_path=Path("post.ssz"),
        block_paths=[],
    )

    assert run_args[:3] == ["runner", "--label", "two words"]
    assert run_args[3:] == ["--pre", "pre.ssz", "--post", "post.ssz"]


@pytest.mark.parametrize("template", ["", "   ", 'runner "unterminated'])
def test_build_run_args_rejects_unusable_templates(template: str) -> None:
    with pytest.raises(LaunchError):
        _build_run_args(
            command_template=template,
            pre_path=Path("pre.ssz"),
            post_path=Path("post.ssz"),
            block_paths=[],
        )


def test_run_captures_output_and_reports_success(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template=COPY_AGENT_COMMAND,
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
            timeout_seconds=60,
        ),
    )

    assert result.exit_code == 0
    assert result.success is True
    assert result.timed_out is False
    assert post_path.read_bytes() == b"pre-state"
    assert result.stdout.decode().splitlines() == [
        "applied 2 blocks",
        "block block_0.ssz",
        "block block_1.ssz",
    ]
    assert result.stderr == b""


def test_run_treats_nonzero_exit_as_completed_failed_transition(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template=f"{COPY_AGENT_COMMAND} --exit-code 1 --stderr invalid-block",
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
        ),
    )

    assert result.exit_code == 1
    assert result.success is False
    assert result.timed_out is False
    assert b"invalid-block" in result.stderr


def test_run_honors_custom_success_exit_codes(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template=f"{COPY_AGENT_COMMAND} --exit-code 3",
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
            success_exit_codes=(0, 3),
        ),
    )

    assert result.exit_code == 3
    assert result.success is True


def test_run_raises_launch_error_for_missing_program(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)

    with pytest.raises(LaunchError, match="not found"):
        CliTransitionBackend().run(
            TransitionRunRequest(
                command_template=str(tmp_path / "no-such-transition-tool"),
                pre_path=pre_path,
                post_path=post_path,
                block_paths=block_paths,
            ),
        )


def test_run_terminates_command_after_timeout(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template=f"{COPY_AGENT_COMMAND} --sleep 30",
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
            timeout_seconds=1,
        ),
    )

    assert result.timed_out is True
    assert result.success is False
    assert result.exit_code == 124
    assert result.duration_seconds < 20
    assert not post_path.exists()


def test_run_interrupts_command_when_shutdown_grace_expires(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template=f"{sys.executable} -c 'import time; time.sleep(30)'",
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
            shutdown_requested=lambda: True,
            graceful_shutdown_seconds=0,
        ),
    )

    assert result.interrupted is True
    assert result.timed_out is False
    assert result.success is False


def test_timeout_also_stops_background_children_holding_the_pipes(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)
    started = time.monotonic()

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template="sh -c 'sleep 15 & sleep 15'",
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
            timeout_seconds=1,
        ),
    )

    assert result.timed_out is True
    assert result.exit_code == 124
    assert time.monotonic() - started < 8


def test_shutdown_grace_also_stops_background_children(tmp_path: Path) -> None:
    pre_path, post_path, block_paths = _staged(tmp_path)
    started = time.monotonic()

    result = CliTransitionBackend().run(
        TransitionRunRequest(
            command_template="sh -c 'sleep 15 & sleep 15'",
            pre_path=pre_path,
            post_path=post_path,
            block_paths=block_paths,
            shutdown_requested=lambda: True,
            graceful_shutdown_seconds=0,
        ),
    )

    assert result.interrupted is True
    assert time.monotonic() - started < 8
