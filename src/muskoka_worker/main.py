"""CLI entrypoint for muskoka-worker."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from muskoka_worker import __version__
from muskoka_worker.transitions.controllers import (
    CheckCommand,
    ProcessCommand,
    SettingsOverrides,
    WorkerCliController,
    WorkerRunCommand,
)
from muskoka_worker.transport import ObjectStoreError, ResultSinkError, SubscriptionError

click.rich_click.USE_MARKDOWN = True
WORKER_CONTROLLER = WorkerCliController()

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="muskoka-worker")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level; DEBUG also prints transition stdout/stderr previews.",
)
def muskoka_worker(log_level: str) -> None:
    """Muskoka state-transition worker.

    Pulls transition tasks from the subscription, runs the client's transition
    command on them and publishes one result record per finished attempt.
    Settings come from `MUSKOKA_*` environment variables; flags override them.
    """

    logging.basicConfig(
        level=log_level.upper(),
        format=_LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _settings_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option("--spec-version", default=None, help="Spec version, e.g. v0.8.3."),
        click.option("--spec-config", default=None, help="Spec config, e.g. minimal."),
        click.option("--client-name", default=None, help="Name of the client, e.g. zrnt."),
        click.option(
            "--client-version",
            default=None,
            help="Version of the client, with git commit hash.",
        ),
        click.option("--worker-id", default=None, help="Worker id, part of the subscription id."),
        click.option(
            "--cli-cmd",
            "cli_command",
            default=None,
            help="Transition command; `--pre`, `--post` and block paths are appended.",
        ),
        click.option(
            "--cleanup-tmp/--keep-tmp",
            "cleanup",
            default=None,
            help="Remove staging directories after each attempt.",
        ),
        click.option(
            "--concurrency",
            type=click.IntRange(min=1),
            default=None,
            help="Max transitions running at the same time.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _overrides(params: dict[str, Any]) -> SettingsOverrides:
    return SettingsOverrides(
        spec_version=params["spec_version"],
        spec_config=params["spec_config"],
        client_name=params["client_name"],
        client_version=params["client_version"],
        worker_id=params["worker_id"],
        cli_command=params["cli_command"],
        cleanup=params["cleanup"],
        concurrency=params["concurrency"],
    )


@muskoka_worker.command("run")
@_settings_options
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process one batch and exit, or keep pulling until stopped.",
)
@click.option(
    "--max-messages",
    type=click.IntRange(min=1),
    default=None,
    help="Stop pulling after this many messages.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many consecutive empty polls.",
)
def run_worker(
    once: bool,
    max_messages: int | None,
    max_idle_polls: int | None,
    **params: Any,
) -> None:
    """Run the worker against the configured subscription.

    SIGINT/SIGTERM stop pulling and give running transitions the graceful
    shutdown period to finish.
    """

    try:
        lines = WORKER_CONTROLLER.run_worker(
            WorkerRunCommand(
                overrides=_overrides(params),
                once=once,
                max_messages=max_messages,
                max_idle_polls=max_idle_polls,
            ),
        )
    except (ValueError, ObjectStoreError, SubscriptionError, ResultSinkError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@muskoka_worker.command("process")
@click.argument(
    "message_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@_settings_options
def process_message(message_path: Path, **params: Any) -> None:
    """Run one task message from a JSON file, without a subscription."""

    try:
        result = WORKER_CONTROLLER.process(
            ProcessCommand(message_path=message_path, overrides=_overrides(params)),
        )
    except (ValueError, ObjectStoreError, ResultSinkError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.acknowledged:
        raise click.ClickException("Transition attempt was rejected.")


@muskoka_worker.command("check")
@_settings_options
def check(**params: Any) -> None:
    """Validate settings and check that subscription and results topic exist."""

    try:
        lines = WORKER_CONTROLLER.check(CheckCommand(overrides=_overrides(params)))
    except (ValueError, ObjectStoreError, SubscriptionError, ResultSinkError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    muskoka_worker()
