"""Command-line interface for commit-patch.

Commands:
- commit-patch [PATCH]: commit exactly the changes in a patch file (or stdin)
- commit-partial [FILE ...]: edit the working tree diff, then commit it

Both are also reachable through ``main()``, which picks the mode from the
name the program was invoked as.
"""

from __future__ import annotations

import dataclasses
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from . import __version__
from .authoring import PatchHistory, author_patch
from .backends import Repository, detect
from .config import CommitPatchConfig, load_config
from .errors import CommitPatchError, Interrupted, RemainderReapplyFailure
from .orchestrator import run_transaction
from .process import ENCODING, ERRORS, ProcessRunner
from .telemetry import TelemetrySink
from .types import CommitMessage, CommitResult


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except Interrupted as exc:
        click.echo(f"commit-patch: {exc}", err=True)
        sys.exit(128 + exc.signum)
    except CommitPatchError as exc:
        raise click.ClickException(str(exc)) from exc


def _prepare(
    cwd: Path, config_file: str | None
) -> tuple[Repository, CommitPatchConfig, TelemetrySink]:
    repo = detect(cwd)
    config = load_config(repo.root, config_file)

    if repo.backend.native_index and not config.git.use_index:
        repo = Repository(
            backend=dataclasses.replace(repo.backend, native_index=False), root=repo.root
        )

    return repo, config, TelemetrySink.from_config(config.telemetry)


def _read_patch(patch_file: str | None) -> str:
    if patch_file is None or patch_file == "-":
        data = sys.stdin.buffer.read()
    else:
        data = Path(patch_file).read_bytes()
    return data.decode(ENCODING, errors=ERRORS)


def _report(result: CommitResult, dry_run: bool) -> None:
    frags = result.fragments
    summary = (
        f"{len(frags)} file(s): {len(frags.added)} added, "
        f"{len(frags.removed)} removed, {len(frags.modified)} modified"
    )
    if dry_run:
        click.echo(f"Dry run, nothing changed ({summary})", err=True)
        return
    click.echo(f"Committed {summary}", err=True)
    if result.remainder_reapplied:
        click.echo("Uncommitted changes restored to the working tree", err=True)


_common_options = [
    click.option("--amend", is_flag=True, help="Amend the previous commit instead of creating a new one."),
    click.option("-v", "--verbose", is_flag=True, help="Echo every external command before running it."),
    click.option("-n", "--dry-run", is_flag=True, help="Echo what would change without changing anything."),
    click.option("--config", "-c", "config_file", type=click.Path(exists=True, dir_okay=False), help="Config file path"),
]


def common_options(f):
    for option in reversed(_common_options):
        f = option(f)
    return f


@click.command(name="commit-patch")
@click.version_option(version=__version__, prog_name="commit-patch")
@click.argument("patch_file", required=False, type=click.Path(dir_okay=False, allow_dash=True))
@click.option("-m", "--message", help="Commit message.")
@click.option(
    "-F",
    "--message-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Read the commit message from a file.",
)
@common_options
def commit_patch(
    patch_file: str | None,
    message: str | None,
    message_file: str | None,
    amend: bool,
    verbose: bool,
    dry_run: bool,
    config_file: str | None,
) -> None:
    """Commit exactly the changes in PATCH_FILE (default: stdin).

    Changes in the working tree that the patch does not contain are kept out
    of the commit and left in place afterwards.

    Example:
        git diff > all.patch; $EDITOR all.patch
        commit-patch -m "Fix the parser" all.patch
    """
    if message is not None and message_file is not None:
        raise click.UsageError("-m/--message and -F/--message-file are mutually exclusive")

    cwd = Path.cwd()
    with _handle_errors():
        repo, config, sink = _prepare(cwd, config_file)
        patch = _read_patch(patch_file)
        runner = ProcessRunner(repo.root, verbose=verbose, dry_run=dry_run)
        result = run_transaction(
            repo,
            patch,
            message=CommitMessage(
                text=message,
                file=Path(message_file).resolve() if message_file else None,
            ),
            runner=runner,
            tools=config.tools,
            amend=amend,
            remainder_path=cwd / config.history.remainder_name,
            telemetry=sink,
        )
    _report(result, dry_run)


@click.command(name="commit-partial")
@click.version_option(version=__version__, prog_name="commit-partial")
@click.argument("files", nargs=-1, type=click.Path())
@click.option("--retry", is_flag=True, help="Re-edit the patch from the last failed attempt.")
@common_options
def commit_partial(
    files: tuple[str, ...],
    retry: bool,
    amend: bool,
    verbose: bool,
    dry_run: bool,
    config_file: str | None,
) -> None:
    """Edit the working tree diff, then commit what is left of it.

    The diff (optionally restricted to FILES) opens in $VISUAL or $EDITOR.
    Write the commit message at the top, delete whatever should not be
    committed, save and quit.

    Example:
        commit-partial src/parser.py
        commit-partial --retry
    """
    cwd = Path.cwd()
    with _handle_errors():
        repo, config, sink = _prepare(cwd, config_file)
        runner = ProcessRunner(repo.root, verbose=verbose, dry_run=dry_run)
        history = PatchHistory(cwd, config.history)

        patch, message_path = author_patch(
            repo,
            runner,
            config,
            cwd=cwd,
            files=files,
            amend=amend,
            retry=retry,
        )
        try:
            result = run_transaction(
                repo,
                patch,
                message=CommitMessage(file=message_path.resolve()),
                runner=runner,
                tools=config.tools,
                amend=amend,
                remainder_path=cwd / config.history.remainder_name,
                telemetry=sink,
            )
        except RemainderReapplyFailure:
            if not dry_run:
                history.clear_current()
            raise
        except CommitPatchError:
            if not dry_run:
                click.echo(
                    f"Your patch was kept in {history.path(0)}; "
                    "run commit-partial --retry to edit it again.",
                    err=True,
                )
            raise

        if not dry_run:
            history.clear_current()
    _report(result, dry_run)


def main() -> None:
    """Dispatch on the invoked program name."""
    prog = Path(sys.argv[0]).name
    if prog.startswith("commit-partial"):
        commit_partial()
    else:
        commit_patch()
