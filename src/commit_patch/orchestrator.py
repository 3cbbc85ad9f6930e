"""Commit orchestration: apply, add, remove, commit, restore remainder.

Everything up to and including the commit runs inside a ``RollbackGuard``;
a failure (or an interrupting signal) at any of those steps restores the
working tree from the ledger. Once the commit succeeds the ledger is marked
committed, so a failure to restore the remainder afterwards is reported but
never rolls the tree back over a durable commit. The remainder is saved to
its artifact file before the commit, so it survives such a failure.
"""

from __future__ import annotations

from pathlib import Path

import click

from .backends import Backend, Repository
from .config import ToolsConfig
from .errors import (
    BackupFailure,
    CommitFailure,
    CommitPatchError,
    ExternalToolFailure,
    PatchApplyFailure,
    RemainderReapplyFailure,
    StagingAreaNotEmpty,
    UnsupportedOperation,
)
from .fragments import classify
from .ledger import CleanupLedger, RollbackGuard
from .process import ENCODING, ERRORS, ProcessRunner
from .reconcile import reconcile
from .telemetry import NULL_SINK, TelemetrySink, new_run_id
from .types import CommitMessage, CommitResult, CommitTransaction


def commit_argv(
    backend: Backend,
    message: CommitMessage,
    amend: bool = False,
    paths: list[str] | None = None,
) -> list[str]:
    if amend:
        if backend.amend_command is None:
            raise UnsupportedOperation(f"{backend.name} does not support amending commits")
        argv = list(backend.amend_command)
    else:
        argv = list(backend.commit_command)

    if message.text is not None:
        argv += backend.message_args(message.text)
    elif message.file is not None:
        argv += backend.message_file_args(message.file)

    argv += paths or []
    return argv


def _commit_generic(
    repo: Repository,
    txn: CommitTransaction,
    runner: ProcessRunner,
    tools: ToolsConfig,
    remainder_path: Path,
    telemetry: TelemetrySink = NULL_SINK,
    run_id: str = "",
) -> bool:
    """Reconcile the working tree and commit. Returns whether a remainder was restored."""
    ledger = CleanupLedger(repo.root, dry_run=runner.dry_run)
    guard = RollbackGuard(ledger)

    try:
        with guard:
            return _run_steps(repo, txn, runner, tools, remainder_path, ledger)
    finally:
        if guard.rolled_back:
            telemetry.log(run_id, "rollback_performed", {"backend": repo.backend.name})


def _save_remainder(
    remainder: str, remainder_path: Path, runner: ProcessRunner, ledger: CleanupLedger
) -> None:
    """Write the remainder artifact before anything is committed.

    A rollback deletes it again; after the commit point it stays until the
    remainder is back in the tree.
    """
    if runner.dry_run:
        click.echo(f"# write {remainder_path}", err=True)
        return
    if remainder_path.exists():
        raise BackupFailure(
            f"{remainder_path} is left over from an earlier run; apply or remove it first"
        )
    ledger.record_created(remainder_path)
    try:
        remainder_path.write_text(remainder, encoding=ENCODING, errors=ERRORS)
    except OSError as exc:
        raise BackupFailure(f"Cannot save uncommitted changes to {remainder_path}: {exc}") from exc


def _unmark(backend: Backend, paths: list[str], runner: ProcessRunner) -> None:
    """Drop pending add/remove marks left by a commit that did not happen."""
    if backend.unmark_command is None:
        click.echo(
            f"commit-patch: {backend.name} may still have pending adds/removes for: "
            + " ".join(paths),
            err=True,
        )
        return
    res = runner.run([*backend.unmark_command, *paths], mutating=True)
    if not res.ok:
        click.echo(
            f"commit-patch: could not undo pending adds/removes for {' '.join(paths)}:\n"
            + res.output.rstrip(),
            err=True,
        )


def _record(
    backend: Backend,
    txn: CommitTransaction,
    runner: ProcessRunner,
    ledger: CleanupLedger,
) -> None:
    """Add, remove and commit. Marks the ledger committed on success."""
    marked: list[str] = []
    try:
        if added := txn.fragments.added:
            marked += added
            res = runner.run([*backend.add_command, *added], mutating=True)
            if not res.ok:
                raise ExternalToolFailure(f"{backend.name} add failed", res.output)

        if removed := txn.fragments.removed:
            marked += removed
            res = runner.run([*backend.remove_command, *removed], mutating=True)
            if not res.ok:
                raise ExternalToolFailure(f"{backend.name} remove failed", res.output)

        # Not captured: some backends prompt here.
        res = runner.run(
            commit_argv(backend, txn.message, txn.amend, txn.fragments.paths),
            capture=False,
            mutating=True,
        )
        if not res.ok:
            raise CommitFailure(
                f"{backend.name} commit failed (exit {res.exit_code})", res.output
            )
    except BaseException:
        if marked:
            _unmark(backend, marked, runner)
        raise
    ledger.mark_committed()


def _run_steps(
    repo: Repository,
    txn: CommitTransaction,
    runner: ProcessRunner,
    tools: ToolsConfig,
    remainder_path: Path,
    ledger: CleanupLedger,
) -> bool:
    backend = repo.backend
    strip = backend.patch_strip
    ledger.snapshot(txn.fragments)
    txn.working_diff, txn.remainder_diff = reconcile(
        repo, txn.patch, txn.fragments, runner, ledger, tools
    )
    if txn.remainder_diff:
        _save_remainder(txn.remainder_diff, remainder_path, runner, ledger)

    res = runner.run(tools.patch_argv(strip), stdin=txn.patch, mutating=True)
    if not res.ok:
        raise PatchApplyFailure("Patch does not apply to the working tree", res.output)

    _record(backend, txn, runner, ledger)

    if not txn.remainder_diff:
        return False

    failure = (
        "Committed, but uncommitted changes could not be restored; "
        f"they were saved to {remainder_path} "
        f"(apply with: {tools.patch} -p{strip} < {remainder_path})"
    )
    try:
        res = runner.run(tools.patch_argv(strip), stdin=txn.remainder_diff, mutating=True)
    except BaseException as exc:
        raise RemainderReapplyFailure(failure, str(exc), artifact=str(remainder_path)) from exc
    if not res.ok:
        raise RemainderReapplyFailure(failure, res.output, artifact=str(remainder_path))

    if not runner.dry_run:
        remainder_path.unlink(missing_ok=True)
    return True


def _reset_index(runner: ProcessRunner) -> None:
    res = runner.run(["git", "reset", "--quiet"], mutating=True)
    if not res.ok:
        raise CommitFailure("Could not unstage the patch from the index", res.output)


def _commit_native(
    repo: Repository,
    txn: CommitTransaction,
    runner: ProcessRunner,
) -> None:
    """Stage the patch straight into git's index and commit it.

    The working tree is never touched, so the only thing to undo on failure
    is the staged patch.
    """
    backend = repo.backend
    staged = runner.run(["git", "diff", "--cached", "--quiet"])
    if staged.exit_code == 1:
        raise StagingAreaNotEmpty(
            "The index already has staged changes; commit or unstage them first"
        )
    if not staged.ok:
        raise ExternalToolFailure("git diff --cached failed", staged.output)

    with RollbackGuard(CleanupLedger(repo.root, dry_run=runner.dry_run)):
        res = runner.run(
            ["git", "apply", "--cached", f"-p{backend.patch_strip}"],
            stdin=txn.patch,
            mutating=True,
        )
        if not res.ok:
            raise PatchApplyFailure("Patch does not apply to the index", res.output)

        try:
            res = runner.run(
                commit_argv(backend, txn.message, txn.amend),
                capture=False,
                mutating=True,
            )
        except BaseException:
            _reset_index(runner)
            raise
        if not res.ok:
            _reset_index(runner)
            raise CommitFailure(f"git commit failed (exit {res.exit_code})", res.output)


def run_transaction(
    repo: Repository,
    patch: str,
    *,
    message: CommitMessage,
    runner: ProcessRunner,
    tools: ToolsConfig,
    amend: bool = False,
    remainder_path: Path | None = None,
    telemetry: TelemetrySink = NULL_SINK,
    run_id: str | None = None,
) -> CommitResult:
    """
    Commit exactly the changes in ``patch``.

    Args:
        repo: Detected repository (backend + root)
        patch: Target patch text
        message: Commit message (text, file, or neither)
        runner: Process adapter for every external command
        tools: Patch tool configuration
        amend: Amend the previous commit instead of creating a new one
        remainder_path: Where to save the remainder if it cannot be restored
        telemetry: Event sink

    Returns:
        CommitResult describing what was committed
    """
    run_id = run_id or new_run_id()
    backend = repo.backend
    if amend and not backend.supports_amend:
        raise UnsupportedOperation(f"{backend.name} does not support amending commits")

    txn = CommitTransaction(patch=patch, message=message, amend=amend)
    telemetry.log(
        run_id,
        "transaction_started",
        {"backend": backend.name, "root": str(repo.root), "amend": amend, "dry_run": runner.dry_run},
    )

    try:
        txn.fragments = classify(patch, backend, runner, tools)
        telemetry.log(
            run_id,
            "fragments_classified",
            {
                "added": len(txn.fragments.added),
                "removed": len(txn.fragments.removed),
                "modified": len(txn.fragments.modified),
            },
        )

        if backend.native_index:
            _commit_native(repo, txn, runner)
            reapplied = False
        else:
            reapplied = _commit_generic(
                repo,
                txn,
                runner,
                tools,
                remainder_path or repo.root / ".commit-patch.remainder.patch",
                telemetry,
                run_id,
            )
    except RemainderReapplyFailure as exc:
        telemetry.log(run_id, "remainder_failed", {"artifact": exc.artifact})
        raise
    except CommitPatchError as exc:
        telemetry.log(
            run_id,
            "transaction_failed",
            {"error": type(exc).__name__, "message": str(exc).splitlines()[0]},
        )
        raise

    telemetry.log(
        run_id,
        "commit_succeeded",
        {"fragments": len(txn.fragments), "remainder_reapplied": reapplied},
    )
    return CommitResult(
        run_id=run_id,
        fragments=txn.fragments,
        native_index=backend.native_index,
        remainder_reapplied=reapplied,
    )
