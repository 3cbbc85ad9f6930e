"""Separate the changes being committed from incidental working-tree changes.

The working diff of every file the target patch modifies or removes is
compared against the target with ``interdiff``. What interdiff reports is the
remainder: changes present in the tree that the commit must not include and
that must be put back afterwards. The working diff is then reverse-applied so
the tree matches the base the target patch expects.
"""

from __future__ import annotations

import re

from .backends import Repository
from .config import ToolsConfig
from .errors import ReconciliationFailure
from .ledger import CleanupLedger
from .process import ProcessRunner
from .types import FragmentKind, FragmentSet

_DIFF_HEADER_RE = re.compile(r"^(@@ |--- |\+\+\+ |diff |Index: |Binary files )", re.MULTILINE)


def working_diff(repo: Repository, fragments: FragmentSet, runner: ProcessRunner) -> str:
    """Diff the current tree state of modified and removed fragments.

    Some backends exit non-zero whenever differences exist, so the exit code
    is not trusted; only a missing tool or output that is not a diff fails.
    """
    paths = fragments.of_kind(FragmentKind.MODIFIED, FragmentKind.REMOVED)
    if not paths:
        return ""

    res = runner.run([*repo.backend.diff_command, *paths])
    if res.exit_code == 127:
        raise ReconciliationFailure(f"{repo.backend.diff_command[0]} is not available", res.output)
    if res.stdout.strip() and not _DIFF_HEADER_RE.search(res.stdout):
        raise ReconciliationFailure(
            f"{repo.backend.name} diff produced unrecognized output", res.output
        )
    return res.stdout if res.stdout.strip() else ""


def reconcile(
    repo: Repository,
    target_patch: str,
    fragments: FragmentSet,
    runner: ProcessRunner,
    ledger: CleanupLedger,
    tools: ToolsConfig,
) -> tuple[str, str]:
    """Compute the remainder and reset fragments to the target's base.

    Returns ``(working_diff, remainder_diff)``; both are empty when the files
    the patch touches have no pending changes.
    """
    working = working_diff(repo, fragments, runner)
    if not working:
        return "", ""

    strip = repo.backend.patch_strip
    target_file = ledger.write_temp(target_patch, suffix=".target.patch")
    working_file = ledger.write_temp(working, suffix=".working.patch")

    inter = runner.run(
        [
            tools.interdiff,
            "--no-revert-omitted",
            f"-p{strip}",
            str(target_file),
            str(working_file),
        ]
    )
    if not inter.ok:
        raise ReconciliationFailure(
            "Patch does not match the working tree; interdiff failed", inter.output
        )
    remainder = inter.stdout if inter.stdout.strip() else ""

    reverse = runner.run(tools.patch_argv(strip, reverse=True), stdin=working, mutating=True)
    if not reverse.ok:
        raise ReconciliationFailure("Could not revert working tree changes", reverse.output)

    return working, remainder
