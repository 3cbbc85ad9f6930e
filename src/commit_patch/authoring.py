"""Author a patch from the working tree in an editor.

The document handed to the editor has a commit message region at the top,
closed by a literal marker line; everything below the marker is the patch.
Lines in the message region starting with ``#`` are comments.

Every authored document is kept in a short rotating history in the working
directory so a failed commit can be retried without re-editing from scratch.
"""

from __future__ import annotations

import os
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

import click

from .backends import Repository
from .config import CommitPatchConfig, HistoryConfig
from .errors import (
    EmptyPatch,
    ExternalToolFailure,
    NoCommitMessage,
    NoRetryArtifact,
    UnsupportedOperation,
)
from .process import ENCODING, ERRORS, ProcessRunner

MARKER = "### commit-partial: everything below this line is the patch ###"

HELP_LINES = (
    "# Write the commit message above. Lines starting with '#' are ignored",
    "# and an empty message cancels the commit.",
    "# Remove hunks or whole files from the patch below to keep them out of",
    "# this commit; they stay in your working tree.",
)


@dataclass
class PatchDocument:
    message: str
    patch: str

    def render(self) -> str:
        head = [self.message.rstrip("\n"), ""] if self.message.strip() else ["", ""]
        return "\n".join([*head, *HELP_LINES, MARKER]) + "\n" + self.patch


def parse_document(text: str) -> PatchDocument:
    lines = text.splitlines(keepends=True)
    for i, ln in enumerate(lines):
        if ln.rstrip("\r\n") != MARKER:
            continue
        message_lines = [m.rstrip("\r\n") for m in lines[:i] if not m.startswith("#")]
        return PatchDocument(
            message="\n".join(message_lines).strip(),
            patch="".join(lines[i + 1 :]),
        )
    raise NoCommitMessage("The commit message marker line was removed; commit cancelled")


class PatchHistory:
    """Rotating history of authored patch documents."""

    def __init__(self, directory: Path, config: HistoryConfig) -> None:
        self.directory = Path(directory)
        self.config = config

    def path(self, index: int = 0) -> Path:
        name = self.config.patch_name if index == 0 else f"{self.config.patch_name}.{index}"
        return self.directory / name

    @property
    def message_path(self) -> Path:
        return self.directory / self.config.message_name

    def rotate(self) -> None:
        for i in range(self.config.depth - 1, 0, -1):
            src = self.path(i - 1)
            if src.exists():
                os.replace(src, self.path(i))

    def save(self, text: str) -> Path:
        self.rotate()
        dest = self.path(0)
        dest.write_text(text, encoding=ENCODING, errors=ERRORS)
        return dest

    def latest(self) -> Path:
        dest = self.path(0)
        if not dest.exists():
            raise NoRetryArtifact(f"Nothing to retry: {dest} does not exist")
        return dest

    def clear_current(self) -> None:
        self.path(0).unlink(missing_ok=True)
        self.message_path.unlink(missing_ok=True)


def root_relative(files: Sequence[str], cwd: Path, root: Path) -> list[str]:
    """Convert paths given relative to ``cwd`` into repository-relative paths."""
    out: list[str] = []
    for f in files:
        absolute = os.path.abspath(os.path.join(cwd, f))
        out.append(os.path.relpath(absolute, root))
    return out


def generate_patch(repo: Repository, runner: ProcessRunner, files: Sequence[str] = ()) -> str:
    res = runner.run([*repo.backend.diff_command, *files])
    if res.exit_code == 127:
        raise ExternalToolFailure(f"{repo.backend.diff_command[0]} is not available", res.output)
    if not res.stdout.strip():
        raise EmptyPatch("No changes to commit")
    return res.stdout


def edit_file(path: Path, editor: str) -> None:
    click.edit(filename=str(path), editor=editor)


def author_patch(
    repo: Repository,
    runner: ProcessRunner,
    config: CommitPatchConfig,
    *,
    cwd: Path,
    files: Sequence[str] = (),
    amend: bool = False,
    retry: bool = False,
    edit: Callable[[Path, str], None] = edit_file,
) -> tuple[str, Path]:
    """
    Produce the patch and message for a commit-partial run.

    Args:
        repo: Detected repository
        runner: Process adapter
        config: Loaded configuration
        cwd: Directory holding the history files (and base for ``files``)
        files: Restrict the generated patch to these paths
        amend: Prefill the message from the commit being amended
        retry: Reuse the newest history document instead of regenerating
        edit: Editor launcher

    In dry-run mode the document is edited in a scratch directory and the
    history is not rotated; the returned message path is gone by the time
    the caller sees it, which is fine because nothing gets committed.

    Returns:
        (patch text, path of the written message file)
    """
    if amend and not repo.backend.supports_amend:
        raise UnsupportedOperation(f"{repo.backend.name} does not support amending commits")

    history = PatchHistory(cwd, config.history)
    if retry:
        text = history.latest().read_text(encoding=ENCODING, errors=ERRORS)
    else:
        patch = generate_patch(repo, runner, root_relative(files, cwd, repo.root))
        message = (repo.backend.previous_message(runner) or "") if amend else ""
        text = PatchDocument(message=message, patch=patch).render()

    with ExitStack() as stack:
        if runner.dry_run:
            # Edit a scratch copy; the history in cwd is left alone.
            scratch = stack.enter_context(tempfile.TemporaryDirectory(prefix="commit-partial-"))
            history = PatchHistory(Path(scratch), config.history)
            doc_path = history.path(0)
            doc_path.write_text(text, encoding=ENCODING, errors=ERRORS)
        elif retry:
            doc_path = history.path(0)
        else:
            doc_path = history.save(text)

        edit(doc_path, config.editor.resolve())

        doc = parse_document(doc_path.read_text(encoding=ENCODING, errors=ERRORS))
        if not doc.message:
            raise NoCommitMessage("Empty commit message; commit cancelled")
        if not doc.patch.strip():
            raise EmptyPatch("The edited patch is empty; nothing to commit")

        history.message_path.write_text(doc.message + "\n", encoding=ENCODING, errors=ERRORS)
        return doc.patch, history.message_path
