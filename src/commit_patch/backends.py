"""Backend descriptors for the supported version-control systems.

Each backend is an immutable description of how the system diffs, commits,
amends, adds and removes files. Exactly one is selected per run by
``detect()`` and passed explicitly through the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .errors import NoRepositoryFound
from .process import ProcessRunner


def _flag_args(flag: str, value: str) -> list[str]:
    # "--logfile=" style flags take their value in the same argument.
    if flag.endswith("="):
        return [flag + value]
    return [flag, value]


@dataclass(frozen=True)
class Backend:
    name: str
    marker: str
    diff_command: tuple[str, ...]
    commit_command: tuple[str, ...]
    add_command: tuple[str, ...]
    remove_command: tuple[str, ...]
    message_flag: str
    message_file_flag: str
    patch_strip: int
    amend_command: tuple[str, ...] | None = None
    fragment_list_args: tuple[str, ...] = field(default_factory=tuple)
    previous_message_command: tuple[str, ...] | None = None
    native_index: bool = False
    # Drops pending add/remove marks for the given paths; None when the
    # backend has no way to do that without touching file contents.
    unmark_command: tuple[str, ...] | None = None

    @property
    def supports_amend(self) -> bool:
        return self.amend_command is not None

    def message_args(self, text: str) -> list[str]:
        return _flag_args(self.message_flag, text)

    def message_file_args(self, path: Path | str) -> list[str]:
        return _flag_args(self.message_file_flag, str(path))

    def previous_message(self, runner: ProcessRunner) -> str | None:
        """Return the most recent commit message, when the backend can recall it."""
        if self.previous_message_command is None:
            return None
        res = runner.run(list(self.previous_message_command))
        if not res.ok:
            return None
        return res.stdout.strip() or None


DARCS = Backend(
    name="darcs",
    marker="_darcs",
    diff_command=("darcs", "diff", "-u"),
    commit_command=("darcs", "record", "--all"),
    amend_command=("darcs", "amend-record", "--all"),
    add_command=("darcs", "add"),
    remove_command=("darcs", "remove"),
    message_flag="-m",
    message_file_flag="--logfile=",
    patch_strip=1,
    fragment_list_args=("--strip=1",),
)

GIT = Backend(
    name="git",
    marker=".git",
    diff_command=("git", "diff"),
    commit_command=("git", "commit"),
    amend_command=("git", "commit", "--amend"),
    add_command=("git", "add"),
    remove_command=("git", "rm", "--quiet"),
    message_flag="-m",
    message_file_flag="-F",
    patch_strip=1,
    fragment_list_args=("--strip=1",),
    previous_message_command=("git", "log", "-1", "--format=%B"),
    native_index=True,
    unmark_command=("git", "reset", "--quiet", "--"),
)

HG = Backend(
    name="hg",
    marker=".hg",
    diff_command=("hg", "diff"),
    commit_command=("hg", "commit"),
    amend_command=("hg", "commit", "--amend"),
    add_command=("hg", "add"),
    remove_command=("hg", "remove"),
    message_flag="-m",
    message_file_flag="-l",
    patch_strip=1,
    fragment_list_args=("--strip=1",),
    previous_message_command=("hg", "log", "-l", "1", "--template", "{desc}"),
    unmark_command=("hg", "revert", "--no-backup"),
)

BZR = Backend(
    name="bzr",
    marker=".bzr",
    diff_command=("bzr", "diff"),
    commit_command=("bzr", "commit"),
    add_command=("bzr", "add"),
    remove_command=("bzr", "remove"),
    message_flag="-m",
    message_file_flag="-F",
    patch_strip=1,
    fragment_list_args=("--strip=1",),
    unmark_command=("bzr", "revert", "--no-backup"),
)

MTN = Backend(
    name="mtn",
    marker="_MTN",
    diff_command=("mtn", "diff"),
    commit_command=("mtn", "commit"),
    add_command=("mtn", "add"),
    remove_command=("mtn", "drop"),
    message_flag="-m",
    message_file_flag="--message-file=",
    patch_strip=0,
)

SVN = Backend(
    name="svn",
    marker=".svn",
    diff_command=("svn", "diff"),
    commit_command=("svn", "commit"),
    add_command=("svn", "add"),
    remove_command=("svn", "remove"),
    message_flag="-m",
    message_file_flag="-F",
    patch_strip=0,
    unmark_command=("svn", "revert"),
)

CVS = Backend(
    name="cvs",
    marker="CVS",
    diff_command=("cvs", "-q", "diff", "-u", "-N"),
    commit_command=("cvs", "commit"),
    add_command=("cvs", "add"),
    remove_command=("cvs", "remove"),
    message_flag="-m",
    message_file_flag="-F",
    patch_strip=0,
)

# Detection priority: first marker found in a directory wins.
BACKENDS: tuple[Backend, ...] = (DARCS, GIT, HG, BZR, MTN, SVN, CVS)


@dataclass(frozen=True)
class Repository:
    backend: Backend
    root: Path


def get_backend(name: str) -> Backend:
    for backend in BACKENDS:
        if backend.name == name:
            return backend
    raise KeyError(f"Unknown backend: {name}")


def detect(start: Path | str | None = None) -> Repository:
    """Locate the nearest repository starting from ``start``."""
    path = Path(start or Path.cwd()).resolve()
    for candidate in (path, *path.parents):
        for backend in BACKENDS:
            if (candidate / backend.marker).exists():
                return Repository(backend=backend, root=candidate)
    raise NoRepositoryFound(f"No repository found from {path} up to the filesystem root")
