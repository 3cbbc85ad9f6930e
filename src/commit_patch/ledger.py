"""Backup & cleanup ledger and the rollback guard that consumes it.

The ledger is the only place rollback state lives. Every file a patch touches
is snapshotted before anything mutates the tree; the guard consults the ledger
exactly once when the transaction scope exits, whether it returned normally,
raised, or was interrupted by a signal.
"""

from __future__ import annotations

import os
import shutil
import signal
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from types import FrameType, TracebackType

import click

from .errors import BackupFailure, Interrupted
from .process import ENCODING, ERRORS
from .types import FragmentKind, FragmentSet

BACKUP_SUFFIX = ".commit-patch~"


@dataclass
class CleanupEntry:
    """One reversible side effect.

    - ``temp_path`` set, ``restore_target`` set: backup copy of an existing file.
    - ``temp_path`` set, ``restore_target`` None: ephemeral working file.
    - ``temp_path`` None, ``restore_target`` set: path that did not exist
      before the run and must not exist after a rollback.
    """

    temp_path: Path | None
    restore_target: Path | None


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


class CleanupLedger:
    def __init__(self, root: Path, dry_run: bool = False) -> None:
        self.root = Path(root)
        self.dry_run = dry_run
        self.entries: list[CleanupEntry] = []
        self.committed = False
        self.closed = False

    def _topmost_missing(self, target: Path) -> Path:
        missing = target
        for parent in target.parents:
            if parent == self.root or parent.exists():
                break
            missing = parent
        return missing

    def _backup(self, target: Path) -> Path:
        fd, name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=BACKUP_SUFFIX, dir=str(target.parent)
        )
        os.close(fd)
        backup = Path(name)
        shutil.copy2(target, backup, follow_symlinks=False)
        return backup

    def snapshot(self, fragments: FragmentSet) -> None:
        """Back up every fragment before any destructive operation."""
        for frag in fragments:
            target = self.root / frag.path
            exists = target.exists() or target.is_symlink()

            if self.dry_run:
                if exists:
                    click.echo(f"# backup {frag.path}", err=True)
                    if frag.kind is FragmentKind.ADDED:
                        click.echo(f"# rm {frag.path}", err=True)
                continue

            if not exists:
                self.entries.append(
                    CleanupEntry(temp_path=None, restore_target=self._topmost_missing(target))
                )
                continue

            try:
                backup = self._backup(target)
            except OSError as exc:
                raise BackupFailure(f"Cannot back up {frag.path}: {exc}") from exc
            self.entries.append(CleanupEntry(temp_path=backup, restore_target=target))

            if frag.kind is FragmentKind.ADDED:
                # `patch` refuses to create a file that already exists.
                try:
                    target.unlink()
                except OSError as exc:
                    raise BackupFailure(f"Cannot remove {frag.path}: {exc}") from exc

    def record_created(self, path: Path) -> None:
        """Record a file this run is about to create; a rollback deletes it."""
        self.entries.append(CleanupEntry(temp_path=None, restore_target=Path(path)))

    def register_temp(self, path: Path) -> Path:
        """Record an ephemeral file: deleted at exit, irrelevant to rollback."""
        self.entries.append(CleanupEntry(temp_path=Path(path), restore_target=None))
        return Path(path)

    def write_temp(self, content: str, suffix: str = ".patch") -> Path:
        fd, name = tempfile.mkstemp(prefix="commit-patch-", suffix=suffix)
        with os.fdopen(fd, "w", encoding=ENCODING, errors=ERRORS) as f:
            f.write(content)
        return self.register_temp(Path(name))

    def mark_committed(self) -> None:
        self.committed = True

    def close(self) -> bool:
        """Roll back (if not committed) and remove side files.

        Returns True when a rollback was performed. Cleanup problems are
        reported on stderr and never raised. Only the first call does work.
        """
        if self.closed:
            return False
        self.closed = True

        rolled_back = False
        if not self.committed:
            for entry in reversed(self.entries):
                if entry.restore_target is None:
                    continue
                rolled_back = True
                try:
                    if entry.temp_path is None:
                        _remove_path(entry.restore_target)
                    else:
                        os.replace(entry.temp_path, entry.restore_target)
                except OSError as exc:
                    click.echo(
                        f"commit-patch: failed to restore {entry.restore_target}: {exc}",
                        err=True,
                    )

        for entry in self.entries:
            if entry.temp_path is None:
                continue
            try:
                if entry.temp_path.exists():
                    entry.temp_path.unlink()
            except OSError as exc:
                click.echo(f"commit-patch: failed to remove {entry.temp_path}: {exc}", err=True)

        return rolled_back


class RollbackGuard:
    """Scope guard that closes the ledger exactly once.

    While the guard is active, interrupt, quit, broken-pipe and terminate
    signals raise ``Interrupted`` so the scope unwinds through ``__exit__``.
    Signals arriving during cleanup are deferred until it finishes, then
    raised as ``Interrupted`` unless another exception is already unwinding.
    """

    SIGNALS = ("SIGINT", "SIGQUIT", "SIGPIPE", "SIGTERM")

    def __init__(self, ledger: CleanupLedger) -> None:
        self.ledger = ledger
        self.rolled_back = False
        self.deferred: list[int] = []
        self._previous: dict[int, object] = {}

    def _signals(self) -> list[int]:
        if threading.current_thread() is not threading.main_thread():
            return []
        return [getattr(signal, name) for name in self.SIGNALS if hasattr(signal, name)]

    def _interrupt(self, signum: int, frame: FrameType | None) -> None:
        raise Interrupted(signum)

    def _defer(self, signum: int, frame: FrameType | None) -> None:
        self.deferred.append(signum)

    def __enter__(self) -> CleanupLedger:
        for sig in self._signals():
            self._previous[sig] = signal.signal(sig, self._interrupt)
        return self.ledger

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        for sig in self._previous:
            signal.signal(sig, self._defer)
        try:
            self.rolled_back = self.ledger.close()
        finally:
            for sig, handler in self._previous.items():
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            self._previous.clear()

        if self.deferred and exc_type is None:
            raise Interrupted(self.deferred[0])
        return False
