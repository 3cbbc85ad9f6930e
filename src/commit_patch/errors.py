"""Error taxonomy for commit-patch.

Every failure raised before the commit point triggers a full rollback of the
working tree. ``RemainderReapplyFailure`` is the only error raised after the
commit has become durable.
"""

from __future__ import annotations


class CommitPatchError(RuntimeError):
    """Base class for all commit-patch failures.

    ``output`` carries the verbatim stdout/stderr of the external tool that
    failed, when there is one.
    """

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output

    def __str__(self) -> str:
        base = super().__str__()
        if self.output.strip():
            return f"{base}\n{self.output.rstrip()}"
        return base


class NoRepositoryFound(CommitPatchError):
    pass


class ConfigError(CommitPatchError):
    """The configuration file could not be parsed or failed validation."""


class UnsupportedOperation(CommitPatchError):
    pass


class EmptyPatch(CommitPatchError):
    pass


class MalformedFragmentLine(CommitPatchError):
    pass


class ExternalToolFailure(CommitPatchError):
    pass


class BackupFailure(CommitPatchError):
    pass


class PatchApplyFailure(CommitPatchError):
    pass


class ReconciliationFailure(CommitPatchError):
    pass


class StagingAreaNotEmpty(CommitPatchError):
    pass


class CommitFailure(CommitPatchError):
    pass


class RemainderReapplyFailure(CommitPatchError):
    """The commit succeeded but incidental changes could not be restored."""

    def __init__(self, message: str, output: str = "", artifact: str | None = None) -> None:
        super().__init__(message, output)
        self.artifact = artifact


class NoCommitMessage(CommitPatchError):
    pass


class NoRetryArtifact(CommitPatchError):
    pass


class Interrupted(CommitPatchError):
    """Raised from a signal handler so that scoped cleanup runs."""

    def __init__(self, signum: int) -> None:
        super().__init__(f"interrupted by signal {int(signum)}")
        self.signum = int(signum)
