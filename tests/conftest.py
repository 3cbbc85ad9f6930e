"""Shared fixtures: a fake process adapter and throwaway git repositories."""

from __future__ import annotations

import hashlib
import subprocess
from pathlib import Path
from typing import Callable

import pytest

from commit_patch.process import ProcessResult

Effect = Callable[[list[str], "str | None"], "ProcessResult | None"]


class FakeRunner:
    """Stand-in for ProcessRunner that records calls and scripts results.

    Handlers registered later take precedence. A handler matches on an argv
    prefix tuple or on a predicate over argv; its optional ``effect`` runs
    with (argv, stdin) and may return a ProcessResult to override the
    scripted one.
    """

    def __init__(self, cwd: Path, dry_run: bool = False, verbose: bool = False):
        self.cwd = Path(cwd)
        self.dry_run = dry_run
        self.verbose = verbose
        self.calls: list[dict] = []
        self._handlers: list[tuple[object, dict]] = []

    def on(
        self,
        match: tuple[str, ...] | Callable[[list[str]], bool],
        *,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Effect | None = None,
    ) -> FakeRunner:
        self._handlers.append(
            (match, {"exit_code": exit_code, "stdout": stdout, "stderr": stderr, "effect": effect})
        )
        return self

    def _matches(self, match: object, argv: list[str]) -> bool:
        if callable(match):
            return bool(match(argv))
        return tuple(argv[: len(match)]) == match

    def run(
        self,
        argv: list[str],
        stdin: str | None = None,
        *,
        capture: bool = True,
        mutating: bool = False,
    ) -> ProcessResult:
        self.calls.append(
            {"argv": list(argv), "stdin": stdin, "capture": capture, "mutating": mutating}
        )
        if self.dry_run and mutating:
            return ProcessResult(argv=argv, exit_code=0)

        for match, scripted in reversed(self._handlers):
            if not self._matches(match, argv):
                continue
            if scripted["effect"] is not None:
                override = scripted["effect"](argv, stdin)
                if override is not None:
                    return override
            return ProcessResult(
                argv=argv,
                exit_code=scripted["exit_code"],
                stdout=scripted["stdout"],
                stderr=scripted["stderr"],
            )
        return ProcessResult(argv=argv, exit_code=0)

    @property
    def argvs(self) -> list[list[str]]:
        return [c["argv"] for c in self.calls]

    def find(self, *prefix: str) -> list[dict]:
        return [c for c in self.calls if tuple(c["argv"][: len(prefix)]) == prefix]


@pytest.fixture
def fake_runner(tmp_path: Path) -> FakeRunner:
    return FakeRunner(tmp_path)


@pytest.fixture
def make_fake_runner() -> Callable[..., FakeRunner]:
    return FakeRunner


def checksum_tree(root: Path) -> dict[str, str]:
    """Map every file under ``root`` (outside VCS metadata) to its sha256."""
    sums: dict[str, str] = {}
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root)
        if rel.parts and rel.parts[0] in {".git", ".hg", "_darcs"}:
            continue
        if p.is_file():
            sums[str(rel)] = hashlib.sha256(p.read_bytes()).hexdigest()
    return sums


@pytest.fixture
def tree_checksum() -> Callable[[Path], dict[str, str]]:
    return checksum_tree


def _git(repo: Path, *args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True)


@pytest.fixture
def git() -> Callable[..., subprocess.CompletedProcess[str]]:
    return _git


@pytest.fixture
def git_repo(tmp_path):
    """Create a temporary git repository with one committed file."""
    try:
        subprocess.run(["git", "--version"], check=True, capture_output=True)
    except (subprocess.CalledProcessError, FileNotFoundError):
        pytest.skip("git not available")

    repo_path = tmp_path / "test_repo"
    repo_path.mkdir()

    _git(repo_path, "init")
    _git(repo_path, "config", "user.email", "test@example.com")
    _git(repo_path, "config", "user.name", "Test User")
    _git(repo_path, "config", "commit.gpgsign", "false")

    (repo_path / "x.txt").write_text(
        "".join(f"{w}\n" for w in "one two three four five six seven eight nine ten".split())
    )
    _git(repo_path, "add", ".")
    _git(repo_path, "commit", "-m", "Initial commit")

    return repo_path
