"""Process adapter used for every external tool invocation.

Key properties:
- Executes an argv list (no shell).
- Text is decoded as UTF-8 with ``surrogateescape`` so arbitrary bytes in
  patches survive the round trip unchanged.
- ``verbose`` echoes each command to stderr before it runs; ``dry_run``
  echoes mutating commands and returns success without running them.
"""

from __future__ import annotations

import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

import click

ENCODING = "utf-8"
ERRORS = "surrogateescape"


@dataclass(frozen=True)
class ProcessResult:
    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, for surfacing on failure."""
        return "".join(part for part in (self.stdout, self.stderr) if part)


class ProcessRunner:
    """Run external tools from a fixed working directory."""

    def __init__(self, cwd: Path, verbose: bool = False, dry_run: bool = False):
        self.cwd = Path(cwd)
        self.verbose = verbose
        self.dry_run = dry_run

    def echo(self, argv: list[str], stdin: str | None = None) -> None:
        line = "$ " + shlex.join(argv)
        if stdin is not None:
            line += " < (patch)"
        click.echo(line, err=True)

    def run(
        self,
        argv: list[str],
        stdin: str | None = None,
        *,
        capture: bool = True,
        mutating: bool = False,
    ) -> ProcessResult:
        """Run ``argv`` and return its result.

        ``capture=False`` leaves stdin/stdout/stderr attached to the terminal,
        for commands that may need to interact with the user.
        """
        t0 = time.time()

        if self.verbose or (self.dry_run and mutating):
            self.echo(argv, stdin)

        if self.dry_run and mutating:
            return ProcessResult(argv=argv, exit_code=0)

        try:
            p = subprocess.run(
                argv,
                cwd=str(self.cwd),
                input=stdin,
                encoding=ENCODING,
                errors=ERRORS,
                capture_output=capture,
                shell=False,
            )
        except FileNotFoundError:
            return ProcessResult(
                argv=argv,
                exit_code=127,
                stderr=f"{argv[0]}: command not found\n",
                duration_s=round(time.time() - t0, 3),
            )

        return ProcessResult(
            argv=argv,
            exit_code=p.returncode,
            stdout=p.stdout or "",
            stderr=p.stderr or "",
            duration_s=round(time.time() - t0, 3),
        )
