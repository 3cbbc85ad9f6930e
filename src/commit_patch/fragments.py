"""Classify the files a patch touches as added, removed or modified.

The listing itself comes from patchutils' ``lsdiff --status``, which prints
one ``<symbol> <path>`` line per file.
"""

from __future__ import annotations

import re

from .backends import Backend
from .config import ToolsConfig
from .errors import EmptyPatch, ExternalToolFailure, MalformedFragmentLine
from .process import ProcessRunner
from .types import FragmentKind, FragmentSet, PatchFragment

_LINE_RE = re.compile(r"^([+\-!])\s+(\S.*)$")


def parse_fragment_listing(listing: str) -> FragmentSet:
    """Parse ``lsdiff --status`` output into a fragment set."""
    fragments: list[PatchFragment] = []
    for ln in listing.splitlines():
        if not ln.strip():
            continue
        match = _LINE_RE.match(ln)
        if not match:
            raise MalformedFragmentLine(f"Unrecognized fragment line: {ln!r}")
        frag = PatchFragment(path=match.group(2).rstrip(), kind=FragmentKind(match.group(1)))
        if frag not in fragments:
            fragments.append(frag)

    try:
        result = FragmentSet(fragments)
    except ValueError as exc:
        raise MalformedFragmentLine(str(exc)) from exc

    if not result:
        raise EmptyPatch("Patch does not touch any files")
    return result


def classify(
    patch: str,
    backend: Backend,
    runner: ProcessRunner,
    tools: ToolsConfig,
) -> FragmentSet:
    """Run the fragment lister over ``patch`` and classify every file."""
    if not patch.strip():
        raise EmptyPatch("Patch is empty")

    argv = [tools.lsdiff, "--status", *backend.fragment_list_args]
    res = runner.run(argv, stdin=patch)
    if not res.ok:
        raise ExternalToolFailure(f"{tools.lsdiff} failed (exit {res.exit_code})", res.output)
    return parse_fragment_listing(res.stdout)
