"""Core data types for commit-patch."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator


class FragmentKind(str, Enum):
    ADDED = "+"
    REMOVED = "-"
    MODIFIED = "!"


@dataclass(frozen=True)
class PatchFragment:
    """One file's change within a patch."""

    path: str
    kind: FragmentKind


@dataclass
class FragmentSet:
    """Fragments of a patch, partitioned by kind.

    Paths keep the order in which the fragment listing reported them.
    """

    fragments: list[PatchFragment] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: dict[str, FragmentKind] = {}
        for frag in self.fragments:
            prior = seen.get(frag.path)
            if prior is not None and prior != frag.kind:
                raise ValueError(
                    f"path {frag.path!r} classified as both {prior.name} and {frag.kind.name}"
                )
            seen[frag.path] = frag.kind

    def __iter__(self) -> Iterator[PatchFragment]:
        return iter(self.fragments)

    def __len__(self) -> int:
        return len(self.fragments)

    def of_kind(self, *kinds: FragmentKind) -> list[str]:
        return [f.path for f in self.fragments if f.kind in kinds]

    @property
    def added(self) -> list[str]:
        return self.of_kind(FragmentKind.ADDED)

    @property
    def removed(self) -> list[str]:
        return self.of_kind(FragmentKind.REMOVED)

    @property
    def modified(self) -> list[str]:
        return self.of_kind(FragmentKind.MODIFIED)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.fragments]

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, FragmentKind]]) -> FragmentSet:
        return cls([PatchFragment(path=p, kind=k) for p, k in pairs])


@dataclass(frozen=True)
class CommitMessage:
    """Resolved commit message: literal text, a file, or neither.

    With neither set the backend is left to prompt for a message itself.
    """

    text: str | None = None
    file: Path | None = None

    def __post_init__(self) -> None:
        if self.text is not None and self.file is not None:
            raise ValueError("CommitMessage takes either text or file, not both")

    @property
    def is_empty(self) -> bool:
        return self.text is None and self.file is None


@dataclass
class CommitTransaction:
    """State of one commit run. Never persisted."""

    patch: str
    message: CommitMessage
    amend: bool = False
    fragments: FragmentSet = field(default_factory=FragmentSet)
    working_diff: str = ""
    remainder_diff: str = ""


@dataclass
class CommitResult:
    """Outcome of a successful transaction."""

    run_id: str
    fragments: FragmentSet
    native_index: bool
    remainder_reapplied: bool = False
