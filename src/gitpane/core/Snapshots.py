# gitpane/core/Snapshots.py
"""Immutable result payloads produced by backend calls.

Everything here is a frozen dataclass holding tuples, so a snapshot can be
handed from a worker thread to the UI thread and rendered without copying.
A newer snapshot always replaces an older one as a whole.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

# (pygments token type rendered as a string, text)
Token = tuple[str, str]


class ChangeFlag(enum.Enum):
    MODIFIED = "M"
    ADDED = "A"
    DELETED = "D"
    RENAMED = "R"
    COPIED = "C"
    TYPE_CHANGED = "T"
    UNTRACKED = "?"
    CONFLICTED = "U"

    @classmethod
    def from_code(cls, code: str) -> "ChangeFlag":
        try:
            return cls(code)
        except ValueError:
            return cls.MODIFIED


class LineTag(enum.Enum):
    ADD = "+"
    REMOVE = "-"
    CONTEXT = " "
    HEADER = "@"


@dataclass(frozen=True)
class FileStatus:
    path: str
    flag: ChangeFlag
    staged: bool
    old_path: Optional[str] = None


@dataclass(frozen=True)
class StatusSnapshot:
    branch: str
    files: tuple[FileStatus, ...] = ()

    @property
    def staged(self) -> tuple[FileStatus, ...]:
        return tuple(f for f in self.files if f.staged)

    @property
    def unstaged(self) -> tuple[FileStatus, ...]:
        return tuple(f for f in self.files if not f.staged)

    @property
    def is_clean(self) -> bool:
        return not self.files


@dataclass(frozen=True)
class DiffLine:
    tag: LineTag
    content: str
    old_lineno: Optional[int] = None
    new_lineno: Optional[int] = None
    tokens: tuple[Token, ...] = ()


@dataclass(frozen=True)
class DiffHunk:
    header: str
    lines: tuple[DiffLine, ...] = ()


@dataclass(frozen=True)
class FileDiff:
    path: str
    hunks: tuple[DiffHunk, ...] = ()
    binary: bool = False
    staged: bool = False

    @property
    def line_count(self) -> int:
        return sum(len(h.lines) + 1 for h in self.hunks)

    def flat_lines(self) -> tuple[DiffLine, ...]:
        """Hunk headers and their lines, in display order."""
        out: list[DiffLine] = []
        for hunk in self.hunks:
            out.append(DiffLine(LineTag.HEADER, hunk.header))
            out.extend(hunk.lines)
        return tuple(out)


@dataclass(frozen=True)
class CommitSummary:
    id: str
    author: str
    time: int
    summary: str
    parents: tuple[str, ...] = ()

    @property
    def short_id(self) -> str:
        return self.id[:7]

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


@dataclass(frozen=True)
class LogSlice:
    start: int
    commits: tuple[CommitSummary, ...] = ()
    has_more: bool = False


@dataclass(frozen=True)
class BlameLine:
    lineno: int
    commit_id: str
    author: str
    time: int
    content: str
    tokens: tuple[Token, ...] = ()


@dataclass(frozen=True)
class BlameResult:
    path: str
    lines: tuple[BlameLine, ...] = ()


@dataclass(frozen=True)
class BranchInfo:
    name: str
    is_head: bool = False
    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0


@dataclass(frozen=True)
class StashEntry:
    index: int
    ref: str
    message: str


@dataclass(frozen=True)
class MutationResult:
    """What a mutating call reports back on success."""

    kind: str
    message: str = ""
