# gitpane/integrations/GitBridge.py
"""GitBridge.py
========================
Repository backend for gitpane.

This module defines the contract the job engine needs from a repository
(`RepositoryBackend`) and its implementation over the `git` executable
(`GitBridge`). All calls are synchronous and blocking; the engine runs them
on worker threads. Every call accepts an optional cancel token. Commands are
started through `run_cancellable`, which kills the child process as soon as
the token is set, so an abandoned read releases its process within one poll
interval.

The bridge contains no UI code. Results are immutable snapshots from
`gitpane.core.Snapshots`; failures are raised as `BackendError`.
"""

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

from gitpane.core.Errors import BackendError
from gitpane.core.Snapshots import (
    BlameLine,
    BlameResult,
    BranchInfo,
    ChangeFlag,
    CommitSummary,
    DiffHunk,
    DiffLine,
    FileDiff,
    FileStatus,
    LineTag,
    LogSlice,
    MutationResult,
    StashEntry,
    StatusSnapshot,
)
from gitpane.integrations.SyntaxHighlighter import SyntaxHighlighter
from gitpane.utils.utils import decode_output, run_cancellable, safe_run


if TYPE_CHECKING:
    from gitpane.core.Jobs import CancelToken


logger = logging.getLogger("gitpane")

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
TRACK_RE = re.compile(r"(ahead|behind) (\d+)")
STASH_REF_RE = re.compile(r"^stash@\{(\d+)\}$")

CONFLICT_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})
STASH_MODES = ("save", "apply", "pop", "drop")


# ================= Backend contract ==============================
class RepositoryBackend(Protocol):
    """What the job engine requires from a repository."""

    def status(self, cancel_token: Optional["CancelToken"] = None) -> StatusSnapshot: ...

    def diff(
        self,
        path: str,
        context_lines: int = 3,
        staged: bool = False,
        cancel_token: Optional["CancelToken"] = None,
    ) -> FileDiff: ...

    def log(
        self, start: int, limit: int, cancel_token: Optional["CancelToken"] = None
    ) -> LogSlice: ...

    def blame(self, path: str, cancel_token: Optional["CancelToken"] = None) -> BlameResult: ...

    def branches(
        self, cancel_token: Optional["CancelToken"] = None
    ) -> tuple[BranchInfo, ...]: ...

    def stashes(
        self, cancel_token: Optional["CancelToken"] = None
    ) -> tuple[StashEntry, ...]: ...

    def stage(
        self, paths: Sequence[str], cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult: ...

    def unstage(
        self, paths: Sequence[str], cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult: ...

    def commit(
        self,
        message: str,
        no_verify: bool = False,
        cancel_token: Optional["CancelToken"] = None,
    ) -> MutationResult: ...

    def push(
        self, force: bool = False, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult: ...

    def pull(self, cancel_token: Optional["CancelToken"] = None) -> MutationResult: ...

    def fetch(self, cancel_token: Optional["CancelToken"] = None) -> MutationResult: ...

    def rebase(
        self, onto: str, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult: ...

    def stash(
        self,
        mode: str,
        message: str = "",
        index: int = 0,
        cancel_token: Optional["CancelToken"] = None,
    ) -> MutationResult: ...

    def checkout(
        self, branch: str, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult: ...

    def rename_branch(
        self, old: str, new: str, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult: ...


# ================= GitBridge Class ==============================
class GitBridge:
    """Repository backend over the `git` command line.

    Each call starts its own `git` process, so read-only calls can run on
    several workers at once. Read-only commands are run with
    ``GIT_OPTIONAL_LOCKS=0`` so that `git status` never takes the index lock
    a concurrent mutation needs.
    """

    def __init__(
        self,
        repo_path: os.PathLike | str,
        highlighter: Optional[SyntaxHighlighter] = None,
        git_executable: str = "git",
    ) -> None:
        self.repo_path = Path(repo_path)
        self.highlighter = highlighter or SyntaxHighlighter()
        self.git_executable = git_executable
        self._env = dict(os.environ)
        # Never block a worker on a credential prompt.
        self._env["GIT_TERMINAL_PROMPT"] = "0"
        self._read_env = dict(self._env, GIT_OPTIONAL_LOCKS="0")

    # ---------------------- discovery ----------------------
    @classmethod
    def discover(cls, start: os.PathLike | str, **kwargs: Any) -> "GitBridge":
        """Builds a bridge for the repository containing ``start``.

        Raises:
            BackendError: ``start`` is not inside a git work tree.
        """
        cmd = ["git", "rev-parse", "--show-toplevel"]
        result = safe_run(cmd, cwd=str(start), timeout=5)
        if result.returncode != 0 or not result.stdout.strip():
            raise BackendError(
                f"Not a git repository: {start}",
                command=cmd,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return cls(result.stdout.strip(), **kwargs)

    def git_dir(self) -> Path:
        """Absolute path of the repository's git directory."""
        result = safe_run(
            [self.git_executable, "rev-parse", "--absolute-git-dir"],
            cwd=str(self.repo_path),
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            return Path(result.stdout.strip())
        return self.repo_path / ".git"

    # ---------------------- process plumbing ----------------------
    def _run(
        self,
        args: Sequence[str],
        cancel_token: Optional["CancelToken"] = None,
        read_only: bool = True,
        ok_codes: Sequence[int] = (0,),
    ) -> str:
        """Runs one git command and returns its decoded stdout.

        Raises:
            BackendError: git could not be started or exited with a code not
                in ``ok_codes``.
            JobCancelled: the token was set while the command was running.
        """
        cmd = [self.git_executable, "-c", "color.ui=false", *args]
        try:
            result = run_cancellable(
                cmd,
                cancel_token=cancel_token,
                cwd=self.repo_path,
                env=self._read_env if read_only else self._env,
            )
        except OSError as e:
            raise BackendError(f"Could not run git: {e}", command=cmd) from e

        if result.returncode not in ok_codes:
            stderr = decode_output(result.stderr or b"").strip()
            raise BackendError(
                f"git {args[0]} failed",
                command=cmd,
                returncode=result.returncode,
                stderr=stderr,
            )
        return decode_output(result.stdout or b"")

    def _has_head(self, cancel_token: Optional["CancelToken"] = None) -> bool:
        try:
            self._run(["rev-parse", "--verify", "-q", "HEAD"], cancel_token)
        except BackendError:
            return False
        return True

    # ---------------------- read-only calls ----------------------
    def status(self, cancel_token: Optional["CancelToken"] = None) -> StatusSnapshot:
        out = self._run(
            ["status", "--porcelain=v1", "-z", "--branch", "--untracked-files=all"],
            cancel_token,
        )
        return parse_status(out)

    def diff(
        self,
        path: str,
        context_lines: int = 3,
        staged: bool = False,
        cancel_token: Optional["CancelToken"] = None,
    ) -> FileDiff:
        args = ["diff", f"-U{max(0, int(context_lines))}", "--no-ext-diff"]
        if staged:
            args.append("--cached")
        out = self._run([*args, "--", path], cancel_token)

        if not out and not staged:
            untracked = self._run(
                ["ls-files", "--others", "--exclude-standard", "--", path], cancel_token
            )
            if untracked.strip():
                # `--no-index` exits 1 when the files differ.
                out = self._run(
                    ["diff", f"-U{max(0, int(context_lines))}", "--no-index",
                     "--", os.devnull, path],
                    cancel_token,
                    ok_codes=(0, 1),
                )

        file_diff = parse_diff(out, path, staged)
        return self._highlight_diff(file_diff, cancel_token)

    def log(
        self, start: int, limit: int, cancel_token: Optional["CancelToken"] = None
    ) -> LogSlice:
        if not self._has_head(cancel_token):
            return LogSlice(start=start)
        fmt = FIELD_SEP.join(("%H", "%P", "%an", "%at", "%s")) + RECORD_SEP
        out = self._run(
            ["log", f"--format={fmt}", f"--skip={max(0, start)}",
             f"--max-count={limit + 1}", "HEAD"],
            cancel_token,
        )
        commits = parse_log(out)
        return LogSlice(
            start=start, commits=tuple(commits[:limit]), has_more=len(commits) > limit
        )

    def blame(self, path: str, cancel_token: Optional["CancelToken"] = None) -> BlameResult:
        out = self._run(["blame", "--porcelain", "--", path], cancel_token)
        result = parse_blame(out, path)
        tokens = self.highlighter.tokenize_lines(
            path, (line.content for line in result.lines), cancel_token
        )
        lines = tuple(
            BlameLine(l.lineno, l.commit_id, l.author, l.time, l.content, t)
            for l, t in zip(result.lines, tokens)
        )
        return BlameResult(path, lines)

    def branches(self, cancel_token: Optional["CancelToken"] = None) -> tuple[BranchInfo, ...]:
        fmt = "%1f".join(
            ("%(HEAD)", "%(refname:short)", "%(upstream:short)", "%(upstream:track,nobracket)")
        )
        out = self._run(
            ["for-each-ref", f"--format={fmt}", "--sort=refname", "refs/heads"],
            cancel_token,
        )
        return parse_branches(out)

    def stashes(self, cancel_token: Optional["CancelToken"] = None) -> tuple[StashEntry, ...]:
        out = self._run(["stash", "list", f"--format=%gd{FIELD_SEP}%gs"], cancel_token)
        return parse_stashes(out)

    # ---------------------- mutating calls ----------------------
    def stage(
        self, paths: Sequence[str], cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult:
        if not paths:
            return MutationResult("stage", "Nothing to stage")
        self._run(["add", "-A", "--", *paths], cancel_token, read_only=False)
        return MutationResult("stage", _count_message("Staged", paths))

    def unstage(
        self, paths: Sequence[str], cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult:
        if not paths:
            return MutationResult("unstage", "Nothing to unstage")
        if self._has_head(cancel_token):
            self._run(["reset", "-q", "HEAD", "--", *paths], cancel_token, read_only=False)
        else:
            self._run(["rm", "--cached", "-r", "-q", "--", *paths], cancel_token, read_only=False)
        return MutationResult("unstage", _count_message("Unstaged", paths))

    def commit(
        self,
        message: str,
        no_verify: bool = False,
        cancel_token: Optional["CancelToken"] = None,
    ) -> MutationResult:
        if not message.strip():
            raise BackendError("Commit message is empty")
        args = ["commit", "-m", message]
        if no_verify:
            args.append("--no-verify")
        out = self._run(args, cancel_token, read_only=False)
        return MutationResult("commit", _first_line(out) or "Committed")

    def push(
        self, force: bool = False, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult:
        args = ["push"]
        if force:
            args.append("--force-with-lease")
        try:
            self._run(
                ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"], cancel_token
            )
        except BackendError:
            remote = self._default_remote(cancel_token)
            args += ["--set-upstream", remote, "HEAD"]
        self._run(args, cancel_token, read_only=False)
        return MutationResult("push", "Force pushed" if force else "Pushed")

    def pull(self, cancel_token: Optional["CancelToken"] = None) -> MutationResult:
        out = self._run(["pull", "--no-edit"], cancel_token, read_only=False)
        return MutationResult("pull", _first_line(out) or "Pulled")

    def fetch(self, cancel_token: Optional["CancelToken"] = None) -> MutationResult:
        self._run(["fetch", "--all", "--prune"], cancel_token, read_only=False)
        return MutationResult("fetch", "Fetched")

    def rebase(
        self, onto: str, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult:
        self._run(["rebase", onto], cancel_token, read_only=False)
        return MutationResult("rebase", f"Rebased onto {onto}")

    def stash(
        self,
        mode: str,
        message: str = "",
        index: int = 0,
        cancel_token: Optional["CancelToken"] = None,
    ) -> MutationResult:
        if mode not in STASH_MODES:
            raise BackendError(f"Unknown stash mode: {mode!r}")
        if mode == "save":
            args = ["stash", "push", "--include-untracked"]
            if message:
                args += ["-m", message]
            self._run(args, cancel_token, read_only=False)
            return MutationResult("stash", "Stashed changes")
        self._run(["stash", mode, f"stash@{{{int(index)}}}"], cancel_token, read_only=False)
        past = {"apply": "Applied", "pop": "Popped", "drop": "Dropped"}[mode]
        return MutationResult("stash", f"{past} stash@{{{int(index)}}}")

    def checkout(
        self, branch: str, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult:
        self._run(["checkout", branch], cancel_token, read_only=False)
        return MutationResult("checkout", f"Switched to {branch}")

    def rename_branch(
        self, old: str, new: str, cancel_token: Optional["CancelToken"] = None
    ) -> MutationResult:
        if not new.strip():
            raise BackendError("New branch name is empty")
        self._run(["branch", "-m", old, new.strip()], cancel_token, read_only=False)
        return MutationResult("rename_branch", f"Renamed {old} to {new.strip()}")

    # ---------------------- helpers ----------------------
    def _default_remote(self, cancel_token: Optional["CancelToken"] = None) -> str:
        remotes = self._run(["remote"], cancel_token).split()
        if not remotes:
            raise BackendError("No remote configured")
        return "origin" if "origin" in remotes else remotes[0]

    def _highlight_diff(
        self, file_diff: FileDiff, cancel_token: Optional["CancelToken"] = None
    ) -> FileDiff:
        if file_diff.binary or not file_diff.hunks:
            return file_diff
        lines = [line for hunk in file_diff.hunks for line in hunk.lines]
        tokens = iter(
            self.highlighter.tokenize_lines(
                file_diff.path, (line.content for line in lines), cancel_token
            )
        )
        hunks = tuple(
            DiffHunk(
                hunk.header,
                tuple(
                    DiffLine(l.tag, l.content, l.old_lineno, l.new_lineno, next(tokens))
                    for l in hunk.lines
                ),
            )
            for hunk in file_diff.hunks
        )
        return FileDiff(file_diff.path, hunks, file_diff.binary, file_diff.staged)


# ================= Output parsers ==============================
def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _count_message(verb: str, paths: Sequence[str]) -> str:
    if len(paths) == 1:
        return f"{verb} {paths[0]}"
    return f"{verb} {len(paths)} files"


def _branch_from_header(header: str) -> str:
    text = header[3:] if header.startswith("## ") else header
    for prefix in ("No commits yet on ", "Initial commit on "):
        if text.startswith(prefix):
            return text[len(prefix):]
    if text.startswith("HEAD (no branch)"):
        return "HEAD (detached)"
    return text.split("...", 1)[0].split(" ", 1)[0]


def parse_status(out: str) -> StatusSnapshot:
    """Parses ``git status --porcelain=v1 -z --branch``."""
    entries = out.split("\0")
    branch = ""
    files: list[FileStatus] = []
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if not entry:
            continue
        if entry.startswith("## "):
            branch = _branch_from_header(entry)
            continue
        code, path = entry[:2], entry[3:]
        old_path = None
        if "R" in code or "C" in code:
            # Renames and copies carry the source path as the next entry.
            old_path = entries[i] if i < len(entries) else None
            i += 1
        x, y = code[0], code[1]
        if code == "??":
            files.append(FileStatus(path, ChangeFlag.UNTRACKED, staged=False))
        elif code in CONFLICT_CODES:
            files.append(FileStatus(path, ChangeFlag.CONFLICTED, staged=False))
        else:
            if x not in (" ", "?", "!"):
                files.append(FileStatus(path, ChangeFlag.from_code(x), True, old_path))
            if y not in (" ", "?", "!"):
                files.append(FileStatus(path, ChangeFlag.from_code(y), False, old_path))
    return StatusSnapshot(branch=branch, files=tuple(files))


def parse_diff(out: str, path: str, staged: bool = False) -> FileDiff:
    """Parses unified diff output for a single file."""
    hunks: list[DiffHunk] = []
    header: Optional[str] = None
    lines: list[DiffLine] = []
    old_no = new_no = 0
    binary = False

    # Only "\n" ends a diff line; content may hold form feeds or U+2028.
    rows = out.split("\n")
    if rows and rows[-1] == "":
        rows.pop()
    for raw in rows:
        match = HUNK_HEADER_RE.match(raw)
        if match:
            if header is not None:
                hunks.append(DiffHunk(header, tuple(lines)))
            header, lines = raw, []
            old_no, new_no = int(match.group(1)), int(match.group(3))
            continue
        if header is None:
            if raw.startswith("Binary files ") or raw.startswith("GIT binary patch"):
                binary = True
            continue
        if raw.startswith("+"):
            lines.append(DiffLine(LineTag.ADD, raw[1:], None, new_no))
            new_no += 1
        elif raw.startswith("-"):
            lines.append(DiffLine(LineTag.REMOVE, raw[1:], old_no, None))
            old_no += 1
        elif raw.startswith(" ") or raw == "":
            lines.append(DiffLine(LineTag.CONTEXT, raw[1:], old_no, new_no))
            old_no += 1
            new_no += 1
        # "\ No newline at end of file" and anything else is not content.

    if header is not None:
        hunks.append(DiffHunk(header, tuple(lines)))
    return FileDiff(path=path, hunks=tuple(hunks), binary=binary, staged=staged)


def parse_log(out: str) -> list[CommitSummary]:
    commits: list[CommitSummary] = []
    for record in out.split(RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split(FIELD_SEP)
        if len(fields) < 5:
            logger.warning(f"Skipping malformed log record: {record[:80]!r}")
            continue
        commit_id, parents, author, timestamp, summary = fields[:5]
        commits.append(
            CommitSummary(
                id=commit_id,
                author=author,
                time=int(timestamp) if timestamp.isdigit() else 0,
                summary=summary,
                parents=tuple(parents.split()),
            )
        )
    return commits


def parse_blame(out: str, path: str) -> BlameResult:
    """Parses ``git blame --porcelain``.

    Commit metadata appears only the first time a commit is mentioned, so it
    is remembered per commit id.
    """
    commits: dict[str, dict[str, Any]] = {}
    lines: list[BlameLine] = []
    current: Optional[str] = None
    final_lineno = 0

    for raw in out.split("\n"):
        if raw.startswith("\t"):
            if current is None:
                continue
            meta = commits.get(current, {})
            lines.append(
                BlameLine(
                    lineno=final_lineno,
                    commit_id=current,
                    author=meta.get("author", ""),
                    time=meta.get("author-time", 0),
                    content=raw[1:],
                )
            )
            current = None
            continue
        parts = raw.split(" ")
        if len(parts) >= 3 and len(parts[0]) >= 40 and parts[1].isdigit() and parts[2].isdigit():
            current = parts[0]
            final_lineno = int(parts[2])
            commits.setdefault(current, {})
            continue
        if current is None or not raw:
            continue
        key, _, value = raw.partition(" ")
        if key == "author":
            commits[current]["author"] = value
        elif key == "author-time" and value.isdigit():
            commits[current]["author-time"] = int(value)

    return BlameResult(path=path, lines=tuple(lines))


def parse_branches(out: str) -> tuple[BranchInfo, ...]:
    branches: list[BranchInfo] = []
    for line in out.split("\n"):
        if not line.strip():
            continue
        fields = line.split(FIELD_SEP)
        fields += [""] * (4 - len(fields))
        head, name, upstream, track = fields[:4]
        counts = {k: int(v) for k, v in TRACK_RE.findall(track)}
        branches.append(
            BranchInfo(
                name=name,
                is_head=head.strip() == "*",
                upstream=upstream or None,
                ahead=counts.get("ahead", 0),
                behind=counts.get("behind", 0),
            )
        )
    return tuple(branches)


def parse_stashes(out: str) -> tuple[StashEntry, ...]:
    entries: list[StashEntry] = []
    for line in out.split("\n"):
        if not line.strip():
            continue
        ref, _, message = line.partition(FIELD_SEP)
        match = STASH_REF_RE.match(ref)
        index = int(match.group(1)) if match else len(entries)
        entries.append(StashEntry(index=index, ref=ref, message=message))
    return tuple(entries)
