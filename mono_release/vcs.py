"""Version control access for the release pipeline.

Git wraps the handful of git operations the pipeline needs. Read operations
always run; mutating operations (commit, tag, push) print what they would do
and return without touching the repository when the instance is in dry-run
mode. Tests substitute any object with the same methods.
"""

from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path

from .commits import LOG_FORMAT, parse_log
from .errors import StageIOFailure
from .models import CommitInfo
from .shell import git
from .versions import tags_by_precedence


class Git:
    """Git operations rooted at a workspace directory.

    Args:
        root: Repository (workspace) root.
        dry_run: If True, mutating calls are reported but not executed.
    """

    def __init__(self, root: Path, *, dry_run: bool = False) -> None:
        self.root = root
        self.dry_run = dry_run

    def _git(self, *args: str, check: bool = True) -> str:
        return git(*args, cwd=self.root, check=check)

    def _mutate(self, *args: str, stage: str) -> None:
        if self.dry_run:
            print(f"  [dry-run] git {' '.join(args)}")
            return
        try:
            self._git(*args)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or str(e)
            raise StageIOFailure(f"git {args[0]} failed: {detail}", stage=stage) from e

    # Read operations

    def current_short_hash(self) -> str:
        return self._git("rev-parse", "--short", "HEAD", check=False) or "unknown"

    def resolve_ref(self, ref: str) -> str:
        """Resolve a ref (tag, branch, HEAD) to a full commit sha.

        Raises:
            StageIOFailure: If the ref does not exist.
        """
        sha = self._git("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        if not sha:
            raise StageIOFailure(f"Unknown git ref '{ref}'")
        return sha

    def tag_exists(self, name: str) -> bool:
        return bool(self._git("tag", "--list", name, check=False))

    def list_tags(self, pattern: str) -> list[str]:
        """Tags matching a glob pattern, in no particular order."""
        return self._git("tag", "--list", pattern, check=False).splitlines()

    def latest_tag_matching(self, pattern: str) -> str | None:
        """Highest tag matching pattern by semver precedence of its version."""
        tags = tags_by_precedence(self.list_tags(pattern), pattern)
        return tags[0] if tags else None

    def commits_since(
        self, ref: str | None, to: str = "HEAD", paths: Sequence[str] | None = None
    ) -> list[CommitInfo]:
        """Commits in ref..to (all commits up to `to` when ref is None).

        Merge commits are skipped. With paths, only commits touching them.
        """
        rev = f"{ref}..{to}" if ref else to
        args = ["log", f"--format={LOG_FORMAT}", "--no-merges", rev]
        if paths:
            args += ["--", *paths]
        return parse_log(self._git(*args, check=False))

    def changed_files_since(self, ref: str, to: str = "HEAD") -> set[str]:
        """Repository-relative paths changed between ref and to."""
        return set(self._git("diff", "--name-only", ref, to, check=False).splitlines())

    # Mutating operations

    def commit(self, message: str, paths: Sequence[str]) -> None:
        if not paths:
            return
        self._mutate("add", "--", *paths, stage="tag")
        if not self.dry_run:
            staged = self._git("diff", "--cached", "--name-only", check=False)
            if not staged:
                print("  Nothing to commit")
                return
        self._mutate("commit", "-m", message, stage="tag")

    def create_tag(self, name: str, message: str | None = None) -> None:
        if message:
            self._mutate("tag", "-a", name, "-m", message, stage="tag")
        else:
            self._mutate("tag", name, stage="tag")

    def push(self, remote: str = "origin", *, tags: Sequence[str] = ()) -> None:
        self._mutate("push", remote, "HEAD", *tags, stage="tag")
