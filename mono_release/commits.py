"""Conventional commit parsing and per-project commit filtering.

Headers follow ``type(scope)!: subject``. A ``!`` after the type/scope or a
``BREAKING CHANGE:`` footer marks a breaking change. Messages that do not
follow the convention are kept with ``type=None`` so they still count as a
patch-level change.

Commit messages can steer which projects a commit counts for:

    fix: tidy logging [skip api]        → ignored by api
    chore: bump tooling [skip all]      → ignored by every project
    feat: new flag [target cli, core]   → only counts for cli and core
    feat(web): new page                 → ignored by other known projects
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .models import CommitInfo

# Record/field separators for `git log --format`, chosen so they cannot
# appear in commit messages.
RECORD_SEP = "\x1e"
FIELD_SEP = "\x1f"
LOG_FORMAT = f"%H{FIELD_SEP}%B{RECORD_SEP}"

_HEADER_RE = re.compile(r"^(?P<type>\w+)(?:\((?P<scope>[^)]+)\))?(?P<bang>!)?: (?P<subject>.+)$")
_BREAKING_RE = re.compile(r"^BREAKING[ -]CHANGE:\s*(?P<message>.+)", re.MULTILINE)
_SKIP_RE = re.compile(r"\[skip\s+([^\]]+)\]", re.IGNORECASE)
_TARGET_RE = re.compile(r"\[(?:target|only)\s+([^\]]+)\]", re.IGNORECASE)


def parse_commit(sha: str, message: str) -> CommitInfo:
    """Parse a full commit message into a CommitInfo.

    Examples:
        "feat(api): add search" → type="feat", scope="api"
        "fix!: drop py3.9" → type="fix", breaking=True
        "Merge branch 'x'" → type=None, subject="Merge branch 'x'"
    """
    lines = message.strip().splitlines() or [""]
    header = lines[0].strip()
    body = "\n".join(lines[1:]).strip() or None

    match = _HEADER_RE.match(header)
    if not match:
        return CommitInfo(sha=sha, header=header, subject=header, body=body)

    breaking_match = _BREAKING_RE.search(body or "")
    return CommitInfo(
        sha=sha,
        header=header,
        type=match["type"].lower(),
        scope=match["scope"].strip() if match["scope"] else None,
        subject=match["subject"].strip(),
        body=body,
        breaking=bool(match["bang"]) or breaking_match is not None,
        breaking_message=breaking_match["message"].strip() if breaking_match else None,
    )


def parse_log(output: str) -> list[CommitInfo]:
    """Parse `git log --format=LOG_FORMAT` output, newest commit first."""
    commits: list[CommitInfo] = []
    for record in output.split(RECORD_SEP):
        record = record.strip("\n")
        if not record.strip():
            continue
        sha, _, message = record.partition(FIELD_SEP)
        commits.append(parse_commit(sha.strip(), message))
    return commits


def _names(raw: str) -> set[str]:
    return {n.strip() for n in raw.split(",") if n.strip()}


def commit_applies_to(
    commit: CommitInfo, project: str, known_projects: Iterable[str] = ()
) -> bool:
    """Decide whether a commit counts toward a project's release.

    Args:
        commit: The commit (already known to touch the project's files).
        project: Project being released.
        known_projects: All workspace project names. A conventional scope
            naming only other known projects excludes the commit; scopes
            that are not project names ("deps", "ci") never exclude.
    """
    text = commit.header if commit.body is None else f"{commit.header}\n{commit.body}"

    skip = _SKIP_RE.search(text)
    if skip and (_names(skip[1]) & {project, "all"}):
        return False

    target = _TARGET_RE.search(text)
    if target:
        return project in _names(target[1])

    if commit.scope:
        scopes = _names(commit.scope)
        if project in scopes:
            return True
        others = scopes & set(known_projects)
        if others and others == scopes:
            return False
    return True


def filter_commits_for_project(
    commits: Iterable[CommitInfo], project: str, known_projects: Iterable[str] = ()
) -> list[CommitInfo]:
    """Return the commits that count toward a project's release, in order."""
    known = set(known_projects)
    return [c for c in commits if commit_applies_to(c, project, known)]
