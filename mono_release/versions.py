"""Version parsing and bumping utilities.

Handles conversion between version strings and semver objects, with
special handling for incomplete version strings (e.g., "1.0" → "1.0.0")
and npm-style prerelease semantics.
"""

from __future__ import annotations

from collections.abc import Iterable

import semver

from .models import BumpKind, CommitInfo

# Ordered from least to most severe.
BUMP_SEVERITY: dict[str, int] = {
    "none": 0,
    "prerelease": 1,
    "patch": 2,
    "minor": 3,
    "major": 4,
}


def parse_version(version_str: str) -> semver.Version:
    """Parse a version string into a semver.Version object.

    Handles incomplete versions by padding with zeros and tolerates a
    leading "v":
    - "1" → "1.0.0"
    - "v1.2" → "1.2.0"
    - "1.2.3-rc.1" → "1.2.3-rc.1"

    Raises:
        ValueError: If the string is not a semantic version.
    """
    text = version_str.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    return semver.Version.parse(text, optional_minor_and_patch=True)


def is_valid_version(version_str: str) -> bool:
    """Return True if version_str parses as a semantic version."""
    try:
        parse_version(version_str)
    except (ValueError, TypeError):
        return False
    return True


def compare_versions(a: str, b: str) -> int:
    """Compare two versions by semver precedence (-1, 0 or 1)."""
    return parse_version(a).compare(parse_version(b))


def highest_version(versions: Iterable[str]) -> str | None:
    """Return the highest version in the iterable, or None if empty."""
    best: str | None = None
    for v in versions:
        if best is None or compare_versions(v, best) > 0:
            best = v
    return best


def tags_by_precedence(tags: Iterable[str], pattern: str) -> list[str]:
    """Order tags matching a single-`*` glob by the version the `*` stands for.

    Highest semver precedence first, so "1.0.0" ranks above "1.0.0-rc.1".
    Tags whose version part does not parse are dropped.

    Example:
        tags_by_precedence(["api@1.0.0-rc.1", "api@1.0.0", "api@next"], "api@*")
            → ["api@1.0.0", "api@1.0.0-rc.1"]
    """
    head, _, tail = pattern.partition("*")
    ranked: list[tuple[semver.Version, str]] = []
    for tag in tags:
        if len(tag) <= len(head) + len(tail) or not (tag.startswith(head) and tag.endswith(tail)):
            continue
        text = tag[len(head) : len(tag) - len(tail)]
        if is_valid_version(text):
            ranked.append((parse_version(text), tag))
    ranked.sort(key=lambda pair: pair[0], reverse=True)
    return [tag for _, tag in ranked]


def bump_version(version_str: str, kind: BumpKind, preid: str | None = None) -> str:
    """Apply a bump kind to a version and return the new version string.

    Follows npm semver rules: bumping a prerelease by the release type it
    is a prerelease of finalizes it ("1.3.0-rc.2" + minor → "1.3.0"), and a
    prerelease bump of a final version moves to the next patch
    ("1.2.3" + prerelease → "1.2.4-rc.0").

    Examples:
        "1.2.3" + patch → "1.2.4"
        "1.2.3" + minor → "1.3.0"
        "1.0" + major → "2.0.0"
        "1.2.4-beta.0" + prerelease → "1.2.4-beta.1"

    Raises:
        ValueError: If the result would not be greater than the input.
    """
    current = parse_version(version_str)
    if kind == "none":
        return str(current)

    if kind == "major":
        if current.prerelease and current.minor == 0 and current.patch == 0:
            result = current.finalize_version()
        else:
            result = current.bump_major()
    elif kind == "minor":
        if current.prerelease and current.patch == 0:
            result = current.finalize_version()
        else:
            result = current.bump_minor()
    elif kind == "patch":
        if current.prerelease:
            result = current.finalize_version()
        else:
            result = current.bump_patch()
    elif kind == "prerelease":
        token = preid or "rc"
        if current.prerelease is None:
            result = current.bump_patch().replace(prerelease=f"{token}.0")
        elif preid and current.prerelease.split(".")[0] != preid:
            result = current.finalize_version().replace(prerelease=f"{preid}.0")
        else:
            result = current.bump_prerelease()
            if result.compare(current) <= 0:
                # identifiers without a numeric part ("1.0.0-beta")
                result = current.replace(prerelease=f"{current.prerelease}.0")
    else:
        raise ValueError(f"Unknown bump kind: {kind}")

    if result.compare(current) <= 0:
        raise ValueError(f"Bumping {version_str} by {kind} does not increase it")
    return str(result)


def bump_patch(version_str: str) -> str:
    """Increment the patch version and return as a string.

    Examples:
        "1.2.3" → "1.2.4"
        "1.0" → "1.0.1"
        "2" → "2.0.1"
    """
    return bump_version(version_str, "patch")


def bump_kind_between(current: str, new: str) -> BumpKind:
    """Classify the change from current to new as a bump kind."""
    a = parse_version(current)
    b = parse_version(new)
    if a.compare(b) == 0:
        return "none"
    if b.prerelease:
        return "prerelease"
    if b.major != a.major:
        return "major"
    if b.minor != a.minor:
        return "minor"
    return "patch"


def max_bump(kinds: Iterable[BumpKind]) -> BumpKind:
    """Return the most severe bump kind of the iterable ("none" if empty)."""
    best: BumpKind = "none"
    for kind in kinds:
        if BUMP_SEVERITY[kind] > BUMP_SEVERITY[best]:
            best = kind
    return best


def infer_bump(commits: Iterable[CommitInfo]) -> BumpKind:
    """Infer the bump kind from conventional commits.

    A breaking change means major, a feature means minor, any other commit
    means patch, and no commits at all means no release.
    """
    kind: BumpKind = "none"
    for commit in commits:
        if commit.breaking:
            return "major"
        if commit.type == "feat":
            kind = "minor"
        elif kind == "none":
            kind = "patch"
    return kind
