"""Tests for mono_release.versions."""

from __future__ import annotations

import pytest

from mono_release.commits import parse_commit
from mono_release.versions import (
    bump_kind_between,
    bump_patch,
    bump_version,
    compare_versions,
    highest_version,
    infer_bump,
    is_valid_version,
    max_bump,
    parse_version,
    tags_by_precedence,
)


class TestParseVersion:
    def test_full_semver(self) -> None:
        v = parse_version("1.2.3")
        assert v.major == 1
        assert v.minor == 2
        assert v.patch == 3

    def test_two_part_version(self) -> None:
        v = parse_version("1.2")
        assert (v.major, v.minor, v.patch) == (1, 2, 0)

    def test_single_part_version(self) -> None:
        v = parse_version("5")
        assert (v.major, v.minor, v.patch) == (5, 0, 0)

    def test_leading_v(self) -> None:
        assert str(parse_version("v1.4.0")) == "1.4.0"

    def test_prerelease(self) -> None:
        assert parse_version("1.2.3-rc.1").prerelease == "rc.1"

    def test_invalid_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_version("not-a-version")


class TestIsValidVersion:
    def test_valid(self) -> None:
        assert is_valid_version("0.1.0")

    def test_invalid(self) -> None:
        assert not is_valid_version("latest")
        assert not is_valid_version("")


class TestCompare:
    def test_prerelease_sorts_before_release(self) -> None:
        assert compare_versions("1.3.0-rc.1", "1.3.0") < 0

    def test_numeric_not_lexical(self) -> None:
        assert compare_versions("1.10.0", "1.9.0") > 0

    def test_highest_version(self) -> None:
        assert highest_version(["1.2.0", "1.10.0", "1.9.9"]) == "1.10.0"

    def test_highest_version_empty(self) -> None:
        assert highest_version([]) is None


class TestTagsByPrecedence:
    def test_final_above_prerelease(self) -> None:
        tags = ["api@1.0.0-rc.1", "api@1.0.0", "api@1.0.0-rc.2", "api@0.9.0"]
        assert tags_by_precedence(tags, "api@*") == [
            "api@1.0.0",
            "api@1.0.0-rc.2",
            "api@1.0.0-rc.1",
            "api@0.9.0",
        ]

    def test_numeric_not_lexical(self) -> None:
        assert tags_by_precedence(["v1.9.0", "v1.10.0"], "v*") == ["v1.10.0", "v1.9.0"]

    def test_drops_non_matching_and_invalid(self) -> None:
        tags = ["core-v2.0.0", "core-vnext", "core-v", "web-v3.0.0"]
        assert tags_by_precedence(tags, "core-v*") == ["core-v2.0.0"]

    def test_suffix(self) -> None:
        assert tags_by_precedence(["api/1.2.0-final", "api/1.10.0-final"], "api/*-final") == [
            "api/1.10.0-final",
            "api/1.2.0-final",
        ]


class TestBumpVersion:
    @pytest.mark.parametrize(
        ("current", "kind", "expected"),
        [
            ("1.2.3", "patch", "1.2.4"),
            ("1.2.3", "minor", "1.3.0"),
            ("1.2.3", "major", "2.0.0"),
            ("1.2.3", "none", "1.2.3"),
            ("1.2.3", "prerelease", "1.2.4-rc.0"),
            ("1.2.4-rc.0", "prerelease", "1.2.4-rc.1"),
            ("1.3.0-rc.2", "minor", "1.3.0"),
            ("2.0.0-rc.1", "major", "2.0.0"),
            ("1.2.4-rc.1", "patch", "1.2.4"),
        ],
    )
    def test_bumps(self, current: str, kind: str, expected: str) -> None:
        assert bump_version(current, kind) == expected

    def test_prerelease_with_preid(self) -> None:
        assert bump_version("1.2.3", "prerelease", "beta") == "1.2.4-beta.0"

    def test_prerelease_switching_preid(self) -> None:
        assert bump_version("1.2.4-alpha.3", "prerelease", "beta") == "1.2.4-beta.0"

    def test_next_is_always_greater(self) -> None:
        for kind in ("prerelease", "patch", "minor", "major"):
            assert compare_versions(bump_version("0.9.9", kind), "0.9.9") > 0

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown bump kind"):
            bump_version("1.0.0", "huge")  # type: ignore[arg-type]


class TestBumpPatch:
    def test_bump_full_version(self) -> None:
        assert bump_patch("1.2.3") == "1.2.4"

    def test_bump_two_part(self) -> None:
        assert bump_patch("1.2") == "1.2.1"

    def test_bump_single_part(self) -> None:
        assert bump_patch("1") == "1.0.1"

    def test_bump_high_patch(self) -> None:
        assert bump_patch("1.0.99") == "1.0.100"


class TestBumpKinds:
    def test_kind_between(self) -> None:
        assert bump_kind_between("1.0.0", "1.0.0") == "none"
        assert bump_kind_between("1.0.0", "1.0.1") == "patch"
        assert bump_kind_between("1.0.0", "1.1.0") == "minor"
        assert bump_kind_between("1.0.0", "3.0.0") == "major"
        assert bump_kind_between("1.0.0", "1.0.1-rc.0") == "prerelease"

    def test_max_bump(self) -> None:
        assert max_bump(["patch", "minor", "none"]) == "minor"
        assert max_bump([]) == "none"


class TestInferBump:
    def _commits(self, *messages: str):
        return [parse_commit(f"{i:040x}", m) for i, m in enumerate(messages)]

    def test_no_commits_means_none(self) -> None:
        assert infer_bump([]) == "none"

    def test_feat_is_minor(self) -> None:
        assert infer_bump(self._commits("fix: a", "feat: b")) == "minor"

    def test_fix_is_patch(self) -> None:
        assert infer_bump(self._commits("fix: a")) == "patch"

    def test_unconventional_is_patch(self) -> None:
        assert infer_bump(self._commits("Update README")) == "patch"

    def test_breaking_wins(self) -> None:
        assert infer_bump(self._commits("feat: a", "fix!: drop old api")) == "major"

    def test_breaking_footer(self) -> None:
        commits = self._commits("refactor: x\n\nBREAKING CHANGE: config renamed")
        assert infer_bump(commits) == "major"
