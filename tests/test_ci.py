"""Tests for mono_release.ci."""

from __future__ import annotations

import pytest

from mono_release.ci import CI_VARIABLES, ci_platform, is_ci


class TestCiDetection:
    def test_outside_ci(self) -> None:
        assert ci_platform({}) is None
        assert not is_ci({"HOME": "/root"})

    def test_github_actions(self) -> None:
        assert ci_platform({"GITHUB_ACTIONS": "true", "CI": "true"}) == "GitHub Actions"

    def test_presence_not_value(self) -> None:
        """Any non-empty value counts, even the literal "false"."""
        assert is_ci({"CI": "false"})

    def test_empty_value_ignored(self) -> None:
        assert not is_ci({"CI": ""})

    def test_priority_order(self) -> None:
        assert ci_platform({"CI": "1", "GITLAB_CI": "1"}) == "GitLab CI"

    @pytest.mark.parametrize(("var", "platform"), CI_VARIABLES)
    def test_every_variable(self, var: str, platform: str) -> None:
        assert ci_platform({var: "1"}) == platform

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for var, _ in CI_VARIABLES:
            monkeypatch.delenv(var, raising=False)
        assert not is_ci()
        monkeypatch.setenv("BUILDKITE", "true")
        assert ci_platform() == "Buildkite"
