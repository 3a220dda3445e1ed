"""Tests for mono_release.publish."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mono_release.config import (
    GlobalReleaseConfig,
    ProjectReleaseConfig,
    resolve_project_config,
)
from mono_release.errors import ConfigError, PublishRejected
from mono_release.models import ArtifactResult, PublishResult, VersionDecision
from mono_release.publish import publish_project

DECISION = VersionDecision(
    project="web",
    current_version="1.0.0",
    next_version="1.1.0",
    bump="minor",
    source="manifest:package.json",
    tag="web@1.1.0",
)


def _config(registry: dict | None):
    data = {"registry": registry} if registry else {}
    return resolve_project_config(
        "web", ProjectReleaseConfig.model_validate(data), GlobalReleaseConfig()
    )


def _artifact(tmp_path: Path, dry_run: bool = False) -> ArtifactResult:
    return ArtifactResult(
        project="web", format="tgz", path=tmp_path / "web-1.1.0.tgz", size=10, file_count=1, dry_run=dry_run
    )


class TestPublishProject:
    def test_calls_registry(self, tmp_path: Path) -> None:
        client = MagicMock()
        client.publish.return_value = PublishResult(
            project="web", registry="npm", target="t", dist_tag="next", access="public", published=True
        )
        factory = MagicMock(return_value=client)
        config = _config({"type": "npm", "dist-tag": "next"})

        result = publish_project(DECISION, config, _artifact(tmp_path), registry_factory=factory)

        assert result.published
        factory.assert_called_once_with(config.registry)
        client.publish.assert_called_once_with(
            tmp_path / "web-1.1.0.tgz", "next", "public", version="1.1.0", project="web"
        )
        client.close.assert_called_once_with()

    def test_rejection_still_closes_client(self, tmp_path: Path) -> None:
        client = MagicMock()
        client.publish.side_effect = PublishRejected("403", project="web", stage="publish")
        with pytest.raises(PublishRejected):
            publish_project(
                DECISION, _config({"type": "npm"}), _artifact(tmp_path), registry_factory=MagicMock(return_value=client)
            )
        client.close.assert_called_once_with()

    def test_dry_run_never_contacts_registry(self, tmp_path: Path) -> None:
        factory = MagicMock()
        result = publish_project(
            DECISION, _config({"type": "npm"}), _artifact(tmp_path, dry_run=True),
            registry_factory=factory, dry_run=True,
        )
        assert result.dry_run
        assert not result.published
        assert result.target == str(tmp_path / "web-1.1.0.tgz")
        factory.assert_not_called()

    def test_no_registry(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="No registry configured"):
            publish_project(DECISION, _config(None), None, registry_factory=MagicMock())

    def test_without_artifact(self) -> None:
        client = MagicMock()
        factory = MagicMock(return_value=client)
        publish_project(DECISION, _config({"type": "npm", "publish-dir": "packages/web"}), None,
                        registry_factory=factory)
        assert client.publish.call_args.args[0] is None
