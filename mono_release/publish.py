"""Publish stage: hand a project's artifact to its registry."""

from __future__ import annotations

from collections.abc import Callable

from .config import RegistryConfig, ResolvedProjectConfig
from .errors import ConfigError
from .models import ArtifactResult, PublishResult, VersionDecision
from .registry import RegistryClient, create_registry

RegistryFactory = Callable[[RegistryConfig], RegistryClient]


def publish_project(
    decision: VersionDecision,
    config: ResolvedProjectConfig,
    artifact: ArtifactResult | None,
    *,
    registry_factory: RegistryFactory = create_registry,
    dry_run: bool = False,
) -> PublishResult:
    """Publish one project's release.

    Args:
        decision: The project's version decision.
        config: Its resolved configuration; `registry` must be set.
        artifact: Artifact packed in this run, if any.
        registry_factory: Builds the client for the registry config.
        dry_run: Report what would be published without contacting the
            registry.

    Raises:
        ConfigError: If no registry is configured.
        PublishRejected: If the registry refused the upload.
    """
    registry = config.registry
    if registry is None:
        raise ConfigError("No registry configured", project=config.name, stage="publish")
    artifact_path = artifact.path if artifact and not artifact.dry_run else None

    if dry_run:
        target = str(artifact.path) if artifact else (registry.publish_dir or config.name)
        print(f"  [dry-run] would publish {target} to {registry.type} ({registry.dist_tag})")
        return PublishResult(
            project=config.name,
            registry=registry.type,
            target=target,
            dist_tag=registry.dist_tag,
            access=registry.access,
            dry_run=True,
            url=registry.url,
        )

    client = registry_factory(registry)
    try:
        result = client.publish(
            artifact_path,
            registry.dist_tag,
            registry.access,
            version=decision.next_version,
            project=config.name,
        )
    finally:
        client.close()
    if result.published:
        print(f"  Published {config.name} {decision.next_version} → {result.target}")
    return result
