"""Exception taxonomy for the release pipeline.

Every error carries the project and stage it happened in (when known) so the
orchestrator can record a reproducible failure. Only CyclicDependency and
configuration errors abort a whole run; everything else is scoped to a single
project's pipeline.
"""

from __future__ import annotations


class ReleaseError(Exception):
    """Base class for all release failures."""

    def __init__(
        self, message: str, *, project: str | None = None, stage: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.project = project
        self.stage = stage

    def __str__(self) -> str:
        if self.project:
            return f"{self.project}: {self.message}"
        return self.message


class ConfigError(ReleaseError):
    """Invalid or inconsistent release configuration."""


class UnsupportedFormat(ConfigError):
    """An archive format with no registered encoder."""


class InvalidTagName(ConfigError):
    """A tag template rendered to something git cannot use as a tag."""


class UnresolvableVersion(ReleaseError):
    """No version source produced a usable version.

    Attributes:
        attempts: One "source: reason" line per source that was tried.
    """

    def __init__(
        self, message: str, *, project: str | None = None, attempts: list[str] | None = None
    ) -> None:
        super().__init__(message, project=project, stage="version")
        self.attempts = attempts or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.attempts:
            return base
        return base + "\n" + "\n".join(f"  - {a}" for a in self.attempts)


class CyclicDependency(ReleaseError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Dependency cycle detected involving: {' -> '.join(cycle)}")
        self.cycle = cycle


class NoMatchingFiles(ReleaseError):
    """Include/exclude patterns selected no files to pack."""


class StageIOFailure(ReleaseError):
    """A file read or write failed inside a stage."""


class PublishRejected(ReleaseError):
    """The registry refused the upload. Never retried automatically."""


class InteractiveEditFailure(ReleaseError):
    """The changelog editor could not be run. Non-fatal."""
