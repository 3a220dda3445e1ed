"""CI environment detection.

A variable counts when it is set to any non-empty value, including "false":
presence is the signal, not the literal value.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

# (variable, platform) in detection priority order
CI_VARIABLES: list[tuple[str, str]] = [
    ("GITHUB_ACTIONS", "GitHub Actions"),
    ("GITLAB_CI", "GitLab CI"),
    ("CIRCLECI", "CircleCI"),
    ("TRAVIS", "Travis CI"),
    ("JENKINS_URL", "Jenkins"),
    ("BUILDKITE", "Buildkite"),
    ("DRONE", "Drone"),
    ("SEMAPHORE", "Semaphore"),
    ("BITBUCKET_PIPELINE", "Bitbucket Pipelines"),
    ("AZURE_PIPELINES", "Azure Pipelines"),
    ("TF_BUILD", "Azure Pipelines"),
    ("CODEBUILD_BUILD_ID", "AWS CodeBuild"),
    ("CI", "Unknown CI"),
    ("CONTINUOUS_INTEGRATION", "Unknown CI"),
]


def ci_platform(env: Mapping[str, str] | None = None) -> str | None:
    """Name of the detected CI platform, or None outside CI."""
    env = os.environ if env is None else env
    for var, name in CI_VARIABLES:
        if env.get(var):
            return name
    return None


def is_ci(env: Mapping[str, str] | None = None) -> bool:
    return ci_platform(env) is not None
