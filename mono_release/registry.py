"""Registry clients.

A registry client uploads a packed artifact and can report the latest
version it has published. Three kinds are built in:

- ``npm``: ``npm publish`` through the npm CLI
- ``http``: HTTP PUT upload (Nexus-style raw repositories) via httpx, with
  sha1/md5 checksum headers and an optional "already uploaded" check
- ``command``: any shell command template

Publishing is attempted once; rejected uploads raise PublishRejected and
are never retried.
"""

from __future__ import annotations

import hashlib
import os
import shlex
import subprocess
from pathlib import Path

import httpx

from .config import RegistryConfig
from .errors import ConfigError, PublishRejected, StageIOFailure
from .models import PublishResult
from .shell import capture, run


def file_checksums(path: Path) -> tuple[str, str]:
    """Return (sha1, md5) hex digests of a file."""
    sha1 = hashlib.sha1()
    md5 = hashlib.md5()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            sha1.update(chunk)
            md5.update(chunk)
    return sha1.hexdigest(), md5.hexdigest()


class RegistryClient:
    """Base class for registry clients."""

    name = "registry"

    def __init__(self, config: RegistryConfig) -> None:
        self.config = config

    def publish(
        self,
        artifact_path: Path | None,
        dist_tag: str,
        access: str,
        *,
        version: str,
        project: str,
    ) -> PublishResult:
        raise NotImplementedError

    def latest_version(self, project: str) -> str | None:
        return None

    def close(self) -> None:
        """Release connections held by the client."""

    def _result(self, project: str, target: str, dist_tag: str, access: str, **kw) -> PublishResult:
        return PublishResult(
            project=project,
            registry=self.name,
            target=target,
            dist_tag=dist_tag,
            access=access,
            **kw,
        )


class NpmRegistry(RegistryClient):
    name = "npm"

    def _registry_args(self) -> list[str]:
        return ["--registry", self.config.url] if self.config.url else []

    def publish(self, artifact_path, dist_tag, access, *, version, project):
        target = artifact_path or (Path(self.config.publish_dir) if self.config.publish_dir else None)
        if target is None:
            raise ConfigError("npm publish needs an artifact or registry.publish-dir", project=project, stage="publish")
        try:
            result = run(
                "npm", "publish", str(target), "--tag", dist_tag, "--access", access,
                *self._registry_args(), check=False,
            )
        except OSError as e:
            raise PublishRejected(f"Could not run npm: {e}", project=project, stage="publish") from e
        if result.returncode != 0:
            raise PublishRejected(
                f"npm publish exited with status {result.returncode}", project=project, stage="publish"
            )
        return self._result(project, str(target), dist_tag, access, published=True, url=self.config.url)

    def latest_version(self, project):
        return capture("npm", "view", project, "version", *self._registry_args()) or None


class HttpRegistry(RegistryClient):
    """Uploads to ``{url}/repository/{repository}/{version|sha1}/{file}``.

    Credentials come from the environment variables named by
    `username-env` and `password-env`; both must be set to use them.
    """

    name = "http"

    def __init__(self, config: RegistryConfig, *, client: httpx.Client | None = None) -> None:
        super().__init__(config)
        if not config.url:
            raise ConfigError("registry.url is required for http registries", stage="publish")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=60.0, follow_redirects=True)

    def close(self) -> None:
        # an injected client belongs to the caller
        if self._owns_client:
            self._client.close()

    def _auth(self) -> tuple[str, str] | None:
        user = os.environ.get(self.config.username_env)
        password = os.environ.get(self.config.password_env)
        if user and password:
            return user, password
        return None

    def upload_url(self, artifact_path: Path, version: str, sha1: str) -> str:
        base = self.config.url.rstrip("/")
        if self.config.repository:
            base = f"{base}/repository/{self.config.repository}"
        segment = sha1 if self.config.path_strategy == "hash" else version
        return f"{base}/{segment}/{artifact_path.name}"

    def publish(self, artifact_path, dist_tag, access, *, version, project):
        if artifact_path is None:
            raise ConfigError("http registries publish artifacts; configure one", project=project, stage="publish")
        sha1, md5 = file_checksums(artifact_path)
        url = self.upload_url(artifact_path, version, sha1)
        auth = self._auth()
        try:
            if self.config.skip_existing:
                head = self._client.head(url, auth=auth)
                if head.status_code == 200:
                    print(f"  Already published: {url}")
                    return self._result(project, url, dist_tag, access, skipped_existing=True, url=url)
            response = self._client.put(
                url,
                content=artifact_path.read_bytes(),
                auth=auth,
                headers={
                    "Content-Type": "application/octet-stream",
                    "X-Checksum-Sha1": sha1,
                    "X-Checksum-MD5": md5,
                },
            )
        except httpx.HTTPError as e:
            raise PublishRejected(f"Upload to {url} failed: {e}", project=project, stage="publish") from e
        if response.status_code >= 400:
            raise PublishRejected(
                f"Upload to {url} rejected: HTTP {response.status_code} {response.text[:200]}",
                project=project,
                stage="publish",
            )
        return self._result(project, url, dist_tag, access, published=True, url=url)

    def latest_version(self, project):
        """Read ``{"version": ...}`` (or plain text) from `metadata-url`."""
        if not self.config.metadata_url:
            return None
        url = self.config.metadata_url.format(projectName=project)
        try:
            response = self._client.get(url, auth=self._auth())
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StageIOFailure(f"Version lookup at {url} failed: {e}", project=project, stage="version") from e
        if "json" in response.headers.get("content-type", ""):
            version = response.json().get("version")
            return str(version) if version else None
        return response.text.strip() or None


class CommandRegistry(RegistryClient):
    """Runs `command` with {artifact}, {distTag}, {access}, {version} and
    {projectName} substituted."""

    name = "command"

    def __init__(self, config: RegistryConfig) -> None:
        super().__init__(config)
        if not config.command:
            raise ConfigError("registry.command is required for command registries", stage="publish")

    def publish(self, artifact_path, dist_tag, access, *, version, project):
        try:
            rendered = self.config.command.format(
                artifact=str(artifact_path or ""),
                distTag=dist_tag,
                access=access,
                version=version,
                projectName=project,
            )
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigError(f"Bad registry command template: {e}", project=project, stage="publish") from e
        try:
            result = run(*shlex.split(rendered), check=False)
        except (OSError, subprocess.SubprocessError) as e:
            raise PublishRejected(f"Could not run publish command: {e}", project=project, stage="publish") from e
        if result.returncode != 0:
            raise PublishRejected(
                f"Publish command exited with status {result.returncode}", project=project, stage="publish"
            )
        return self._result(project, str(artifact_path or rendered), dist_tag, access, published=True)


def create_registry(config: RegistryConfig, *, client: httpx.Client | None = None) -> RegistryClient:
    """Build the registry client for a registry configuration."""
    if config.type == "npm":
        return NpmRegistry(config)
    if config.type == "http":
        return HttpRegistry(config, client=client)
    return CommandRegistry(config)
