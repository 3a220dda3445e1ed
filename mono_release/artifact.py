"""Artifact stage: pack a project's build output into an archive.

Files are selected from a source directory by include/exclude glob patterns
(hidden files included, directories ignored), sorted so that packing the same
tree twice gives the same entries in the same order. The archive is written
to a temporary file next to its destination and renamed into place once
complete, so a failed pack never leaves a partial archive behind.
"""

from __future__ import annotations

import glob
import json
import os
import platform
import sys
import tarfile
import tempfile
import time
import zipfile
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from .archives import METADATA_NAME, ArchiveEntry, EncodeOptions, get_encoder
from .errors import ConfigError, NoMatchingFiles, StageIOFailure, UnsupportedFormat
from .models import ArtifactResult
from .shell import warn


class PackOptions(BaseModel):
    """Everything pack() needs besides the file selection.

    Attributes:
        project: Project name ({projectName}).
        version: Version being released ({version}).
        output_dir: Output directory template, relative to workspace_root.
        name: Archive file name template.
        workspace_root: Base for a relative output_dir.
        hash: Short commit hash ({hash}).
        strip_prefix: Leading path removed from archive entry names.
        compression_level: Passed to the encoder.
        preserve_permissions: Passed to the encoder.
        metadata: Extra keys for the metadata manifest; None disables it.
        dry_run: Select and measure files but write nothing.
    """

    project: str
    version: str
    output_dir: str = "dist/artifacts"
    name: str = "{projectName}-{version}.{extension}"
    workspace_root: Path = Path(".")
    hash: str = "unknown"
    strip_prefix: str | None = None
    compression_level: int | None = None
    preserve_permissions: bool = False
    metadata: dict[str, Any] | None = None
    dry_run: bool = False


def template_variables(options: PackOptions, fmt: str, extension: str) -> dict[str, str]:
    """Variables available in artifact name and directory templates."""
    now = datetime.now(timezone.utc)
    return {
        "projectName": options.project,
        "version": options.version,
        "hash": options.hash,
        "timestamp": str(int(time.time())),
        "date": now.strftime("%Y-%m-%d"),
        "platform": sys.platform,
        "arch": platform.machine() or "unknown",
        "extension": extension,
        "format": fmt,
    }


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute {name} placeholders.

    Raises:
        ConfigError: If the template uses an unknown variable.
    """
    try:
        return template.format_map(variables)
    except KeyError as e:
        raise ConfigError(
            f"Unknown template variable {e} in '{template}' "
            f"(available: {', '.join(sorted(variables))})",
            stage="artifact",
        ) from e
    except (IndexError, ValueError) as e:
        raise ConfigError(f"Bad template '{template}': {e}", stage="artifact") from e


def _glob(root: Path, patterns: Iterable[str]) -> set[str]:
    matched: set[str] = set()
    for pattern in patterns:
        matched.update(glob.glob(pattern, root_dir=root, recursive=True, include_hidden=True))
    return matched


def collect_files(source_root: Path, include: Iterable[str], exclude: Iterable[str] = ()) -> list[str]:
    """Return the files selected by include minus exclude, sorted.

    Paths are POSIX-style and relative to source_root.

    Example:
        include=["**/*"], exclude=["**/*.map"] over {a.js, a.js.map, b.js}
        → ["a.js", "b.js"]
    """
    if not source_root.is_dir():
        return []
    selected = _glob(source_root, include) - _glob(source_root, exclude)
    files = [p for p in selected if (source_root / p).is_file()]
    return sorted(Path(p).as_posix() for p in files)


def _strip(name: str, prefix: str) -> str:
    prefix = prefix.strip("/") + "/"
    return name[len(prefix):] if name.startswith(prefix) else name


def format_bytes(size: int) -> str:
    """Human-readable size, e.g. 1536 → "1.5 KB"."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def pack(
    source_root: Path,
    include: Iterable[str],
    exclude: Iterable[str],
    fmt: str,
    options: PackOptions,
) -> ArtifactResult:
    """Pack selected files from source_root into an archive.

    Args:
        source_root: Directory the patterns are evaluated against.
        include: Glob patterns of files to pack.
        exclude: Glob patterns removed from the selection.
        fmt: Archive format (zip, tar, tgz, tar.gz or a registered format).
        options: Naming, metadata and encoder options.

    Returns:
        ArtifactResult with the absolute archive path and entry names.

    Raises:
        UnsupportedFormat: If fmt has no registered encoder, or the encoder
            cannot append the metadata manifest.
        NoMatchingFiles: If the patterns select nothing. Nothing is written.
        StageIOFailure: If writing the archive fails (I/O or archive errors).
    """
    include, exclude = list(include), list(exclude)
    encoder = get_encoder(fmt)
    variables = template_variables(options, fmt, encoder.extension)
    output_dir = Path(render_template(options.output_dir, variables))
    if not output_dir.is_absolute():
        output_dir = options.workspace_root / output_dir
    target = (output_dir / render_template(options.name, variables)).resolve()

    files = collect_files(source_root, include, exclude)
    if not files:
        raise NoMatchingFiles(
            f"No files matched include={list(include)} exclude={list(exclude)} in {source_root}",
            project=options.project,
            stage="artifact",
        )

    names = files
    if options.strip_prefix:
        if encoder.supports_strip_prefix:
            names = [_strip(f, options.strip_prefix) for f in files]
        else:
            warn(f"{fmt} archives do not support strip-prefix; keeping original paths")
    entries = [ArchiveEntry(source=source_root / f, name=n) for f, n in zip(files, names)]

    metadata: bytes | None = None
    if options.metadata is not None:
        manifest = {
            "projectName": options.project,
            "version": options.version,
            "format": fmt,
            "hash": options.hash,
            "timestamp": variables["timestamp"],
            "fileCount": len(entries),
            **options.metadata,
        }
        metadata = (json.dumps(manifest, indent=2, sort_keys=True) + "\n").encode()
    entry_names = [e.name for e in entries] + ([METADATA_NAME] if metadata else [])

    if options.dry_run:
        size = sum((source_root / f).stat().st_size for f in files)
        print(f"  [dry-run] would pack {len(files)} files ({format_bytes(size)}) into {target}")
        return ArtifactResult(
            project=options.project,
            format=fmt,
            path=target,
            size=size,
            file_count=len(entries),
            files=entry_names,
            dry_run=True,
        )

    encode_options = EncodeOptions(
        compression_level=options.compression_level,
        preserve_permissions=options.preserve_permissions,
        metadata=metadata if encoder.embeds_metadata else None,
    )
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    except OSError as e:
        raise StageIOFailure(f"Cannot create {target.parent}: {e}", project=options.project, stage="artifact") from e
    try:
        with os.fdopen(fd, "wb") as stream:
            encoder.encode(stream, entries, encode_options)
        if metadata and not encoder.embeds_metadata:
            encoder.append_metadata(Path(tmp), metadata)
        os.replace(tmp, target)
    except NotImplementedError as e:
        Path(tmp).unlink(missing_ok=True)
        raise UnsupportedFormat(str(e), project=options.project, stage="artifact") from e
    except (OSError, tarfile.TarError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        Path(tmp).unlink(missing_ok=True)
        raise StageIOFailure(f"Failed to write {target}: {e}", project=options.project, stage="artifact") from e
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise

    size = target.stat().st_size
    print(f"  Packed {len(entries)} files ({format_bytes(size)}) into {target}")
    return ArtifactResult(
        project=options.project,
        format=fmt,
        path=target,
        size=size,
        file_count=len(entries),
        files=entry_names,
    )
