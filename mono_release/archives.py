"""Archive encoders.

Each encoder writes a list of (source file, archive name) entries to a binary
stream. Built-in formats: zip, tar, tgz and tar.gz. Custom encoders can be
added with register_format().
"""

from __future__ import annotations

import io
import os
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import BinaryIO

from pydantic import BaseModel

from .errors import UnsupportedFormat

METADATA_NAME = ".artifact-metadata.json"


class ArchiveEntry(BaseModel):
    source: Path
    name: str


class EncodeOptions(BaseModel):
    """Format-specific knobs. Encoders ignore what does not apply to them.

    Attributes:
        compression_level: 0-9; zip (deflate) and gzip only.
        preserve_permissions: Keep file modes; otherwise normalize to 0644.
        metadata: Manifest bytes to embed as METADATA_NAME, when the format
            supports embedding.
    """

    compression_level: int | None = None
    preserve_permissions: bool = False
    metadata: bytes | None = None


class ArchiveEncoder:
    """Base class for archive encoders.

    Attributes:
        format: Format name used in configuration.
        extension: File extension without the leading dot.
        supports_strip_prefix: Whether archive names may be rewritten.
        embeds_metadata: Whether the manifest is written inside the stream.
            Otherwise it is appended after the archive is finished.
    """

    format: str = ""
    extension: str = ""
    supports_strip_prefix: bool = True
    embeds_metadata: bool = True

    def encode(
        self, stream: BinaryIO, entries: list[ArchiveEntry], options: EncodeOptions
    ) -> None:
        raise NotImplementedError

    def append_metadata(self, path: Path, data: bytes) -> None:
        raise NotImplementedError(f"{self.format} archives cannot be appended to")


class ZipEncoder(ArchiveEncoder):
    format = "zip"
    extension = "zip"

    def encode(self, stream, entries, options):
        with zipfile.ZipFile(
            stream,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=options.compression_level,
            strict_timestamps=False,
        ) as zf:
            for entry in entries:
                info = zipfile.ZipInfo.from_file(entry.source, arcname=entry.name, strict_timestamps=False)
                info.compress_type = zipfile.ZIP_DEFLATED
                if not options.preserve_permissions:
                    info.external_attr = (0o100644 << 16)
                zf.writestr(info, entry.source.read_bytes(), compresslevel=options.compression_level)
            if options.metadata is not None:
                zf.writestr(METADATA_NAME, options.metadata)


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mode = 0o644
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


class TarEncoder(ArchiveEncoder):
    """Uncompressed tar. The metadata manifest is appended post hoc."""

    format = "tar"
    extension = "tar"
    embeds_metadata = False
    _mode = "w"

    def _open(self, stream: BinaryIO, options: EncodeOptions) -> tarfile.TarFile:
        return tarfile.open(fileobj=stream, mode=self._mode, format=tarfile.PAX_FORMAT)

    def encode(self, stream, entries, options):
        with self._open(stream, options) as tf:
            for entry in entries:
                info = tf.gettarinfo(str(entry.source), arcname=entry.name)
                if not options.preserve_permissions:
                    info = _normalize(info)
                with entry.source.open("rb") as f:
                    tf.addfile(info, f)
            if options.metadata is not None and self.embeds_metadata:
                info = tarfile.TarInfo(METADATA_NAME)
                info.size = len(options.metadata)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(options.metadata))

    def append_metadata(self, path: Path, data: bytes) -> None:
        """Append the manifest to a finished tar through a staging file.

        The staging file is removed whether or not the append succeeds.
        """
        fd, staging = tempfile.mkstemp(prefix=".artifact-metadata.", suffix=".json")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            with tarfile.open(path, "a", format=tarfile.PAX_FORMAT) as tf:
                tf.add(staging, arcname=METADATA_NAME, filter=_normalize)
        finally:
            Path(staging).unlink(missing_ok=True)


class TgzEncoder(TarEncoder):
    format = "tgz"
    extension = "tgz"
    embeds_metadata = True
    _mode = "w:gz"

    def _open(self, stream, options):
        level = options.compression_level if options.compression_level is not None else 9
        return tarfile.open(fileobj=stream, mode=self._mode, compresslevel=level, format=tarfile.PAX_FORMAT)

    def append_metadata(self, path: Path, data: bytes) -> None:
        raise NotImplementedError("compressed tar archives cannot be appended to")


class TarGzEncoder(TgzEncoder):
    format = "tar.gz"
    extension = "tar.gz"


_ENCODERS: dict[str, ArchiveEncoder] = {}


def register_format(encoder: ArchiveEncoder) -> None:
    """Register an encoder under its format name (replacing any existing one)."""
    _ENCODERS[encoder.format] = encoder


def get_encoder(fmt: str) -> ArchiveEncoder:
    """Look up the encoder for a format.

    Raises:
        UnsupportedFormat: If no encoder is registered for the format.
    """
    try:
        return _ENCODERS[fmt]
    except KeyError:
        raise UnsupportedFormat(
            f"Unsupported archive format '{fmt}' (supported: {', '.join(sorted(_ENCODERS))})",
            stage="artifact",
        ) from None


for _encoder in (ZipEncoder(), TarEncoder(), TgzEncoder(), TarGzEncoder()):
    register_format(_encoder)
