# Copyright 2025 TIER IV, INC. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Helper functions for packing mender artifact.

The artifact build is reproducible, the same artifact will always be
    generated from the same inputs(except for ECDSA signatures, which are
    randomized by nature).
"""

from __future__ import annotations

import io
import logging
import os
import tarfile
from os import PathLike
from pathlib import Path
from typing import IO, Iterable, Mapping, NamedTuple, Optional, Sequence

from mender_artifact_libs.common import Sha256Digest, tmp_fname
from mender_artifact_libs.common.io import (
    DEFAULT_FILE_CHUNK_SIZE,
    Compression,
    file_sha256,
    open_compressed,
    remove_file,
)
from mender_artifact_libs.v3.artifact import (
    DEFAULT_MTIME,
    FILE_PERMISSION,
    SCRIPT_PERMISSION,
)
from mender_artifact_libs.v3.consts import (
    ARTIFACT_FORMAT,
    DATA_DIR,
    HEADER_AUGMENT_STEM,
    HEADER_INFO_FNAME,
    HEADER_STEM,
    HEADERS_DIR,
    META_DATA_FNAME,
    SCRIPT_NAME_PA,
    SCRIPTS_DIR,
    TYPE_INFO_FNAME,
    VERSION_FNAME,
    payload_index,
)
from mender_artifact_libs.v3.header.schema import (
    ArtifactDepends,
    ArtifactProvides,
    AugmentHeader,
    Header,
    HeaderInfo,
    MetaData,
    PayloadType,
    SubHeader,
    TypeInfo,
    TypeInfoProvides,
)
from mender_artifact_libs.v3.manifest.schema import (
    AugmentManifest,
    Manifest,
    ManifestEntry,
)
from mender_artifact_libs.v3.manifest.utils import compose_manifest_signature
from mender_artifact_libs.v3.version.schema import Version

logger = logging.getLogger(__name__)

ROOTFS_IMAGE_TYPE = "rootfs-image"


def _tarinfo(name: str, size: int, *, mode: int = FILE_PERMISSION) -> tarfile.TarInfo:
    _info = tarfile.TarInfo(name)
    _info.size = size
    _info.mode = mode
    _info.mtime = DEFAULT_MTIME
    _info.uid = _info.gid = 0
    _info.uname = _info.gname = ""
    _info.type = tarfile.REGTYPE
    return _info


def add_bytes(
    tarf: tarfile.TarFile, data: bytes, arcname: str, *, mode: int = FILE_PERMISSION
) -> None:
    """Add <data> as a regular file entry with fixed permission bit and mtime."""
    tarf.addfile(_tarinfo(arcname, len(data), mode=mode), io.BytesIO(data))


def add_file(
    tarf: tarfile.TarFile,
    filename: Path,
    arcname: str,
    *,
    mode: int = FILE_PERMISSION,
) -> None:
    """Add a regular file with fixed permission bit and mtime. The src must be a regular file."""
    with open(filename, "rb") as src:
        tarf.addfile(_tarinfo(arcname, filename.stat().st_size, mode=mode), src)


def compose_header_archive(
    info: HeaderInfo,
    sub_headers: Sequence[SubHeader],
    *,
    scripts: Mapping[str, bytes] | None = None,
    compression: Compression = Compression.GZIP,
) -> bytes:
    """Compose the compressed header archive.

    The entries are arranged as: header-info, scripts in alphabet order, then
        `headers/NNNN/type-info` and `headers/NNNN/meta-data` of each payload.
    """
    _buffer = io.BytesIO()
    with open_compressed(_buffer, compression) as _zf, tarfile.open(
        fileobj=_zf, mode="w|", format=tarfile.GNU_FORMAT
    ) as _tar:
        add_bytes(_tar, info.encode(), HEADER_INFO_FNAME)
        for _name, _script in sorted((scripts or {}).items()):
            add_bytes(
                _tar, _script, f"{SCRIPTS_DIR}/{_name}", mode=SCRIPT_PERMISSION
            )

        for _idx, _sub_header in enumerate(sub_headers):
            _dir = f"{HEADERS_DIR}/{payload_index(_idx)}"
            add_bytes(_tar, _sub_header.type_info.encode(), f"{_dir}/{TYPE_INFO_FNAME}")
            if _sub_header.meta_data is not None:
                add_bytes(
                    _tar, _sub_header.meta_data.encode(), f"{_dir}/{META_DATA_FNAME}"
                )
    return _buffer.getvalue()


def compose_payload_archive(
    payload_file: Path,
    output: Path,
    *,
    compression: Compression = Compression.GZIP,
) -> None:
    """Pack <payload_file> as the only entry of a compressed payload archive at <output>."""
    with open(output, "wb") as _f, open_compressed(_f, compression) as _zf:
        with tarfile.open(fileobj=_zf, mode="w|", format=tarfile.GNU_FORMAT) as _tar:
            add_file(_tar, payload_file, payload_file.name)


class PayloadFile(NamedTuple):
    path: Path
    type: str = ROOTFS_IMAGE_TYPE
    meta_data: Optional[bytes] = None


class ArtifactWriter:
    """Compose the artifact from the header and the payload files.

    When <sign_key> is provided, the manifest is signed. The augmented header
        is only allowed for signed artifact.
    """

    def __init__(
        self,
        header: Header,
        payload_files: Sequence[Path],
        *,
        scripts: Mapping[str, bytes] | None = None,
        augment_header: AugmentHeader | None = None,
        sign_key: bytes | None = None,
        sign_key_passwd: bytes | None = None,
        compression: Compression = Compression.GZIP,
        workdir: Path | None = None,
        rw_chunk_size: int = DEFAULT_FILE_CHUNK_SIZE,
    ) -> None:
        if len(payload_files) != len(header.info.payloads):
            raise ValueError(
                f"header-info declares {len(header.info.payloads)} payloads, "
                f"but {len(payload_files)} payload files are provided"
            )
        if augment_header is not None and sign_key is None:
            raise ValueError("augmented header requires the artifact to be signed")

        scripts = dict(scripts or {})
        for _name in scripts:
            if not SCRIPT_NAME_PA.match(_name):
                raise ValueError(f"invalid lifecycle script name: {_name}")

        self.header = header.model_copy(update={"scripts": tuple(sorted(scripts))})
        self.payload_files = [Path(_p) for _p in payload_files]
        self.augment_header = augment_header

        self._scripts = scripts
        self._sign_key = sign_key
        self._sign_key_passwd = sign_key_passwd
        self._compression = compression
        self._workdir = workdir
        self._chunk_size = rw_chunk_size

    def _compose_manifest(
        self, _version: bytes, _header: bytes, _header_entry: str
    ) -> Manifest:
        _entries = [
            ManifestEntry(Sha256Digest.of(_version), VERSION_FNAME),
            ManifestEntry(Sha256Digest.of(_header), _header_entry),
        ]
        for _idx, _payload in enumerate(self.payload_files):
            _entries.append(
                ManifestEntry(
                    Sha256Digest(
                        file_sha256(_payload, chunk_size=self._chunk_size).digest()
                    ),
                    f"{DATA_DIR}/{payload_index(_idx)}/{_payload.name}",
                )
            )
        return Manifest(sorted(_entries, key=lambda _entry: _entry.path))

    def write(self, output: IO[bytes]) -> int:
        """Write the artifact into <output>, returns the number of entries written."""
        _suffix = self._compression.tar_suffix
        _version = Version(format=ARTIFACT_FORMAT, version=3).encode()
        _header_entry = f"{HEADER_STEM}{_suffix}"
        _header = compose_header_archive(
            self.header.info,
            self.header.sub_headers,
            scripts=self._scripts,
            compression=self._compression,
        )
        _manifest = self._compose_manifest(_version, _header, _header_entry)

        _entries_count = 0
        with tarfile.open(fileobj=output, mode="w|", format=tarfile.GNU_FORMAT) as _tar:
            add_bytes(_tar, _version, VERSION_FNAME)
            add_bytes(_tar, _manifest.encode(), Manifest.SectionName)
            _entries_count += 2

            if self._sign_key is not None:
                _signature = compose_manifest_signature(
                    _manifest, self._sign_key, sign_key_passwd=self._sign_key_passwd
                )
                add_bytes(_tar, _signature.encode(), _signature.SectionName)
                _entries_count += 1

            _augment_header = None
            if self.augment_header is not None:
                _augment_entry = f"{HEADER_AUGMENT_STEM}{_suffix}"
                _augment_header = compose_header_archive(
                    self.augment_header.info,
                    self.augment_header.sub_headers,
                    compression=self._compression,
                )
                _augment_manifest = AugmentManifest(
                    [ManifestEntry(Sha256Digest.of(_augment_header), _augment_entry)]
                )
                add_bytes(
                    _tar, _augment_manifest.encode(), AugmentManifest.SectionName
                )
                _entries_count += 1

            add_bytes(_tar, _header, _header_entry)
            _entries_count += 1
            if _augment_header is not None:
                add_bytes(_tar, _augment_header, f"{HEADER_AUGMENT_STEM}{_suffix}")
                _entries_count += 1

            for _idx, _payload in enumerate(self.payload_files):
                _archive_name = f"{DATA_DIR}/{payload_index(_idx)}{_suffix}"
                _workdir = self._workdir or _payload.parent
                _tmp = Path(_workdir) / tmp_fname(f"payload{_idx}")
                try:
                    compose_payload_archive(
                        _payload, _tmp, compression=self._compression
                    )
                    add_file(_tar, _tmp, _archive_name)
                finally:
                    remove_file(_tmp)
                logger.debug(f"{_payload} is packed as {_archive_name}")
                _entries_count += 1
        return _entries_count


def _rootfs_image_sub_header(
    _payload: PayloadFile, *, chunk_size: int = DEFAULT_FILE_CHUNK_SIZE
) -> SubHeader:
    _provides = None
    if _payload.type == ROOTFS_IMAGE_TYPE:
        _provides = TypeInfoProvides(
            rootfs_image_checksum=file_sha256(
                _payload.path, chunk_size=chunk_size
            ).hexdigest()
        )
    return SubHeader(
        type_info=TypeInfo(type=_payload.type, artifact_provides=_provides),
        meta_data=(
            MetaData(_payload.meta_data) if _payload.meta_data is not None else None
        ),
    )


def pack_artifact(
    _output: Path | PathLike | str,
    *,
    artifact_name: str,
    device_types: Iterable[str],
    payloads: Sequence[PayloadFile],
    artifact_group: str | None = None,
    scripts: Mapping[str, bytes] | None = None,
    sign_key: bytes | None = None,
    sign_key_passwd: bytes | None = None,
    compression: Compression = Compression.GZIP,
    rw_chunk_size: int = DEFAULT_FILE_CHUNK_SIZE,
) -> int:
    """Pack mender artifact from <payloads> to <_output>.

    The artifact depends on <device_types>, and provides <artifact_name>.
        For `rootfs-image` payloads, the checksum of the image is recorded
        as `rootfs-image.checksum` in its type-info provides.

    The artifact is first written to a temporary file next to <_output>, and
        then renamed to <_output>.

    Returns:
        The number of entries in the outer archive.
    """
    _output = Path(_output)
    _device_types = frozenset(device_types)
    if not _device_types:
        raise ValueError("at least one device type is required")

    _info = HeaderInfo(
        payloads=tuple(PayloadType(type=_payload.type) for _payload in payloads),
        artifact_provides=ArtifactProvides(
            artifact_name=artifact_name, artifact_group=artifact_group
        ),
        artifact_depends=ArtifactDepends(device_type=_device_types),
    )
    _header = Header(
        info=_info,
        sub_headers=tuple(
            _rootfs_image_sub_header(_payload, chunk_size=rw_chunk_size)
            for _payload in payloads
        ),
    )
    _writer = ArtifactWriter(
        _header,
        [_payload.path for _payload in payloads],
        scripts=scripts,
        sign_key=sign_key,
        sign_key_passwd=sign_key_passwd,
        compression=compression,
        workdir=_output.parent,
        rw_chunk_size=rw_chunk_size,
    )

    _tmp = _output.parent / tmp_fname(_output.name)
    try:
        with open(_tmp, "wb") as _f:
            _count = _writer.write(_f)
        os.replace(_tmp, _output)
    finally:
        remove_file(_tmp)
    logger.info(
        f"artifact {artifact_name} with {len(payloads)} payloads packed to {_output}"
    )
    return _count
