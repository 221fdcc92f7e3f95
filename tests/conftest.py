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
"""Shared test fixtures and helpers for mender-artifact-libs tests."""

from __future__ import annotations

import gzip
import io
import json
import tarfile
from hashlib import sha256
from typing import Mapping, Sequence

import pytest
import zstandard
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from mender_artifact_libs.common.io import Compression

VERSION_RAW = b'{"format":"mender","version":3}'
SAMPLE_DEVICE_TYPE = "raspberrypi4"
SAMPLE_ARTIFACT_NAME = "release-1"

Entries = Sequence[tuple[str, bytes]]


def make_tar(entries: Entries) -> bytes:
    """Compose an uncompressed tar archive holding <entries> in order."""
    _buffer = io.BytesIO()
    with tarfile.open(fileobj=_buffer, mode="w", format=tarfile.GNU_FORMAT) as _tar:
        for _name, _data in entries:
            _info = tarfile.TarInfo(_name)
            _info.size = len(_data)
            _info.mode = 0o644
            _tar.addfile(_info, io.BytesIO(_data))
    return _buffer.getvalue()


def compress(data: bytes, compression: Compression = Compression.GZIP) -> bytes:
    if compression == Compression.GZIP:
        return gzip.compress(data, mtime=0)
    if compression == Compression.ZSTD:
        return zstandard.ZstdCompressor().compress(data)
    return data


def make_header_info(
    payload_types: Sequence[str] = ("rootfs-image",),
    *,
    artifact_name: str = SAMPLE_ARTIFACT_NAME,
    device_type: str = SAMPLE_DEVICE_TYPE,
) -> bytes:
    return json.dumps(
        {
            "payloads": [{"type": _type} for _type in payload_types],
            "artifact_provides": {"artifact_name": artifact_name},
            "artifact_depends": {"device_type": [device_type]},
        }
    ).encode()


def make_header_entries(
    payload_types: Sequence[str] = ("rootfs-image",),
    *,
    scripts: Mapping[str, bytes] | None = None,
    meta_data: Mapping[int, bytes] | None = None,
) -> list[tuple[str, bytes]]:
    _entries = [("header-info", make_header_info(payload_types))]
    for _name, _script in (scripts or {}).items():
        _entries.append((f"scripts/{_name}", _script))
    for _idx, _type in enumerate(payload_types):
        _entries.append(
            (f"headers/{_idx:04d}/type-info", json.dumps({"type": _type}).encode())
        )
        if meta_data and _idx in meta_data:
            _entries.append((f"headers/{_idx:04d}/meta-data", meta_data[_idx]))
    return _entries


def make_header(
    payload_types: Sequence[str] = ("rootfs-image",),
    *,
    scripts: Mapping[str, bytes] | None = None,
    meta_data: Mapping[int, bytes] | None = None,
    compression: Compression = Compression.GZIP,
) -> bytes:
    return compress(
        make_tar(
            make_header_entries(payload_types, scripts=scripts, meta_data=meta_data)
        ),
        compression,
    )


def make_payload_archive(
    name: str, content: bytes, compression: Compression = Compression.GZIP
) -> bytes:
    return compress(make_tar([(name, content)]), compression)


def manifest_line(data: bytes, path: str, sep: str = "  ") -> str:
    return f"{sha256(data).hexdigest()}{sep}{path}\n"


def make_artifact_entries(
    payloads: Sequence[tuple[str, bytes]] = (("rootfs.ext4", b"0123456789"),),
    *,
    scripts: Mapping[str, bytes] | None = None,
    compression: Compression = Compression.GZIP,
    payload_types: Sequence[str] | None = None,
) -> list[tuple[str, bytes]]:
    """Compose the entries of a valid artifact.

    The manifest covers the version, the header and the content of each payload.
    """
    if payload_types is None:
        payload_types = ["rootfs-image"] * len(payloads)
    _suffix = compression.tar_suffix
    _header = make_header(payload_types, scripts=scripts, compression=compression)

    _manifest_lines = [
        manifest_line(VERSION_RAW, "version"),
        manifest_line(_header, f"header{_suffix}"),
    ]
    _data_entries = []
    for _idx, (_name, _content) in enumerate(payloads):
        _manifest_lines.append(manifest_line(_content, f"data/{_idx:04d}/{_name}"))
        _data_entries.append(
            (
                f"data/{_idx:04d}{_suffix}",
                make_payload_archive(_name, _content, compression),
            )
        )

    _manifest = "".join(sorted(_manifest_lines, key=lambda _l: _l.split()[1]))
    return [
        ("version", VERSION_RAW),
        ("manifest", _manifest.encode()),
        (f"header{_suffix}", _header),
        *_data_entries,
    ]


def make_artifact(
    payloads: Sequence[tuple[str, bytes]] = (("rootfs.ext4", b"0123456789"),),
    **kwargs,
) -> bytes:
    return make_tar(make_artifact_entries(payloads, **kwargs))


def replace_entry(entries: Entries, name: str, data: bytes) -> list[tuple[str, bytes]]:
    return [(_name, data if _name == name else _data) for _name, _data in entries]


def remove_entry(entries: Entries, name: str) -> list[tuple[str, bytes]]:
    return [(_name, _data) for _name, _data in entries if _name != name]


def insert_after(
    entries: Entries, name: str, new_entry: tuple[str, bytes]
) -> list[tuple[str, bytes]]:
    _res = []
    for _entry in entries:
        _res.append(_entry)
        if _entry[0] == name:
            _res.append(new_entry)
    return _res


@pytest.fixture
def sample_artifact() -> bytes:
    """One rootfs-image payload holding 10 bytes."""
    return make_artifact()


@pytest.fixture(scope="session")
def rsa_keypair() -> tuple[bytes, bytes]:
    """PEM encoded (private key, public key) of RSA."""
    _key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return _dump_keypair(_key)


@pytest.fixture(scope="session")
def ecdsa_keypair() -> tuple[bytes, bytes]:
    """PEM encoded (private key, public key) of ECDSA P-256."""
    _key = ec.generate_private_key(ec.SECP256R1())
    return _dump_keypair(_key)


def _dump_keypair(_key) -> tuple[bytes, bytes]:
    _private = _key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    _public = _key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return _private, _public
