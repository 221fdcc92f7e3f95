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
"""The `manifest`, `manifest.sig` and `manifest-augment` entries of the artifact.

The manifest is a plain text file, each line holds the sha256 checksum and the
    path of one section covered by integrity checking:

    5ac394718e795d454941487c53d32...  data/0000/update.ext4
    b7793eb1c57c4694532f96383b619...  header.tar.gz
    a343fec7ba3b2983c2ecbbb041a35...  version

The signature is the base64 encoded signature over the raw manifest bytes.
"""

from __future__ import annotations

import base64
import binascii
from typing import ClassVar, Iterable, Iterator, NamedTuple

from typing_extensions import Self

from mender_artifact_libs.common import CodecError, Sha256Digest
from mender_artifact_libs.v3.consts import (
    MANIFEST_AUGMENT_FNAME,
    MANIFEST_FNAME,
    MANIFEST_SIG_FNAME,
)


class ManifestEntry(NamedTuple):
    checksum: Sha256Digest
    path: str


class Manifest:
    """Ordered checksum index of the artifact.

    The order of entries is kept as is from the source, so that
        encode(decode(raw)) reproduces <raw> for canonical input.
    """

    SectionName: ClassVar[str] = MANIFEST_FNAME
    Separator: ClassVar[str] = "  "

    def __init__(
        self, entries: Iterable[ManifestEntry] = (), *, raw: bytes | None = None
    ) -> None:
        self._entries = tuple(entries)
        self._raw = raw

    @property
    def entries(self) -> tuple[ManifestEntry, ...]:
        return self._entries

    @property
    def raw(self) -> bytes:
        """The bytes this manifest is decoded from, which the signature is over."""
        if self._raw is None:
            return self.encode()
        return self._raw

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(self._entries)

    def __eq__(self, value: object) -> bool:
        if type(value) is not type(self):
            return False
        return self._entries == value._entries  # type: ignore

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._entries)!r})"

    def get(self, path: str) -> Sha256Digest | None:
        for _entry in self._entries:
            if _entry.path == path:
                return _entry.checksum

    def __contains__(self, path: object) -> bool:
        return any(_entry.path == path for _entry in self._entries)

    @classmethod
    def decode(cls, raw: bytes) -> Self:
        try:
            _text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError(cls.SectionName, f"not a text file: {e}") from e

        _lines = _text.split("\n")
        if _lines and _lines[-1] == "":
            _lines.pop()

        _entries: list[ManifestEntry] = []
        _seen: set[str] = set()
        for _lineno, _line in enumerate(_lines, start=1):
            _fields = _line.split()
            if len(_fields) != 2:
                raise CodecError(
                    cls.SectionName,
                    f"line {_lineno}: expect `<checksum> <path>`, get {_line!r}",
                )
            _checksum, _path = _fields
            try:
                _digest = Sha256Digest(_checksum)
            except ValueError as e:
                raise CodecError(cls.SectionName, f"line {_lineno}: {e}") from e
            if _path in _seen:
                raise CodecError(
                    cls.SectionName, f"line {_lineno}: duplicated path {_path}"
                )
            _seen.add(_path)
            _entries.append(ManifestEntry(_digest, _path))
        return cls(_entries, raw=raw)

    def encode(self) -> bytes:
        return "".join(
            f"{_entry.checksum.digest_hex}{self.Separator}{_entry.path}\n"
            for _entry in self._entries
        ).encode("utf-8")


class AugmentManifest(Manifest):
    """Checksums of the augmented(unsigned) sections, never merged with the manifest."""

    SectionName = MANIFEST_AUGMENT_FNAME
    Separator = " "


class ManifestSignature:
    """Raw contents of `manifest.sig`.

    The signature algorithm is not interpreted here, see
        `mender_artifact_libs.v3.manifest.utils` for verification.
    """

    SectionName: ClassVar[str] = MANIFEST_SIG_FNAME

    def __init__(self, raw: bytes) -> None:
        self._raw = raw

    @classmethod
    def from_signature(cls, signature: bytes) -> Self:
        return cls(base64.b64encode(signature))

    @property
    def signature(self) -> bytes:
        """The base64-decoded signature."""
        return base64.b64decode(self._raw.strip(), validate=True)

    def __eq__(self, value: object) -> bool:
        if not isinstance(value, ManifestSignature):
            return False
        return self._raw == value._raw

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._raw!r})"

    @classmethod
    def decode(cls, raw: bytes) -> Self:
        try:
            base64.b64decode(raw.strip(), validate=True)
        except binascii.Error as e:
            raise CodecError(cls.SectionName, f"not base64 encoded: {e}") from e
        return cls(raw)

    def encode(self) -> bytes:
        return self._raw
