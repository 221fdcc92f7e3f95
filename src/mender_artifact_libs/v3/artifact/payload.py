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
"""Lazy iteration over the payloads(`data/NNNN.tar.gz`) of an artifact.

The iterator shares the forward-only cursor of the outer archive, so only one
    payload can be active at a time. Moving to the next payload invalidates
    the previous payload handle.
"""

from __future__ import annotations

import logging
import tarfile
from enum import Enum
from typing import IO, Generator

from mender_artifact_libs.common import (
    ArtifactError,
    CodecError,
    IntegrityError,
    PayloadInvalidated,
    Sha256Digest,
    StructuralError,
    UnsupportedOperation,
)
from mender_artifact_libs.common.io import (
    DEFAULT_FILE_CHUNK_SIZE,
    STREAM_DECODE_ERRORS,
    Compression,
    DigestReader,
    drain,
    open_decompressed,
    open_tar_stream,
    stream_chunks,
)
from mender_artifact_libs.v3.consts import DATA_DIR, DATA_ENTRY_PA, payload_index
from mender_artifact_libs.v3.header.reader import norm_member_name
from mender_artifact_libs.v3.manifest.schema import Manifest

from .grammar import GrammarStep, match_entry

logger = logging.getLogger(__name__)


class IteratorState(str, Enum):
    HEADER_PARSING = "header_parsing"
    PAYLOAD_READY = "payload_ready"
    PAYLOAD_DRAINING = "payload_draining"
    EXHAUSTED = "exhausted"


class Payload:
    """The content file of one payload archive, read lazily from the artifact.

    The sha256 digests of the content and the compressed payload archive are
        accumulated while reading, and only available after the payload is
        fully read.

    This class is NOT safe for multi-thread.
    """

    def __init__(
        self,
        index: int,
        *,
        archive_name: str,
        name: str,
        size: int,
        archive_reader: DigestReader,
        decompressed: IO[bytes],
        payload_tar: tarfile.TarFile,
        content: IO[bytes],
        chunk_size: int = DEFAULT_FILE_CHUNK_SIZE,
        iterator: PayloadIterator | None = None,
    ) -> None:
        self.index = index
        self.archive_name = archive_name
        self.name = name
        self.size = size

        self._archive_reader = archive_reader
        self._decompressed = decompressed
        self._payload_tar = payload_tar
        self._content = DigestReader(content, chunk_size=chunk_size)
        self._chunk_size = chunk_size
        self._iterator = iterator

        self._finished = False
        self._invalidated = False
        self._digest: Sha256Digest | None = None
        self._archive_digest: Sha256Digest | None = None

    def __repr__(self) -> str:
        return f"<Payload {self.index}: {self.name}, {self.size=}, {self._finished=}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def content_path(self) -> str:
        """The path of this payload file as listed in the manifest."""
        return f"{DATA_DIR}/{payload_index(self.index)}/{self.name}"

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    @property
    def digest(self) -> Sha256Digest:
        """sha256 of the payload file content."""
        if self._digest is None:
            raise UnsupportedOperation(f"{self.content_path} is not fully read yet")
        return self._digest

    @property
    def archive_digest(self) -> Sha256Digest:
        """sha256 of the compressed payload archive."""
        if self._archive_digest is None:
            raise UnsupportedOperation(f"{self.archive_name} is not fully read yet")
        return self._archive_digest

    def readable(self) -> bool:
        return True

    def read(self, size: int | None = -1) -> bytes:
        if self._invalidated:
            raise PayloadInvalidated(
                f"{self.content_path}: payload handle is invalidated"
            )
        if self._finished:
            return b""

        try:
            data = self._content.read(size)
        except STREAM_DECODE_ERRORS as e:
            raise CodecError(self.archive_name, f"broken payload: {e!r}") from e

        if self._content.exhausted:
            self._finish()
        return data

    def stream(self, chunk_size: int | None = None) -> Generator[bytes]:
        chunk_size = self._chunk_size if chunk_size is None else chunk_size
        yield from stream_chunks(self, chunk_size)  # type: ignore[arg-type]

    def discard(self) -> None:
        """Read through the rest of the payload without returning it."""
        for _ in self.stream():
            pass

    def close(self) -> None:
        """Abandon this payload, a payload that is not fully read becomes invalid."""
        if not self._finished:
            self._invalidate()

    def _invalidate(self) -> None:
        self._invalidated = True

    def _finish(self) -> None:
        try:
            if (_extra := self._payload_tar.next()) is not None:
                raise StructuralError(
                    f"{self.archive_name}: expect exactly one payload file, "
                    f"found extra {_extra.name}"
                )
            self._payload_tar.close()
            drain(self._decompressed, self._chunk_size)
            self._archive_reader.drain()
        except STREAM_DECODE_ERRORS as e:
            raise CodecError(self.archive_name, f"broken payload: {e!r}") from e

        self._digest = Sha256Digest(self._content.hexdigest())
        self._archive_digest = Sha256Digest(self._archive_reader.hexdigest())
        self._finished = True
        logger.debug(f"{self.content_path} read, {self._digest=}")
        if self._iterator:
            self._iterator._payload_finished(self)

    def integrity_failures(
        self, manifest: Manifest, augment_manifest: Manifest | None = None
    ) -> list[str]:
        """Compare the digests against the manifest, and then the augment manifest.

        The payload can be listed either by its content path(`data/NNNN/<name>`),
            or by its archive name(`data/NNNN.tar.gz`).
        """
        _ = self.digest  # must be fully read
        for _manifest in (manifest, augment_manifest):
            if _manifest is None:
                continue
            if (_expected := _manifest.get(self.content_path)) is not None:
                if _expected != self.digest:
                    return [
                        f"{self.content_path}: expect {_expected}, get {self.digest}"
                    ]
                return []
            if (_expected := _manifest.get(self.archive_name)) is not None:
                if _expected != self.archive_digest:
                    return [
                        f"{self.archive_name}: expect {_expected}, get {self.archive_digest}"
                    ]
                return []
        return [f"{self.content_path}: not covered by the manifest"]

    def verify(
        self, manifest: Manifest, augment_manifest: Manifest | None = None
    ) -> None:
        """Raises IntegrityError if the payload doesn't match the manifest."""
        if _failures := self.integrity_failures(manifest, augment_manifest):
            raise IntegrityError(_failures)


class PayloadIterator:
    """Iterate over the payloads on demand, backed by the outer archive cursor.

    State transitions only go forward:
        HEADER_PARSING -> PAYLOAD_READY <-> PAYLOAD_DRAINING -> EXHAUSTED

    This class is NOT safe for multi-thread.
    """

    def __init__(
        self,
        _tar: tarfile.TarFile,
        *,
        read_chunk_size: int = DEFAULT_FILE_CHUNK_SIZE,
    ) -> None:
        self._tar = _tar
        self._chunk_size = read_chunk_size
        self.state = IteratorState.HEADER_PARSING

        self._expected_count = 0
        self._pending: tuple[tarfile.TarInfo, Compression] | None = None
        self._current: Payload | None = None
        self.payloads_read: list[Payload] = []

    def __iter__(self):
        return self

    def __next__(self) -> Payload:
        if self.state == IteratorState.HEADER_PARSING:
            raise UnsupportedOperation("artifact header is not parsed yet")
        if self.state == IteratorState.EXHAUSTED:
            raise StopIteration

        try:
            return self._next_payload()
        except ArtifactError:
            self.state = IteratorState.EXHAUSTED
            raise

    def header_parsed(
        self,
        first: tuple[tarfile.TarInfo, Compression] | None,
        *,
        expected_count: int,
    ) -> None:
        """Called by the artifact reader when the cursor reaches `data/`(or EOF)."""
        if self.state != IteratorState.HEADER_PARSING:
            raise UnsupportedOperation(f"invalid state transition from {self.state}")
        self._expected_count = expected_count
        self._pending = first
        if first is None:
            self.state = IteratorState.EXHAUSTED
        else:
            self.state = IteratorState.PAYLOAD_READY

    def _payload_finished(self, _payload: Payload) -> None:
        if _payload is self._current:
            self.state = IteratorState.PAYLOAD_READY

    def _next_data_entry(self) -> tuple[tarfile.TarInfo, Compression] | None:
        if self._pending:
            _res, self._pending = self._pending, None
            return _res

        try:
            _member = self._tar.next()
        except STREAM_DECODE_ERRORS as e:
            raise CodecError(DATA_DIR, f"broken artifact: {e!r}") from e
        if _member is None:
            return

        if not (_transition := match_entry(GrammarStep.DATA, _member.name)):
            raise StructuralError(
                f"unexpected entry `{_member.name}`, expect `{GrammarStep.DATA.value}`"
            )
        assert _transition.compression
        return _member, _transition.compression

    def _next_payload(self) -> Payload:
        if self.state == IteratorState.PAYLOAD_DRAINING and self._current:
            logger.warning(
                f"{self._current.content_path} is not fully read, invalidate it"
            )
            self._current._invalidate()
            self.state = IteratorState.PAYLOAD_READY

        _count = len(self.payloads_read)
        if not (_next := self._next_data_entry()):
            if _count != self._expected_count:
                raise StructuralError(
                    f"header-info declares {self._expected_count} payloads, "
                    f"but only {_count} payloads found"
                )
            self.state = IteratorState.EXHAUSTED
            raise StopIteration

        _member, _compression = _next
        _ma = DATA_ENTRY_PA.match(_member.name)
        assert _ma
        _index = int(_ma["index"])
        if _index != _count:
            raise StructuralError(
                f"expect payload {payload_index(_count)}, get {_member.name}"
            )
        if _index >= self._expected_count:
            raise StructuralError(
                f"header-info declares {self._expected_count} payloads, "
                f"get extra payload {_member.name}"
            )

        self._current = _payload = self._open_payload(_index, _member, _compression)
        self.payloads_read.append(_payload)
        self.state = IteratorState.PAYLOAD_DRAINING
        logger.debug(f"payload {_member.name} opened: {_payload.name}")
        return _payload

    def _open_payload(
        self, _index: int, _member: tarfile.TarInfo, _compression: Compression
    ) -> Payload:
        if not _member.isfile():
            raise StructuralError(f"{_member.name} is not a regular file")
        try:
            _raw = self._tar.extractfile(_member)
            assert _raw is not None
            _archive_reader = DigestReader(_raw, chunk_size=self._chunk_size)
            _decompressed = open_decompressed(_archive_reader, _compression)
            _payload_tar = open_tar_stream(_decompressed)

            _content_member = _payload_tar.next()
            if _content_member is None:
                raise StructuralError(f"{_member.name}: no payload file found")
            if not _content_member.isfile():
                raise StructuralError(
                    f"{_member.name}: payload {_content_member.name} is not a regular file"
                )
            _content = _payload_tar.extractfile(_content_member)
            assert _content is not None
        except STREAM_DECODE_ERRORS as e:
            raise CodecError(_member.name, f"broken payload archive: {e!r}") from e

        return Payload(
            _index,
            archive_name=_member.name,
            name=norm_member_name(_content_member.name),
            size=_content_member.size,
            archive_reader=_archive_reader,
            decompressed=_decompressed,
            payload_tar=_payload_tar,
            content=_content,
            chunk_size=self._chunk_size,
            iterator=self,
        )
