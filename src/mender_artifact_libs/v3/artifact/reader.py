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
"""Read the mender artifact in one forward-only pass."""

from __future__ import annotations

import logging
import tarfile
from os import PathLike
from typing import IO, Callable

from mender_artifact_libs._crypto.sign_utils import verify_manifest_signature
from mender_artifact_libs.common import (
    CodecError,
    IntegrityError,
    Sha256Digest,
    StructuralError,
)
from mender_artifact_libs.common.io import (
    DEFAULT_FILE_CHUNK_SIZE,
    STREAM_DECODE_ERRORS,
    Compression,
    DigestReader,
    open_tar_stream,
)
from mender_artifact_libs.v3.consts import (
    HEADER_AUGMENT_STEM,
    HEADER_STEM,
    VERSION_FNAME,
)
from mender_artifact_libs.v3.header.reader import (
    parse_augment_header_archive,
    parse_header_archive,
)
from mender_artifact_libs.v3.header.schema import AugmentHeader, Header
from mender_artifact_libs.v3.header.scripts import ScriptSink
from mender_artifact_libs.v3.manifest.schema import (
    AugmentManifest,
    Manifest,
    ManifestEntry,
    ManifestSignature,
)
from mender_artifact_libs.v3.manifest.utils import SignatureVerifier, verify_manifest
from mender_artifact_libs.v3.version.schema import Version

from .grammar import GrammarStep, next_transition
from .payload import PayloadIterator

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = DEFAULT_FILE_CHUNK_SIZE
DEFAULT_HEADER_ENTRY = f"{HEADER_STEM}{Compression.GZIP.tar_suffix}"
DEFAULT_AUGMENT_HEADER_ENTRY = f"{HEADER_AUGMENT_STEM}{Compression.GZIP.tar_suffix}"


class Artifact:
    """A parsed artifact, with payloads pending to be read.

    This class is NOT safe for multi-thread.
    """

    def __init__(
        self,
        *,
        version: Version,
        manifest: Manifest,
        header: Header,
        payloads: PayloadIterator,
        signature: ManifestSignature | None = None,
        augment_manifest: AugmentManifest | None = None,
        augment_header: AugmentHeader | None = None,
        header_entry_name: str = DEFAULT_HEADER_ENTRY,
        augment_header_entry_name: str = DEFAULT_AUGMENT_HEADER_ENTRY,
        closer: Callable[[], None] | None = None,
    ) -> None:
        self.version = version
        self.manifest = manifest
        self.signature = signature
        self.augment_manifest = augment_manifest
        self.header = header
        self.augment_header = augment_header
        self.header_entry_name = header_entry_name
        self.augment_header_entry_name = augment_header_entry_name

        self._payloads = payloads
        self._closer = closer

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self) -> None:
        if self._closer:
            self._closer()
            self._closer = None

    @property
    def signed(self) -> bool:
        return self.signature is not None

    def payloads(self) -> PayloadIterator:
        return self._payloads

    def manifest_entries(self) -> tuple[ManifestEntry, ...]:
        return self.manifest.entries

    def verify_signature(
        self,
        public_key: bytes,
        *,
        verifier: SignatureVerifier = verify_manifest_signature,
    ) -> bool:
        """Verify the manifest signature with <public_key>.

        Returns False if the artifact is not signed.
        """
        if self.signature is None:
            logger.warning("artifact is not signed")
            return False
        return verify_manifest(
            self.manifest, self.signature, public_key, verifier=verifier
        )

    def integrity_failures(self) -> list[str]:
        """Check the version, headers and already read payloads against the manifests.

        Only payloads that are fully read are checked, payloads not yet read or
            abandoned are skipped(with a warning). Drain all the payloads
            before calling this method to verify the whole artifact.
        """
        _failures: list[str] = []

        def _check(
            _manifest: Manifest | None, _path: str, _digest: Sha256Digest | None
        ):
            if _digest is None:
                return
            _expected = _manifest.get(_path) if _manifest is not None else None
            if _expected is None:
                _failures.append(f"{_path}: not covered by the manifest")
            elif _expected != _digest:
                _failures.append(f"{_path}: expect {_expected}, get {_digest}")

        _check(self.manifest, VERSION_FNAME, self.version.digest)
        _check(self.manifest, self.header_entry_name, self.header.digest)
        if self.augment_header is not None:
            _check(
                self.augment_manifest,
                self.augment_header_entry_name,
                self.augment_header.digest,
            )

        _checked = 0
        for _payload in self._payloads.payloads_read:
            if not _payload.finished:
                continue
            _checked += 1
            _failures.extend(
                _payload.integrity_failures(self.manifest, self.augment_manifest)
            )
        if (_declared := len(self.header.info.payloads)) > _checked:
            logger.warning(
                f"only {_checked} of {_declared} payloads are fully read, "
                "the rest are not verified"
            )
        return _failures

    def verify_integrity(self) -> None:
        """Raises IntegrityError listing every section that doesn't match the manifests."""
        if _failures := self.integrity_failures():
            raise IntegrityError(_failures)


class ArtifactReader:
    """Walk the outer archive of the artifact entry by entry.

    This class is NOT safe for multi-thread, create separated instance
        for each artifact.
    """

    def __init__(
        self,
        _f: IO[bytes] | PathLike | str,
        *,
        read_chunk_size: int = DEFAULT_READ_SIZE,
        script_sink: ScriptSink | None = None,
        close_on_exit: bool = True,
    ) -> None:
        if isinstance(_f, (str, PathLike)):
            self._f: IO[bytes] = open(_f, "rb")
            self._own_f = True
        else:
            self._f = _f
            self._own_f = False

        self._chunk_size = read_chunk_size
        self._script_sink = script_sink
        self._close_on_exit = close_on_exit
        self._tar: tarfile.TarFile | None = None

        self._version: Version | None = None
        self._manifest: Manifest | None = None
        self._signature: ManifestSignature | None = None
        self._augment_manifest: AugmentManifest | None = None
        self._header: Header | None = None
        self._header_entry_name = DEFAULT_HEADER_ENTRY
        self._augment_header: AugmentHeader | None = None
        self._augment_header_entry_name = DEFAULT_AUGMENT_HEADER_ENTRY

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._close_on_exit:
            self.close()
        return False

    def close(self) -> None:
        if self._tar is not None:
            self._tar.close()
        if self._own_f:
            self._f.close()

    def _extract(self, _member: tarfile.TarInfo) -> IO[bytes]:
        assert self._tar is not None
        _f = self._tar.extractfile(_member)
        if _f is None:
            raise StructuralError(f"{_member.name} is not a regular file")
        return _f

    # ------ section handlers ------ #

    def _read_version(self, _member: tarfile.TarInfo, _: Compression | None) -> None:
        _reader = DigestReader(self._extract(_member), chunk_size=self._chunk_size)
        _version = Version.decode(_reader.read())
        if not _version.supported:
            raise StructuralError(
                f"unsupported artifact format version {_version.version}"
            )
        self._version = _version.model_copy(
            update={"digest": Sha256Digest(_reader.hexdigest())}
        )
        logger.debug(f"artifact format version {_version.version}")

    def _read_manifest(self, _member: tarfile.TarInfo, _: Compression | None) -> None:
        self._manifest = Manifest.decode(self._extract(_member).read())
        logger.debug(f"manifest with {len(self._manifest)} entries")

    def _read_signature(self, _member: tarfile.TarInfo, _: Compression | None) -> None:
        self._signature = ManifestSignature.decode(self._extract(_member).read())
        logger.debug("artifact is signed")

    def _read_augment_manifest(
        self, _member: tarfile.TarInfo, _: Compression | None
    ) -> None:
        self._augment_manifest = AugmentManifest.decode(self._extract(_member).read())

    def _read_header(
        self, _member: tarfile.TarInfo, compression: Compression | None
    ) -> None:
        assert compression
        _reader = DigestReader(self._extract(_member), chunk_size=self._chunk_size)
        _header = parse_header_archive(
            _reader,
            section=_member.name,
            compression=compression,
            script_sink=self._script_sink,
        )
        _reader.drain()
        self._header = _header.model_copy(
            update={"digest": Sha256Digest(_reader.hexdigest())}
        )
        self._header_entry_name = _member.name

    def _read_augment_header(
        self, _member: tarfile.TarInfo, compression: Compression | None
    ) -> None:
        assert compression
        _reader = DigestReader(self._extract(_member), chunk_size=self._chunk_size)
        _header = parse_augment_header_archive(
            _reader, section=_member.name, compression=compression
        )
        _reader.drain()
        self._augment_header = _header.model_copy(
            update={"digest": Sha256Digest(_reader.hexdigest())}
        )
        self._augment_header_entry_name = _member.name

    _SECTION_HANDLERS = {
        GrammarStep.VERSION: _read_version,
        GrammarStep.MANIFEST: _read_manifest,
        GrammarStep.MANIFEST_SIG: _read_signature,
        GrammarStep.MANIFEST_AUGMENT: _read_augment_manifest,
        GrammarStep.HEADER: _read_header,
        GrammarStep.HEADER_AUGMENT: _read_augment_header,
    }

    # ------ grammar walker ------ #

    def _next_member(self, _section: str) -> tarfile.TarInfo | None:
        assert self._tar is not None
        try:
            return self._tar.next()
        except STREAM_DECODE_ERRORS as e:
            raise CodecError(_section, f"broken artifact: {e!r}") from e

    def parse(self) -> Artifact:
        """Parse the artifact up to the first payload.

        Raises:
            StructuralError, CodecError on invalid artifact.
        """
        if self._tar is not None:
            raise StructuralError("artifact can only be parsed once")
        try:
            self._tar = open_tar_stream(self._f)
        except STREAM_DECODE_ERRORS as e:
            raise CodecError("artifact", f"not a tar archive: {e!r}") from e

        _payloads = PayloadIterator(self._tar, read_chunk_size=self._chunk_size)
        _step = GrammarStep.START
        while True:
            _member = self._next_member(_step.value)
            _transition = next_transition(_step, _member.name if _member else None)
            _step = _transition.step
            logger.debug(f"grammar step: {_step.value}")

            if _step == GrammarStep.END or _step == GrammarStep.DATA:
                break

            assert _member is not None
            _handler = self._SECTION_HANDLERS[_step]
            try:
                _handler(self, _member, _transition.compression)
            except STREAM_DECODE_ERRORS as e:
                raise CodecError(_member.name, f"broken entry: {e!r}") from e

        assert self._version and self._manifest and self._header
        _expected_count = len(self._header.info.payloads)
        if _step == GrammarStep.END:
            if _expected_count != 0:
                raise StructuralError(
                    f"header-info declares {_expected_count} payloads, "
                    "but no payload found in the artifact"
                )
            _payloads.header_parsed(None, expected_count=0)
        else:
            assert _member and _transition.compression
            _payloads.header_parsed(
                (_member, _transition.compression), expected_count=_expected_count
            )

        return Artifact(
            version=self._version,
            manifest=self._manifest,
            signature=self._signature,
            augment_manifest=self._augment_manifest,
            header=self._header,
            augment_header=self._augment_header,
            payloads=_payloads,
            header_entry_name=self._header_entry_name,
            augment_header_entry_name=self._augment_header_entry_name,
            closer=self.close,
        )


def parse(
    _f: IO[bytes] | PathLike | str,
    *,
    read_chunk_size: int = DEFAULT_READ_SIZE,
    script_sink: ScriptSink | None = None,
) -> Artifact:
    """Parse the artifact from a path or a forward readable binary stream.

    The returned Artifact owns the underlying stream, close it when done.
    """
    _reader = ArtifactReader(
        _f, read_chunk_size=read_chunk_size, script_sink=script_sink
    )
    try:
        return _reader.parse()
    except BaseException:
        _reader.close()
        raise
