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
"""Parse the header archive(`header.tar.gz` and `header-augment.tar.gz`).

The archive is consumed in one forward-only pass, the scripts are streamed
    to the script sink(if any) without being buffered.
"""

from __future__ import annotations

import logging
import posixpath
import tarfile
from typing import IO

from mender_artifact_libs.common import CodecError, StructuralError
from mender_artifact_libs.common.io import (
    STREAM_DECODE_ERRORS,
    Compression,
    drain,
    open_decompressed,
    open_tar_stream,
)
from mender_artifact_libs.v3.consts import (
    HEADER_INFO_FNAME,
    META_DATA_FNAME,
    SCRIPT_NAME_PA,
    SCRIPTS_DIR,
    SUB_HEADER_DIR_PA,
    TYPE_INFO_FNAME,
    payload_index,
)

from .schema import AugmentHeader, Header, HeaderInfo, MetaData, SubHeader, TypeInfo
from .scripts import ScriptSink

logger = logging.getLogger(__name__)


def norm_member_name(name: str) -> str:
    """tar often stores names like `./header-info`."""
    while name.startswith("./"):
        name = name[2:]
    return name.lstrip("/")


class HeaderArchiveParser:
    """Walk through the members of one header archive.

    This class is NOT safe for multi-thread.
    """

    def __init__(
        self,
        _tar: tarfile.TarFile,
        *,
        section: str,
        script_sink: ScriptSink | None = None,
    ) -> None:
        self._tar = _tar
        self._section = section
        self._script_sink = script_sink

    def next_member(self) -> tuple[tarfile.TarInfo, str] | None:
        while (_member := self._tar.next()) is not None:
            if _member.isdir():
                continue
            _name = norm_member_name(_member.name)
            if not _member.isfile():
                raise StructuralError(
                    f"{self._section}: unexpected non-regular entry {_name}"
                )
            return _member, _name

    def _read_member(self, _member: tarfile.TarInfo) -> bytes:
        _f = self._tar.extractfile(_member)
        assert _f is not None
        return _f.read()

    def parse_header_info(self) -> HeaderInfo:
        if not (_next := self.next_member()):
            raise StructuralError(f"{self._section}: empty header archive")
        _member, _name = _next
        if _name != HEADER_INFO_FNAME:
            raise StructuralError(
                f"{self._section}: expect `{HEADER_INFO_FNAME}` as first entry, get {_name}"
            )
        return HeaderInfo.decode(self._read_member(_member))

    def parse_scripts(
        self, _next: tuple[tarfile.TarInfo, str] | None
    ) -> tuple[list[str], tuple[tarfile.TarInfo, str] | None]:
        """Consume the run of `scripts/<name>` entries.

        Returns the names of the scripts and the first entry that is not a script.
        """
        _scripts: list[str] = []
        while _next:
            _member, _name = _next
            _dir, _script_name = posixpath.split(_name)
            if _dir != SCRIPTS_DIR:
                break

            if not SCRIPT_NAME_PA.match(_script_name):
                raise StructuralError(
                    f"{self._section}: invalid lifecycle script name {_script_name}"
                )
            if self._script_sink:
                _f = self._tar.extractfile(_member)
                assert _f is not None
                self._script_sink.write_script(_script_name, _f)
            logger.debug(f"{self._section}: found script {_script_name}")
            _scripts.append(_script_name)
            _next = self.next_member()
        return _scripts, _next

    def parse_sub_headers(
        self, _next: tuple[tarfile.TarInfo, str] | None
    ) -> list[SubHeader]:
        """Consume `headers/NNNN/type-info`(and optional meta-data) until end of archive."""
        _sub_headers: list[SubHeader] = []
        while _next:
            _member, _name = _next
            _dir, _fname = posixpath.split(_name)
            _expected_dir = f"headers/{payload_index(len(_sub_headers))}"
            if not SUB_HEADER_DIR_PA.match(_dir):
                raise StructuralError(
                    f"{self._section}: expect entry under {_expected_dir}, get {_name}"
                )
            if _dir != _expected_dir:
                raise StructuralError(
                    f"{self._section}: expect sub-header {_expected_dir}, get {_name}"
                )
            if _fname != TYPE_INFO_FNAME:
                raise StructuralError(
                    f"{self._section}: expect `{_expected_dir}/{TYPE_INFO_FNAME}`, get {_name}"
                )
            _type_info = TypeInfo.decode(self._read_member(_member))

            _meta_data = None
            _next = self.next_member()
            if _next and _next[1] == f"{_dir}/{META_DATA_FNAME}":
                _meta_data = MetaData.decode(self._read_member(_next[0]))
                _next = self.next_member()

            _sub_headers.append(SubHeader(type_info=_type_info, meta_data=_meta_data))
        return _sub_headers


def _parse_header_archive(
    _f: IO[bytes],
    *,
    section: str,
    compression: Compression,
    expect_scripts: bool,
    script_sink: ScriptSink | None,
) -> Header | AugmentHeader:
    try:
        _decompressed = open_decompressed(_f, compression)
        with open_tar_stream(_decompressed) as _tar:
            _parser = HeaderArchiveParser(_tar, section=section, script_sink=script_sink)
            _info = _parser.parse_header_info()

            _next = _parser.next_member()
            _scripts: list[str] = []
            if expect_scripts:
                _scripts, _next = _parser.parse_scripts(_next)
            elif _next and posixpath.dirname(_next[1]) == SCRIPTS_DIR:
                raise StructuralError(
                    f"{section}: augmented header must not carry scripts, get {_next[1]}"
                )
            _sub_headers = _parser.parse_sub_headers(_next)
        # consume the end-of-archive padding and compression trailer
        drain(_decompressed)
    except STREAM_DECODE_ERRORS as e:
        raise CodecError(section, f"broken archive: {e!r}") from e

    logger.debug(
        f"{section}: {len(_scripts)} scripts, {len(_sub_headers)} sub-headers parsed"
    )
    if expect_scripts:
        return Header(info=_info, scripts=tuple(_scripts), sub_headers=tuple(_sub_headers))
    return AugmentHeader(info=_info, sub_headers=tuple(_sub_headers))


def parse_header_archive(
    _f: IO[bytes],
    *,
    section: str = "header.tar.gz",
    compression: Compression = Compression.GZIP,
    script_sink: ScriptSink | None = None,
) -> Header:
    """Parse the signed header archive from the compressed stream <_f>."""
    _res = _parse_header_archive(
        _f,
        section=section,
        compression=compression,
        expect_scripts=True,
        script_sink=script_sink,
    )
    assert isinstance(_res, Header)
    return _res


def parse_augment_header_archive(
    _f: IO[bytes],
    *,
    section: str = "header-augment.tar.gz",
    compression: Compression = Compression.GZIP,
) -> AugmentHeader:
    """Parse the augmented header archive from the compressed stream <_f>."""
    _res = _parse_header_archive(
        _f,
        section=section,
        compression=compression,
        expect_scripts=False,
        script_sink=None,
    )
    assert isinstance(_res, AugmentHeader)
    return _res
