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
"""Common shared helper functions for IO.

The artifact is consumed in one forward-only pass, the helpers here compose
    the stream transformations(decompression and hashing) around one raw
    byte stream, so that each layer is driven by the consumer pulling bytes.
"""

from __future__ import annotations

import gzip
import hashlib
import io
import shutil
import sys
import tarfile
import zlib
from contextlib import nullcontext
from enum import Enum
from functools import partial
from pathlib import Path
from typing import IO, Callable, ContextManager, Generator

import zstandard

from .errors import UnsupportedOperation

DEFAULT_FILE_CHUNK_SIZE = 1024**2  # 1MiB

# errors that indicate the stream is not a valid compressed archive
STREAM_DECODE_ERRORS = (
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    zstandard.ZstdError,
    tarfile.TarError,
)


class Compression(str, Enum):
    GZIP = "gzip"
    ZSTD = "zstd"
    NONE = "none"

    @property
    def tar_suffix(self) -> str:
        return _TAR_SUFFIX[self]

    @classmethod
    def from_entry_name(cls, name: str, stem: str) -> Compression | None:
        """Detect the compression of <name> which should be <stem>.tar[.<ext>]."""
        for _compression, _suffix in _TAR_SUFFIX.items():
            if name == f"{stem}{_suffix}":
                return _compression


_TAR_SUFFIX = {
    Compression.GZIP: ".tar.gz",
    Compression.ZSTD: ".tar.zst",
    Compression.NONE: ".tar",
}


class DigestReader:
    """A file-like reader that feeds every byte read through it into a hash.

    The digest is only exposed after the wrapped stream is read to EOF,
        reading a digest of a partially consumed stream raises UnsupportedOperation.
    """

    def __init__(
        self,
        _f: IO[bytes],
        *,
        digest: Callable[[], hashlib._Hash] = hashlib.sha256,
        chunk_size: int = DEFAULT_FILE_CHUNK_SIZE,
    ) -> None:
        self._f = _f
        self._hash = digest()
        self._chunk_size = chunk_size
        self._exhausted = False
        self.bytes_read = 0

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def readable(self) -> bool:
        return True

    def read(self, size: int | None = -1) -> bytes:
        if size is None:
            size = -1
        data = self._f.read(size)
        if data:
            self._hash.update(data)
            self.bytes_read += len(data)
        if size < 0 or (size > 0 and not data):
            self._exhausted = True
        return data

    def drain(self) -> int:
        """Read and hash the rest of the stream, return the number of bytes skipped."""
        _skipped = 0
        while data := self.read(self._chunk_size):
            _skipped += len(data)
        return _skipped

    def hexdigest(self) -> str:
        if not self._exhausted:
            raise UnsupportedOperation("digest read before the stream is drained")
        return self._hash.hexdigest()

    def close(self) -> None:
        self._f.close()


def drain(_f: IO[bytes], chunk_size: int = DEFAULT_FILE_CHUNK_SIZE) -> int:
    """Read <_f> until EOF, return the number of bytes discarded."""
    _skipped = 0
    while data := _f.read(chunk_size):
        _skipped += len(data)
    return _skipped


def open_decompressed(_f: IO[bytes], compression: Compression) -> IO[bytes]:
    """Wrap <_f> with a lazy decompression reader.

    No data is pulled from <_f> until the returned reader is read.
    """
    if compression == Compression.GZIP:
        return gzip.GzipFile(fileobj=_f, mode="rb")
    if compression == Compression.ZSTD:
        dctx = zstandard.ZstdDecompressor()
        return dctx.stream_reader(_f, read_across_frames=True, closefd=False)  # type: ignore
    return _f


def open_compressed(
    _f: IO[bytes], compression: Compression, *, zstd_compression_level: int = 3
) -> ContextManager[IO[bytes]]:
    """Wrap <_f> with a compression writer, <_f> is NOT closed on exit."""
    if compression == Compression.GZIP:
        return gzip.GzipFile(filename="", fileobj=_f, mode="wb", mtime=0)
    if compression == Compression.ZSTD:
        cctx = zstandard.ZstdCompressor(
            level=zstd_compression_level, write_checksum=True
        )
        return cctx.stream_writer(_f, closefd=False)  # type: ignore
    return nullcontext(_f)


def open_tar_stream(_f: IO[bytes]) -> tarfile.TarFile:
    """Open a forward-only tar reader over <_f>.

    Only the current member can be read, moving to next member skips
        the unread data of the previous one.
    """
    return tarfile.open(fileobj=_f, mode="r|")


def stream_chunks(
    _f: IO[bytes], chunk_size: int = DEFAULT_FILE_CHUNK_SIZE
) -> Generator[bytes]:
    while _chunk := _f.read(chunk_size):
        yield _chunk


if sys.version_info >= (3, 11):
    from hashlib import file_digest as _file_digest

else:

    def _file_digest(
        fileobj: io.BufferedReader,
        digest,
        /,
        *,
        _bufsize: int = DEFAULT_FILE_CHUNK_SIZE,
    ) -> hashlib._Hash:
        """
        Basically a simpified copy from 3.11's hashlib.file_digest.
        """
        if isinstance(digest, str):
            digestobj = hashlib.new(digest)
        else:
            digestobj = digest()

        buf = bytearray(_bufsize)  # Reusable buffer to reduce allocations.
        view = memoryview(buf)
        while True:
            size = fileobj.readinto(buf)
            if size == 0:
                break  # EOF
            digestobj.update(view[:size])

        return digestobj


def cal_file_digest(
    fpath: str | Path, digest, chunk_size: int = DEFAULT_FILE_CHUNK_SIZE
) -> hashlib._Hash:
    """Generate file digest with <algorithm> and returns Hash object.

    A wrapper for the _file_digest method.
    """
    with open(fpath, "rb") as f:
        return _file_digest(f, digest, _bufsize=chunk_size)


file_sha256 = partial(cal_file_digest, digest=hashlib.sha256)
file_sha256.__doc__ = "Generate file digest with sha256."


def remove_file(_fpath: Path, *, ignore_error: bool = True) -> None:
    """Use proper way to remove <_fpath>."""
    try:
        _fpath.unlink(missing_ok=True)
    except IsADirectoryError:
        return shutil.rmtree(_fpath, ignore_errors=ignore_error)
    except Exception:
        if not ignore_error:
            raise
