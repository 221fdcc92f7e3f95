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

from __future__ import annotations

import gzip
import hashlib
import io
from pathlib import Path

import pytest
import zstandard

from mender_artifact_libs.common import UnsupportedOperation
from mender_artifact_libs.common.io import (
    Compression,
    DigestReader,
    cal_file_digest,
    drain,
    file_sha256,
    open_compressed,
    open_decompressed,
    remove_file,
    stream_chunks,
)


class TestCompression:
    @pytest.mark.parametrize(
        "name, stem, expected",
        (
            ("header.tar.gz", "header", Compression.GZIP),
            ("header.tar.zst", "header", Compression.ZSTD),
            ("header.tar", "header", Compression.NONE),
            ("header.tar.xz", "header", None),
            ("header-augment.tar.gz", "header", None),
            ("data/0001.tar.gz", "data/0001", Compression.GZIP),
        ),
    )
    def test_from_entry_name(self, name, stem, expected):
        assert Compression.from_entry_name(name, stem) == expected

    def test_tar_suffix(self):
        assert Compression.GZIP.tar_suffix == ".tar.gz"
        assert Compression.ZSTD.tar_suffix == ".tar.zst"
        assert Compression.NONE.tar_suffix == ".tar"


class TestDigestReader:
    def test_digest_after_drained(self):
        _data = b"x" * 1000
        _reader = DigestReader(io.BytesIO(_data), chunk_size=64)

        assert _reader.read(10) == b"x" * 10
        assert not _reader.exhausted
        with pytest.raises(UnsupportedOperation):
            _reader.hexdigest()

        assert _reader.drain() == 990
        assert _reader.exhausted
        assert _reader.bytes_read == 1000
        assert _reader.hexdigest() == hashlib.sha256(_data).hexdigest()

    def test_read_all(self):
        _reader = DigestReader(io.BytesIO(b"abc"))
        assert _reader.read() == b"abc"
        assert _reader.hexdigest() == hashlib.sha256(b"abc").hexdigest()

    def test_empty_stream(self):
        _reader = DigestReader(io.BytesIO(b""))
        assert _reader.read(16) == b""
        assert _reader.hexdigest() == hashlib.sha256(b"").hexdigest()

    def test_feeds_two_consumers(self):
        """Decompress and hash the same raw bytes in one pass."""
        _content = b"mender" * 1024
        _raw = gzip.compress(_content)

        _reader = DigestReader(io.BytesIO(_raw))
        with open_decompressed(_reader, Compression.GZIP) as _decompressed:
            assert _decompressed.read() == _content
        _reader.drain()
        assert _reader.hexdigest() == hashlib.sha256(_raw).hexdigest()


class TestCompressedStream:
    @pytest.mark.parametrize("compression", list(Compression))
    def test_compress_then_decompress(self, compression: Compression):
        _content = b"payload" * 4096
        _buffer = io.BytesIO()
        with open_compressed(_buffer, compression) as _zf:
            _zf.write(_content)
        assert not _buffer.closed

        _buffer.seek(0)
        assert open_decompressed(_buffer, compression).read() == _content

    def test_gzip_is_reproducible(self):
        _outputs = []
        for _ in range(2):
            _buffer = io.BytesIO()
            with open_compressed(_buffer, Compression.GZIP) as _zf:
                _zf.write(b"abc")
            _outputs.append(_buffer.getvalue())
        assert _outputs[0] == _outputs[1]

    def test_zstd_multiple_frames(self):
        _cctx = zstandard.ZstdCompressor()
        _raw = _cctx.compress(b"frame1") + _cctx.compress(b"frame2")
        assert open_decompressed(io.BytesIO(_raw), Compression.ZSTD).read() == (
            b"frame1frame2"
        )


def test_drain_and_stream_chunks():
    assert drain(io.BytesIO(b"a" * 100), 7) == 100
    assert list(stream_chunks(io.BytesIO(b"abcde"), 2)) == [b"ab", b"cd", b"e"]


class TestCalFileDigest:
    def test_cal_file_digest_sha256(self, tmp_path: Path):
        """Test file digest calculation with sha256."""
        test_file = tmp_path / "test.txt"
        test_content = b"Hello, World!"
        test_file.write_bytes(test_content)

        result = cal_file_digest(test_file, hashlib.sha256)
        assert result.hexdigest() == hashlib.sha256(test_content).hexdigest()

    def test_file_sha256_empty_file(self, tmp_path: Path):
        """Test digest calculation on empty file."""
        test_file = tmp_path / "empty.txt"
        test_file.write_bytes(b"")

        result = file_sha256(test_file)
        assert result.hexdigest() == hashlib.sha256(b"").hexdigest()


class TestRemoveFile:
    def test_remove_file_regular_file(self, tmp_path: Path):
        """Test removing a regular file."""
        test_file = tmp_path / "test.txt"
        test_file.write_text("content")

        remove_file(test_file)
        assert not test_file.exists()

    def test_remove_file_directory(self, tmp_path: Path):
        """Test removing a directory."""
        test_dir = tmp_path / "test_dir"
        test_dir.mkdir()
        (test_dir / "file.txt").write_text("content")

        remove_file(test_dir)
        assert not test_dir.exists()

    def test_remove_file_not_exist(self, tmp_path: Path):
        remove_file(tmp_path / "not_exist")
