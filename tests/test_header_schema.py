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
"""Tests for the version, header-info and type-info sections."""

from __future__ import annotations

import json

import pytest

from mender_artifact_libs.common import CodecError, StructuralError
from mender_artifact_libs.v3.header.schema import (
    ArtifactDepends,
    AugmentHeader,
    Header,
    HeaderInfo,
    MetaData,
    PayloadType,
    SubHeader,
    TypeInfo,
)
from mender_artifact_libs.v3.version.schema import Version

from tests.conftest import VERSION_RAW, make_header_info


class TestVersion:
    def test_decode(self):
        _version = Version.decode(VERSION_RAW)
        assert _version.format == "mender"
        assert _version.version == 3
        assert _version.supported
        assert _version.digest is None

    def test_encode(self):
        _version = Version(format="mender", version=3)
        assert json.loads(_version.encode()) == {"format": "mender", "version": 3}

    def test_unsupported_version(self):
        assert not Version.decode(b'{"format": "mender", "version": 2}').supported

    @pytest.mark.parametrize(
        "_raw",
        (
            b'{"format": "not-mender", "version": 3}',
            b'{"format": "mender", "version": "three"}',
            b"not json",
            b"{}",
            b'{"format": "mender"}',
            b'{"version": 3}',
        ),
    )
    def test_invalid(self, _raw: bytes):
        with pytest.raises(CodecError, match="^version: "):
            Version.decode(_raw)


class TestHeaderInfo:
    def test_decode(self):
        _info = HeaderInfo.decode(make_header_info(["rootfs-image", "app"]))

        assert _info.payloads == (
            PayloadType(type="rootfs-image"),
            PayloadType(type="app"),
        )
        assert _info.artifact_provides
        assert _info.artifact_provides.artifact_name == "release-1"
        assert _info.artifact_depends
        assert _info.artifact_depends.device_type == frozenset(["raspberrypi4"])

    def test_round_trip(self):
        _info = HeaderInfo.decode(make_header_info())
        assert HeaderInfo.decode(_info.encode()) == _info

    def test_depends_serialized_as_sorted_list(self):
        _depends = ArtifactDepends(device_type=frozenset(["b", "a"]))
        assert json.loads(_depends.model_dump_json(exclude_none=True)) == {
            "artifact_name": [],
            "device_type": ["a", "b"],
        }

    def test_minimum_header_info(self):
        _info = HeaderInfo.decode(b'{"payloads": []}')
        assert _info.payloads == ()
        assert _info.artifact_provides is None

    def test_invalid(self):
        with pytest.raises(CodecError, match="^header-info: "):
            HeaderInfo.decode(b'{"payloads": [{"no-type": 1}]}')


class TestTypeInfo:
    def test_decode_with_provides(self):
        _raw = json.dumps(
            {
                "type": "rootfs-image",
                "artifact_provides": {
                    "rootfs-image.checksum": "abc",
                    "rootfs-image.version": "1.0",
                },
                "clears_artifact_provides": ["rootfs-image.*"],
            }
        ).encode()
        _type_info = TypeInfo.decode(_raw)

        assert _type_info.type == "rootfs-image"
        assert _type_info.artifact_provides
        assert _type_info.artifact_provides.rootfs_image_checksum == "abc"
        assert _type_info.clears_artifact_provides == ("rootfs-image.*",)
        # the unknown provides are kept
        assert json.loads(_type_info.encode()) == json.loads(_raw)

    def test_type_is_required(self):
        with pytest.raises(CodecError, match="^type-info: "):
            TypeInfo.decode(b"{}")


class TestHeader:
    def test_payloads_count_mismatch(self):
        _info = HeaderInfo.decode(make_header_info(["rootfs-image", "app"]))
        with pytest.raises(StructuralError, match="declares 2 payloads"):
            Header(
                info=_info,
                sub_headers=(SubHeader(type_info=TypeInfo(type="rootfs-image")),),
            )

    def test_augment_header_count_mismatch(self):
        _info = HeaderInfo.decode(make_header_info(["rootfs-image"]))
        with pytest.raises(StructuralError):
            AugmentHeader(info=_info)

    def test_meta_data_kept_as_is(self):
        _sub_header = SubHeader(
            type_info=TypeInfo(type="app"), meta_data=MetaData(b'{"k": "v"}')
        )
        assert _sub_header.meta_data == b'{"k": "v"}'
        assert _sub_header.meta_data.encode() == b'{"k": "v"}'
