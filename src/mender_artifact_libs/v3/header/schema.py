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
"""Sections carried inside `header.tar.gz` and `header-augment.tar.gz`.

+---header.tar.gz
     |
     +---header-info
     +---scripts
     |    +---ArtifactInstall_Enter_00
     |    `---<more scripts>
     `---headers
          +---0000
          |    +---type-info
          |    `---meta-data
          `---0001
               `---<more headers>
"""

from __future__ import annotations

from typing import Optional

from pydantic import (
    AliasChoices,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)

from mender_artifact_libs.common import (
    AliasEnabledModel,
    JSONSectionBase,
    OpaqueSection,
    Sha256Digest,
    StructuralError,
)
from mender_artifact_libs.v3.consts import (
    HEADER_INFO_FNAME,
    META_DATA_FNAME,
    TYPE_INFO_FNAME,
)

#
# ------ header-info ------ #
#


class PayloadType(AliasEnabledModel):
    type: str


class ArtifactProvides(AliasEnabledModel):
    artifact_name: str
    artifact_group: Optional[str] = None


class ArtifactDepends(AliasEnabledModel):
    artifact_name: frozenset[str] = frozenset()
    device_type: frozenset[str] = frozenset()
    artifact_group: Optional[frozenset[str]] = None

    @field_serializer("artifact_name", "device_type", "artifact_group")
    def _sorted_list(self, value: frozenset[str] | None) -> list[str] | None:
        if value is None:
            return None
        return sorted(value)


class HeaderInfo(JSONSectionBase):
    SectionName = HEADER_INFO_FNAME

    payloads: tuple[PayloadType, ...] = ()
    artifact_provides: Optional[ArtifactProvides] = None
    artifact_depends: Optional[ArtifactDepends] = None


#
# ------ sub-headers ------ #
#


class TypeInfoProvides(AliasEnabledModel):
    # NOTE: other provides are kept as extra fields
    model_config = ConfigDict(extra="allow")

    rootfs_image_checksum: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "rootfs-image.checksum", "rootfs_image_checksum"
        ),
        serialization_alias="rootfs-image.checksum",
    )


class TypeInfoDepends(TypeInfoProvides): ...


class TypeInfo(JSONSectionBase):
    SectionName = TYPE_INFO_FNAME

    type: str
    artifact_provides: Optional[TypeInfoProvides] = None
    artifact_depends: Optional[TypeInfoDepends] = None
    clears_artifact_provides: Optional[tuple[str, ...]] = None


class MetaData(OpaqueSection):
    """Payload type specific meta-data, not interpreted."""

    SectionName = META_DATA_FNAME


class SubHeader(AliasEnabledModel):
    """The type-info and meta-data of one payload, identified by its index."""

    type_info: TypeInfo
    meta_data: Optional[MetaData] = None


#
# ------ header archives ------ #
#


def _check_payloads_count(info: HeaderInfo, sub_headers: tuple[SubHeader, ...]):
    if len(sub_headers) != len(info.payloads):
        raise StructuralError(
            f"header-info declares {len(info.payloads)} payloads, "
            f"but {len(sub_headers)} sub-headers found"
        )


class Header(AliasEnabledModel):
    info: HeaderInfo
    scripts: tuple[str, ...] = ()
    sub_headers: tuple[SubHeader, ...] = ()

    # sha256 of the compressed archive, only set when read from an artifact
    digest: Optional[Sha256Digest] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _payloads_count_validator(self):
        _check_payloads_count(self.info, self.sub_headers)
        return self


class AugmentHeader(AliasEnabledModel):
    """The unsigned augmented header, carries no lifecycle scripts."""

    info: HeaderInfo
    sub_headers: tuple[SubHeader, ...] = ()

    digest: Optional[Sha256Digest] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _payloads_count_validator(self):
        _check_payloads_count(self.info, self.sub_headers)
        return self
