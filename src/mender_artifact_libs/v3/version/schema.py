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
"""The `version` entry of the artifact.

{
    "format": "mender",
    "version": 3
}
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from mender_artifact_libs.common import JSONSectionBase, Sha256Digest
from mender_artifact_libs.v3.consts import SUPPORTED_FORMAT_VERSIONS, VERSION_FNAME


class Version(JSONSectionBase):
    SectionName = VERSION_FNAME

    format: Literal["mender"]
    version: int

    # sha256 of the raw entry, only set when read from an artifact
    digest: Sha256Digest | None = Field(default=None, exclude=True)

    @property
    def supported(self) -> bool:
        return self.version in SUPPORTED_FORMAT_VERSIONS
