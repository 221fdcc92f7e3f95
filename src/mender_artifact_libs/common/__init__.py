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
"""Common shared utils and libs for parsing and composing artifact sections."""

from ._common import tmp_fname
from .checksum import Sha256Digest
from .errors import (
    ArtifactError,
    CodecError,
    IntegrityError,
    PayloadInvalidated,
    StructuralError,
    UnsupportedOperation,
)
from .section_base import AliasEnabledModel, JSONSectionBase, OpaqueSection

__all__ = [
    "AliasEnabledModel",
    "ArtifactError",
    "CodecError",
    "IntegrityError",
    "JSONSectionBase",
    "OpaqueSection",
    "PayloadInvalidated",
    "Sha256Digest",
    "StructuralError",
    "UnsupportedOperation",
    "tmp_fname",
]
