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
"""Exceptions raised when parsing or composing a mender artifact."""

from __future__ import annotations


class ArtifactError(Exception):
    """Base exception of mender-artifact-libs."""


class StructuralError(ArtifactError):
    """Unexpected entry name or order, missing mandatory section,
    payload count mismatch or gap in the payload numbering."""


class CodecError(ArtifactError):
    """Failed to decode(or encode) the contents of one section.

    The message is always prefixed with the name of the section.
    """

    def __init__(self, section: str, msg: str) -> None:
        self.section = section
        super().__init__(f"{section}: {msg}")


class IntegrityError(ArtifactError):
    """One or more computed digests don't match the manifest."""

    def __init__(self, failures: list[str]) -> None:
        self.failures = failures
        super().__init__(f"integrity check failed: {'; '.join(failures)}")


class UnsupportedOperation(ArtifactError):
    """The operation is not meaningful for the current state of the object."""


class PayloadInvalidated(UnsupportedOperation):
    """The payload handle is no longer valid, as the iterator moved on."""
