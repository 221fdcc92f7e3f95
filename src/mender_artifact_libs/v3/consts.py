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
"""Consts related to mender artifact format version 3."""

import re

ARTIFACT_FORMAT = "mender"
SUPPORTED_FORMAT_VERSIONS = (3,)

# ------ outer archive entries ------ #

VERSION_FNAME = "version"
MANIFEST_FNAME = "manifest"
MANIFEST_SIG_FNAME = "manifest.sig"
MANIFEST_AUGMENT_FNAME = "manifest-augment"
HEADER_STEM = "header"
HEADER_AUGMENT_STEM = "header-augment"
DATA_DIR = "data"

# data/0000.tar.gz, data/0001.tar.zst, etc.
DATA_ENTRY_PA = re.compile(r"^data/(?P<index>\d{4})(?P<suffix>\.tar(\.gz|\.zst)?)$")

# ------ header archive entries ------ #

HEADER_INFO_FNAME = "header-info"
SCRIPTS_DIR = "scripts"
HEADERS_DIR = "headers"
TYPE_INFO_FNAME = "type-info"
META_DATA_FNAME = "meta-data"

# headers/0000, headers/0001, etc.
SUB_HEADER_DIR_PA = re.compile(r"^headers/(?P<index>\d{4})$")

SCRIPT_NAME_PA = re.compile(
    r"^(Idle|Sync|Download|ArtifactInstall|ArtifactReboot|ArtifactCommit"
    r"|ArtifactRollback|ArtifactRollbackReboot|ArtifactFailure)"
    r"_(Enter|Leave|Error)_[0-9]{2}(_\S+)?$"
)

PAYLOAD_INDEX_WIDTH = 4


def payload_index(index: int) -> str:
    return f"{index:0{PAYLOAD_INDEX_WIDTH}d}"
