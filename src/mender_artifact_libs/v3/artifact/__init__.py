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
"""Libraries for reading and composing the mender artifact(format version 3).

The artifact is an uncompressed tar archive with the following entries, in order:

1. `version`: JSON, {"format": "mender", "version": 3}.
2. `manifest`: sha256 checksums of the version, the header and each payload file.
3. `manifest.sig`(optional): base64 encoded signature over the manifest.
4. `manifest-augment`(optional, only after `manifest.sig`): checksums of the augmented sections.
5. `header.tar.gz`: compressed archive of header-info, lifecycle scripts and sub-headers.
6. `header-augment.tar.gz`(optional): compressed archive of the unsigned augmented header.
7. `data/NNNN.tar.gz`: one compressed archive per payload, each holds one payload file.

Sub-archives might also be compressed with zstd(`.tar.zst`) or not compressed(`.tar`).
"""

# some constants that required for making a reproducible artifact build
DEFAULT_MTIME = 1230768000  # 2009-01-01T00:00:00Z
FILE_PERMISSION = 0o644
SCRIPT_PERMISSION = 0o755
