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
"""Materialization of the lifecycle scripts carried by the header archive."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import IO, Protocol

from mender_artifact_libs.common import tmp_fname
from mender_artifact_libs.common.io import DEFAULT_FILE_CHUNK_SIZE
from mender_artifact_libs.v3.artifact import SCRIPT_PERMISSION

logger = logging.getLogger(__name__)


class ScriptSink(Protocol):
    def write_script(self, name: str, stream: IO[bytes]) -> Path:
        """Consume <stream> as the contents of script <name>, return where it is saved."""
        ...


class DirectoryScriptSink:
    """Save lifecycle scripts into <scripts_dir>, which is configured by the caller."""

    def __init__(
        self, scripts_dir: Path | str, *, chunk_size: int = DEFAULT_FILE_CHUNK_SIZE
    ) -> None:
        self.scripts_dir = Path(scripts_dir)
        self._chunk_size = chunk_size
        self.scripts_dir.mkdir(parents=True, exist_ok=True)

    def write_script(self, name: str, stream: IO[bytes]) -> Path:
        if not name or os.sep in name or name in (".", ".."):
            raise ValueError(f"invalid script name: {name!r}")

        _dst = self.scripts_dir / name
        _tmp = self.scripts_dir / tmp_fname(name)
        try:
            with open(_tmp, "wb") as _f:
                shutil.copyfileobj(stream, _f, self._chunk_size)
            os.chmod(_tmp, SCRIPT_PERMISSION)
            os.replace(_tmp, _dst)
        finally:
            _tmp.unlink(missing_ok=True)
        logger.debug(f"script {name} saved to {_dst}")
        return _dst
