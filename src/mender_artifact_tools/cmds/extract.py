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
"""Extract the payload files from the mender artifact."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from mender_artifact_libs.common import ArtifactError, tmp_fname
from mender_artifact_libs.common.io import DEFAULT_FILE_CHUNK_SIZE, remove_file
from mender_artifact_libs.v3.artifact.reader import parse
from mender_artifact_libs.v3.consts import payload_index
from mender_artifact_tools._utils import exit_with_err_msg

if TYPE_CHECKING:
    from argparse import ArgumentParser, Namespace, _SubParsersAction

logger = logging.getLogger(__name__)


def extract_cmd_args(
    sub_arg_parser: _SubParsersAction[ArgumentParser], *parent_parser: ArgumentParser
) -> None:
    extract_arg_parser = sub_arg_parser.add_parser(
        name="extract",
        help=(_help_txt := "Extract the payload files from the mender artifact"),
        description=_help_txt,
        parents=parent_parser,
    )
    extract_arg_parser.add_argument(
        "--output",
        "-o",
        help="Folder to save the payload files, payload NNNN is saved under <output>/NNNN.",
        required=True,
    )
    extract_arg_parser.add_argument(
        "artifact",
        help="The mender artifact file.",
    )
    extract_arg_parser.set_defaults(handler=extract_cmd)


def extract_cmd(args: Namespace) -> None:
    logger.debug(f"calling {extract_cmd.__name__} with {args}")
    artifact_f, output_dir = Path(args.artifact), Path(args.output)
    if not artifact_f.is_file():
        exit_with_err_msg(f"{artifact_f} not found.")
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        with parse(artifact_f) as _artifact:
            for _payload in _artifact.payloads():
                _payload_dir = output_dir / payload_index(_payload.index)
                _payload_dir.mkdir(exist_ok=True)
                _dst = _payload_dir / Path(_payload.name).name
                _tmp = _payload_dir / tmp_fname(_dst.name)
                try:
                    with _payload, open(_tmp, "wb") as _f:
                        shutil.copyfileobj(_payload, _f, DEFAULT_FILE_CHUNK_SIZE)
                    _payload.verify(_artifact.manifest, _artifact.augment_manifest)
                    os.replace(_tmp, _dst)
                finally:
                    remove_file(_tmp)
                print(f"{_payload.content_path} is extracted to {_dst}")
            _artifact.verify_integrity()
    except ArtifactError as e:
        exit_with_err_msg(f"failed to extract {artifact_f}: {e}")
