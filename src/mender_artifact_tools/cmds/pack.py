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
"""Pack payload files into a mender artifact."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mender_artifact_libs.common import ArtifactError
from mender_artifact_libs.common.io import Compression
from mender_artifact_libs.v3.artifact.pack import (
    ROOTFS_IMAGE_TYPE,
    PayloadFile,
    pack_artifact,
)
from mender_artifact_tools._utils import exit_with_err_msg

if TYPE_CHECKING:
    from argparse import ArgumentParser, Namespace, _SubParsersAction

logger = logging.getLogger(__name__)


def pack_cmd_args(
    sub_arg_parser: _SubParsersAction[ArgumentParser], *parent_parser: ArgumentParser
) -> None:
    pack_arg_parser = sub_arg_parser.add_parser(
        name="pack",
        help=(_help_txt := "Pack payload files into a mender artifact"),
        description=_help_txt,
        parents=parent_parser,
    )
    pack_arg_parser.add_argument(
        "--output",
        "-o",
        help="The output mender artifact file.",
        required=True,
    )
    pack_arg_parser.add_argument(
        "--name",
        help="The artifact name this artifact provides.",
        required=True,
    )
    pack_arg_parser.add_argument(
        "--device-type",
        action="append",
        help="The device type this artifact is compatible with, can be specified multiple times.",
        required=True,
    )
    pack_arg_parser.add_argument(
        "--artifact-group",
        help="The artifact group this artifact provides.",
    )
    pack_arg_parser.add_argument(
        "--type",
        default=ROOTFS_IMAGE_TYPE,
        help="The payload type of all payloads.",
    )
    pack_arg_parser.add_argument(
        "--script",
        action="append",
        default=[],
        help="Lifecycle script to include, the file name is used as script name.",
    )
    pack_arg_parser.add_argument(
        "--sign-key",
        help="PEM encoded private key for signing the artifact.",
    )
    pack_arg_parser.add_argument(
        "--compression",
        choices=[_c.value for _c in Compression],
        default=Compression.GZIP.value,
        help="Compression of the header and payload archives.",
    )
    pack_arg_parser.add_argument(
        "payloads",
        nargs="+",
        help="The payload files, one payload archive for each file.",
    )
    pack_arg_parser.set_defaults(handler=pack_cmd)


def pack_cmd(args: Namespace) -> None:
    logger.debug(f"calling {pack_cmd.__name__} with {args}")
    _payloads = []
    for _payload in args.payloads:
        _payload = Path(_payload)
        if not _payload.is_file():
            exit_with_err_msg(f"payload file {_payload} not found.")
        _payloads.append(PayloadFile(_payload, type=args.type))

    _scripts: dict[str, bytes] = {}
    for _script in args.script:
        _script = Path(_script)
        if not _script.is_file():
            exit_with_err_msg(f"script {_script} not found.")
        _scripts[_script.name] = _script.read_bytes()

    _sign_key = None
    if args.sign_key:
        _sign_key_f = Path(args.sign_key)
        if not _sign_key_f.is_file():
            exit_with_err_msg(f"sign key {_sign_key_f} not found.")
        _sign_key = _sign_key_f.read_bytes()

    try:
        _count = pack_artifact(
            args.output,
            artifact_name=args.name,
            device_types=args.device_type,
            payloads=_payloads,
            artifact_group=args.artifact_group,
            scripts=_scripts,
            sign_key=_sign_key,
            compression=Compression(args.compression),
        )
    except (ArtifactError, ValueError, TypeError) as e:
        exit_with_err_msg(f"failed to pack artifact: {e}")
    print(f"Packed {_count} entries into {args.output}.")
