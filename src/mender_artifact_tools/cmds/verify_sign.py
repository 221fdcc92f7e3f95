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
"""Verify the signature of the mender artifact manifest."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mender_artifact_libs.common import ArtifactError
from mender_artifact_libs.v3.artifact.reader import parse
from mender_artifact_tools._utils import exit_with_err_msg

if TYPE_CHECKING:
    from argparse import ArgumentParser, Namespace, _SubParsersAction

logger = logging.getLogger(__name__)


def verify_sign_cmd_args(
    sub_arg_parser: _SubParsersAction[ArgumentParser], *parent_parser: ArgumentParser
) -> None:
    verify_sign_arg_parser = sub_arg_parser.add_parser(
        name="verify-sign",
        help=(_help_txt := "Verify the signature of the mender artifact"),
        description=_help_txt,
        parents=parent_parser,
    )
    verify_sign_arg_parser.add_argument(
        "--key",
        help="PEM encoded public key(or certificate) for verifying the signature.",
        required=True,
    )
    verify_sign_arg_parser.add_argument(
        "artifact",
        help="The mender artifact file.",
    )
    verify_sign_arg_parser.set_defaults(handler=verify_sign_cmd)


def verify_sign_cmd(args: Namespace) -> None:
    logger.debug(f"calling {verify_sign_cmd.__name__} with {args}")
    artifact_f, key_f = Path(args.artifact), Path(args.key)
    if not artifact_f.is_file():
        exit_with_err_msg(f"{artifact_f} not found.")
    if not key_f.is_file():
        exit_with_err_msg(f"{key_f} not found.")
    print(f"Verifying the signature of mender artifact {artifact_f} ...")

    try:
        with parse(artifact_f) as _artifact:
            if not _artifact.signed:
                exit_with_err_msg(f"{artifact_f} is not signed.")

            _verified = _artifact.verify_signature(key_f.read_bytes())
    except ArtifactError as e:
        exit_with_err_msg(f"{artifact_f} is not a valid mender artifact: {e}")
    except ValueError as e:
        exit_with_err_msg(f"failed to load public key from {key_f}: {e}")

    if not _verified:
        exit_with_err_msg(f"signature of {artifact_f} doesn't match the key {key_f}.")
    print("Signature verified.")
