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
"""Inspect the mender artifact, print out the summary of it."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from mender_artifact_libs.common import ArtifactError
from mender_artifact_libs.v3.artifact.reader import parse
from mender_artifact_libs.v3.header.schema import HeaderInfo, SubHeader
from mender_artifact_libs.v3.header.scripts import DirectoryScriptSink
from mender_artifact_tools._utils import exit_with_err_msg

if TYPE_CHECKING:
    from argparse import ArgumentParser, Namespace, _SubParsersAction

logger = logging.getLogger(__name__)


class PayloadSummary(BaseModel):
    index: int
    name: str
    size: int
    checksum: str


class ArtifactSummary(BaseModel):
    format_version: int
    signed: bool
    verified: bool
    header_info: HeaderInfo
    scripts: list[str]
    sub_headers: list[SubHeader]
    augment_header_info: Optional[HeaderInfo] = None
    payloads: list[PayloadSummary] = []


def inspect_artifact_cmd_args(
    sub_arg_parser: _SubParsersAction[ArgumentParser], *parent_parser: ArgumentParser
) -> None:
    inspect_arg_parser = sub_arg_parser.add_parser(
        name="inspect",
        help=(_help_txt := "Print out the summary of the mender artifact"),
        description=_help_txt,
        parents=parent_parser,
    )
    inspect_arg_parser.add_argument(
        "--scripts-dir",
        help="If specified, save the lifecycle scripts into this folder.",
    )
    inspect_arg_parser.add_argument(
        "--skip-verify",
        action="store_true",
        help="Skip verifying the checksums against the manifest.",
    )
    inspect_arg_parser.add_argument(
        "artifact",
        help="The mender artifact file.",
    )
    inspect_arg_parser.set_defaults(handler=inspect_artifact_cmd)


def inspect_artifact_cmd(args: Namespace) -> None:
    logger.debug(f"calling {inspect_artifact_cmd.__name__} with {args}")
    artifact_f = Path(args.artifact)
    if not artifact_f.is_file():
        exit_with_err_msg(f"{artifact_f} not found.")

    _script_sink = DirectoryScriptSink(args.scripts_dir) if args.scripts_dir else None
    try:
        with parse(artifact_f, script_sink=_script_sink) as _artifact:
            _payloads = []
            for _payload in _artifact.payloads():
                with _payload:
                    _payload.discard()
                _payloads.append(
                    PayloadSummary(
                        index=_payload.index,
                        name=_payload.name,
                        size=_payload.size,
                        checksum=_payload.digest.digest_hex,
                    )
                )

            if not args.skip_verify:
                _artifact.verify_integrity()

            _summary = ArtifactSummary(
                format_version=_artifact.version.version,
                signed=_artifact.signed,
                verified=not args.skip_verify,
                header_info=_artifact.header.info,
                scripts=list(_artifact.header.scripts),
                sub_headers=list(_artifact.header.sub_headers),
                augment_header_info=(
                    _artifact.augment_header.info if _artifact.augment_header else None
                ),
                payloads=_payloads,
            )
    except ArtifactError as e:
        exit_with_err_msg(f"{artifact_f} is not a valid mender artifact: {e}")

    print(_summary.model_dump_json(by_alias=True, exclude_none=True, indent=2))
