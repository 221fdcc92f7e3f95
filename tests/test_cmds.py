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
"""Tests for the sub-commands of mender-artifact-tools."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import pytest

from mender_artifact_libs import version
from mender_artifact_tools.__main__ import main
from mender_artifact_tools.cmds.extract import extract_cmd, extract_cmd_args
from mender_artifact_tools.cmds.inspect_artifact import (
    inspect_artifact_cmd,
    inspect_artifact_cmd_args,
)
from mender_artifact_tools.cmds.pack import pack_cmd, pack_cmd_args
from mender_artifact_tools.cmds.verify_sign import verify_sign_cmd, verify_sign_cmd_args

from tests.conftest import make_artifact, make_artifact_entries, make_tar, replace_entry

PAYLOAD_CONTENT = b"0123456789"


@pytest.fixture
def artifact_f(tmp_path: Path, sample_artifact: bytes) -> Path:
    _artifact_f = tmp_path / "release-1.mender"
    _artifact_f.write_bytes(sample_artifact)
    return _artifact_f


def _parse_args(register, argv: list[str]) -> argparse.Namespace:
    arg_parser = argparse.ArgumentParser()
    register(arg_parser.add_subparsers())
    return arg_parser.parse_args(argv)


class TestInspectCmd:
    def test_args_registration(self):
        args = _parse_args(
            inspect_artifact_cmd_args,
            ["inspect", "--scripts-dir", "scripts", "--skip-verify", "a.mender"],
        )
        assert args.scripts_dir == "scripts"
        assert args.skip_verify
        assert args.artifact == "a.mender"
        assert args.handler is inspect_artifact_cmd

    def test_inspect(self, artifact_f: Path, capsys: pytest.CaptureFixture):
        inspect_artifact_cmd(
            _parse_args(inspect_artifact_cmd_args, ["inspect", str(artifact_f)])
        )
        _summary = json.loads(capsys.readouterr().out)

        assert _summary["format_version"] == 3
        assert _summary["signed"] is False
        assert _summary["verified"] is True
        assert _summary["header_info"]["artifact_provides"]["artifact_name"] == (
            "release-1"
        )
        assert _summary["sub_headers"][0]["type_info"]["type"] == "rootfs-image"
        (_payload,) = _summary["payloads"]
        assert _payload["name"] == "rootfs.ext4"
        assert _payload["size"] == len(PAYLOAD_CONTENT)

    def test_inspect_with_scripts_dir(self, tmp_path: Path):
        _artifact_f = tmp_path / "artifact.mender"
        _artifact_f.write_bytes(make_artifact(scripts={"Sync_Error_99": b"exit 1\n"}))
        _scripts_dir = tmp_path / "scripts"

        inspect_artifact_cmd(
            _parse_args(
                inspect_artifact_cmd_args,
                ["inspect", "--scripts-dir", str(_scripts_dir), str(_artifact_f)],
            )
        )
        assert (_scripts_dir / "Sync_Error_99").read_bytes() == b"exit 1\n"

    def test_integrity_failure(self, tmp_path: Path, capsys: pytest.CaptureFixture):
        # the manifest only covers the version, with a wrong checksum
        _entries = replace_entry(
            make_artifact_entries(), "manifest", b"0" * 64 + b"  version\n"
        )
        _artifact_f = tmp_path / "artifact.mender"
        _artifact_f.write_bytes(make_tar(_entries))

        with pytest.raises(SystemExit) as exc_info:
            inspect_artifact_cmd(
                _parse_args(inspect_artifact_cmd_args, ["inspect", str(_artifact_f)])
            )
        assert exc_info.value.code == 1
        assert "ERR: " in capsys.readouterr().out

        # parsing succeeds when skipping verification
        inspect_artifact_cmd(
            _parse_args(
                inspect_artifact_cmd_args,
                ["inspect", "--skip-verify", str(_artifact_f)],
            )
        )
        assert json.loads(capsys.readouterr().out)["verified"] is False

    def test_not_an_artifact(self, tmp_path: Path, capsys: pytest.CaptureFixture):
        _artifact_f = tmp_path / "artifact.mender"
        _artifact_f.write_bytes(b"not an artifact")

        with pytest.raises(SystemExit) as exc_info:
            inspect_artifact_cmd(
                _parse_args(inspect_artifact_cmd_args, ["inspect", str(_artifact_f)])
            )
        assert exc_info.value.code == 1
        assert "is not a valid mender artifact" in capsys.readouterr().out

    def test_file_not_found(self, tmp_path: Path):
        with pytest.raises(SystemExit):
            inspect_artifact_cmd(
                _parse_args(
                    inspect_artifact_cmd_args,
                    ["inspect", str(tmp_path / "not_exist.mender")],
                )
            )


class TestPackAndVerifySignCmd:
    @pytest.fixture
    def signed_artifact_f(self, tmp_path: Path, rsa_keypair) -> Path:
        _payload = tmp_path / "rootfs.ext4"
        _payload.write_bytes(PAYLOAD_CONTENT)
        _script = tmp_path / "ArtifactReboot_Enter_00"
        _script.write_bytes(b"#!/bin/sh\n")
        _key = tmp_path / "private.pem"
        _key.write_bytes(rsa_keypair[0])
        _output = tmp_path / "signed.mender"

        args = _parse_args(
            pack_cmd_args,
            [
                "pack",
                "-o",
                str(_output),
                "--name",
                "release-3",
                "--device-type",
                "raspberrypi4",
                "--script",
                str(_script),
                "--sign-key",
                str(_key),
                "--compression",
                "zstd",
                str(_payload),
            ],
        )
        assert args.handler is pack_cmd
        assert args.type == "rootfs-image"
        pack_cmd(args)
        return _output

    def test_verify_sign(
        self,
        tmp_path: Path,
        signed_artifact_f: Path,
        rsa_keypair,
        capsys: pytest.CaptureFixture,
    ):
        _pubkey = tmp_path / "public.pem"
        _pubkey.write_bytes(rsa_keypair[1])

        args = _parse_args(
            verify_sign_cmd_args,
            ["verify-sign", "--key", str(_pubkey), str(signed_artifact_f)],
        )
        assert args.handler is verify_sign_cmd
        verify_sign_cmd(args)
        assert "Signature verified." in capsys.readouterr().out

    def test_verify_sign_wrong_key(
        self, tmp_path: Path, signed_artifact_f: Path, ecdsa_keypair
    ):
        _pubkey = tmp_path / "public.pem"
        _pubkey.write_bytes(ecdsa_keypair[1])

        with pytest.raises(SystemExit) as exc_info:
            verify_sign_cmd(
                _parse_args(
                    verify_sign_cmd_args,
                    ["verify-sign", "--key", str(_pubkey), str(signed_artifact_f)],
                )
            )
        assert exc_info.value.code == 1

    def test_verify_sign_unsigned(
        self, tmp_path: Path, artifact_f: Path, rsa_keypair, capsys
    ):
        _pubkey = tmp_path / "public.pem"
        _pubkey.write_bytes(rsa_keypair[1])

        with pytest.raises(SystemExit):
            verify_sign_cmd(
                _parse_args(
                    verify_sign_cmd_args,
                    ["verify-sign", "--key", str(_pubkey), str(artifact_f)],
                )
            )
        assert "is not signed" in capsys.readouterr().out

    def test_pack_missing_payload(self, tmp_path: Path, capsys):
        with pytest.raises(SystemExit):
            pack_cmd(
                _parse_args(
                    pack_cmd_args,
                    [
                        "pack",
                        "-o",
                        str(tmp_path / "out.mender"),
                        "--name",
                        "release-3",
                        "--device-type",
                        "raspberrypi4",
                        str(tmp_path / "not_exist"),
                    ],
                )
            )
        assert "not found" in capsys.readouterr().out


class TestExtractCmd:
    def test_extract(self, tmp_path: Path, artifact_f: Path):
        _output_dir = tmp_path / "extracted"
        args = _parse_args(
            extract_cmd_args, ["extract", "-o", str(_output_dir), str(artifact_f)]
        )
        assert args.handler is extract_cmd
        extract_cmd(args)

        assert (_output_dir / "0000" / "rootfs.ext4").read_bytes() == PAYLOAD_CONTENT
        assert [_f.name for _f in (_output_dir / "0000").iterdir()] == ["rootfs.ext4"]

    def test_extract_checksum_mismatch(self, tmp_path: Path, capsys):
        _entries = make_artifact_entries()
        _entries = replace_entry(
            _entries,
            "data/0000.tar.gz",
            make_artifact_entries([("rootfs.ext4", b"tampered")])[3][1],
        )
        _artifact_f = tmp_path / "artifact.mender"
        _artifact_f.write_bytes(make_tar(_entries))
        _output_dir = tmp_path / "extracted"

        with pytest.raises(SystemExit):
            extract_cmd(
                _parse_args(
                    extract_cmd_args,
                    ["extract", "-o", str(_output_dir), str(_artifact_f)],
                )
            )
        assert "integrity check failed" in capsys.readouterr().out
        assert not list((_output_dir / "0000").iterdir())


class TestMain:
    @pytest.fixture(autouse=True)
    def mock_configure_logging(self, mocker):
        return mocker.patch("mender_artifact_tools._utils.configure_logging")

    def test_version(self, mocker, capsys):
        mocker.patch("sys.argv", ["mender-artifact-tools", "version"])
        main()
        assert f"v{version}" in capsys.readouterr().out

    def test_missing_subcmd(self, mocker, capsys):
        mocker.patch("sys.argv", ["mender-artifact-tools"])
        main()
        assert "Please specify subcommand." in capsys.readouterr().out

    def test_debug_inspect(
        self, mocker, artifact_f: Path, capsys, mock_configure_logging
    ):
        mocker.patch(
            "sys.argv", ["mender-artifact-tools", "-d", "inspect", str(artifact_f)]
        )
        main()
        mock_configure_logging.assert_called_once_with(logging.DEBUG)
        assert json.loads(capsys.readouterr().out)["verified"] is True
