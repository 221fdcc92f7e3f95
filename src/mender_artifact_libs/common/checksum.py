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

from __future__ import annotations

import re
from hashlib import sha256
from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import CoreSchema, core_schema
from typing_extensions import Self

SHA256_HEX_PA = re.compile(r"^[0-9a-fA-F]{64}$")


class Sha256Digest:
    """A sha256 checksum, serialized as plain lower-case hex string."""

    sha256_impl = staticmethod(sha256)

    def __init__(self, _digest: str | bytes):
        if isinstance(_digest, str):
            if not SHA256_HEX_PA.match(_digest):
                raise ValueError(f"not a valid sha256 hex digest: {_digest!r}")
            self._digest_hex = _digest.lower()
            self._digest_bytes = bytes.fromhex(_digest)
        else:
            if len(_digest) != 32:
                raise ValueError(f"not a valid sha256 digest: {_digest!r}")
            self._digest_bytes = _digest
            self._digest_hex = _digest.hex()

    @classmethod
    def of(cls, data: bytes) -> Self:
        return cls(cls.sha256_impl(data).digest())

    def __hash__(self) -> int:
        return int.from_bytes(self._digest_bytes, byteorder="big")

    def __eq__(self, value: object) -> bool:
        if not isinstance(value, self.__class__):
            return False
        return self.digest == value.digest

    @property
    def digest_hex(self) -> str:
        return self._digest_hex

    @property
    def digest(self) -> bytes:
        return self._digest_bytes

    @classmethod
    def _from_str_validator(cls, data: Any) -> Self:
        if isinstance(data, cls):
            return data
        if isinstance(data, str):
            return cls(data)
        raise ValueError(f"invalid {type(data)=}")

    def _to_str_serializer(self) -> str:
        return self._digest_hex

    def __str__(self):
        return self._to_str_serializer()

    def __repr__(self):
        return f"{self.__class__.__name__}({self._digest_hex!r})"

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> CoreSchema:
        _plain_validator = core_schema.no_info_plain_validator_function(
            cls._from_str_validator
        )
        _plain_serializer = core_schema.plain_serializer_function_ser_schema(
            cls._to_str_serializer
        )

        json_schema = core_schema.chain_schema(
            [
                core_schema.str_schema(),
                _plain_validator,
            ]
        )
        return core_schema.json_or_python_schema(
            json_schema=json_schema,
            python_schema=_plain_validator,
            serialization=_plain_serializer,
        )
