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
"""Base classes for the sections of an artifact.

Every section provides symmetric `decode(raw) -> Self` and `encode() -> bytes`.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, GetCoreSchemaHandler, ValidationError
from pydantic_core import CoreSchema, core_schema
from typing_extensions import Self

from .errors import CodecError


class AliasEnabledModel(BaseModel):
    # NOTE: allow field to be validated by its original attr name.
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class JSONSectionBase(AliasEnabledModel):
    """Base class for a section stored as JSON document.

    NOTE: this class MUST not be directly used, it needs to be
          subclassed and assigned SectionName.
    """

    SectionName: ClassVar[str] = ""

    @classmethod
    def decode(cls, raw: bytes | str) -> Self:
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise CodecError(cls.SectionName, f"invalid contents: {e}") from e

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class PydanticFromBytesSchema:
    @classmethod
    @abstractmethod
    def bytes_schema_validator(cls, _in: bytes) -> Self:
        raise NotImplementedError

    @abstractmethod
    def bytes_schema_serializer(self) -> bytes:
        raise NotImplementedError

    @classmethod
    def _from_bytes_validator(cls, data: Any) -> Self:
        if isinstance(data, cls):
            return data
        if isinstance(data, bytes):
            return cls.bytes_schema_validator(data)
        raise ValueError(f"unexpected {type(data)=}")

    def _to_bytes_serializer(self) -> bytes:
        return self.bytes_schema_serializer()

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> CoreSchema:
        _plain_validator = core_schema.no_info_plain_validator_function(
            cls._from_bytes_validator
        )
        _plain_serializer = core_schema.plain_serializer_function_ser_schema(
            cls._to_bytes_serializer
        )

        json_schema = core_schema.chain_schema(
            [
                core_schema.bytes_schema(),
                _plain_validator,
            ]
        )
        return core_schema.json_or_python_schema(
            json_schema=json_schema,
            python_schema=_plain_validator,
            serialization=_plain_serializer,
        )


class OpaqueSection(bytes, PydanticFromBytesSchema):
    """A section which contents are kept as is."""

    SectionName: ClassVar[str] = ""

    @classmethod
    def bytes_schema_validator(cls, _in: bytes) -> Self:
        return cls(_in)

    def bytes_schema_serializer(self) -> bytes:
        return bytes(self)

    @classmethod
    def decode(cls, raw: bytes) -> Self:
        return cls(raw)

    def encode(self) -> bytes:
        return bytes(self)
