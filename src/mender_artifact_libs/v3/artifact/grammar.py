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
"""The grammar of the outer archive, as an explicit state table.

START -> version -> manifest -> [manifest.sig -> [manifest-augment]]
    -> header.tar.* -> [header-augment.tar.*] -> data/0000.tar.* | END
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from mender_artifact_libs.common import StructuralError
from mender_artifact_libs.common.io import Compression
from mender_artifact_libs.v3.consts import (
    DATA_ENTRY_PA,
    HEADER_AUGMENT_STEM,
    HEADER_STEM,
    MANIFEST_AUGMENT_FNAME,
    MANIFEST_FNAME,
    MANIFEST_SIG_FNAME,
    VERSION_FNAME,
)


class GrammarStep(str, Enum):
    START = "<start>"
    VERSION = VERSION_FNAME
    MANIFEST = MANIFEST_FNAME
    MANIFEST_SIG = MANIFEST_SIG_FNAME
    MANIFEST_AUGMENT = MANIFEST_AUGMENT_FNAME
    HEADER = f"{HEADER_STEM}.tar.gz"
    HEADER_AUGMENT = f"{HEADER_AUGMENT_STEM}.tar.gz"
    DATA = "data/NNNN.tar.gz"
    END = "<end>"


# what is legal next, in the order of preference
NEXT_STEPS: dict[GrammarStep, tuple[GrammarStep, ...]] = {
    GrammarStep.START: (GrammarStep.VERSION,),
    GrammarStep.VERSION: (GrammarStep.MANIFEST,),
    GrammarStep.MANIFEST: (GrammarStep.MANIFEST_SIG, GrammarStep.HEADER),
    GrammarStep.MANIFEST_SIG: (GrammarStep.MANIFEST_AUGMENT, GrammarStep.HEADER),
    GrammarStep.MANIFEST_AUGMENT: (GrammarStep.HEADER,),
    GrammarStep.HEADER: (
        GrammarStep.HEADER_AUGMENT,
        GrammarStep.DATA,
        GrammarStep.END,
    ),
    GrammarStep.HEADER_AUGMENT: (GrammarStep.DATA, GrammarStep.END),
    GrammarStep.DATA: (),
    GrammarStep.END: (),
}

_FIXED_NAMES = {
    GrammarStep.VERSION: VERSION_FNAME,
    GrammarStep.MANIFEST: MANIFEST_FNAME,
    GrammarStep.MANIFEST_SIG: MANIFEST_SIG_FNAME,
    GrammarStep.MANIFEST_AUGMENT: MANIFEST_AUGMENT_FNAME,
}

_ARCHIVE_STEMS = {
    GrammarStep.HEADER: HEADER_STEM,
    GrammarStep.HEADER_AUGMENT: HEADER_AUGMENT_STEM,
}


class Transition(NamedTuple):
    step: GrammarStep
    compression: Compression | None = None


def match_entry(step: GrammarStep, name: str) -> Transition | None:
    """Check whether entry <name> is the entry of <step>."""
    if _fixed_name := _FIXED_NAMES.get(step):
        return Transition(step) if name == _fixed_name else None

    if _stem := _ARCHIVE_STEMS.get(step):
        _compression = Compression.from_entry_name(name, _stem)
        return Transition(step, _compression) if _compression else None

    if step == GrammarStep.DATA and (_ma := DATA_ENTRY_PA.match(name)):
        _compression = Compression.from_entry_name(name, f"data/{_ma['index']}")
        return Transition(step, _compression)


def next_transition(current: GrammarStep, name: str | None) -> Transition:
    """Find the next step from <current> for entry <name>(None for end of archive).

    Raises:
        StructuralError if <name> is not legal at this point.
    """
    _legal = NEXT_STEPS[current]
    _expected = " or ".join(f"`{_step.value}`" for _step in _legal)
    if name is None:
        if GrammarStep.END in _legal:
            return Transition(GrammarStep.END)
        raise StructuralError(
            f"unexpected end of artifact after `{current.value}`, expect {_expected}"
        )

    for _step in _legal:
        if _transition := match_entry(_step, name):
            return _transition
    raise StructuralError(
        f"unexpected entry `{name}` after `{current.value}`, expect {_expected}"
    )
