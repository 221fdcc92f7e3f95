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

import binascii
import logging
from typing import Callable

from mender_artifact_libs._crypto.sign_utils import (
    sign_manifest,
    verify_manifest_signature,
)

from .schema import Manifest, ManifestSignature

logger = logging.getLogger(__name__)

# (manifest bytes, signature bytes, public key) -> bool
SignatureVerifier = Callable[[bytes, bytes, bytes], bool]


def compose_manifest_signature(
    manifest: Manifest, sign_key: bytes, *, sign_key_passwd: bytes | None = None
) -> ManifestSignature:
    """Sign the raw bytes of <manifest> with the PEM encoded <sign_key>."""
    return ManifestSignature.from_signature(
        sign_manifest(manifest.raw, sign_key, password=sign_key_passwd)
    )


def verify_manifest(
    manifest: Manifest,
    signature: ManifestSignature,
    public_key: bytes,
    *,
    verifier: SignatureVerifier = verify_manifest_signature,
) -> bool:
    """Verify <signature> against the raw bytes of <manifest>."""
    try:
        _sig = signature.signature
    except binascii.Error as e:
        logger.warning(f"manifest.sig is not base64 encoded: {e}")
        return False
    return verifier(manifest.raw, _sig, public_key)
