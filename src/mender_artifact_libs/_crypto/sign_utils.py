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
"""Sign and verify the artifact manifest.

Supported algorithms:
1. RSA, PKCS#1 v1.5 padding with SHA-256.
2. ECDSA with SHA-256, the signature is the raw `r || s` with each integer
    padded to the curve size(DER encoded signatures are also accepted).
"""

from __future__ import annotations

import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import (
    load_pem_private_key,
    load_pem_public_key,
)
from cryptography.x509 import load_pem_x509_certificate

logger = logging.getLogger(__name__)

PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


def load_public_key(data: bytes | str) -> PublicKey:
    """Load a PEM public key.

    For convenience, a PEM x509 certificate is also accepted, and its
        public key will be used.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    if data.lstrip().startswith(b"-----BEGIN CERTIFICATE-----"):
        _pubkey = load_pem_x509_certificate(data).public_key()
    else:
        _pubkey = load_pem_public_key(data)

    if not isinstance(_pubkey, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
        raise ValueError(f"unsupported public key type: {type(_pubkey)}")
    return _pubkey


def load_private_key(data: bytes, password: bytes | None = None) -> PrivateKey:
    _key = load_pem_private_key(data, password)
    if not isinstance(_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"unsupported private key type: {type(_key)}")
    return _key


def _ec_int_size(curve: ec.EllipticCurve) -> int:
    return (curve.key_size + 7) // 8


def sign_manifest(
    manifest_raw: bytes, private_key: bytes, *, password: bytes | None = None
) -> bytes:
    """Sign <manifest_raw> and return the raw(not base64 encoded) signature."""
    _key = load_private_key(private_key, password)
    if isinstance(_key, rsa.RSAPrivateKey):
        return _key.sign(manifest_raw, padding.PKCS1v15(), hashes.SHA256())

    _der = _key.sign(manifest_raw, ec.ECDSA(hashes.SHA256()))
    r, s = decode_dss_signature(_der)
    _size = _ec_int_size(_key.curve)
    return r.to_bytes(_size, "big") + s.to_bytes(_size, "big")


def verify_manifest_signature(
    manifest_raw: bytes, signature: bytes, public_key: bytes
) -> bool:
    """Verify <signature> over <manifest_raw> with PEM encoded <public_key>.

    Raises:
        ValueError if the public key cannot be loaded.

    Returns:
        True if the signature is valid, False otherwise.
    """
    _pubkey = load_public_key(public_key)
    try:
        if isinstance(_pubkey, rsa.RSAPublicKey):
            _pubkey.verify(signature, manifest_raw, padding.PKCS1v15(), hashes.SHA256())
            return True

        _size = _ec_int_size(_pubkey.curve)
        if len(signature) == 2 * _size:
            signature = encode_dss_signature(
                int.from_bytes(signature[:_size], "big"),
                int.from_bytes(signature[_size:], "big"),
            )
        _pubkey.verify(signature, manifest_raw, ec.ECDSA(hashes.SHA256()))
        return True
    except InvalidSignature:
        logger.debug("manifest signature doesn't match")
        return False
