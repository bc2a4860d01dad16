from __future__ import annotations

import base64
import binascii
import hashlib
import hmac

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec


def hmac_sha256_b64(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_hmac_sha256_b64(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(hmac_sha256_b64(secret, body), signature.strip())


def sha1_b64(value: str) -> str:
    return base64.b64encode(hashlib.sha1(value.encode("utf-8")).digest()).decode("ascii")


def load_ec_public_key(pubkey_b64: str) -> ec.EllipticCurvePublicKey:
    """Load the gateway key, given as base64 of a PEM document."""
    try:
        pem = base64.b64decode(pubkey_b64)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Public key is not valid base64") from exc
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError("Public key is not an EC key")
    return key


def verify_ecdsa_sha256(public_key: ec.EllipticCurvePublicKey, body: bytes, signature_b64: str | None) -> bool:
    if not signature_b64:
        return False
    try:
        signature = base64.b64decode(signature_b64)
    except (binascii.Error, ValueError):
        return False
    try:
        public_key.verify(signature, body, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True
