# backend/lib/ghost_core/signature.py
"""
Hardware signature verification for device readings.

Wire contract between device and relay
--------------------------------------
The device serializes exactly {"timestamp": ..., "powerUsage": ...} in that
key order with no whitespace, hashes it with SHA-256 and signs:

- version 2 (current): the 32 raw digest bytes; signature sent as hex.
- version 1 (legacy, pre-hashed): the ASCII hex digest, which is also sent
  in the body as "hash"; signature sent as base64.

RSA keys sign with PKCS#1 v1.5 / SHA-256, EC keys with ECDSA / SHA-256,
Ed25519 keys sign the message directly. Any change to this layout needs a
new version number.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
from typing import Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from .models import DeviceReading

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (1, 2)
CURRENT_VERSION = 2


def canonical_payload(timestamp: str, power_usage: int) -> bytes:
    return json.dumps(
        {"timestamp": timestamp, "powerUsage": power_usage},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def payload_digest(payload: bytes) -> bytes:
    return hashlib.sha256(payload).digest()


def load_public_key(public_key_pem: str):
    """
    Parse a PEM public key (SPKI or PKCS#1 RSA).

    Raises ValueError for anything that is not an RSA, EC or Ed25519 key.
    """
    if isinstance(public_key_pem, str):
        public_key_pem = public_key_pem.encode("utf-8")
    if not isinstance(public_key_pem, bytes):
        raise ValueError("public key must be a PEM string")
    try:
        key = serialization.load_pem_public_key(public_key_pem)
    except UnsupportedAlgorithm as e:
        raise ValueError(f"unsupported key algorithm: {e}") from e
    if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)):
        raise ValueError(f"unsupported key type: {type(key).__name__}")
    return key


def _check(key, signature: bytes, message: bytes) -> None:
    if isinstance(key, rsa.RSAPublicKey):
        key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(key, ec.EllipticCurvePublicKey):
        key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
    else:
        key.verify(signature, message)


def same_public_key(first_pem: str, second_pem: str) -> bool:
    """
    True when both PEM blobs hold the same key, whatever their line endings
    or PEM flavour (SPKI or PKCS#1). An unparseable key never matches.
    """
    try:
        first = load_public_key(first_pem)
        second = load_public_key(second_pem)
    except ValueError:
        return False
    return _spki(first) == _spki(second)


def _spki(key) -> bytes:
    return key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)


def verify(message: bytes, signature: bytes, public_key_pem: str) -> bool:
    """
    Check `signature` over `message` with the device's declared key.

    Returns False (never raises) for an unparseable or unsupported key and
    for a signature that does not match.
    """
    try:
        key = load_public_key(public_key_pem)
    except ValueError as e:
        logger.debug("Rejecting public key: %s", e)
        return False
    try:
        _check(key, signature, message)
    except InvalidSignature:
        return False
    except ValueError as e:
        # malformed DER inside an ECDSA signature and similar
        logger.debug("Malformed signature: %s", e)
        return False
    return True


def decode_signature(signature: str, version: int) -> Optional[bytes]:
    try:
        if version == 1:
            return base64.b64decode(signature, validate=True)
        return bytes.fromhex(signature)
    except (ValueError, binascii.Error, TypeError):
        return None


def verify_reading(reading: DeviceReading, public_key_pem: str) -> bool:
    """Verify a parsed reading according to its wire-format version."""
    if reading.version not in SUPPORTED_VERSIONS:
        return False
    signature = decode_signature(reading.signature, reading.version)
    if not signature:
        return False

    digest = payload_digest(canonical_payload(reading.timestamp, reading.power_usage))

    if reading.version == 1:
        # the claimed hash must describe the fields we were actually sent
        if not reading.digest or not hmac.compare_digest(reading.digest.lower(), digest.hex()):
            return False
        return verify(digest.hex().encode("ascii"), signature, public_key_pem)

    return verify(digest, signature, public_key_pem)


def sign_reading(private_key, timestamp: str, power_usage: int, version: int = CURRENT_VERSION) -> dict:
    """
    Device-side counterpart of verify_reading: build the signed body fields.

    Returns a dict with timestamp, powerUsage, signature and version, plus
    hash for version 1.
    """
    digest = payload_digest(canonical_payload(timestamp, power_usage))
    message = digest.hex().encode("ascii") if version == 1 else digest

    if isinstance(private_key, rsa.RSAPrivateKey):
        raw = private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        raw = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    else:
        raw = private_key.sign(message)

    body = {"timestamp": timestamp, "powerUsage": power_usage, "version": version}
    if version == 1:
        body["hash"] = digest.hex()
        body["signature"] = base64.b64encode(raw).decode("ascii")
    else:
        body["signature"] = raw.hex()
    return body


def public_key_pem(private_key) -> str:
    return private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
