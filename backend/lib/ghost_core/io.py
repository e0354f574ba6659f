# backend/lib/ghost_core/io.py
from typing import Optional

from .errors import MalformedRequest
from .models import DeviceReading
from .signature import CURRENT_VERSION, SUPPORTED_VERSIONS


def normalize_address(address: str) -> str:
    """Addresses are hex and case-insensitive; key everything on lower case."""
    return address.strip().lower()


def _require_str(body: dict, field: str) -> str:
    value = body.get(field)
    if not isinstance(value, str) or not value.strip():
        raise MalformedRequest(f"{field} is required")
    return value


def parse_reading(body: Optional[dict]) -> DeviceReading:
    """
    Validate a POST /reading JSON body and build a DeviceReading.

    Expected body (version 2):
        {"deviceId": "device-1", "deviceAddress": "0x742d...",
         "timestamp": "2025-11-01T00:00:00.000Z", "powerUsage": 70000000,
         "signature": "<hex>", "publicKey": "-----BEGIN PUBLIC KEY-----..."}

    Version 1 bodies carry "version": 1, a base64 signature and "hash".
    """
    if not isinstance(body, dict):
        raise MalformedRequest("JSON object body required")

    device_address = normalize_address(_require_str(body, "deviceAddress"))
    timestamp = _require_str(body, "timestamp")
    signature = _require_str(body, "signature")

    power = body.get("powerUsage")
    # bool is an int subclass; reject it explicitly
    if isinstance(power, bool) or not isinstance(power, int):
        raise MalformedRequest("powerUsage must be an integer number of watts")
    if power < 0:
        raise MalformedRequest("powerUsage must be >= 0")

    version = body.get("version", CURRENT_VERSION)
    if isinstance(version, bool) or version not in SUPPORTED_VERSIONS:
        raise MalformedRequest(f"unsupported protocol version: {version!r}")

    digest = body.get("hash")
    if version == 1 and not isinstance(digest, str):
        raise MalformedRequest("hash is required for protocol version 1")

    public_key = body.get("publicKey")
    if public_key is not None and not isinstance(public_key, str):
        raise MalformedRequest("publicKey must be a PEM string")

    device_id = body.get("deviceId")
    return DeviceReading(
        device_id=str(device_id) if device_id is not None else None,
        device_address=device_address,
        timestamp=timestamp,
        power_usage=power,
        signature=signature,
        public_key=public_key,
        version=version,
        digest=digest if version == 1 else None,
    )
