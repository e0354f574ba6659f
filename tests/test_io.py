# tests/test_io.py
import pytest

from backend.lib.ghost_core.errors import MalformedRequest
from backend.lib.ghost_core.io import parse_reading


def body(**overrides):
    data = {
        "deviceId": "device-1",
        "deviceAddress": "0x742D35Cc6634C0532925a3b844Bc9e7595f0bEb1",
        "timestamp": "2025-11-01T00:00:00.000Z",
        "powerUsage": 70000000,
        "signature": "ab" * 256,
        "publicKey": "-----BEGIN PUBLIC KEY-----",
    }
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


def test_parse_reading():
    reading = parse_reading(body())
    assert reading.device_id == "device-1"
    assert reading.device_address == "0x742d35cc6634c0532925a3b844bc9e7595f0beb1"
    assert reading.power_usage == 70000000
    assert reading.version == 2
    assert reading.digest is None


def test_device_id_is_optional():
    assert parse_reading(body(deviceId=None)).device_id is None


@pytest.mark.parametrize("overrides", [
    {"deviceAddress": None},
    {"deviceAddress": "  "},
    {"timestamp": None},
    {"signature": None},
    {"powerUsage": None},
    {"powerUsage": -5},
    {"powerUsage": 1.5},
    {"powerUsage": "100"},
    {"powerUsage": True},
    {"version": 3},
    {"version": 1},  # no hash
    {"publicKey": 42},
])
def test_malformed_bodies(overrides):
    with pytest.raises(MalformedRequest):
        parse_reading(body(**overrides))


def test_non_object_body():
    with pytest.raises(MalformedRequest):
        parse_reading(None)
    with pytest.raises(MalformedRequest):
        parse_reading(["not", "an", "object"])


def test_version_one_keeps_hash():
    reading = parse_reading(body(version=1, hash="00" * 32, signature="c2ln"))
    assert reading.version == 1
    assert reading.digest == "00" * 32
