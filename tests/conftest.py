# tests/conftest.py
import threading
import time

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from backend.lib.device_registry import DeviceRegistry
from backend.lib.ghost_core.credit_cache import CreditLedgerCache
from backend.lib.ghost_core.errors import OracleError
from backend.lib.ghost_core.io import parse_reading
from backend.lib.ghost_core.ledger import GridOracle
from backend.lib.ghost_core.models import GridState, GridStatus
from backend.lib.ghost_core.pipeline import ReadingPipeline
from backend.lib.ghost_core.signature import public_key_pem, sign_reading
from backend.lib.local_ledger import LocalLedger

DEVICE = "0x742d35cc6634c0532925a3b844bc9e7595f0beb1"
OTHER_DEVICE = "0x00000000000000000000000000000000000000aa"
TIMESTAMP = "2025-11-01T00:00:00.000Z"


class FixedGridOracle(GridOracle):
    """Returns queued statuses in order, then repeats `status`."""

    def __init__(self, status=GridState.CLEAN, carbon_intensity=120.0, delay=0.0):
        self.status = status
        self.carbon_intensity = carbon_intensity
        self.delay = delay
        self.queue = []
        self.fail = False
        self.calls = 0
        self._lock = threading.Lock()

    def get_grid_status(self):
        with self._lock:
            self.calls += 1
            if self.fail:
                raise OracleError("oracle timed out")
            status = self.queue.pop(0) if self.queue else self.status
        if self.delay:
            time.sleep(self.delay)
        return GridStatus(status=status, carbon_intensity=self.carbon_intensity)


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ed_key():
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture
def ledger():
    return LocalLedger(path=None, integration_interval=3, reward_wei=10, penalty_wei=4)


@pytest.fixture
def oracle():
    return FixedGridOracle()


@pytest.fixture
def registry(ledger):
    return DeviceRegistry(ledger)


@pytest.fixture
def pipeline(ledger, oracle, registry):
    return ReadingPipeline(ledger, oracle, CreditLedgerCache(ledger), registry)


@pytest.fixture
def minted(ledger):
    token_id = ledger.mint_ghost(DEVICE, DEVICE, "0x01")
    ledger.deposit(DEVICE, 100)
    return token_id


def make_body(private_key, power_usage, device=DEVICE, timestamp=TIMESTAMP, version=2, include_key=True):
    body = sign_reading(private_key, timestamp, power_usage, version=version)
    body["deviceId"] = "device-1"
    body["deviceAddress"] = device
    if include_key:
        body["publicKey"] = public_key_pem(private_key)
    return body


def make_reading(private_key, power_usage, **kwargs):
    return parse_reading(make_body(private_key, power_usage, **kwargs))
