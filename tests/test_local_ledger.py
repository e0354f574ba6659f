# tests/test_local_ledger.py
import pytest

from backend.lib.device_registry import DeviceRegistry
from backend.lib.dynamodb_service import economic_delta
from backend.lib.ghost_core.errors import LedgerError, MalformedRequest, OracleError
from backend.lib.ghost_core.models import GridState
from backend.lib.ghost_core.signature import public_key_pem
from backend.lib.local_ledger import LocalLedger
from backend.lib.oracle_service import StoredGridOracle, classify_intensity
from conftest import DEVICE, OTHER_DEVICE


# =============================================================================
# Economics
# =============================================================================

def test_clean_reading_earns_reward():
    assert economic_delta("CLEAN", 40, 90, 0, 10, 4) == (10, 0)


def test_dirty_reading_penalty_doubles_when_health_drops():
    assert economic_delta("DIRTY", 60, 60, 100, 10, 4) == (0, 4)
    assert economic_delta("DIRTY", 50, 60, 100, 10, 4) == (0, 8)


def test_penalty_is_capped_at_deposit():
    assert economic_delta("DIRTY", 0, 50, 5, 10, 4) == (0, 5)
    assert economic_delta("DIRTY", 0, 50, 0, 10, 4) == (0, 0)


# =============================================================================
# Ledger
# =============================================================================

def test_mint_is_idempotent_per_device(ledger):
    first = ledger.mint_ghost(DEVICE, DEVICE, "0x01")
    again = ledger.mint_ghost(DEVICE, DEVICE, "0x02")
    other = ledger.mint_ghost(OTHER_DEVICE, OTHER_DEVICE, "0x03")

    assert first == again == 1
    assert other == 2
    ghost = ledger.get_ghost(first)
    assert ghost.hardware_id == "0x01"
    assert ghost.health == 50
    assert ghost.appearance == "Neutral"


def test_unknown_device_has_token_zero(ledger):
    assert ledger.get_token_for_device(OTHER_DEVICE) == 0
    with pytest.raises(LedgerError):
        ledger.get_ghost(42)


def test_credits_never_decrease(ledger, minted):
    ledger.update_ghost(minted, "Healthy", 66, 2, 1, 600, 15)
    with pytest.raises(LedgerError):
        ledger.update_ghost(minted, "Healthy", 66, 1, 1, 600, 15)
    assert ledger.get_ghost(minted).good_credits == 2


def test_revert_restores_previous_ghost(ledger, minted):
    ledger.update_ghost(minted, "Healthy", 66, 2, 1, 600, 15)
    ledger.update_ghost(minted, "VeryHealthy", 100, 3, 1, 1000, 70)
    ledger.revert_ghost(minted, 3, 1, "Healthy", 66, 2, 1, 600, 15)

    ghost = ledger.get_ghost(minted)
    assert (ghost.good_credits, ghost.bad_credits, ghost.health) == (2, 1, 66)
    assert (ghost.appearance, ghost.current_alpha, ghost.current_power_mw) == ("Healthy", 600, 15)


def test_revert_never_undoes_a_newer_update(ledger, minted):
    ledger.update_ghost(minted, "Healthy", 66, 3, 1, 600, 15)
    with pytest.raises(LedgerError):
        ledger.revert_ghost(minted, 2, 1, "Neutral", 50, 1, 1, 0, 0)
    assert ledger.get_ghost(minted).good_credits == 3


def test_process_reading_moves_deposit_and_counts(ledger, minted):
    ledger.process_reading(DEVICE, minted, "CLEAN", 60, 50)
    ledger.process_reading(DEVICE, minted, "DIRTY", 40, 60)

    assert ledger.get_deposit(DEVICE) == 100 + 10 - 8
    stats = ledger.get_lifetime_stats(DEVICE)
    assert stats.total_rewards == 10
    assert stats.total_penalties == 8
    assert stats.net_change == 2


def test_integration_every_interval(ledger, minted):
    seen = []
    for _ in range(6):
        ledger.process_reading(DEVICE, minted, "CLEAN", 50, 50)
        seen.append(ledger.should_calculate_integration(DEVICE))
    assert seen == [False, False, True, False, False, True]
    assert ledger.should_calculate_integration(OTHER_DEVICE) is False


def test_deposit_must_be_positive(ledger):
    with pytest.raises(ValueError):
        ledger.deposit(DEVICE, 0)


def test_file_ledger_persists_between_instances(tmp_path):
    path = tmp_path / "data" / "ledger.json"
    first = LocalLedger(path, integration_interval=3, reward_wei=10, penalty_wei=4)
    token_id = first.mint_ghost(DEVICE, DEVICE, "0x01")
    first.deposit(DEVICE, 50)
    first.update_ghost(token_id, "VeryHealthy", 100, 1, 0, 1000, 70)

    second = LocalLedger(path, integration_interval=3, reward_wei=10, penalty_wei=4)
    assert second.get_token_for_device(DEVICE) == token_id
    assert second.get_deposit(DEVICE) == 50
    assert second.get_ghost(token_id).current_alpha == 1000
    assert not list(path.parent.glob("*.tmp"))


def test_corrupt_file_is_a_ledger_error(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{ not json")
    with pytest.raises(LedgerError):
        LocalLedger(path).get_token_for_device(DEVICE)


# =============================================================================
# Grid oracle
# =============================================================================

@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.delenv("LOCAL_GRID_STATUS", raising=False)
    monkeypatch.delenv("LOCAL_CARBON_INTENSITY", raising=False)
    monkeypatch.delenv("CLEAN_INTENSITY_THRESHOLD", raising=False)


def test_classify_intensity():
    assert classify_intensity(120.0) is GridState.CLEAN
    assert classify_intensity(200.0) is GridState.DIRTY


def test_oracle_reads_published_status(ledger, clean_env):
    oracle = StoredGridOracle(ledger)
    oracle.publish(GridState.DIRTY, 120.0)
    status = oracle.get_grid_status()
    assert status.status is GridState.DIRTY
    assert status.carbon_intensity == 120.0


def test_oracle_derives_status_from_intensity(ledger, clean_env):
    ledger.put_grid_item(None, 350.0)
    assert StoredGridOracle(ledger).get_grid_status().status is GridState.DIRTY
    assert StoredGridOracle(ledger, threshold=400).get_grid_status().status is GridState.CLEAN


def test_oracle_explicit_zero_threshold(ledger, clean_env):
    ledger.put_grid_item(None, 0.0)
    assert StoredGridOracle(ledger).get_grid_status().status is GridState.CLEAN
    assert StoredGridOracle(ledger, threshold=0.0).get_grid_status().status is GridState.DIRTY


def test_oracle_without_data_is_unavailable(ledger, clean_env):
    with pytest.raises(OracleError):
        StoredGridOracle(ledger).get_grid_status()


def test_oracle_env_fallback(ledger, clean_env, monkeypatch):
    monkeypatch.setenv("LOCAL_CARBON_INTENSITY", "80")
    status = StoredGridOracle(ledger).get_grid_status()
    assert status.status is GridState.CLEAN
    assert status.carbon_intensity == 80.0


def test_oracle_rejects_garbage_status(ledger, clean_env):
    ledger.put_grid_item("SMOGGY", 10.0)
    with pytest.raises(OracleError):
        StoredGridOracle(ledger).get_grid_status()


def test_publish_rejects_negative_intensity(ledger):
    with pytest.raises(ValueError):
        StoredGridOracle(ledger).publish(GridState.CLEAN, -1)


# =============================================================================
# Device registry
# =============================================================================

def test_register_is_an_upsert(ledger, rsa_key, ec_key):
    registry = DeviceRegistry(ledger)
    registry.register(DEVICE, public_key_pem(rsa_key))
    registry.register(DEVICE, public_key_pem(ec_key) + "\n\n")
    assert registry.get_public_key(DEVICE) == public_key_pem(ec_key).strip()
    assert registry.get_public_key(OTHER_DEVICE) is None


def test_register_rejects_invalid_pem(ledger):
    with pytest.raises(MalformedRequest):
        DeviceRegistry(ledger).register(DEVICE, "-----BEGIN PUBLIC KEY-----\nxyz\n-----END PUBLIC KEY-----")
    assert ledger.get_public_key(DEVICE) is None
