"""
Local ghost ledger used when DynamoDB is not enabled.

Same data layout as the DynamoDB table, kept in one JSON file (by default
backend/data/ledger.json) so the provisioning CLI and a running relay see
the same ghosts. Every operation re-reads the file, applies its change and
replaces the file atomically. Pass path=None for a purely in-memory ledger.
"""

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Optional

from backend.lib.dynamodb_service import (
    DEFAULT_INTEGRATION_INTERVAL,
    DEFAULT_PENALTY_WEI,
    DEFAULT_REWARD_WEI,
    economic_delta,
    tx_hash,
)
from backend.lib.ghost_core.errors import LedgerError
from backend.lib.ghost_core.ledger import GhostLedger
from backend.lib.ghost_core.models import Appearance, Ghost, LifetimeStats

logger = logging.getLogger(__name__)


def _empty_state() -> dict:
    return {"next_token_id": 0, "devices": {}, "ghosts": {}, "accounts": {}, "keys": {}, "grid": None}


class LocalLedger(GhostLedger):

    def __init__(self, path: Optional[Path] = None, integration_interval: int = None,
                 reward_wei: int = None, penalty_wei: int = None):
        self.path = Path(path) if path else None
        self.integration_interval = integration_interval or int(
            os.getenv('INTEGRATION_INTERVAL', DEFAULT_INTEGRATION_INTERVAL))
        self.reward_wei = reward_wei if reward_wei is not None else int(
            os.getenv('REWARD_WEI', DEFAULT_REWARD_WEI))
        self.penalty_wei = penalty_wei if penalty_wei is not None else int(
            os.getenv('PENALTY_WEI', DEFAULT_PENALTY_WEI))
        self._lock = threading.Lock()
        self._memory = _empty_state()

    # -- storage --------------------------------------------------------------

    def _load(self) -> dict:
        if self.path is None:
            return self._memory
        if not self.path.exists():
            return _empty_state()
        try:
            with self.path.open("r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            raise LedgerError(f"cannot read {self.path}: {e}") from e
        for key, value in _empty_state().items():
            state.setdefault(key, value)
        return state

    def _save(self, state: dict) -> None:
        if self.path is None:
            self._memory = state
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise LedgerError(f"cannot write {self.path}: {e}") from e

    def _read(self, fn):
        with self._lock:
            return fn(self._load())

    def _write(self, fn):
        with self._lock:
            state = self._load()
            result = fn(state)
            self._save(state)
            return result

    @staticmethod
    def _account(state: dict, device_address: str) -> dict:
        return state["accounts"].setdefault(
            device_address,
            {"deposit": 0, "total_rewards": 0, "total_penalties": 0, "reading_count": 0},
        )

    # -- ledger reads ---------------------------------------------------------

    def get_token_for_device(self, device_address: str) -> int:
        return self._read(lambda s: int(s["devices"].get(device_address, 0)))

    def get_ghost(self, token_id: int) -> Ghost:
        record = self._read(lambda s: s["ghosts"].get(str(token_id)))
        if record is None:
            raise LedgerError(f"ghost {token_id} does not exist")
        return Ghost(token_id=int(token_id), **record)

    def get_deposit(self, device_address: str) -> int:
        return self._read(lambda s: int(s["accounts"].get(device_address, {}).get("deposit", 0)))

    def get_lifetime_stats(self, device_address: str) -> LifetimeStats:
        account = self._read(lambda s: dict(s["accounts"].get(device_address, {})))
        return LifetimeStats(
            total_rewards=int(account.get("total_rewards", 0)),
            total_penalties=int(account.get("total_penalties", 0)),
        )

    def should_calculate_integration(self, device_address: str) -> bool:
        count = self._read(lambda s: int(s["accounts"].get(device_address, {}).get("reading_count", 0)))
        return count > 0 and count % self.integration_interval == 0

    # -- ledger writes --------------------------------------------------------

    def update_ghost(self, token_id: int, appearance: str, health: int, good_credits: int,
                     bad_credits: int, alpha: int, power_mw: int) -> str:
        def apply(state):
            ghost = state["ghosts"].get(str(token_id))
            if ghost is None:
                raise LedgerError(f"ghost {token_id} does not exist")
            if good_credits < ghost["good_credits"] or bad_credits < ghost["bad_credits"]:
                raise LedgerError(f"ghost {token_id}: credits may not decrease")
            ghost.update(
                appearance=appearance,
                health=health,
                good_credits=good_credits,
                bad_credits=bad_credits,
                current_alpha=alpha,
                current_power_mw=power_mw,
                last_update=int(time.time()),
            )
        self._write(apply)
        return tx_hash()

    def revert_ghost(self, token_id: int, applied_good: int, applied_bad: int, appearance: str,
                     health: int, good_credits: int, bad_credits: int, alpha: int, power_mw: int) -> str:
        def apply(state):
            ghost = state["ghosts"].get(str(token_id))
            if ghost is None:
                raise LedgerError(f"ghost {token_id} does not exist")
            if (ghost["good_credits"], ghost["bad_credits"]) != (applied_good, applied_bad):
                raise LedgerError(f"ghost {token_id} changed since the update being reverted")
            ghost.update(
                appearance=appearance,
                health=health,
                good_credits=good_credits,
                bad_credits=bad_credits,
                current_alpha=alpha,
                current_power_mw=power_mw,
                last_update=int(time.time()),
            )
        self._write(apply)
        logger.info("Reverted ghost %d to good=%d bad=%d", token_id, good_credits, bad_credits)
        return tx_hash()

    def process_reading(self, device_address: str, token_id: int, grid_status: str,
                        new_health: int, old_health: int) -> str:
        def apply(state):
            account = self._account(state, device_address)
            reward, penalty = economic_delta(grid_status, new_health, old_health, account["deposit"],
                                             self.reward_wei, self.penalty_wei)
            account["deposit"] += reward - penalty
            account["total_rewards"] += reward
            account["total_penalties"] += penalty
            account["reading_count"] += 1
            return reward, penalty
        reward, penalty = self._write(apply)
        logger.info("Account %s: reward=%d penalty=%d", device_address, reward, penalty)
        return tx_hash()

    def deposit(self, device_address: str, amount_wei: int) -> int:
        if amount_wei <= 0:
            raise ValueError("deposit amount must be positive")

        def apply(state):
            account = self._account(state, device_address)
            account["deposit"] += amount_wei
            return account["deposit"]
        return self._write(apply)

    def mint_ghost(self, owner: str, device_address: str, hardware_id: str) -> int:
        def apply(state):
            existing = state["devices"].get(device_address)
            if existing:
                return int(existing)
            state["next_token_id"] += 1
            token_id = state["next_token_id"]
            state["devices"][device_address] = token_id
            state["ghosts"][str(token_id)] = {
                "device_address": device_address,
                "owner": owner,
                "health": 50,
                "appearance": Appearance.NEUTRAL.value,
                "good_credits": 0,
                "bad_credits": 0,
                "current_alpha": 0,
                "current_power_mw": 0,
                "last_update": int(time.time()),
                "hardware_id": hardware_id,
            }
            logger.info("Minted ghost %d for %s", token_id, device_address)
            return token_id
        return self._write(apply)

    # -- device keys and grid status -----------------------------------------

    def get_public_key(self, device_address: str) -> Optional[str]:
        return self._read(lambda s: s["keys"].get(device_address))

    def put_public_key(self, device_address: str, public_key: str) -> None:
        def apply(state):
            state["keys"][device_address] = public_key
        self._write(apply)

    def get_grid_item(self) -> Optional[dict]:
        return self._read(lambda s: dict(s["grid"]) if s["grid"] else None)

    def put_grid_item(self, status: str, carbon_intensity: float) -> None:
        def apply(state):
            state["grid"] = {
                "status": status,
                "carbon_intensity": carbon_intensity,
                "updated_at": int(time.time()),
            }
        self._write(apply)
