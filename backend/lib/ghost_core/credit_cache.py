# backend/lib/ghost_core/credit_cache.py
"""
In-memory mirror of per-device credit counters.

The ledger is the system of record; this cache only saves round trips. It
is hydrated lazily from the ledger, may be dropped at any time, and is never
written back except through the pipeline's commit step.

Callers that read-modify-write an entry must hold lock(device_address) for
the whole sequence. Locks come from a fixed table of shards, so the lock
table does not grow with the number of addresses seen; two devices that
hash to the same shard simply take turns.
"""

import logging
import threading
import zlib
from dataclasses import replace
from typing import Dict, Optional

from .errors import LedgerError, LedgerUnavailable
from .ledger import GhostLedger
from .models import CreditState, GridState

logger = logging.getLogger(__name__)

DEFAULT_LOCK_SHARDS = 64


class CreditLedgerCache:

    def __init__(self, ledger: GhostLedger, lock_shards: int = DEFAULT_LOCK_SHARDS):
        if lock_shards < 1:
            raise ValueError("lock_shards must be >= 1")
        self.ledger = ledger
        self._entries: Dict[str, CreditState] = {}
        self._locks = tuple(threading.Lock() for _ in range(lock_shards))
        # guards _entries, never held across a ledger call
        self._registry_lock = threading.Lock()

    def lock(self, device_address: str) -> threading.Lock:
        shard = zlib.crc32(device_address.encode("utf-8")) % len(self._locks)
        return self._locks[shard]

    def peek(self, device_address: str) -> Optional[CreditState]:
        """Cached entry without hydrating; a copy, safe to read outside the device lock."""
        with self._registry_lock:
            entry = self._entries.get(device_address)
            return replace(entry) if entry else None

    def get(self, device_address: str) -> Optional[CreditState]:
        """
        Credit state for a device, hydrating from the ledger on a miss.

        Returns None when no ghost is minted for the device. Misses are not
        cached, so a ghost provisioned later is picked up on the next reading.
        """
        with self._registry_lock:
            entry = self._entries.get(device_address)
        if entry is not None:
            return entry

        try:
            token_id = int(self.ledger.get_token_for_device(device_address))
            if token_id == 0:
                logger.warning("No ghost found for device %s", device_address)
                return None
            ghost = self.ledger.get_ghost(token_id)
        except LedgerError as e:
            raise LedgerUnavailable(f"ledger read failed: {e}") from e

        entry = CreditState(
            good=int(ghost.good_credits),
            bad=int(ghost.bad_credits),
            token_id=token_id,
            health=int(ghost.health),
            alpha=int(ghost.current_alpha),
            power_mw=int(ghost.current_power_mw),
        )
        with self._registry_lock:
            self._entries[device_address] = entry
        logger.info("Initialized credits for %s: good=%d bad=%d token=%d",
                    device_address, entry.good, entry.bad, token_id)
        return entry

    def increment(self, device_address: str, grid_state: GridState) -> CreditState:
        """
        Apply exactly one credit for a reading and return the state before it.

        The returned copy is what restore() needs if the commit fails.
        """
        with self._registry_lock:
            entry = self._entries[device_address]
            previous = replace(entry)
            if grid_state is GridState.CLEAN:
                entry.good += 1
            else:
                entry.bad += 1
        return previous

    def record_commit(self, device_address: str, health: int, alpha: int, power_mw: int) -> None:
        """Remember the derived state just written, so a later rollback can put it back."""
        with self._registry_lock:
            entry = self._entries.get(device_address)
            if entry is not None:
                entry.health = health
                entry.alpha = alpha
                entry.power_mw = power_mw

    def restore(self, device_address: str, previous: CreditState) -> None:
        with self._registry_lock:
            self._entries[device_address] = replace(previous)
        logger.info("Rolled back credits for %s to good=%d bad=%d",
                    device_address, previous.good, previous.bad)

    def invalidate(self, device_address: str) -> None:
        with self._registry_lock:
            self._entries.pop(device_address, None)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._registry_lock:
            self._entries.clear()
