# backend/lib/ghost_core/ledger.py
"""
Collaborator interfaces the relay talks to.

GhostLedger is the system of record for ghosts, credits, deposits and the
integration cadence. GridOracle reports current grid conditions. Both are
remote and may fail: implementations raise LedgerError / OracleError and
must bound every call with a timeout.
"""

from abc import ABC, abstractmethod

from .models import Ghost, GridStatus, LifetimeStats


class GhostLedger(ABC):

    @abstractmethod
    def get_token_for_device(self, device_address: str) -> int:
        """Token id bound to the device, 0 if none was minted."""

    @abstractmethod
    def get_ghost(self, token_id: int) -> Ghost:
        ...

    @abstractmethod
    def update_ghost(self, token_id: int, appearance: str, health: int, good_credits: int,
                     bad_credits: int, alpha: int, power_mw: int) -> str:
        """Persist derived ghost state, returning a transaction hash."""

    @abstractmethod
    def revert_ghost(self, token_id: int, applied_good: int, applied_bad: int, appearance: str,
                     health: int, good_credits: int, bad_credits: int, alpha: int, power_mw: int) -> str:
        """
        Undo an update_ghost whose reading could not be completed.

        Only applies while the ghost still holds applied_good / applied_bad,
        so it can never undo a later reading. This is the one write allowed
        to move credits backwards.
        """

    @abstractmethod
    def process_reading(self, device_address: str, token_id: int, grid_status: str,
                        new_health: int, old_health: int) -> str:
        """Apply economic consequences (rewards / penalties), returning a transaction hash."""

    @abstractmethod
    def get_deposit(self, device_address: str) -> int:
        """Deposit balance in wei."""

    @abstractmethod
    def get_lifetime_stats(self, device_address: str) -> LifetimeStats:
        ...

    @abstractmethod
    def should_calculate_integration(self, device_address: str) -> bool:
        ...

    @abstractmethod
    def mint_ghost(self, owner: str, device_address: str, hardware_id: str) -> int:
        ...

    @abstractmethod
    def deposit(self, device_address: str, amount_wei: int) -> int:
        """Add to a deposit, returning the new balance."""


class GridOracle(ABC):

    @abstractmethod
    def get_grid_status(self) -> GridStatus:
        ...
