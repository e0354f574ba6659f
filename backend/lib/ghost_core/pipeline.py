# backend/lib/ghost_core/pipeline.py
"""
Reading pipeline: one signed reading in, one committed ghost update out.

    RECEIVED -> VERIFIED -> CREDITS_RESOLVED -> GRID_QUERIED -> CREDITS_UPDATED
             -> HEALTH_COMPUTED -> COMMITTED -> RESPONDED

Any stage may exit with a RelayError, which is the REJECTED(reason) state.
CREDITS_RESOLVED through COMMITTED run under the device's lock so two
readings for the same device never interleave their read-modify-write of
the credit counters. Readings for different devices do not block each other.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from . import alpha as alpha_tiers
from . import health as health_calc
from . import signature
from .credit_cache import CreditLedgerCache
from .errors import (
    BackendCommitFailed,
    InvalidSignature,
    LedgerError,
    LedgerUnavailable,
    MalformedRequest,
    OracleError,
    OracleUnavailable,
    UnregisteredDevice,
)
from .ledger import GhostLedger, GridOracle
from .models import CreditState, DeviceReading, GridStatus, HealthSnapshot, ReadingResult
from .units import power_mw

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    RECEIVED = "RECEIVED"
    VERIFIED = "VERIFIED"
    CREDITS_RESOLVED = "CREDITS_RESOLVED"
    GRID_QUERIED = "GRID_QUERIED"
    CREDITS_UPDATED = "CREDITS_UPDATED"
    HEALTH_COMPUTED = "HEALTH_COMPUTED"
    COMMITTED = "COMMITTED"
    RESPONDED = "RESPONDED"
    REJECTED = "REJECTED"


class ReadingPipeline:

    def __init__(self, ledger: GhostLedger, oracle: GridOracle, cache: CreditLedgerCache = None,
                 registry=None):
        self.ledger = ledger
        self.oracle = oracle
        self.cache = cache or CreditLedgerCache(ledger)
        # optional DeviceRegistry; without one the key in the reading is used
        self.registry = registry

    def process(self, reading: DeviceReading) -> ReadingResult:
        address = reading.device_address
        self._advance(Stage.RECEIVED, address)
        try:
            self.verify(reading)
            self._advance(Stage.VERIFIED, address)

            with self.cache.lock(address):
                credits = self.resolve_credits(address)
                self._advance(Stage.CREDITS_RESOLVED, address)
                old_health = credits.health

                grid = self.query_grid()
                self._advance(Stage.GRID_QUERIED, address)

                previous = self.cache.increment(address, grid.status)
                self._advance(Stage.CREDITS_UPDATED, address)

                alpha = alpha_tiers.classify(reading.power_usage)
                snap = health_calc.snapshot(credits.good, credits.bad, alpha)
                self._advance(Stage.HEALTH_COMPUTED, address)

                tx_hash, game_hash = self.commit(reading, credits, previous, grid, alpha, snap, old_health)
                self._advance(Stage.COMMITTED, address)

                good, bad = credits.good, credits.bad

            integration, deposit = self.post_commit(address)
        except Exception as e:
            reason = getattr(e, "reason", type(e).__name__)
            logger.warning("%s -> %s(%s): %s", address, Stage.REJECTED.value, reason, e)
            raise

        self._advance(Stage.RESPONDED, address)
        return ReadingResult(
            health=snap.health,
            old_health=old_health,
            appearance=snap.appearance,
            good_credits=good,
            bad_credits=bad,
            alpha=alpha,
            power_mw=power_mw(reading.power_usage),
            grid=grid,
            transaction_hash=tx_hash,
            game_logic_hash=game_hash,
            deposit=deposit,
            integration_triggered=integration,
        )

    # -- stages -------------------------------------------------------------

    def resolve_public_key(self, reading: DeviceReading) -> str:
        registered = None
        if self.registry is not None:
            try:
                registered = self.registry.get_public_key(reading.device_address)
            except LedgerError as e:
                raise LedgerUnavailable(f"device registry read failed: {e}") from e

        if registered:
            if reading.public_key and not signature.same_public_key(reading.public_key, registered):
                raise InvalidSignature("public key does not match the registered device key")
            return registered
        if not reading.public_key:
            raise MalformedRequest("publicKey is required for unregistered devices")
        return reading.public_key

    def verify(self, reading: DeviceReading) -> None:
        public_key = self.resolve_public_key(reading)
        if not signature.verify_reading(reading, public_key):
            raise InvalidSignature("Invalid signature")

    def resolve_credits(self, address: str) -> CreditState:
        credits = self.cache.get(address)
        if credits is None:
            raise UnregisteredDevice("No ghost found for device")
        return credits

    def query_grid(self) -> GridStatus:
        try:
            grid = self.oracle.get_grid_status()
        except OracleError as e:
            raise OracleUnavailable(f"grid oracle unavailable: {e}") from e
        logger.info("Grid: %s (%s gCO2/kWh)", grid.status.value, grid.carbon_intensity)
        return grid

    def commit(self, reading: DeviceReading, credits: CreditState, previous: CreditState,
               grid: GridStatus, alpha: int, snap: HealthSnapshot, old_health: int) -> Tuple[str, str]:
        """
        Write the ghost update and its economic consequences, all or nothing.

        A BackendCommitFailed leaves the ledger as it was before the reading,
        so the device may resubmit it. If the ledger cannot be put back, the
        error says so and the cache entry is dropped.
        """
        address = reading.device_address
        reading_power = int(power_mw(reading.power_usage))
        try:
            tx_hash = self.ledger.update_ghost(
                credits.token_id,
                snap.appearance.value,
                snap.health,
                credits.good,
                credits.bad,
                alpha,
                reading_power,
            )
        except LedgerError as e:
            # a timed-out write may still have landed: rehydrate next time
            self.cache.invalidate(address)
            raise BackendCommitFailed(f"ghost update failed: {e}") from e

        try:
            game_hash = self.ledger.process_reading(
                address, credits.token_id, grid.status.value, snap.health, old_health,
            )
        except LedgerError as e:
            self.revert(address, credits, previous)
            raise BackendCommitFailed(f"economic update failed, ghost update {tx_hash} reverted: {e}") from e

        self.cache.record_commit(address, snap.health, alpha, reading_power)
        logger.info("Ghost %d committed: health %d -> %d (%s), tx %s",
                    credits.token_id, old_health, snap.health, snap.appearance.value, tx_hash)
        return tx_hash, game_hash

    def revert(self, address: str, applied: CreditState, previous: CreditState) -> None:
        try:
            self.ledger.revert_ghost(
                previous.token_id,
                applied.good,
                applied.bad,
                health_calc.get_appearance(previous.health).value,
                previous.health,
                previous.good,
                previous.bad,
                previous.alpha,
                previous.power_mw,
            )
        except LedgerError as e:
            self.cache.invalidate(address)
            logger.error("Ghost %d could not be reverted for %s, ledger keeps the partial update: %s",
                         previous.token_id, address, e)
            raise BackendCommitFailed(f"economic update failed and ghost update could not be reverted: {e}") from e
        self.cache.restore(address, previous)

    def post_commit(self, address: str) -> Tuple[Optional[bool], Optional[int]]:
        """
        Read-only queries after the commit is durable.

        A failure here must not turn into an error response: the reading is
        already committed and a resubmission would count it twice. The
        affected field is reported as None instead.
        """
        integration = deposit = None
        try:
            integration = bool(self.ledger.should_calculate_integration(address))
            if integration:
                logger.info("Integration calculation triggered for %s", address)
        except LedgerError as e:
            logger.error("Integration check failed for %s: %s", address, e)
        try:
            deposit = int(self.ledger.get_deposit(address))
        except LedgerError as e:
            logger.error("Deposit lookup failed for %s: %s", address, e)
        return integration, deposit

    @staticmethod
    def _advance(stage: Stage, address: str) -> None:
        logger.debug("%s -> %s", address, stage.value)
