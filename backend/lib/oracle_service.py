"""
=============================================================================
GRID ORACLE - current grid status for each reading
=============================================================================

The grid status decides whether a reading earns a good or a bad credit, so
it is fetched fresh for every reading and never cached.

The oracle reads a single "GRID" item kept by whatever publishes grid
conditions (the provisioning CLI locally, an external feed in production):

    {"status": "CLEAN", "carbon_intensity": 120.5}

If the item has no explicit status, it is derived from carbon intensity:
below CLEAN_INTENSITY_THRESHOLD gCO2/kWh is CLEAN, otherwise DIRTY.
When nothing has been published yet, the oracle falls back to
LOCAL_GRID_STATUS / LOCAL_CARBON_INTENSITY from the environment.
=============================================================================
"""

import logging
import os

from backend.lib.ghost_core.errors import LedgerError, OracleError
from backend.lib.ghost_core.ledger import GridOracle
from backend.lib.ghost_core.models import GridState, GridStatus

logger = logging.getLogger(__name__)

DEFAULT_CLEAN_THRESHOLD = 200.0  # gCO2/kWh


def classify_intensity(carbon_intensity: float, threshold: float = DEFAULT_CLEAN_THRESHOLD) -> GridState:
    return GridState.CLEAN if carbon_intensity < threshold else GridState.DIRTY


class StoredGridOracle(GridOracle):
    """
    Grid oracle reading the GRID item from a ledger store.

    `store` is a DynamoDBService or LocalLedger; both expose
    get_grid_item() / put_grid_item().
    """

    def __init__(self, store, threshold: float = None):
        self.store = store
        self.threshold = threshold if threshold is not None else float(
            os.getenv('CLEAN_INTENSITY_THRESHOLD', DEFAULT_CLEAN_THRESHOLD))
        self.fallback_status = os.getenv('LOCAL_GRID_STATUS')
        self.fallback_intensity = os.getenv('LOCAL_CARBON_INTENSITY')

    def get_grid_status(self) -> GridStatus:
        try:
            item = self.store.get_grid_item()
        except LedgerError as e:
            raise OracleError(str(e)) from e

        if item is None:
            if self.fallback_intensity is None and self.fallback_status is None:
                raise OracleError("no grid status has been published")
            item = {"status": self.fallback_status, "carbon_intensity": self.fallback_intensity or 0}

        try:
            intensity = float(item.get("carbon_intensity", 0))
            status = item.get("status")
            if status:
                state = GridState(str(status).upper())
            else:
                state = classify_intensity(intensity, self.threshold)
        except ValueError as e:
            raise OracleError(f"unreadable grid status {item!r}: {e}") from e

        if intensity < 0:
            raise OracleError(f"negative carbon intensity {intensity}")
        return GridStatus(status=state, carbon_intensity=intensity)

    def publish(self, status: GridState, carbon_intensity: float) -> None:
        """Record current grid conditions (used by the provisioning CLI)."""
        if carbon_intensity < 0:
            raise ValueError("carbon intensity must be >= 0")
        self.store.put_grid_item(status.value, carbon_intensity)
        logger.info("Published grid status %s (%s gCO2/kWh)", status.value, carbon_intensity)
