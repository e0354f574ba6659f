"""
Device key registry: which public key a device address signs with.

Backed by the same store as the ledger (DynamoDBService or LocalLedger).
Registration is an idempotent upsert: registering again replaces the key.
"""

import logging
from typing import Optional

from backend.lib.ghost_core import signature
from backend.lib.ghost_core.errors import MalformedRequest

logger = logging.getLogger(__name__)


class DeviceRegistry:

    def __init__(self, store):
        self.store = store

    def register(self, device_address: str, public_key: str) -> None:
        """
        Bind `public_key` (PEM) to `device_address`.

        Raises MalformedRequest if the key is not a supported PEM public key.
        Store failures propagate as LedgerError.
        """
        try:
            signature.load_public_key(public_key)
        except ValueError as e:
            raise MalformedRequest(f"invalid publicKey: {e}") from e
        self.store.put_public_key(device_address, public_key.strip())
        logger.info("Registered key for device %s", device_address)

    def get_public_key(self, device_address: str) -> Optional[str]:
        return self.store.get_public_key(device_address)
