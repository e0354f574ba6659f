"""
Shared wiring for the HTTP app and the Lambda handlers: backend selection,
pipeline construction and response shaping.
"""

import logging
import os
from pathlib import Path

from backend.lib.device_registry import DeviceRegistry
from backend.lib.ghost_core.credit_cache import CreditLedgerCache
from backend.lib.ghost_core.errors import LedgerError, LedgerUnavailable, UnregisteredDevice
from backend.lib.ghost_core.models import ReadingResult
from backend.lib.ghost_core.pipeline import ReadingPipeline
from backend.lib.ghost_core.units import format_ether
from backend.lib.local_ledger import LocalLedger
from backend.lib.oracle_service import StoredGridOracle

logger = logging.getLogger(__name__)


def build_backend():
    """
    Create the store used for ghosts, grid status and device keys.

    USE_DYNAMODB=true selects DynamoDB; if the table cannot be reached at
    startup we fall back to the local JSON ledger so the relay still runs.

    Returns:
        (store, backend_name)
    """
    if os.getenv('USE_DYNAMODB', 'false').lower() == 'true':
        try:
            from backend.lib.dynamodb_service import DynamoDBService
            store = DynamoDBService()
            if store.create_table_if_not_exists():
                logger.info("DynamoDB ledger enabled (table %s)", store.table_name)
                return store, 'dynamodb'
            logger.warning("DynamoDB table unavailable. Using local ledger.")
        except Exception as e:
            logger.warning("DynamoDB initialization failed: %s. Using local ledger.", e)

    store = LocalLedger(local_ledger_path())
    logger.info("Local ledger enabled (%s)", store.path)
    return store, 'local'


def local_ledger_path() -> Path:
    return Path(os.getenv('LOCAL_DATA_DIR', 'backend/data')) / 'ledger.json'


def build_pipeline(store, oracle=None, registry=None) -> ReadingPipeline:
    oracle = oracle or StoredGridOracle(store)
    registry = registry or DeviceRegistry(store)
    return ReadingPipeline(store, oracle, CreditLedgerCache(store), registry)


def reading_response(result: ReadingResult) -> dict:
    return {
        "success": True,
        "transactionHash": result.transaction_hash,
        "gameLogicHash": result.game_logic_hash,
        "health": result.health,
        "oldHealth": result.old_health,
        "appearance": result.appearance.value,
        "goodCredits": result.good_credits,
        "badCredits": result.bad_credits,
        # alpha travels as a fraction (0.2 - 1.0), it is stored scaled by 1000
        "alpha": result.alpha / 1000,
        "powerMW": result.power_mw,
        "gridStatus": result.grid.status.value,
        "carbonIntensity": result.grid.carbon_intensity,
        "deposit": format_ether(result.deposit) if result.deposit is not None else None,
        "integrationTriggered": result.integration_triggered,
    }


def ghost_snapshot(pipeline: ReadingPipeline, device_address: str) -> dict:
    """
    Ghost state for display. Credits come from the cache when it is warm,
    otherwise from the ledger; either may briefly trail the other.
    """
    ledger = pipeline.ledger
    try:
        token_id = ledger.get_token_for_device(device_address)
        if not token_id:
            raise UnregisteredDevice("No ghost found")
        ghost = ledger.get_ghost(token_id)
        deposit = ledger.get_deposit(device_address)
        stats = ledger.get_lifetime_stats(device_address)
    except LedgerError as e:
        raise LedgerUnavailable(str(e)) from e

    cached = pipeline.cache.peek(device_address)
    good = max(ghost.good_credits, cached.good) if cached else ghost.good_credits
    bad = max(ghost.bad_credits, cached.bad) if cached else ghost.bad_credits

    return {
        "tokenId": int(token_id),
        "health": ghost.health,
        "appearance": ghost.appearance,
        "goodCredits": good,
        "badCredits": bad,
        "alpha": ghost.current_alpha / 1000,
        "powerMW": ghost.current_power_mw,
        "deposit": format_ether(deposit),
        "lifetimeRewards": format_ether(stats.total_rewards),
        "lifetimePenalties": format_ether(stats.total_penalties),
        "netChange": format_ether(stats.net_change),
        "lastUpdate": ghost.last_update,
    }
