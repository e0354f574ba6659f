"""
=============================================================================
DYNAMODB SERVICE - Ghost ledger backed by Amazon DynamoDB
=============================================================================

The relay treats the ledger as a remote system of record. This service
stores every ghost, deposit account and device key in a single DynamoDB
table so the relay can run against AWS without any other backend.

Table Schema (single table, partition key only):
------------------------------------------------
Table: CarbonGhostLedger
- pk (String) - Partition Key, one of:
    COUNTER              next_token_id
    DEVICE#<address>     token_id
    GHOST#<token_id>     device_address, owner, health, appearance,
                         good_credits, bad_credits, current_alpha,
                         current_power_mw, last_update, hardware_id
    ACCOUNT#<address>    deposit, total_rewards, total_penalties,
                         reading_count          (all wei / counts)
    KEY#<address>        public_key, registered_at
    GRID                 status, carbon_intensity, updated_at

Example GHOST item:
{
    "pk": "GHOST#1",
    "device_address": "0x742d35cc6634c0532925a3b844bc9e7595f0beb1",
    "health": 90,
    "appearance": "VeryHealthy",
    "good_credits": 10,
    "bad_credits": 1,
    ...
}

Timeouts and retries:
---------------------
Every client is built with a bounded connect/read timeout and a single
attempt. Ledger writes are not idempotent, so a failed call is surfaced to
the caller instead of being retried behind its back.
=============================================================================
"""

import logging
import os
import secrets
import time
from decimal import Decimal
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from backend.lib.ghost_core.errors import LedgerError
from backend.lib.ghost_core.ledger import GhostLedger
from backend.lib.ghost_core.models import Appearance, Ghost, GridState, LifetimeStats

logger = logging.getLogger(__name__)

# ClientError covers API errors; BotoCoreError covers connect/read timeouts
AWS_ERRORS = (ClientError, BotoCoreError)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_INTEGRATION_INTERVAL = 107
DEFAULT_REWARD_WEI = 10 ** 15         # 0.001 ether
DEFAULT_PENALTY_WEI = 2 * 10 ** 15    # 0.002 ether


def tx_hash() -> str:
    """A transaction-style identifier for a committed write."""
    return "0x" + secrets.token_hex(32)


def economic_delta(grid_status: str, new_health: int, old_health: int, deposit: int,
                   reward_wei: int, penalty_wei: int):
    """
    Reward / penalty for one reading, shared by every ledger implementation.

    CLEAN readings earn reward_wei. DIRTY readings cost penalty_wei, doubled
    when health dropped, and never more than what is left on deposit.

    Returns (reward, penalty) in wei.
    """
    if grid_status == GridState.CLEAN.value:
        return reward_wei, 0
    penalty = penalty_wei * (2 if new_health < old_health else 1)
    return 0, min(penalty, max(deposit, 0))


def boto3_kwargs(timeout: float) -> dict:
    """Credentials and client config shared by every AWS client we create."""
    session_token = os.getenv('AWS_SESSION_TOKEN')
    return dict(
        region_name=os.getenv('AWS_REGION', 'us-east-1'),
        aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
        aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
        aws_session_token=session_token if session_token else None,
        config=Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={'total_max_attempts': 1, 'mode': 'standard'},
        ),
    )


class DynamoDBService(GhostLedger):
    """
    GhostLedger implementation on a single DynamoDB table.

    Also stores registered device keys and the grid-status item, so the
    device registry and grid oracle can share one table.

    Usage:
        ledger = DynamoDBService()
        ledger.create_table_if_not_exists()
        token_id = ledger.mint_ghost(owner, device_address, hardware_id)
    """

    def __init__(self, table_name: str = None, timeout: float = None):
        self.table_name = table_name or os.getenv('LEDGER_TABLE_NAME', 'CarbonGhostLedger')
        timeout = timeout or float(os.getenv('BACKEND_TIMEOUT_SECONDS', DEFAULT_TIMEOUT_SECONDS))

        self.integration_interval = int(os.getenv('INTEGRATION_INTERVAL', DEFAULT_INTEGRATION_INTERVAL))
        self.reward_wei = int(os.getenv('REWARD_WEI', DEFAULT_REWARD_WEI))
        self.penalty_wei = int(os.getenv('PENALTY_WEI', DEFAULT_PENALTY_WEI))

        kwargs = boto3_kwargs(timeout)
        # Resource for item access, client for describe_table
        self.dynamodb = boto3.resource('dynamodb', **kwargs)
        self.client = boto3.client('dynamodb', **kwargs)
        self.table = self.dynamodb.Table(self.table_name)

    def create_table_if_not_exists(self) -> bool:
        """
        Create the ledger table (on-demand billing) if it is missing.

        Returns:
            bool: True if the table exists or was created
        """
        try:
            self.client.describe_table(TableName=self.table_name)
            logger.info("DynamoDB table '%s' exists", self.table_name)
            return True

        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                logger.error("Error checking table: %s", e)
                return False
            try:
                table = self.dynamodb.create_table(
                    TableName=self.table_name,
                    KeySchema=[{'AttributeName': 'pk', 'KeyType': 'HASH'}],
                    AttributeDefinitions=[{'AttributeName': 'pk', 'AttributeType': 'S'}],
                    BillingMode='PAY_PER_REQUEST'
                )
                table.wait_until_exists()
                self.table = table
                logger.info("Created DynamoDB table '%s'", self.table_name)
                return True

            except ClientError as create_error:
                logger.error("Failed to create table: %s", create_error)
                return False

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _get_item(self, pk: str) -> Optional[dict]:
        try:
            response = self.table.get_item(Key={'pk': pk}, ConsistentRead=True)
        except AWS_ERRORS as e:
            raise LedgerError(f"get_item {pk} failed: {e}") from e
        return response.get('Item')

    def get_token_for_device(self, device_address: str) -> int:
        item = self._get_item(f"DEVICE#{device_address}")
        return int(item['token_id']) if item else 0

    def get_ghost(self, token_id: int) -> Ghost:
        item = self._get_item(f"GHOST#{token_id}")
        if item is None:
            raise LedgerError(f"ghost {token_id} does not exist")
        return Ghost(
            token_id=int(token_id),
            device_address=item['device_address'],
            owner=item.get('owner', item['device_address']),
            health=int(item.get('health', 50)),
            appearance=item.get('appearance', Appearance.NEUTRAL.value),
            good_credits=int(item.get('good_credits', 0)),
            bad_credits=int(item.get('bad_credits', 0)),
            current_alpha=int(item.get('current_alpha', 0)),
            current_power_mw=int(item.get('current_power_mw', 0)),
            last_update=int(item.get('last_update', 0)),
            hardware_id=item.get('hardware_id', ''),
        )

    def _account(self, device_address: str) -> dict:
        return self._get_item(f"ACCOUNT#{device_address}") or {}

    def get_deposit(self, device_address: str) -> int:
        return int(self._account(device_address).get('deposit', 0))

    def get_lifetime_stats(self, device_address: str) -> LifetimeStats:
        account = self._account(device_address)
        return LifetimeStats(
            total_rewards=int(account.get('total_rewards', 0)),
            total_penalties=int(account.get('total_penalties', 0)),
        )

    def should_calculate_integration(self, device_address: str) -> bool:
        count = int(self._account(device_address).get('reading_count', 0))
        return count > 0 and count % self.integration_interval == 0

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def update_ghost(self, token_id: int, appearance: str, health: int, good_credits: int,
                     bad_credits: int, alpha: int, power_mw: int) -> str:
        """
        Overwrite the derived ghost state.

        The condition keeps credits monotonic on the ledger side too: a
        stale writer can never move good/bad backwards.
        """
        try:
            self.table.update_item(
                Key={'pk': f"GHOST#{token_id}"},
                UpdateExpression=(
                    "SET appearance = :appearance, health = :health, good_credits = :good, "
                    "bad_credits = :bad, current_alpha = :alpha, current_power_mw = :power, "
                    "last_update = :now"
                ),
                ConditionExpression=(
                    "attribute_exists(pk) AND good_credits <= :good AND bad_credits <= :bad"
                ),
                ExpressionAttributeValues={
                    ':appearance': appearance,
                    ':health': health,
                    ':good': good_credits,
                    ':bad': bad_credits,
                    ':alpha': alpha,
                    ':power': power_mw,
                    ':now': int(time.time()),
                },
            )
        except AWS_ERRORS as e:
            raise LedgerError(f"update_ghost {token_id} failed: {e}") from e
        return tx_hash()

    def revert_ghost(self, token_id: int, applied_good: int, applied_bad: int, appearance: str,
                     health: int, good_credits: int, bad_credits: int, alpha: int, power_mw: int) -> str:
        """
        Put back the ghost state from before an update_ghost whose reading
        failed later in the commit.

        Conditioned on the ghost still holding the credits that update wrote,
        so it never undoes a newer reading.
        """
        try:
            self.table.update_item(
                Key={'pk': f"GHOST#{token_id}"},
                UpdateExpression=(
                    "SET appearance = :appearance, health = :health, good_credits = :good, "
                    "bad_credits = :bad, current_alpha = :alpha, current_power_mw = :power, "
                    "last_update = :now"
                ),
                ConditionExpression="good_credits = :applied_good AND bad_credits = :applied_bad",
                ExpressionAttributeValues={
                    ':appearance': appearance,
                    ':health': health,
                    ':good': good_credits,
                    ':bad': bad_credits,
                    ':alpha': alpha,
                    ':power': power_mw,
                    ':now': int(time.time()),
                    ':applied_good': applied_good,
                    ':applied_bad': applied_bad,
                },
            )
        except AWS_ERRORS as e:
            raise LedgerError(f"revert_ghost {token_id} failed: {e}") from e
        logger.info("Reverted ghost %d to good=%d bad=%d", token_id, good_credits, bad_credits)
        return tx_hash()

    def process_reading(self, device_address: str, token_id: int, grid_status: str,
                        new_health: int, old_health: int) -> str:
        deposit = self.get_deposit(device_address)
        reward, penalty = economic_delta(grid_status, new_health, old_health, deposit,
                                         self.reward_wei, self.penalty_wei)
        try:
            self.table.update_item(
                Key={'pk': f"ACCOUNT#{device_address}"},
                UpdateExpression=(
                    "ADD deposit :delta, total_rewards :reward, total_penalties :penalty, "
                    "reading_count :one"
                ),
                # the deposit must still cover the penalty when the write lands
                ConditionExpression="attribute_not_exists(deposit) OR deposit >= :penalty",
                ExpressionAttributeValues={
                    ':delta': reward - penalty,
                    ':reward': reward,
                    ':penalty': penalty,
                    ':one': 1,
                },
            )
        except AWS_ERRORS as e:
            raise LedgerError(f"process_reading {device_address} failed: {e}") from e
        logger.info("Account %s: reward=%d penalty=%d", device_address, reward, penalty)
        return tx_hash()

    def deposit(self, device_address: str, amount_wei: int) -> int:
        if amount_wei <= 0:
            raise ValueError("deposit amount must be positive")
        try:
            response = self.table.update_item(
                Key={'pk': f"ACCOUNT#{device_address}"},
                UpdateExpression="ADD deposit :amount",
                ExpressionAttributeValues={':amount': amount_wei},
                ReturnValues='UPDATED_NEW',
            )
        except AWS_ERRORS as e:
            raise LedgerError(f"deposit {device_address} failed: {e}") from e
        return int(response['Attributes']['deposit'])

    def mint_ghost(self, owner: str, device_address: str, hardware_id: str) -> int:
        """
        Bind a new ghost to a device. Minting twice for the same device
        returns the existing token.
        """
        existing = self.get_token_for_device(device_address)
        if existing:
            return existing

        try:
            response = self.table.update_item(
                Key={'pk': 'COUNTER'},
                UpdateExpression="ADD next_token_id :one",
                ExpressionAttributeValues={':one': 1},
                ReturnValues='UPDATED_NEW',
            )
            token_id = int(response['Attributes']['next_token_id'])

            self.table.put_item(Item={
                'pk': f"GHOST#{token_id}",
                'device_address': device_address,
                'owner': owner,
                'health': 50,
                'appearance': Appearance.NEUTRAL.value,
                'good_credits': 0,
                'bad_credits': 0,
                'current_alpha': 0,
                'current_power_mw': 0,
                'last_update': int(time.time()),
                'hardware_id': hardware_id,
            })
            self.table.put_item(
                Item={'pk': f"DEVICE#{device_address}", 'token_id': token_id},
                ConditionExpression="attribute_not_exists(pk)",
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                # lost a race with a concurrent mint for the same device
                return self.get_token_for_device(device_address)
            raise LedgerError(f"mint_ghost {device_address} failed: {e}") from e
        except BotoCoreError as e:
            raise LedgerError(f"mint_ghost {device_address} failed: {e}") from e

        logger.info("Minted ghost %d for %s", token_id, device_address)
        return token_id

    # -------------------------------------------------------------------------
    # Device keys and grid status (stored alongside the ledger)
    # -------------------------------------------------------------------------

    def get_public_key(self, device_address: str) -> Optional[str]:
        item = self._get_item(f"KEY#{device_address}")
        return item['public_key'] if item else None

    def put_public_key(self, device_address: str, public_key: str) -> None:
        try:
            self.table.put_item(Item={
                'pk': f"KEY#{device_address}",
                'public_key': public_key,
                'registered_at': int(time.time()),
            })
        except AWS_ERRORS as e:
            raise LedgerError(f"put_public_key {device_address} failed: {e}") from e

    def get_grid_item(self) -> Optional[dict]:
        return self._get_item('GRID')

    def put_grid_item(self, status: str, carbon_intensity: float) -> None:
        try:
            self.table.put_item(Item={
                'pk': 'GRID',
                'status': status,
                # DynamoDB numbers must be Decimal, not float
                'carbon_intensity': Decimal(str(carbon_intensity)),
                'updated_at': int(time.time()),
            })
        except AWS_ERRORS as e:
            raise LedgerError(f"put_grid_item failed: {e}") from e
