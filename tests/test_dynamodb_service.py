# tests/test_dynamodb_service.py
import pytest
from botocore.stub import ANY, Stubber

from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.ghost_core.errors import LedgerError
from conftest import DEVICE

TABLE = "TestLedger"


@pytest.fixture
def service(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("INTEGRATION_INTERVAL", "3")
    monkeypatch.setenv("REWARD_WEI", "10")
    monkeypatch.setenv("PENALTY_WEI", "4")
    return DynamoDBService(table_name=TABLE, timeout=1)


@pytest.fixture
def stubber(service):
    with Stubber(service.table.meta.client) as stub:
        yield stub
        stub.assert_no_pending_responses()


def get_item_params(pk):
    return {"TableName": TABLE, "Key": {"pk": {"S": pk}}, "ConsistentRead": True}


def test_token_lookup(service, stubber):
    stubber.add_response(
        "get_item",
        {"Item": {"pk": {"S": f"DEVICE#{DEVICE}"}, "token_id": {"N": "3"}}},
        get_item_params(f"DEVICE#{DEVICE}"),
    )
    stubber.add_response("get_item", {}, get_item_params("DEVICE#0xunknown"))

    assert service.get_token_for_device(DEVICE) == 3
    assert service.get_token_for_device("0xunknown") == 0


def test_get_ghost_maps_item(service, stubber):
    stubber.add_response("get_item", {"Item": {
        "pk": {"S": "GHOST#3"},
        "device_address": {"S": DEVICE},
        "owner": {"S": DEVICE},
        "health": {"N": "90"},
        "appearance": {"S": "VeryHealthy"},
        "good_credits": {"N": "10"},
        "bad_credits": {"N": "1"},
        "current_alpha": {"N": "1000"},
        "current_power_mw": {"N": "70"},
        "last_update": {"N": "1761955200"},
        "hardware_id": {"S": "0x01"},
    }}, get_item_params("GHOST#3"))

    ghost = service.get_ghost(3)
    assert ghost.token_id == 3
    assert (ghost.good_credits, ghost.bad_credits, ghost.health) == (10, 1, 90)
    assert ghost.current_alpha == 1000


def test_throttled_read_is_a_ledger_error(service, stubber):
    stubber.add_client_error("get_item", "ProvisionedThroughputExceededException")
    with pytest.raises(LedgerError):
        service.get_deposit(DEVICE)


def test_stale_ghost_update_is_refused(service, stubber):
    stubber.add_client_error("update_item", "ConditionalCheckFailedException")
    with pytest.raises(LedgerError):
        service.update_ghost(3, "Neutral", 50, 1, 1, 600, 15)


def test_dirty_reading_penalty_uses_current_deposit(service, stubber):
    stubber.add_response(
        "get_item",
        {"Item": {"pk": {"S": f"ACCOUNT#{DEVICE}"}, "deposit": {"N": "5"}}},
        get_item_params(f"ACCOUNT#{DEVICE}"),
    )
    stubber.add_response("update_item", {}, {
        "TableName": TABLE,
        "Key": {"pk": {"S": f"ACCOUNT#{DEVICE}"}},
        "UpdateExpression": ANY,
        "ConditionExpression": ANY,
        "ExpressionAttributeValues": {
            ":delta": {"N": "-5"},
            ":reward": {"N": "0"},
            ":penalty": {"N": "5"},
            ":one": {"N": "1"},
        },
    })

    assert service.process_reading(DEVICE, 3, "DIRTY", 0, 50).startswith("0x")


def test_integration_cadence(service, stubber):
    stubber.add_response(
        "get_item",
        {"Item": {"pk": {"S": f"ACCOUNT#{DEVICE}"}, "reading_count": {"N": "6"}}},
        get_item_params(f"ACCOUNT#{DEVICE}"),
    )
    assert service.should_calculate_integration(DEVICE) is True


def test_mint_returns_existing_token(service, stubber):
    stubber.add_response(
        "get_item",
        {"Item": {"pk": {"S": f"DEVICE#{DEVICE}"}, "token_id": {"N": "7"}}},
        get_item_params(f"DEVICE#{DEVICE}"),
    )
    assert service.mint_ghost(DEVICE, DEVICE, "0x01") == 7


def test_revert_is_conditioned_on_the_applied_credits(service, stubber):
    stubber.add_response("update_item", {}, {
        "TableName": TABLE,
        "Key": {"pk": {"S": "GHOST#3"}},
        "UpdateExpression": ANY,
        "ConditionExpression": "good_credits = :applied_good AND bad_credits = :applied_bad",
        "ExpressionAttributeValues": ANY,
    })
    stubber.add_client_error("update_item", "ConditionalCheckFailedException")

    assert service.revert_ghost(3, 4, 1, "Healthy", 60, 3, 1, 1000, 70).startswith("0x")
    with pytest.raises(LedgerError):
        service.revert_ghost(3, 4, 1, "Healthy", 60, 3, 1, 1000, 70)
