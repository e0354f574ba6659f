# backend/lambda_handlers/get_ghost.py
"""
Lambda function to get a ghost snapshot
Triggered by API Gateway (GET /ghost/{deviceAddress})
"""
import json

from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.ghost_core.errors import RelayError
from backend.lib.ghost_core.io import normalize_address
from backend.lib.relay_service import build_pipeline, ghost_snapshot

ledger = DynamoDBService()
pipeline = build_pipeline(ledger)


def lambda_handler(event, context):
    """
    Path parameters:
    - deviceAddress: Required, the device address
    """
    print(f"Received event: {json.dumps(event)}")

    params = event.get('pathParameters') or {}
    device_address = params.get('deviceAddress')
    if not device_address:
        return response(400, {'error': 'deviceAddress is required', 'reason': 'malformed_request'})

    try:
        return response(200, ghost_snapshot(pipeline, normalize_address(device_address)))
    except RelayError as e:
        return response(e.status_code, e.to_dict())


def response(status_code: int, body: dict) -> dict:
    """Create API Gateway response."""
    return {
        'statusCode': status_code,
        'headers': {
            'Content-Type': 'application/json',
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Methods': 'GET,POST,OPTIONS',
            'Access-Control-Allow-Headers': 'Content-Type'
        },
        'body': json.dumps(body)
    }
