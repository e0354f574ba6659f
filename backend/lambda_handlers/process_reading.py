# backend/lambda_handlers/process_reading.py
"""
Lambda function to process a signed device reading
Triggered by API Gateway (POST /reading)

The per-device lock inside the pipeline only covers one container, so this
function is deployed with reserved concurrency 1. The credit cache is
dropped at the start of every invocation and rehydrated from DynamoDB.
"""
import json

from backend.lib.dynamodb_service import DynamoDBService
from backend.lib.ghost_core.errors import MalformedRequest, RelayError
from backend.lib.ghost_core.io import parse_reading
from backend.lib.relay_service import build_pipeline, reading_response

# Initialize once per container
ledger = DynamoDBService()
pipeline = build_pipeline(ledger)


def lambda_handler(event, context):
    """
    Run one reading through the pipeline.

    The API Gateway body is the same JSON the Flask POST /reading accepts.
    """
    print(f"Received event: {json.dumps(event)}")

    try:
        try:
            body = json.loads(event.get('body') or 'null')
        except ValueError:
            raise MalformedRequest("body must be JSON")

        reading = parse_reading(body)
        pipeline.cache.invalidate(reading.device_address)
        result = pipeline.process(reading)
        return response(200, reading_response(result))

    except RelayError as e:
        print(f"Rejected: {e.reason}: {e.message}")
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
