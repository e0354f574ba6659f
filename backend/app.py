"""
=============================================================================
CARBON GHOST RELAY - MAIN FLASK APPLICATION
=============================================================================

Off-chain relay between simulated power-metering hardware and the ghost
ledger. Each device periodically posts a signed power reading; the relay:

- Verifies the hardware signature
- Looks up the device's credit counters (cached, hydrated from the ledger)
- Asks the grid oracle whether the grid is currently CLEAN or DIRTY
- Adds one good or bad credit and derives the ghost's health / appearance
- Commits the new ghost state and its economic consequences to the ledger

REST API endpoints:
- POST /reading                 submit a signed reading
- GET  /ghost/<deviceAddress>   current ghost snapshot
- GET  /grid-status             current grid conditions
- POST /register-device         bind a device address to its public key
- GET  /status                  which backends are configured

Backends:
- DynamoDB (USE_DYNAMODB=true): ledger, grid status and device keys
- Otherwise a local JSON ledger under LOCAL_DATA_DIR (default backend/data)

How to run:
    python -m backend.app

Then post readings to: http://127.0.0.1:5000/reading
=============================================================================
"""

# =============================================================================
# IMPORTS
# =============================================================================

import logging
import os

from flask import Flask, request, jsonify

# dotenv - Load environment variables from .env file
# Must run before the backend modules read their settings
from dotenv import load_dotenv

load_dotenv()

from backend.lib.ghost_core.errors import (
    LedgerError,
    LedgerUnavailable,
    MalformedRequest,
    OracleError,
    OracleUnavailable,
    RelayError,
)
from backend.lib.ghost_core.io import normalize_address, parse_reading
from backend.lib.oracle_service import StoredGridOracle
from backend.lib.device_registry import DeviceRegistry
from backend.lib.relay_service import build_backend, build_pipeline, ghost_snapshot, reading_response

logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


# =============================================================================
# FLASK APPLICATION
# =============================================================================

def create_app(store=None, oracle=None, registry=None, backend_name=None) -> Flask:
    """
    Build the relay application.

    Collaborators are injected so tests can supply their own; anything left
    as None is built from the environment.
    """
    if store is None:
        store, backend_name = build_backend()

    oracle = oracle or StoredGridOracle(store)
    registry = registry or DeviceRegistry(store)
    pipeline = build_pipeline(store, oracle, registry)

    app = Flask(__name__)
    app.config['PIPELINE'] = pipeline

    @app.errorhandler(RelayError)
    def handle_relay_error(error: RelayError):
        return jsonify(error.to_dict()), error.status_code

    @app.after_request
    def add_cors_headers(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        response.headers['Access-Control-Allow-Methods'] = 'GET,POST,OPTIONS'
        return response

    @app.route("/reading", methods=["POST"])
    def reading():
        """
        Process one signed reading.

        Request Body (JSON):
            {
                "deviceId": "device-1",
                "deviceAddress": "0x742d35cc6634c0532925a3b844bc9e7595f0beb1",
                "timestamp": "2025-11-01T00:00:00.000Z",
                "powerUsage": 70000000,
                "signature": "<hex>",
                "publicKey": "-----BEGIN PUBLIC KEY-----..."
            }

        HTTP Status Codes:
            200: Reading committed
            400: Invalid signature or malformed body
            404: No ghost minted for the device
            500: Oracle or ledger failure, safe to resubmit
        """
        body = request.get_json(silent=True)
        parsed = parse_reading(body)
        logger.info("New reading from %s (%s): %d W",
                    parsed.device_address, parsed.device_id, parsed.power_usage)
        result = pipeline.process(parsed)
        return jsonify(reading_response(result))

    @app.route("/ghost/<device_address>", methods=["GET"])
    def ghost(device_address):
        return jsonify(ghost_snapshot(pipeline, normalize_address(device_address)))

    @app.route("/grid-status", methods=["GET"])
    def grid_status():
        try:
            status = oracle.get_grid_status()
        except OracleError as e:
            raise OracleUnavailable(str(e)) from e
        return jsonify({
            "status": status.status.value,
            "carbonIntensity": status.carbon_intensity,
        })

    @app.route("/register-device", methods=["POST"])
    def register_device():
        """
        Bind a device address to its public key (idempotent upsert).

        Request Body (JSON):
            {"deviceAddress": "0x...", "publicKey": "-----BEGIN PUBLIC KEY-----..."}
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise MalformedRequest("JSON object body required")
        device_address = data.get("deviceAddress")
        public_key = data.get("publicKey")
        if not isinstance(device_address, str) or not device_address.strip():
            raise MalformedRequest("deviceAddress is required")
        if not isinstance(public_key, str) or not public_key.strip():
            raise MalformedRequest("publicKey is required")

        device_address = normalize_address(device_address)
        try:
            registry.register(device_address, public_key)
        except LedgerError as e:
            raise LedgerUnavailable(str(e)) from e
        return jsonify({"deviceAddress": device_address, "registered": True})

    @app.route("/status", methods=["GET"])
    def status():
        return jsonify({
            "backend": backend_name or type(store).__name__,
            "oracle": type(oracle).__name__,
            "cachedDevices": len(pipeline.cache),
        })

    return app


app = create_app()

# =============================================================================
# RUN THE SERVER
# =============================================================================

if __name__ == "__main__":
    # threaded: readings for different devices are processed in parallel
    app.run(debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true', threaded=True)
