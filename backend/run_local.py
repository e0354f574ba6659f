# backend/run_local.py
"""
Provision the local ledger for development.

    python -m backend.run_local mint <deviceAddress> [ownerAddress]
    python -m backend.run_local deposit <deviceAddress> <amountEther>
    python -m backend.run_local grid <CLEAN|DIRTY> <carbonIntensity>
    python -m backend.run_local register <deviceAddress> <public.pem>
    python -m backend.run_local show <deviceAddress>
"""
import json
import secrets
import sys
from pathlib import Path

from dotenv import load_dotenv

from backend.lib.device_registry import DeviceRegistry
from backend.lib.ghost_core.io import normalize_address
from backend.lib.ghost_core.models import GridState
from backend.lib.ghost_core.units import format_ether, parse_ether
from backend.lib.local_ledger import LocalLedger
from backend.lib.oracle_service import StoredGridOracle
from backend.lib.relay_service import build_pipeline, ghost_snapshot, local_ledger_path

USAGE = __doc__


def main(argv):
    load_dotenv()
    if len(argv) < 2:
        print(USAGE)
        return 2

    command, args = argv[0], argv[1:]
    ledger = LocalLedger(local_ledger_path())

    if command == "mint":
        device = normalize_address(args[0])
        owner = normalize_address(args[1]) if len(args) > 1 else device
        # random 32-byte chip id standing in for the hardware identity
        hardware_id = "0x" + secrets.token_hex(32)
        token_id = ledger.mint_ghost(owner, device, hardware_id)
        print(f"Ghost {token_id} bound to {device} (owner {owner}, chip {hardware_id})")

    elif command == "deposit" and len(args) == 2:
        device = normalize_address(args[0])
        balance = ledger.deposit(device, parse_ether(args[1]))
        print(f"Deposit balance for {device}: {format_ether(balance)}")

    elif command == "grid" and len(args) == 2:
        status = GridState(args[0].upper())
        StoredGridOracle(ledger).publish(status, float(args[1]))
        print(f"Grid status: {status.value} ({args[1]} gCO2/kWh)")

    elif command == "register" and len(args) == 2:
        device = normalize_address(args[0])
        DeviceRegistry(ledger).register(device, Path(args[1]).read_text())
        print(f"Registered key for {device}")

    elif command == "show":
        snapshot = ghost_snapshot(build_pipeline(ledger), normalize_address(args[0]))
        print(json.dumps(snapshot, indent=2))

    else:
        print(USAGE)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
