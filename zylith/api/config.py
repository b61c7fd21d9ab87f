# api/config.py
from __future__ import annotations

import os
import pathlib

REPO_ROOT = str(pathlib.Path(__file__).resolve().parents[2])
DATA_DIR = os.getenv("DATA_DIR", os.path.join(REPO_ROOT, "data"))

# =========================
# Upstream services
# =========================

ZYLITH_CONTRACT = os.getenv(
    "ZYLITH_CONTRACT",
    "0x04be88b8ded4bcb9bef0d7afce05c8eff7df67714a2e6a9371ed1151948a3dc3",
)
ASP_URL = os.getenv("ASP_URL", "http://localhost:3000").rstrip("/")
PROVER_URL = os.getenv("PROVER_URL", "http://localhost:3001").rstrip("/")
COMMITMENT_URL = os.getenv("COMMITMENT_URL", PROVER_URL).rstrip("/")
STARKNET_RPC_URL = os.getenv("STARKNET_RPC_URL", "https://starknet-sepolia-rpc.publicnode.com")

PROVER_TIMEOUT_S = float(os.getenv("PROVER_TIMEOUT_S", "300"))
HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "30"))

# =========================
# Tree / pool
# =========================

TREE_DEPTH = int(os.getenv("TREE_DEPTH", "20"))
DEFAULT_POOL_ID = os.getenv("DEFAULT_POOL_ID", "default")
DEFAULT_FEE = 3000
DEFAULT_TICK_SPACING = 60

TOKENS = {
    "ETH": {
        "address": "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7",
        "decimals": 18,
    },
    "USDC": {
        "address": "0x0512feAc6339Ff7889822cb5aA2a86C848e9D392bB0E3E237C008674feeD8343",
        "decimals": 6,
    },
}
TOKEN0 = TOKENS["ETH"]["address"]
TOKEN1 = TOKENS["USDC"]["address"]

# Persistence (JSON snapshots, written on every mutation)
NOTES_PATH = os.path.join(DATA_DIR, "notes.json")
POOLS_PATH = os.path.join(DATA_DIR, "pools.json")
POSITIONS_PATH = os.path.join(DATA_DIR, "positions.json")
HISTORY_PATH = os.path.join(DATA_DIR, "history.json")
EVENTS_DB_PATH = os.path.join(DATA_DIR, "events.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def resolve_token(symbol_or_address: str) -> str:
    """'ETH' -> address; addresses pass through."""
    t = TOKENS.get(str(symbol_or_address).upper())
    return t["address"] if t else symbol_or_address


def token_decimals(address: str) -> int:
    for t in TOKENS.values():
        if int(t["address"], 16) == int(str(address), 16):
            return t["decimals"]
    return 18
