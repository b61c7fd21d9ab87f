#!/usr/bin/env python3
# clients/cli/zylith_cli.py
# Command-line client for the orchestration API.
# Prepare commands print the calls to sign; after the wallet returns a hash, run `submit`.

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

import requests

from zylith.api.config import TOKEN0, TOKEN1, resolve_token, token_decimals
from zylith.core.errors import ZylithError
from zylith.crypto_core.codec import from_base_units, to_base_units


# ======== Color accents (no deps) ========
class C:
    OK   = "\033[92m"
    WARN = "\033[93m"
    ERR  = "\033[91m"
    DIM  = "\033[2m"
    BOLD = "\033[1m"
    RST  = "\033[0m"


def _short(h: str) -> str:
    return f"{h[:8]}…{h[-6:]}" if h and len(h) > 16 else h


# ======== Local config ========
API_URL: str = os.getenv("ZYLITH_API_URL", "http://127.0.0.1:8000").rstrip("/")
TIMEOUT_S: float = float(os.getenv("ZYLITH_CLI_TIMEOUT", "330"))


class APIError(RuntimeError):
    """Non-2xx answer from the API, with its structured error body."""

    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        detail = body.get("detail") if isinstance(body, dict) else body
        super().__init__(f"HTTP {status_code}: {detail}")


def api(method: str, path: str, body: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, Any]] = None) -> Any:
    r = requests.request(method, f"{API_URL}{path}", json=body, params=params, timeout=TIMEOUT_S)
    try:
        data = r.json()
    except ValueError:
        data = r.text
    if not r.ok:
        raise APIError(r.status_code, data)
    return data


def _units(a: argparse.Namespace, token: str) -> str:
    """Human amount ('1.5') -> base units of ``token``. With --raw the value is sent as typed."""
    if a.raw:
        return a.amount
    return str(to_base_units(a.amount, token_decimals(resolve_token(token))))


# ======== Printing ========
def _print_notes(notes: List[Dict[str, Any]]) -> None:
    if not notes:
        print(f"{C.DIM}(no notes){C.RST}")
        return
    for n in notes:
        colour = {"confirmed": C.OK, "unconfirmed": C.WARN}.get(n["state"], C.DIM)
        idx = "-" if n.get("index") is None else n["index"]
        print(f"  {colour}{n['state']:<11}{C.RST} #{idx:<6} {n['amount']:>24}  {_short(n['commitment'])}  "
              f"{C.DIM}{_short(n.get('token_address') or '')}{C.RST}")


def _print_op(op: Dict[str, Any]) -> None:
    print(f"{C.BOLD}{op['kind']}{C.RST} op {op['op_id']}")
    if op.get("tx_hash"):
        print(f"  submitted as {op['tx_hash']}")
    for k, v in (op.get("details") or {}).items():
        if k != "request":
            print(f"  {C.DIM}{k}:{C.RST} {v}")
    print(f"{C.DIM}calls:{C.RST}")
    print(json.dumps(op["calls"], indent=2))


# ======== Commands ========
def cmd_health(a: argparse.Namespace) -> None:
    h = api("GET", "/health")
    colour = C.OK if h["status"] == "healthy" else C.ERR
    print(f"{colour}{h['status']}{C.RST}")
    for name in ("prover", "asp", "rpc"):
        c = h["checks"].get(name, {})
        print(f"  {name:<7} {c.get('status')}  {c.get('response_time_ms', c.get('error', ''))}")


def cmd_notes(a: argparse.Namespace) -> None:
    params = {"include_spent": str(a.all).lower()}
    if a.token:
        params["token"] = a.token
    res = api("GET", "/notes", params=params)
    _print_notes(res["notes"])
    print(f"{C.BOLD}total unspent:{C.RST} {res['total_balance']}")


def cmd_balance(a: argparse.Namespace) -> None:
    res = api("GET", f"/balance/{a.token}")
    dec = token_decimals(resolve_token(a.token))
    print(f"{a.token}: total={from_base_units(res['total'], dec)} spendable={from_base_units(res['spendable'], dec)}")
    print(f"{C.DIM}base units: {res['total']} / {res['spendable']}{C.RST}")


def cmd_history(a: argparse.Namespace) -> None:
    for t in api("GET", "/transactions")["transactions"]:
        colour = {"success": C.OK, "failed": C.ERR}.get(t["status"], C.WARN)
        print(f"  {colour}{t['status']:<8}{C.RST} {t['type']:<10} {t['hash']}")


def cmd_pool(a: argparse.Namespace) -> None:
    print(json.dumps(api("GET", f"/pool/{a.pool_id}"), indent=2))


def cmd_positions(a: argparse.Namespace) -> None:
    print(json.dumps(api("GET", "/positions"), indent=2))


def cmd_deposit(a: argparse.Namespace) -> None:
    _print_op(api("POST", "/ops/deposit", {"token": a.token, "amount": _units(a, a.token), "user_address": a.user}))


def cmd_swap(a: argparse.Namespace) -> None:
    token_in = TOKEN1 if a.one_for_zero else TOKEN0
    body = {"amount_specified": _units(a, token_in), "zero_for_one": not a.one_for_zero}
    if a.limit:
        body["sqrt_price_limit_x128"] = a.limit
    _print_op(api("POST", "/ops/swap", body))


def cmd_withdraw(a: argparse.Namespace) -> None:
    _print_op(api("POST", "/ops/withdraw", {"token": a.token, "amount": _units(a, a.token), "recipient": a.recipient}))


def cmd_mint(a: argparse.Namespace) -> None:
    _print_op(api("POST", "/ops/mint", {"tick_lower": a.tick_lower, "tick_upper": a.tick_upper,
                                        "liquidity": a.liquidity, "token": a.token}))


def cmd_burn(a: argparse.Namespace) -> None:
    _print_op(api("POST", "/ops/burn", {"position_id": a.position_id, "liquidity": a.liquidity, "token": a.token}))


def cmd_collect(a: argparse.Namespace) -> None:
    _print_op(api("POST", "/ops/collect", {"position_id": a.position_id, "token": a.token}))


def cmd_submit(a: argparse.Namespace) -> None:
    op = api("POST", f"/ops/{a.op_id}/submit", {"tx_hash": a.tx_hash})
    print(f"{C.OK}recorded {op['kind']} as {op['tx_hash']}{C.RST}")


def cmd_abandon(a: argparse.Namespace) -> None:
    res = api("POST", f"/ops/{a.op_id}/abandon")
    print(f"released {len(res['released'])} note(s)")


def cmd_sync(a: argparse.Namespace) -> None:
    res = api("POST", "/notes/sync")
    print(f"{C.OK}confirmed {res['confirmed']} note(s){C.RST}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="zylith", description="Private AMM orchestration client")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Upstream and system health").set_defaults(fn=cmd_health)

    s = sub.add_parser("notes", help="List notes")
    s.add_argument("--token", default=None, help="ETH, USDC or a token address")
    s.add_argument("--all", action="store_true", help="Include spent notes")
    s.set_defaults(fn=cmd_notes)

    s = sub.add_parser("balance", help="Private balance for a token")
    s.add_argument("token")
    s.set_defaults(fn=cmd_balance)

    sub.add_parser("history", help="Submitted transactions").set_defaults(fn=cmd_history)

    s = sub.add_parser("pool", help="Local pool state")
    s.add_argument("pool_id", nargs="?", default="default")
    s.set_defaults(fn=cmd_pool)

    sub.add_parser("positions", help="LP positions").set_defaults(fn=cmd_positions)

    s = sub.add_parser("deposit", help="Prepare a deposit")
    s.add_argument("token")
    s.add_argument("amount", help="Token amount, e.g. 1.5")
    s.add_argument("--raw", action="store_true", help="Amount is already in base units")
    s.add_argument("--user", required=True, help="Depositor account address")
    s.set_defaults(fn=cmd_deposit)

    s = sub.add_parser("swap", help="Prepare a private swap")
    s.add_argument("amount", help="Exact input amount of the token sold")
    s.add_argument("--raw", action="store_true", help="Amount is already in base units")
    s.add_argument("--one-for-zero", action="store_true", help="Swap token1 for token0")
    s.add_argument("--limit", default=None, help="sqrt price limit (Q128)")
    s.set_defaults(fn=cmd_swap)

    s = sub.add_parser("withdraw", help="Prepare a withdrawal")
    s.add_argument("token")
    s.add_argument("amount")
    s.add_argument("recipient")
    s.add_argument("--raw", action="store_true", help="Amount is already in base units")
    s.set_defaults(fn=cmd_withdraw)

    s = sub.add_parser("mint", help="Prepare a liquidity mint")
    s.add_argument("tick_lower", type=int)
    s.add_argument("tick_upper", type=int)
    s.add_argument("liquidity")
    s.add_argument("--token", default=None)
    s.set_defaults(fn=cmd_mint)

    s = sub.add_parser("burn", help="Prepare a liquidity burn")
    s.add_argument("position_id")
    s.add_argument("liquidity")
    s.add_argument("--token", default=None)
    s.set_defaults(fn=cmd_burn)

    s = sub.add_parser("collect", help="Prepare a fee collection")
    s.add_argument("position_id")
    s.add_argument("--token", default=None)
    s.set_defaults(fn=cmd_collect)

    s = sub.add_parser("submit", help="Record the wallet's tx hash for a prepared operation")
    s.add_argument("op_id")
    s.add_argument("tx_hash")
    s.set_defaults(fn=cmd_submit)

    s = sub.add_parser("abandon", help="Drop a prepared operation and release its notes")
    s.add_argument("op_id")
    s.set_defaults(fn=cmd_abandon)

    sub.add_parser("sync", help="Confirm notes the ASP has indexed").set_defaults(fn=cmd_sync)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        args.fn(args)
    except APIError as e:
        print(f"{C.ERR}{e}{C.RST}", file=sys.stderr)
        fields = e.body.get("fields") if isinstance(e.body, dict) else None
        if fields:
            print(f"{C.DIM}fields: {', '.join(fields)}{C.RST}", file=sys.stderr)
        return 1
    except ZylithError as e:
        print(f"{C.ERR}{e.message}{C.RST}", file=sys.stderr)
        return 1
    except requests.RequestException as e:
        print(f"{C.ERR}API unreachable at {API_URL}: {e}{C.RST}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user."); sys.exit(130)
