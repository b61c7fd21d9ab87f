# zylith/api/app.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx
import pydantic
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from zylith.api import config as cfg
from zylith.api import health_checks as hc
from zylith.api.asp_client import ASPClient
from zylith.api.eventlog import EventLog, load_json, saver
from zylith.api.logging_config import get_logger
from zylith.api.prover_client import CommitmentClient, HTTPProver
from zylith.api.schemas_api import (
    AbandonRes,
    BalanceRes,
    BurnReq,
    CollectReq,
    CommitmentReq,
    CommitmentRes,
    DepositReq,
    EventsReq,
    EventsRes,
    InitializeReq,
    ListNotesRes,
    MintReq,
    NoteView,
    OperationRes,
    ProofRes,
    SubmitReq,
    SwapReq,
    SyncRes,
    TxListRes,
    WithdrawReq,
)
from zylith.core.errors import UpstreamError, ZylithError
from zylith.core.events import parse_events
from zylith.core.history import HistoryLedger
from zylith.core.models import LPPosition, PoolState
from zylith.core.notes import NoteStore
from zylith.core.orchestrator import ProofOrchestrator
from zylith.core.pool_sync import PoolStore, PositionStore
from zylith.core.session import PendingOperation, PrivateSession
from zylith.core.tx_builder import TransactionBuilder
from zylith.crypto_core.codec import Q128, parse_u256

logger = get_logger("api")

# URL path segment -> orchestrator operation
PROOF_ROUTES = {
    "swap": "swap",
    "withdraw": "withdraw",
    "lp-mint": "lp_mint",
    "lp-burn": "lp_burn",
    "lp-collect": "lp_collect",
    "membership": "membership",
}

_STATUS = {
    "validation_error": 400,
    "missing_field": 400,
    "encoding_error": 400,
    "insufficient_balance": 400,
    "not_found": 404,
    "already_spent": 409,
    "duplicate_commitment": 409,
    "incompatible_proof": 422,
    "proof_generation_failed": 502,
    "malformed_proof_response": 502,
}

# =========================
# Session wiring
# =========================


def build_default_session() -> PrivateSession:
    """Stores load their JSON snapshot at startup and write it back on every mutation."""
    default_pool = PoolState(pool_id=cfg.DEFAULT_POOL_ID, token0=cfg.TOKEN0, token1=cfg.TOKEN1,
                             fee=cfg.DEFAULT_FEE, tick_spacing=cfg.DEFAULT_TICK_SPACING)
    return PrivateSession(
        notes=NoteStore.from_snapshot(load_json(cfg.NOTES_PATH), on_change=saver(cfg.NOTES_PATH)),
        pools=PoolStore.from_snapshot(
            load_json(cfg.POOLS_PATH, {"pools": [default_pool.model_dump(mode="json")]}),
            on_change=saver(cfg.POOLS_PATH),
        ),
        positions=PositionStore.from_snapshot(load_json(cfg.POSITIONS_PATH), on_change=saver(cfg.POSITIONS_PATH)),
        history=HistoryLedger.from_snapshot(load_json(cfg.HISTORY_PATH), on_change=saver(cfg.HISTORY_PATH)),
        orchestrator=ProofOrchestrator(HTTPProver(), tree_depth=cfg.TREE_DEPTH),
        builder=TransactionBuilder(cfg.ZYLITH_CONTRACT),
        asp=ASPClient(),
        commitments=CommitmentClient(),
        events=EventLog(cfg.EVENTS_DB_PATH),
        pool_id=cfg.DEFAULT_POOL_ID,
    )


def _amt(v: Any, name: str = "amount") -> int:
    return parse_u256(v, name)


def _op_res(op: PendingOperation) -> OperationRes:
    return OperationRes(
        op_id=op.op_id,
        kind=op.kind.value,
        calls=[c.model_dump() for c in op.calls],
        inputs=op.inputs,
        outputs=[NoteView.of(n) for n in op.outputs],
        public_inputs=op.public_inputs,
        details=op.details,
        tx_hash=op.tx_hash,
    )


def _valid_rpc_body(payload: Any) -> bool:
    def one(p: Any) -> bool:
        return isinstance(p, dict) and isinstance(p.get("method"), str) and bool(p["method"])

    if isinstance(payload, list):
        return bool(payload) and all(one(p) for p in payload)
    return one(payload)


def create_app(
    session: Optional[PrivateSession] = None,
    *,
    asp_url: str = cfg.ASP_URL,
    rpc_url: str = cfg.STARKNET_RPC_URL,
    prover_url: str = cfg.PROVER_URL,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    app = FastAPI(title="Zylith Orchestrator API", version="0.1.0")
    sess = session or build_default_session()
    app.state.session = sess

    def _client(timeout: float = cfg.HTTP_TIMEOUT_S) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=http_transport)

    # =========================
    # Errors
    # =========================

    @app.exception_handler(ZylithError)
    async def _zylith_error(_: Request, exc: ZylithError):
        if isinstance(exc, UpstreamError):
            code = exc.status_code if 400 <= exc.status_code < 600 else 502
        else:
            code = _STATUS.get(exc.kind, 500)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(pydantic.ValidationError)
    async def _model_error(_: Request, exc: pydantic.ValidationError):
        fields = [".".join(str(p) for p in e["loc"]) for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"error": "validation_error", "detail": str(exc), "fields": fields},
        )

    # =========================
    # Health
    # =========================

    @app.get("/health")
    async def health():
        return await hc.comprehensive_health_check(prover_url, asp_url, rpc_url, http_transport)

    @app.get("/health/live")
    def health_live():
        return {"status": "alive"}

    @app.get("/health/ready")
    async def health_ready():
        ready = await hc.readiness_check(asp_url, rpc_url, http_transport)
        if not ready:
            raise HTTPException(status_code=503, detail="upstreams not ready")
        return {"status": "ready"}

    # =========================
    # Proof endpoints
    # =========================

    @app.post("/api/proof/{kind}", response_model=ProofRes)
    def generate_proof(kind: str, body: Dict[str, Any] = Body(...)):
        operation = PROOF_ROUTES.get(kind)
        if operation is None:
            raise HTTPException(status_code=404, detail=f"Unknown proof type: {kind}")
        _, resp = sess.orchestrator.prove(operation, body)
        return ProofRes(circuit=resp.circuit, full_proof_with_hints=resp.proof, public_inputs=resp.public_inputs)

    @app.post("/api/commitment", response_model=CommitmentRes)
    def commitment(req: CommitmentReq):
        c = sess.commitments.note_commitment(req.secret, req.nullifier, _amt(req.amount))
        return CommitmentRes(commitment=c)

    # =========================
    # Proxies
    # =========================

    @app.api_route("/api/merkle/{path:path}", methods=["GET", "POST"])
    async def merkle_proxy(path: str, request: Request):
        """Forward-only ASP proxy: path and query go upstream verbatim."""
        url = f"{asp_url.rstrip('/')}/{path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        body = await request.body()
        headers = {"content-type": request.headers.get("content-type", "application/json")} if body else None
        try:
            async with _client() as client:
                r = await client.request(request.method, url, content=body or None, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"ASP proxy {request.method} /{path} failed: {e}")
            raise HTTPException(status_code=502, detail=f"ASP unreachable: {e}")
        if not r.is_success:
            raise HTTPException(status_code=r.status_code, detail=r.text)
        return Response(content=r.content, status_code=r.status_code,
                        media_type=r.headers.get("content-type", "application/json"))

    @app.post("/api/rpc")
    async def rpc_proxy(request: Request):
        raw = await request.body()
        try:
            payload = json.loads(raw or b"null")
        except ValueError:
            raise HTTPException(status_code=400, detail="Request body is not valid JSON")
        if not _valid_rpc_body(payload):
            raise HTTPException(status_code=400, detail="Expected a JSON-RPC request object with a 'method'")
        try:
            async with _client() as client:
                r = await client.post(rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"RPC proxy failed: {e}")
            raise HTTPException(status_code=502, detail=f"RPC unreachable: {e}")
        if not r.is_success:
            raise HTTPException(status_code=r.status_code, detail=r.text)
        return Response(content=r.content, status_code=r.status_code, media_type="application/json")

    # =========================
    # Notes / balances
    # =========================

    @app.get("/notes", response_model=ListNotesRes)
    def list_notes(token: Optional[str] = None, include_spent: bool = False):
        token_addr = cfg.resolve_token(token) if token else None
        notes = sess.notes.list_notes(token_addr, include_spent=include_spent)
        total = sum(n.amount for n in notes if n.state.value != "spent")
        return ListNotesRes(notes=[NoteView.of(n) for n in notes], total_balance=str(total))

    @app.get("/balance/{token}", response_model=BalanceRes)
    def balance(token: str):
        addr = cfg.resolve_token(token)
        return BalanceRes(
            token=addr,
            total=str(sess.notes.get_total_balance(addr)),
            spendable=str(sess.notes.get_spendable_balance(addr)),
        )

    @app.post("/notes/sync", response_model=SyncRes)
    def sync_notes():
        return SyncRes(confirmed=sess.sync_note_indices())

    # =========================
    # Operations
    # =========================

    @app.post("/ops/deposit", response_model=OperationRes)
    def op_deposit(req: DepositReq):
        op = sess.prepare_deposit(cfg.resolve_token(req.token), _amt(req.amount), req.user_address)
        return _op_res(op)

    @app.post("/ops/swap", response_model=OperationRes)
    def op_swap(req: SwapReq):
        limit = _amt(req.sqrt_price_limit_x128, "sqrt_price_limit_x128") if req.sqrt_price_limit_x128 else 0
        op = sess.prepare_swap(_amt(req.amount_specified, "amount_specified"), req.zero_for_one, limit, req.pool_id)
        return _op_res(op)

    @app.post("/ops/withdraw", response_model=OperationRes)
    def op_withdraw(req: WithdrawReq):
        op = sess.prepare_withdraw(cfg.resolve_token(req.token), _amt(req.amount), req.recipient)
        return _op_res(op)

    @app.post("/ops/mint", response_model=OperationRes)
    def op_mint(req: MintReq):
        token = cfg.resolve_token(req.token) if req.token else None
        op = sess.prepare_mint(req.tick_lower, req.tick_upper, _amt(req.liquidity, "liquidity"), token, req.pool_id)
        return _op_res(op)

    @app.post("/ops/burn", response_model=OperationRes)
    def op_burn(req: BurnReq):
        token = cfg.resolve_token(req.token) if req.token else None
        op = sess.prepare_burn(req.position_id, _amt(req.liquidity, "liquidity"), token, req.proceeds)
        return _op_res(op)

    @app.post("/ops/collect", response_model=OperationRes)
    def op_collect(req: CollectReq):
        token = cfg.resolve_token(req.token) if req.token else None
        return _op_res(sess.prepare_collect(req.position_id, token, req.proceeds))

    @app.post("/ops/initialize", response_model=OperationRes)
    def op_initialize(req: InitializeReq):
        sqrt = _amt(req.sqrt_price_x128, "sqrt_price_x128") if req.sqrt_price_x128 else Q128
        op = sess.prepare_initialize(
            cfg.resolve_token(req.token0 or cfg.TOKEN0), cfg.resolve_token(req.token1 or cfg.TOKEN1),
            fee=req.fee, tick_spacing=req.tick_spacing, sqrt_price_x128=sqrt, pool_id=req.pool_id,
        )
        return _op_res(op)

    @app.get("/ops/{op_id}", response_model=OperationRes)
    def op_get(op_id: str):
        return _op_res(sess.pending(op_id))

    @app.post("/ops/{op_id}/submit", response_model=OperationRes)
    def op_submit(op_id: str, req: SubmitReq):
        return _op_res(sess.submit(op_id, req.tx_hash))

    @app.post("/ops/{op_id}/abandon", response_model=AbandonRes)
    def op_abandon(op_id: str):
        return AbandonRes(released=sess.abandon(op_id))

    # =========================
    # History / pool state / events
    # =========================

    @app.get("/transactions", response_model=TxListRes)
    def transactions():
        return TxListRes(transactions=list(reversed(sess.history.dedupe())))

    @app.get("/pool/{pool_id}", response_model=PoolState)
    def pool(pool_id: str):
        return sess.pools.get(pool_id)

    @app.get("/positions", response_model=List[LPPosition])
    def positions(pool_id: Optional[str] = None):
        return sess.positions.list(pool_id)

    @app.post("/events", response_model=EventsRes)
    def events(req: EventsReq):
        applied = dup = 0
        # the whole batch is parsed before any event is applied
        for ev in parse_events(req.events):
            if sess.apply_event(ev):
                applied += 1
            else:
                dup += 1
        return EventsRes(applied=applied, duplicates=dup)

    return app


app = create_app()

__all__ = ["app", "create_app", "build_default_session", "PROOF_ROUTES"]
