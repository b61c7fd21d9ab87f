#!/usr/bin/env python3
"""
Upstream probes (prover, ASP, Starknet RPC) and process metrics for the /health routes.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import psutil

from zylith.api.logging_config import get_logger

logger = get_logger("health")

API_START_TIME = time.time()


async def _probe(name: str, method: str, url: str, transport: Optional[httpx.AsyncBaseTransport] = None,
                 **kwargs: Any) -> Dict[str, Any]:
    try:
        start = time.time()
        async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        response_time = (time.time() - start) * 1000
        return {
            "status": "healthy",
            "response_time_ms": round(response_time, 2),
            "url": url,
        }
    except Exception as e:
        logger.error(f"{name} health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e),
            "url": url,
        }


async def check_rpc_health(rpc_url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """
    Check Starknet RPC connectivity with a starknet_chainId call.

    Returns:
        dict with status, response_time_ms, and error (if any)
    """
    return await _probe(
        "RPC", "POST", rpc_url, transport,
        json={"jsonrpc": "2.0", "id": 1, "method": "starknet_chainId", "params": []},
    )


async def check_asp_health(asp_url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """ASP exposes GET /health -> {"status": "ok", "version": ...}"""
    return await _probe("ASP", "GET", f"{asp_url.rstrip('/')}/health", transport)


async def check_prover_health(prover_url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    return await _probe("Prover", "GET", f"{prover_url.rstrip('/')}/health", transport)


def process_metrics() -> Dict[str, Any]:
    """Resource usage of this orchestrator process (not the host)."""
    try:
        proc = psutil.Process()
        with proc.oneshot():
            mem = proc.memory_info()
            return {
                "pid": proc.pid,
                "rss_mb": round(mem.rss / (1024 * 1024), 2),
                "threads": proc.num_threads(),
                "open_files": len(proc.open_files()),
                "cpu_percent": proc.cpu_percent(interval=None),
            }
    except psutil.Error as e:
        logger.error(f"process metrics unavailable: {e}")
        return {"error": str(e)}


def uptime_seconds() -> float:
    return round(time.time() - API_START_TIME, 2)


UPSTREAM_PROBES = (
    ("prover", check_prover_health),
    ("asp", check_asp_health),
    ("rpc", check_rpc_health),
)


async def comprehensive_health_check(
    prover_url: Optional[str] = None,
    asp_url: Optional[str] = None,
    rpc_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    Probe the prover, the ASP and the RPC node. An upstream without a configured URL
    is reported as not_configured and does not degrade the overall status.
    """
    urls = {"prover": prover_url, "asp": asp_url, "rpc": rpc_url}
    checks: Dict[str, Any] = {}
    for name, probe in UPSTREAM_PROBES:
        url = urls[name]
        checks[name] = await probe(url, transport) if url else {"status": "not_configured"}

    degraded = [n for n, _ in UPSTREAM_PROBES if checks[n]["status"] == "unhealthy"]
    checks["process"] = process_metrics()
    return {
        "status": "unhealthy" if degraded else "healthy",
        "degraded": degraded,
        "uptime_seconds": uptime_seconds(),
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "checks": checks,
    }


async def readiness_check(
    asp_url: Optional[str] = None,
    rpc_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Ready when the ASP and the RPC node answer; the prover is only needed per request."""
    checks = []
    if asp_url:
        checks.append((await check_asp_health(asp_url, transport))["status"] == "healthy")
    if rpc_url:
        checks.append((await check_rpc_health(rpc_url, transport))["status"] == "healthy")
    return all(checks) if checks else True
