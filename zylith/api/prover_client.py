# api/prover_client.py
"""
Clients for the stateless proof service and the commitment hasher (BN254 Poseidon).

One request, one response. No retries here: proofs are deterministic in their inputs,
so a rejected request would be rejected again.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from zylith.api.config import COMMITMENT_URL, HTTP_TIMEOUT_S, PROVER_TIMEOUT_S, PROVER_URL
from zylith.api.logging_config import get_logger
from zylith.core.errors import ProofGenerationError, UpstreamError, ValidationError

logger = get_logger("prover")


def _error_text(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


class HTTPProver:
    """POST {base}/api/proof/{circuit} with the input mapping as JSON."""

    def __init__(self, base_url: str = PROVER_URL, timeout: float = PROVER_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def generate(self, circuit: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/api/proof/{circuit}"
        try:
            r = self.http.post(url, json=inputs, timeout=self.timeout)
        except requests.Timeout:
            raise ProofGenerationError(f"Prover timed out after {self.timeout:.0f}s") from None
        except requests.RequestException as e:
            raise UpstreamError(502, f"prover unreachable: {e}", service="prover") from None
        if r.status_code >= 500 or r.status_code in (400, 422):
            msg = _error_text(r)
            logger.error(f"prover rejected {circuit} request: {msg}")
            raise ProofGenerationError(msg)
        if not r.ok:
            raise UpstreamError(r.status_code, r.text, service="prover")
        return r.json()


class CommitmentClient:
    """Commitments are Poseidon over BN254, computed by the same backend the circuits use."""

    def __init__(self, base_url: str = COMMITMENT_URL, timeout: float = HTTP_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    def _post(self, path: str, body: Dict[str, Any]) -> str:
        try:
            r = self.http.post(f"{self.base_url}{path}", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(502, f"commitment service unreachable: {e}", service="commitment") from None
        if r.status_code == 400:
            raise ValidationError(_error_text(r))
        if not r.ok:
            raise UpstreamError(r.status_code, r.text, service="commitment")
        return str(r.json()["commitment"])

    def note_commitment(self, secret: str, nullifier: str, amount: int) -> str:
        return self._post("/api/commitment", {"secret": str(secret), "nullifier": str(nullifier), "amount": str(amount)})

    def position_commitment(self, secret: str, tick_lower: int, tick_upper: int) -> str:
        return self._post(
            "/api/commitment/position",
            {"secret": str(secret), "tick_lower": int(tick_lower), "tick_upper": int(tick_upper)},
        )


__all__ = ["HTTPProver", "CommitmentClient"]
