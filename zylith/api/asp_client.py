# api/asp_client.py
"""
HTTP client for the Association Set Provider (membership tree + transaction preparation).
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from zylith.api.config import ASP_URL, HTTP_TIMEOUT_S
from zylith.api.logging_config import get_logger
from zylith.core.errors import UpstreamError
from zylith.crypto_core.codec import to_hex
from zylith.crypto_core.merkle import MerkleProof

logger = get_logger("asp")


class ASPClient:
    def __init__(self, base_url: str = ASP_URL, timeout: float = HTTP_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    # ---------- transport ----------
    def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                json_body: Any = None, data: Optional[bytes] = None,
                headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """Raw call; non-2xx and network failures become UpstreamError."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            r = self.http.request(method, url, params=params, json=json_body, data=data,
                                  headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"ASP {method} {path} failed: {e}")
            raise UpstreamError(502, f"ASP unreachable: {e}", service="asp") from None
        if not r.ok:
            logger.warning(f"ASP {method} {path} -> {r.status_code}")
            raise UpstreamError(r.status_code, r.text, service="asp")
        return r

    def _get(self, path: str, **params) -> Any:
        return self.request("GET", path, params=params or None).json()

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        return self.request("POST", path, json_body=body).json()

    # ---------- membership tree ----------
    def get_merkle_proof(self, index: int) -> MerkleProof:
        return MerkleProof.model_validate(self._get(f"/deposit/proof/{int(index)}"))

    def get_deposit_index(self, commitment: str) -> Optional[int]:
        """Leaf index of ``commitment`` or None while the ASP has not synced it yet."""
        key = to_hex(commitment)[2:]
        r = self._get(f"/deposit/index/{key}")
        if not r.get("found"):
            return None
        return int(r["index"])

    # ---------- preparation ----------
    def prepare_deposit(self, amount: int, token_address: str, user_address: str) -> Dict[str, Any]:
        return self._post("/api/deposit/prepare", {
            "amount": str(amount),
            "token_address": token_address,
            "user_address": user_address,
        })

    def prepare_swap(self, secret: str, nullifier: str, amount: int, note_index: int,
                     amount_specified: int, zero_for_one: bool, new_secret: str,
                     new_nullifier: str, new_amount: int,
                     sqrt_price_limit: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "secret": secret,
            "nullifier": nullifier,
            "amount": str(amount),
            "note_index": int(note_index),
            "amount_specified": str(amount_specified),
            "zero_for_one": bool(zero_for_one),
            "new_secret": new_secret,
            "new_nullifier": new_nullifier,
            "new_amount": str(new_amount),
        }
        if sqrt_price_limit is not None:
            body["sqrt_price_limit"] = sqrt_price_limit
        return self._post("/api/swap/prepare", body)


__all__ = ["ASPClient"]
