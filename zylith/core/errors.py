# core/errors.py
"""
Error taxonomy for the orchestration layer.

Every error carries a machine-readable ``kind`` plus the offending ``fields`` so callers can
render a precise message without parsing text.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class ZylithError(RuntimeError):
    """Base class. ``kind`` is stable and safe to expose to clients."""

    kind = "error"

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields: List[str] = list(fields or [])

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message, "fields": self.fields}


class ValidationError(ZylithError):
    """Missing or malformed request fields. User-correctable."""

    kind = "validation_error"


class MissingFieldError(ValidationError):
    kind = "missing_field"

    def __init__(self, missing: Iterable[str], context: str = ""):
        missing = list(missing)
        prefix = f"{context}: " if context else ""
        super().__init__(f"{prefix}Missing required fields: {', '.join(missing)}", fields=missing)


class EncodingError(ZylithError):
    kind = "encoding_error"


class InsufficientBalanceError(ZylithError):
    kind = "insufficient_balance"

    def __init__(self, token_address: str, requested: int, available: int):
        super().__init__(
            f"Insufficient spendable balance for {token_address}: requested {requested}, available {available}",
            fields=["amount"],
        )
        self.token_address = token_address
        self.requested = requested
        self.available = available


class AlreadySpentError(ZylithError):
    kind = "already_spent"

    def __init__(self, commitment: str, spent_in: str, attempted: str):
        super().__init__(
            f"Note {commitment} already spent in {spent_in}; refusing to attach {attempted}",
            fields=["commitment"],
        )
        self.commitment = commitment
        self.spent_in = spent_in
        self.attempted = attempted


class DuplicateCommitmentError(ZylithError):
    kind = "duplicate_commitment"

    def __init__(self, commitment: str):
        super().__init__(f"Note with commitment {commitment} already exists", fields=["commitment"])
        self.commitment = commitment


class NoteNotFoundError(ZylithError):
    kind = "not_found"


class ProofGenerationError(ZylithError):
    """The prover rejected the request. Not retried: same inputs, same outcome."""

    kind = "proof_generation_failed"


class MalformedProofResponseError(ZylithError):
    kind = "malformed_proof_response"


class IncompatibleProofError(ZylithError):
    kind = "incompatible_proof"


class UpstreamError(ZylithError):
    kind = "upstream_error"

    def __init__(self, status_code: int, detail: str, service: str = "upstream"):
        super().__init__(f"{service} responded {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
        self.service = service

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["status_code"] = self.status_code
        return d


__all__ = [
    "ZylithError",
    "ValidationError",
    "MissingFieldError",
    "EncodingError",
    "InsufficientBalanceError",
    "AlreadySpentError",
    "DuplicateCommitmentError",
    "NoteNotFoundError",
    "ProofGenerationError",
    "MalformedProofResponseError",
    "IncompatibleProofError",
    "UpstreamError",
]
