# crypto_core/commitments.py
from __future__ import annotations

import secrets
from typing import Dict

from zylith.crypto_core.codec import FIELD_PRIME

# 31 random bytes, then clamp below 2^250 so the value is always a valid field element
MASK_250 = (1 << 250) - 1


def random_felt() -> int:
    v = int.from_bytes(secrets.token_bytes(31), "big") & MASK_250
    return v % FIELD_PRIME


def generate_note_secrets() -> Dict[str, str]:
    """Fresh secret/nullifier pair for an output note (decimal strings)."""
    return {"secret": str(random_felt()), "nullifier": str(random_felt())}


def position_id(position_commitment: str) -> str:
    """Local position identifier is the position commitment in canonical hex."""
    s = str(position_commitment).strip()
    v = int(s, 16) if s.lower().startswith("0x") else int(s)
    return hex(v)


__all__ = ["MASK_250", "random_felt", "generate_note_secrets", "position_id"]
