# crypto_core/splits.py
from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")


def greedy_coin_select(
    notes: Sequence[T],
    target: int,
    amount_of: Callable[[T], int],
    order_of: Callable[[T], int],
    max_notes: Optional[int] = None,
) -> Tuple[List[T], int]:
    """
    Largest-first selection: fewest notes whose sum reaches ``target``.
    Equal amounts are taken in ascending ``order_of`` (tree index).
    Returns ([], 0) when the candidates cannot cover the target.
    """
    cand = sorted(notes, key=lambda n: (-amount_of(n), order_of(n)))
    if max_notes is not None:
        cand = cand[:max_notes]
    total = 0
    chosen: List[T] = []
    for n in cand:
        chosen.append(n)
        total += amount_of(n)
        if total >= target:
            return chosen, total
    return [], 0


def split_amount(total: int, parts: Sequence[int]) -> List[int]:
    """
    Spread ``total`` over note capacities in order, filling each before the next.
    The last used capacity takes the remainder; unused capacities get 0.
    """
    out = []
    left = total
    for cap in parts:
        take = min(cap, left)
        out.append(take)
        left -= take
    if left:
        raise ValueError("capacities do not cover total")
    return out
