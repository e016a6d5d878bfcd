"""
Proportional share arithmetic.

Every holder's share is ``floor(balance * pool / total_supply)`` in exact
integers. Holders are taken in the order the enumeration delivered them; once
the running sum reaches ``pool`` the remaining holders get nothing this cycle,
so results near that boundary depend on input order.
"""
from dataclasses import dataclass
from typing import Iterable, List

from .models import Holder, ShareResult, Transfer
from .price import to_usd


@dataclass(frozen=True)
class SharePolicy:
    min_holder_usd: float = 0.0      # 0 disables the dust filter
    price_usd: float = 0.0           # reference-token price used by the dust filter
    token_decimals: int = 9
    min_unit_floor: bool = False     # round zero shares up to one smallest unit


def share_of(balance: int, pool: int, total_supply: int) -> int:
    return (balance * pool) // total_supply


def compute_shares(holders: Iterable[Holder], pool: int, total_supply: int,
                   policy: SharePolicy = SharePolicy()) -> ShareResult:
    if total_supply <= 0:
        raise ValueError("total_supply must be positive")
    out: List[Transfer] = []
    running = 0
    skipped_dust = 0
    clamped = False
    if pool <= 0:
        return ShareResult(out, 0, False)

    for h in holders:
        if running >= pool:
            clamped = True
            break
        if policy.min_holder_usd > 0 and \
                to_usd(h.balance, policy.token_decimals, policy.price_usd) < policy.min_holder_usd:
            skipped_dust += 1
            continue
        share = share_of(h.balance, pool, total_supply)
        if share == 0:
            if not policy.min_unit_floor or h.balance <= 0:
                continue
            share = 1
        if running + share > pool:
            share = pool - running
            clamped = True
        running += share
        out.append(Transfer(h, share))

    return ShareResult(out, running, clamped, skipped_dust)
