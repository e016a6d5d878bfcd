from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class Holder:
    address: str
    balance: int                     # raw reference-token units
    token_account: Optional[str] = None


@dataclass(frozen=True)
class PayoutAsset:
    mint: str
    is_native: bool = False
    min_unit_floor: bool = False


@dataclass(frozen=True)
class Transfer:
    holder: Holder
    amount: int


@dataclass
class DispatchResult:
    succeeded: List[Transfer] = field(default_factory=list)
    failed: List[Transfer] = field(default_factory=list)
    skipped: List[Transfer] = field(default_factory=list)
    signatures: List[str] = field(default_factory=list)

    @property
    def paid(self) -> int:
        return sum(t.amount for t in self.succeeded)


@dataclass(frozen=True)
class ShareResult:
    transfers: List[Transfer]
    total: int
    clamped: bool                    # running sum reached the pool before the list ended
    below_minimum: int = 0


@dataclass(frozen=True)
class Split:
    received: int
    holder_pool: int
    treasury: tuple                  # ((wallet, amount), ...)


class CycleOutcome(str, Enum):
    NOTHING = "nothing_to_distribute"
    BELOW_THRESHOLD = "skipped_below_threshold"
    DISTRIBUTED = "distributed"
    FAILED_PARTIAL = "failed_partial"
    FAILED = "failed"
    BUSY = "busy"


@dataclass
class Cycle:
    payout: PayoutAsset
    carry_in: int = 0
    withdrawn: int = 0
    price_usd: float = 0.0
    usd_value: float = 0.0
    received: int = 0
    holder_pool: int = 0
    treasury_amount: int = 0

    @property
    def total_pool(self) -> int:
        return self.withdrawn + self.carry_in


@dataclass(frozen=True)
class CycleResult:
    carry_out: int
    cursor_out: int
    outcome: CycleOutcome
    cycle: Optional[Cycle] = None
    dispatch: Optional[DispatchResult] = None
