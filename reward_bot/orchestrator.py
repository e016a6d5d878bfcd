import threading
from typing import List, Sequence

from . import config, metrics
from .config import EngineConfig
from .errors import SwapVerificationFailed
from .logs import err, info, warn
from .models import Cycle, CycleOutcome, CycleResult, Holder, PayoutAsset
from .price import to_usd
from .shares import SharePolicy, compute_shares


def payout_assets(cfg: EngineConfig) -> List[PayoutAsset]:
    return [PayoutAsset(mint=m, is_native=(m == config.WSOL_MINT), min_unit_floor=(m in cfg.min_unit_floor_mints))
            for m in cfg.output_mints]


class CycleOrchestrator:
    """harvest → price gate → swap & split → treasury → holders, one cycle per call.

    ``run_cycle`` takes the carry-over and payout cursor from the caller and
    hands back the next ones; it never raises. Calls on one orchestrator are
    serialized by a non-blocking lock: an overlapping call returns ``busy``
    without touching carry or cursor.
    """

    def __init__(self, holder_source, harvester, oracle, settlement, dispatcher, cfg: EngineConfig):
        self.holder_source = holder_source
        self.harvester = harvester
        self.oracle = oracle
        self.settlement = settlement
        self.dispatcher = dispatcher
        self.cfg = cfg
        self.assets = payout_assets(cfg)
        self._lock = threading.Lock()

    def _holders(self) -> List[Holder]:
        try:
            return self.holder_source.fetch()
        except Exception as e:
            err("holders_fetch_failed", error=str(e))
            return []

    def _withdraw(self, holders: Sequence[Holder]) -> int:
        try:
            return self.harvester.withdraw(holders)
        except Exception as e:
            err("withdraw_failed", error=str(e), kind=type(e).__name__)
            return 0

    def _cap_to_holdings(self, cycle: Cycle):
        """Shrink a stale carry so the pool never exceeds what the engine holds."""
        try:
            held = self.harvester.balance()
        except Exception as e:
            warn("holdings_check_failed", error=str(e))
            return
        if cycle.total_pool > held:
            warn("carry_exceeds_holdings", pool=cycle.total_pool, held=held, carry_in=cycle.carry_in)
            cycle.withdrawn = min(cycle.withdrawn, max(held, 0))
            cycle.carry_in = max(held - cycle.withdrawn, 0)

    def run_cycle(self, carry_in: int = 0, cursor: int = 0) -> CycleResult:
        if not self._lock.acquire(blocking=False):
            warn("cycle_overlap", carry=carry_in, cursor=cursor)
            return CycleResult(carry_in, cursor, CycleOutcome.BUSY)
        try:
            result = self._run(carry_in, cursor)
        except Exception as e:
            # bugs must not take down the scheduler; keep the pool for next time
            err("cycle_crashed", error=str(e), kind=type(e).__name__)
            result = CycleResult(carry_in, (cursor + 1) % len(self.assets), CycleOutcome.FAILED)
        finally:
            self._lock.release()
        metrics.C_CYCLES.labels(outcome=result.outcome.value).inc()
        metrics.G_CARRY.set(result.carry_out)
        return result

    def _run(self, carry_in: int, cursor: int) -> CycleResult:
        cursor %= len(self.assets)
        asset = self.assets[cursor]
        next_cursor = (cursor + 1) % len(self.assets)
        cycle = Cycle(payout=asset, carry_in=carry_in)
        info("cycle_start", payout=asset.mint, cursor=cursor, carry_in=carry_in)

        holders = self._holders()
        cycle.withdrawn = self._withdraw(holders)
        self._cap_to_holdings(cycle)
        total = cycle.total_pool
        if total <= 0:
            info("nothing_to_distribute", withdrawn=cycle.withdrawn, carry_in=carry_in)
            return CycleResult(0, next_cursor, CycleOutcome.NOTHING, cycle)

        cycle.price_usd = self.oracle.usd_price()
        cycle.usd_value = to_usd(total, self.cfg.token_decimals, cycle.price_usd)
        metrics.G_PRICE_USD.set(cycle.price_usd)
        metrics.G_POOL_USD.set(cycle.usd_value)
        if cycle.usd_value < self.cfg.usd_threshold:
            info("below_threshold", pool=total, usd=round(cycle.usd_value, 6), threshold=self.cfg.usd_threshold)
            return CycleResult(total, next_cursor, CycleOutcome.BELOW_THRESHOLD, cycle)

        if not holders:
            # enumeration came back empty; swapping now would strand the holder pool
            warn("no_holders_carry", pool=total)
            return CycleResult(total, next_cursor, CycleOutcome.FAILED, cycle)

        try:
            split, source = self.settlement.settle(total, asset)
        except SwapVerificationFailed as e:
            # the swap confirmed, so its input is gone even though nothing showed up
            err("swap_unverified", pool=total, mint=asset.mint, error=str(e))
            return CycleResult(0, next_cursor, CycleOutcome.FAILED, cycle)
        except Exception as e:
            # no transfer attempted yet: the reference tokens are still ours
            err("swap_failed", pool=total, mint=asset.mint, error=str(e), kind=type(e).__name__)
            return CycleResult(total, next_cursor, CycleOutcome.FAILED, cycle)
        cycle.received = split.received
        cycle.holder_pool = split.holder_pool
        cycle.treasury_amount = sum(a for _, a in split.treasury)

        # from here on the pool is spent whatever happens, so carry resets
        self.settlement.pay_treasury(split, asset, source)

        policy = SharePolicy(
            min_holder_usd=self.cfg.min_holder_usd,
            price_usd=cycle.price_usd,
            token_decimals=self.cfg.token_decimals,
            min_unit_floor=asset.min_unit_floor,
        )
        shares = compute_shares(holders, split.holder_pool, self.cfg.total_supply, policy)
        info("shares_computed", holders=len(holders), recipients=len(shares.transfers), total=shares.total,
             pool=split.holder_pool, clamped=shares.clamped, below_minimum=shares.below_minimum)
        try:
            res = self.dispatcher.dispatch(shares.transfers, asset, source)
        except Exception as e:
            err("dispatch_failed", error=str(e), kind=type(e).__name__)
            return CycleResult(0, next_cursor, CycleOutcome.FAILED_PARTIAL, cycle)

        outcome = CycleOutcome.FAILED_PARTIAL if res.failed else CycleOutcome.DISTRIBUTED
        info("cycle_done", outcome=outcome.value, paid=res.paid, failed=len(res.failed), skipped=len(res.skipped))
        return CycleResult(0, next_cursor, outcome, cycle, res)
