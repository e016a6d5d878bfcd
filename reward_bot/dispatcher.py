from typing import List, Optional, Sequence, Tuple

from solders.instruction import Instruction

from . import metrics
from .config import EngineConfig
from .ledger import TxSender, compute_budget_ixs, is_on_curve, native_transfer_ix, system_owned, token_transfer_ix
from .logs import dbg, err, info, warn
from .models import DispatchResult, PayoutAsset, Transfer


class BatchDispatcher:
    """Packs holder transfers into bounded transactions and pushes them through.

    First pass: batches of ``cfg.batch_size`` transfers, each led by a
    compute-budget pair priced from recent network fees. A batch that exhausts
    its retries moves every transfer in it to the failed queue. Second pass: one
    individual attempt per failed transfer, then anything still failing is
    dropped for this cycle.
    """

    def __init__(self, ledger, sender: TxSender, cache, cfg: EngineConfig):
        self.ledger = ledger
        self.sender = sender
        self.cache = cache
        self.cfg = cfg

    # ── per-holder preparation ─────────────────────────────────────────────
    def _eligible(self, t: Transfer, asset: PayoutAsset) -> bool:
        addr = t.holder.address
        if asset.is_native:
            try:
                ok = system_owned(self.ledger, addr)
            except Exception as e:
                warn("holder_lookup_failed", holder=addr, error=str(e))
                return False
            if not ok:
                dbg("skip_not_system_owned", holder=addr)
            return ok
        if not is_on_curve(addr):
            dbg("skip_off_curve", holder=addr)
            return False
        return True

    def _instruction(self, t: Transfer, asset: PayoutAsset, source: Optional[str]) -> Instruction:
        if asset.is_native:
            return native_transfer_ix(self.ledger.pubkey, t.holder.address, t.amount)
        dest = self.cache.resolve(t.holder.address, asset.mint)
        return token_transfer_ix(source, dest, self.ledger.pubkey, t.amount)

    def _send(self, pairs: Sequence[Tuple[Transfer, Instruction]], label: str) -> str:
        fee = self.sender.priority_fee()
        ixs = compute_budget_ixs(fee, self.cfg.compute_unit_limit) + [ix for _, ix in pairs]
        return self.sender.submit(ixs, label=label)

    # ── passes ─────────────────────────────────────────────────────────────
    def dispatch(self, transfers: Sequence[Transfer], asset: PayoutAsset, source: Optional[str] = None) -> DispatchResult:
        """Send every transfer; *source* is the engine's token account (unused for native payouts)."""
        if not asset.is_native and not source:
            raise ValueError("token payouts need a source token account")
        res = DispatchResult()
        failed: List[Transfer] = []
        batch: List[Tuple[Transfer, Instruction]] = []
        n_batches = 0

        def flush():
            nonlocal batch, n_batches
            if not batch:
                return
            n_batches += 1
            try:
                sig = self._send(batch, label="transfer_batch")
                res.signatures.append(sig)
                res.succeeded.extend(t for t, _ in batch)
                info("batch_sent", batch=n_batches, transfers=len(batch), sig=sig)
            except Exception as e:
                err("batch_failed", batch=n_batches, transfers=len(batch), error=str(e))
                failed.extend(t for t, _ in batch)
            batch = []

        for t in transfers:
            if t.amount <= 0:
                continue
            if not self._eligible(t, asset):
                res.skipped.append(t)
                continue
            try:
                batch.append((t, self._instruction(t, asset, source)))
            except Exception as e:
                warn("transfer_prepare_failed", holder=t.holder.address, error=str(e))
                failed.append(t)
                continue
            if len(batch) >= self.cfg.batch_size:
                flush()
        flush()

        if failed:
            info("retrying_failed_transfers", count=len(failed))
        for t in failed:
            try:
                sig = self._send([(t, self._instruction(t, asset, source))], label="transfer_single")
                res.signatures.append(sig)
                res.succeeded.append(t)
                info("transfer_retry_ok", holder=t.holder.address, amount=t.amount, sig=sig)
            except Exception as e:
                err("transfer_retry_failed", holder=t.holder.address, amount=t.amount, error=str(e))
                res.failed.append(t)

        metrics.C_TRANSFERS.labels(result="succeeded").inc(len(res.succeeded))
        metrics.C_TRANSFERS.labels(result="failed").inc(len(res.failed))
        metrics.C_TRANSFERS.labels(result="skipped").inc(len(res.skipped))
        info("dispatch_done", batches=n_batches, succeeded=len(res.succeeded), failed=len(res.failed),
             skipped=len(res.skipped), paid=res.paid)
        return res
