from typing import List, Optional, Sequence

from spl.token.constants import TOKEN_2022_PROGRAM_ID

from . import metrics
from .config import EngineConfig
from .errors import HarvestAborted
from .ledger import TxSender, compute_budget_ixs, harvest_withheld_ix, withdraw_withheld_ix
from .logs import err, info
from .models import Holder


def chunks(seq: Sequence, size: int) -> List[list]:
    return [list(seq[i:i + size]) for i in range(0, len(seq), size)]


class HarvestCoordinator:
    """Sweeps withheld transfer fees into the mint, then withdraws them to the authority's account.

    The reported amount is the destination balance delta. If any harvest batch
    gives up, the withdrawal is abandoned with ``HarvestAborted`` rather than
    reporting a partial figure.
    """

    def __init__(self, ledger, sender: TxSender, holder_source, cfg: EngineConfig):
        self.ledger = ledger
        self.sender = sender
        self.holder_source = holder_source
        self.cfg = cfg

    def destination(self) -> str:
        return self.ledger.ensure_token_account(str(self.ledger.pubkey), self.cfg.mint, TOKEN_2022_PROGRAM_ID)

    def balance(self) -> int:
        """Reference tokens the engine actually holds, i.e. the most a swap can spend."""
        return self.ledger.token_balance(self.destination())

    def withdraw(self, holders: Optional[Sequence[Holder]] = None) -> int:
        dest = self.destination()
        before = self.ledger.token_balance(dest)

        if holders is None:
            holders = self.holder_source.fetch()
        accounts = [h.token_account for h in holders if h.token_account]
        batches = chunks(accounts, self.cfg.harvest_batch_size)
        info("harvest_start", accounts=len(accounts), batches=len(batches))

        fee = self.sender.priority_fee()
        for i, batch in enumerate(batches, 1):
            ixs = compute_budget_ixs(fee, self.cfg.compute_unit_limit) + [harvest_withheld_ix(self.cfg.mint, batch)]
            try:
                sig = self.sender.submit(ixs, label="harvest_batch")
            except Exception as e:
                err("harvest_batch_failed", batch=i, of=len(batches), error=str(e))
                raise HarvestAborted(f"harvest batch {i}/{len(batches)} failed: {e}") from e
            info("harvest_batch_ok", batch=i, of=len(batches), sig=sig)

        ixs = compute_budget_ixs(fee, self.cfg.compute_unit_limit) + \
            [withdraw_withheld_ix(self.cfg.mint, dest, self.ledger.pubkey)]
        sig = self.sender.submit(ixs, label="withdraw_withheld")

        after = self.ledger.token_balance(dest)
        withdrawn = after - before
        if withdrawn < 0:
            # something else drained the account mid-cycle; nothing of ours to report
            err("withdraw_negative_delta", before=before, after=after)
            withdrawn = 0
        metrics.G_WITHDRAWN.set(withdrawn)
        info("withdraw_ok", sig=sig, before=before, after=after, withdrawn=withdrawn)
        return withdrawn
