from typing import List, Optional, Tuple

import requests

from . import config, metrics
from .config import EngineConfig
from .errors import SwapVerificationFailed
from .ledger import TxSender, compute_budget_ixs, native_transfer_ix, token_transfer_ix
from .logs import err, info, warn
from .models import PayoutAsset, Split
from .retry import retry

# ────────────────────────────────────────────────────────────────────────────
# Jupiter swap API (quote & build)
# ────────────────────────────────────────────────────────────────────────────
class JupiterRouter:
    def __init__(self, ledger, api: str = config.SWAP_API, timeout: float = config.HTTP_TIMEOUT_SEC):
        self.ledger = ledger
        self.api = api.rstrip("/")
        self.timeout = timeout

    def _get_json(self, url, **kw):
        r = requests.get(url, timeout=self.timeout, **kw); r.raise_for_status()
        return r.json()

    def _post_json(self, url, payload):
        r = requests.post(url, json=payload, timeout=self.timeout); r.raise_for_status()
        return r.json()

    def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> dict:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        q = retry(lambda: self._get_json(f"{self.api}/quote", params=params), 3, 1.0, label="swap_quote")
        if not q or q.get("error"):
            raise RuntimeError(f"quote failed: {(q or {}).get('error', 'empty response')}")
        return q

    def swap(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int, wrap_sol: bool) -> str:
        q = self.quote(input_mint, output_mint, amount, slippage_bps)
        # advisory only: proceeds are measured from balances, never from the quote
        info("swap_quote", input=input_mint, output=output_mint, amount=amount, quoted_out=q.get("outAmount"))
        payload = {
            "quoteResponse": q,
            "userPublicKey": str(self.ledger.pubkey),
            "wrapAndUnwrapSol": bool(wrap_sol),
            "dynamicComputeUnitLimit": True,
        }
        data = retry(lambda: self._post_json(f"{self.api}/swap", payload), 3, 1.0, label="swap_build")
        if data.get("error") or not data.get("swapTransaction"):
            raise RuntimeError(f"swap build failed: {data.get('error', 'no transaction')}")
        sig = self.ledger.send_versioned(data["swapTransaction"])
        self.ledger.confirm(sig, data.get("lastValidBlockHeight"))
        return sig

# ────────────────────────────────────────────────────────────────────────────
# Swap → verify → split
# ────────────────────────────────────────────────────────────────────────────
def split_proceeds(received: int, cfg: EngineConfig) -> Split:
    holder_pool = received * cfg.holder_pct // 100
    treasury = []
    for wallet, pct in ((cfg.treasury_wallet, cfg.treasury_pct), (cfg.side_wallet, cfg.side_pct)):
        if pct <= 0:
            continue
        if not wallet:
            warn("treasury_wallet_unset", pct=pct)
            continue
        treasury.append((wallet, received * pct // 100))
    return Split(received=received, holder_pool=holder_pool, treasury=tuple(treasury))


class SwapSettlement:
    def __init__(self, ledger, router, sender: TxSender, cache, cfg: EngineConfig):
        self.ledger = ledger
        self.router = router
        self.sender = sender
        self.cache = cache
        self.cfg = cfg

    def source_account(self, asset: PayoutAsset) -> Optional[str]:
        if asset.is_native:
            return None
        return self.ledger.ensure_token_account(str(self.ledger.pubkey), asset.mint)

    def balance(self, asset: PayoutAsset, account: Optional[str]) -> int:
        if asset.is_native:
            return self.ledger.lamports()
        return self.ledger.token_balance(account)

    def settle(self, amount: int, asset: PayoutAsset) -> Tuple[Split, Optional[str]]:
        """Swap *amount* reference units into *asset*; returns the split and the engine's payout account."""
        source = self.source_account(asset)
        before = self.balance(asset, source)
        try:
            sig = self.router.swap(self.cfg.mint, asset.mint, amount, self.cfg.slippage_bps, asset.is_native)
        except Exception as e:
            # a swap whose confirmation timed out may still have landed; the balance decides
            after = self.balance(asset, source)
            if after - before <= 0:
                raise
            warn("swap_landed_after_error", mint=asset.mint, received=after - before, error=str(e))
            sig = None
        else:
            after = self.balance(asset, source)
        received = after - before
        if received <= 0:
            err("swap_verification_failed", sig=sig, before=before, after=after)
            raise SwapVerificationFailed(f"swap {sig} produced no {asset.mint} (delta={received})")
        metrics.G_SWAP_RECEIVED.set(received)
        split = split_proceeds(received, self.cfg)
        info("swap_ok", sig=sig, mint=asset.mint, received=received, holder_pool=split.holder_pool,
             treasury=[[w, a] for w, a in split.treasury])
        return split, source

    def pay_treasury(self, split: Split, asset: PayoutAsset, source: Optional[str]) -> List[str]:
        """One transaction per treasury wallet; failures are logged, never raised."""
        sigs = []
        for wallet, amount in split.treasury:
            if amount <= 0:
                continue
            try:
                if asset.is_native:
                    ix = native_transfer_ix(self.ledger.pubkey, wallet, amount)
                else:
                    ix = token_transfer_ix(source, self.cache.resolve(wallet, asset.mint), self.ledger.pubkey, amount)
                ixs = compute_budget_ixs(self.sender.priority_fee(), self.cfg.compute_unit_limit) + [ix]
                sig = self.sender.submit(ixs, label="treasury_transfer")
                sigs.append(sig)
                info("treasury_paid", wallet=wallet, amount=amount, sig=sig)
            except Exception as e:
                err("treasury_payment_failed", wallet=wallet, amount=amount, error=str(e))
        return sigs
