from spl.token.constants import TOKEN_PROGRAM_ID

from .config import EngineConfig
from .ledger import ensure_observable
from .logs import dbg, info, warn
from .retry import retry


class SettlementAccountCache:
    """holder → settlement account per payout mint, revalidated on every read.

    A cached address is trusted only while the account exists and is owned by
    the token program; anything else is evicted and recreated. New mappings are
    written through to the store immediately.
    """

    def __init__(self, ledger, store, cfg: EngineConfig, token_program=TOKEN_PROGRAM_ID):
        self.ledger = ledger
        self.store = store
        self.cfg = cfg
        self.token_program = token_program
        self.hits = self.misses = 0

    def _valid(self, account: str) -> bool:
        try:
            return self.ledger.account_owner(account) == str(self.token_program)
        except Exception as e:
            dbg("cache_validate_failed", account=account, error=str(e))
            return False

    def resolve(self, holder: str, mint: str) -> str:
        cached = self.store.get(holder, mint)
        if cached:
            if self._valid(cached):
                self.hits += 1
                return cached
            warn("cache_evicted", holder=holder, mint=mint, account=cached)
            self.store.delete(holder, mint)
        self.misses += 1

        def create() -> str:
            account = self.ledger.ensure_token_account(holder, mint, self.token_program)
            # the create call can hand back an address the RPC node cannot see yet
            return ensure_observable(self.ledger, account, self.token_program)

        account = retry(create, self.cfg.retry_attempts, self.cfg.retry_delay, self.cfg.retry_backoff,
                        label="settlement_account")
        self.store.set(holder, mint, account)
        info("settlement_account_cached", holder=holder, mint=mint, account=account)
        return account
