# ──────────────────────────────────────────────────────────────────────────
# tests/conftest.py
# --------------------------------------------------------------------------
"""
In-process stand-ins for the ledger, holder enumeration, price oracle and
swap router, so the engine can be driven end to end without a network.

    pytest -v
"""
from typing import Callable, Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from reward_bot.config import EngineConfig, WSOL_MINT
from reward_bot.errors import TransientNetworkError
from reward_bot.models import Holder

REF_MINT = "FjFccmB1ZBUVB13s12koLPseRi9ZSzNj9daJStCVXM25"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SYSTEM = str(SYSTEM_PROGRAM_ID)
TOKEN = str(TOKEN_PROGRAM_ID)
TOKEN_2022 = str(TOKEN_2022_PROGRAM_ID)


def addr() -> str:
    return str(Keypair().pubkey())


def off_curve() -> str:
    pda, _ = Pubkey.find_program_address([bytes(Keypair().pubkey())], TOKEN_PROGRAM_ID)
    return str(pda)


def make_cfg(**kw) -> EngineConfig:
    base = dict(
        mint=REF_MINT,
        output_mints=(WSOL_MINT, USDC_MINT),
        treasury_wallet=addr(),
        side_wallet=addr(),
        holder_pct=80, treasury_pct=17, side_pct=3,
        total_supply=100,
        token_decimals=9,
        batch_size=3,
        harvest_batch_size=2,
        usd_threshold=5.0,
        min_holder_usd=0.0,
        retry_attempts=3,
        retry_delay=0,
        min_unit_floor_mints=frozenset(),
    )
    base.update(kw)
    return EngineConfig(**base)


class FakeLedger:
    """Records every submitted instruction list; failures are scripted per call."""

    def __init__(self):
        self.authority = Keypair()
        self.owners: Dict[str, str] = {}
        self.token_balances: Dict[str, int] = {}
        self.native = 0
        self.sent: List[list] = []            # every send attempt, accepted or not
        self.landed: List[list] = []          # only sends that were accepted and confirmed
        self._by_sig: Dict[str, list] = {}
        self.fees: List[int] = []
        self.fail_send: Callable[[list], bool] = lambda ixs: False
        self.fail_confirm: Callable[[str], bool] = lambda sig: False
        self.landed_anyway: set = set()
        self.on_send: Optional[Callable[[list], None]] = None
        self.atas: Dict[tuple, str] = {}
        self.invisible_atas = 0          # next N created ATAs are not readable yet
        self.ensure_calls = 0
        self.versioned: List[str] = []
        self.rpc_pages: List[dict] = []
        self.rpc_calls: List[tuple] = []

    @property
    def pubkey(self) -> Pubkey:
        return self.authority.pubkey()

    def rpc(self, method, params):
        self.rpc_calls.append((method, params))
        if method == "getTokenAccounts":
            page = self.rpc_pages.pop(0)
            if isinstance(page, Exception):
                raise page
            return page
        raise AssertionError(method)

    def latest_blockhash(self):
        return Hash.default(), 1_000

    def send(self, instructions, blockhash):
        self.sent.append(list(instructions))
        if self.fail_send(list(instructions)):
            raise TransientNetworkError("send rejected")
        if self.on_send:
            self.on_send(list(instructions))
        sig = f"sig{len(self.sent)}"
        self._by_sig[sig] = list(instructions)
        return sig

    def send_versioned(self, tx_b64):
        self.versioned.append(tx_b64)
        return f"vsig{len(self.versioned)}"

    def confirm(self, sig, last_valid_block_height=None):
        if self.fail_confirm(sig):
            raise TransientNetworkError(f"{sig} not confirmed")
        if sig in self._by_sig:
            self.landed.append(self._by_sig[sig])

    def is_confirmed(self, sig):
        return sig in self.landed_anyway

    def account_owner(self, address):
        return self.owners.get(address)

    def lamports(self, address=None):
        return self.native

    def token_balance(self, account):
        return self.token_balances.get(account, 0)

    def ensure_token_account(self, owner, mint, token_program=TOKEN_PROGRAM_ID):
        self.ensure_calls += 1
        key = (owner, mint)
        if key not in self.atas:
            self.atas[key] = addr()
        ata = self.atas[key]
        if self.invisible_atas > 0:
            self.invisible_atas -= 1
            self.owners.pop(ata, None)
        else:
            self.owners[ata] = str(token_program)
        return ata

    def priority_fee_samples(self):
        return list(self.fees)


class FakeHolders:
    def __init__(self, holders: List[Holder]):
        self.holders = holders
        self.calls = 0

    def fetch(self):
        self.calls += 1
        return list(self.holders)


class FakeOracle:
    def __init__(self, price: float):
        self.price = price

    def usd_price(self):
        return self.price


class FakeRouter:
    """Credits *yield_* payout units to the engine on every swap."""

    def __init__(self, ledger: FakeLedger, yield_: int = 1_000, fail: bool = False, timeout_after_fill: bool = False):
        self.ledger = ledger
        self.yield_ = yield_
        self.fail = fail
        self.timeout_after_fill = timeout_after_fill
        self.calls: List[tuple] = []
        self.credit_account: Optional[str] = None

    def swap(self, input_mint, output_mint, amount, slippage_bps, wrap_sol):
        self.calls.append((input_mint, output_mint, amount, slippage_bps, wrap_sol))
        if self.fail:
            raise TransientNetworkError("router down")
        if wrap_sol:
            self.ledger.native += self.yield_
        else:
            acct = self.ledger.atas[(str(self.ledger.pubkey), output_mint)]
            self.ledger.token_balances[acct] = self.ledger.token_balances.get(acct, 0) + self.yield_
        if self.timeout_after_fill:
            raise TransientNetworkError("vsig1 not confirmed after 60s")
        return "swapsig"


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def cfg():
    return make_cfg()
