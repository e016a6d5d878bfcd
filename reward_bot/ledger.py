import time, base64, statistics
from typing import List, Optional, Sequence, Tuple

import requests
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID, TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferParams as SplTransferParams,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    transfer as spl_transfer,
)

from . import config
from .config import EngineConfig
from .errors import AccountNotObservable, TransientNetworkError
from .logs import dbg, info, warn
from .retry import retry

# Token-2022 TransferFeeExtension sub-instructions
_TRANSFER_FEE_EXTENSION = 26
_WITHDRAW_WITHHELD_FROM_MINT = 2
_HARVEST_WITHHELD_TO_MINT = 4

_LANDED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)

# ────────────────────────────────────────────────────────────────────────────
# Instruction builders (pure)
# ────────────────────────────────────────────────────────────────────────────
def compute_budget_ixs(price_micro_lamports: int, unit_limit: int) -> List[Instruction]:
    return [set_compute_unit_price(int(price_micro_lamports)), set_compute_unit_limit(int(unit_limit))]

def native_transfer_ix(src: Pubkey, dest: str, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=src, to_pubkey=Pubkey.from_string(dest), lamports=int(lamports)))

def token_transfer_ix(source: str, dest: str, owner: Pubkey, amount: int) -> Instruction:
    return spl_transfer(SplTransferParams(
        program_id=TOKEN_PROGRAM_ID,
        source=Pubkey.from_string(source),
        dest=Pubkey.from_string(dest),
        owner=owner,
        amount=int(amount),
    ))

def harvest_withheld_ix(mint: str, token_accounts: Sequence[str]) -> Instruction:
    accounts = [AccountMeta(Pubkey.from_string(mint), is_signer=False, is_writable=True)]
    accounts += [AccountMeta(Pubkey.from_string(a), is_signer=False, is_writable=True) for a in token_accounts]
    return Instruction(TOKEN_2022_PROGRAM_ID, bytes([_TRANSFER_FEE_EXTENSION, _HARVEST_WITHHELD_TO_MINT]), accounts)

def withdraw_withheld_ix(mint: str, destination: str, authority: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(Pubkey.from_string(mint), is_signer=False, is_writable=True),
        AccountMeta(Pubkey.from_string(destination), is_signer=False, is_writable=True),
        AccountMeta(authority, is_signer=True, is_writable=False),
    ]
    return Instruction(TOKEN_2022_PROGRAM_ID, bytes([_TRANSFER_FEE_EXTENSION, _WITHDRAW_WITHHELD_FROM_MINT]), accounts)

def is_on_curve(address: str) -> bool:
    try:
        return Pubkey.from_string(address).is_on_curve()
    except ValueError:
        return False

def median_priority_fee(samples: Sequence[int], cfg: EngineConfig) -> int:
    """Median of recent fees × multiplier, never under the floor; default when nothing sampled."""
    if not samples:
        return cfg.priority_fee_default
    med = statistics.median_high(samples)
    return max(int(med * cfg.priority_fee_multiplier), cfg.priority_fee_floor)

# ────────────────────────────────────────────────────────────────────────────
# RPC adapter
# ────────────────────────────────────────────────────────────────────────────
class Ledger:
    """Signing RPC adapter around ``solana.rpc.api.Client`` for one authority keypair."""

    def __init__(self, rpc_url: str, authority: Keypair, confirm_timeout: float = config.CONFIRM_TIMEOUT_SEC,
                 poll_interval: float = 1.0):
        self.rpc_url = rpc_url
        self.client = Client(rpc_url, commitment=Confirmed)
        self.authority = authority
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval

    @property
    def pubkey(self) -> Pubkey:
        return self.authority.pubkey()

    # raw JSON-RPC for methods the client does not wrap (DAS, fee sampling)
    def rpc(self, method: str, params):
        r = requests.post(self.rpc_url, json={"jsonrpc": "2.0", "id": method, "method": method, "params": params},
                          timeout=config.HTTP_TIMEOUT_SEC)
        r.raise_for_status()
        body = r.json()
        if body.get("error"):
            raise TransientNetworkError(f"{method}: {body['error']}")
        return body.get("result")

    def latest_blockhash(self) -> Tuple[Hash, int]:
        v = self.client.get_latest_blockhash(Confirmed).value
        return v.blockhash, v.last_valid_block_height

    def send(self, instructions: Sequence[Instruction], blockhash: Hash) -> str:
        tx = Transaction.new_signed_with_payer(list(instructions), self.pubkey, [self.authority], blockhash)
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=10)
        return str(self.client.send_raw_transaction(bytes(tx), opts).value)

    def send_versioned(self, tx_b64: str) -> str:
        vtx = VersionedTransaction.from_bytes(base64.b64decode(tx_b64))
        signed = VersionedTransaction(vtx.message, [self.authority])
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed, max_retries=10)
        return str(self.client.send_raw_transaction(bytes(signed), opts).value)

    def _status(self, sig: str):
        return self.client.get_signature_statuses([Signature.from_string(sig)]).value[0]

    def is_confirmed(self, sig: str) -> bool:
        st = self._status(sig)
        if st is None or st.err is not None:
            return False
        return st.confirmation_status in _LANDED

    def confirm(self, sig: str, last_valid_block_height: Optional[int] = None):
        deadline = time.monotonic() + self.confirm_timeout
        while time.monotonic() < deadline:
            st = self._status(sig)
            if st is not None:
                if st.err is not None:
                    raise TransientNetworkError(f"tx {sig} failed: {st.err}")
                if st.confirmation_status in _LANDED:
                    return
            if last_valid_block_height is not None and \
                    self.client.get_block_height(Confirmed).value > last_valid_block_height:
                raise TransientNetworkError(f"tx {sig} expired (blockhash past height {last_valid_block_height})")
            time.sleep(self.poll_interval)
        raise TransientNetworkError(f"tx {sig} not confirmed after {self.confirm_timeout}s")

    def account_owner(self, address: str) -> Optional[str]:
        """Owning program of *address*, or None when the account does not exist."""
        acc = self.client.get_account_info(Pubkey.from_string(address), Confirmed).value
        if acc is None:
            return None
        return str(acc.owner)

    def lamports(self, address: Optional[str] = None) -> int:
        pk = Pubkey.from_string(address) if address else self.pubkey
        return int(self.client.get_balance(pk, Confirmed).value)

    def token_balance(self, token_account: str) -> int:
        return int(self.client.get_token_account_balance(Pubkey.from_string(token_account), Confirmed).value.amount)

    def associated_account(self, owner: str, mint: str, token_program: Pubkey = TOKEN_PROGRAM_ID) -> str:
        return str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint), token_program))

    def ensure_token_account(self, owner: str, mint: str, token_program: Pubkey = TOKEN_PROGRAM_ID) -> str:
        """Get-or-create the associated token account of *owner* for *mint*."""
        ata = self.associated_account(owner, mint, token_program)
        if self.account_owner(ata) is not None:
            return ata
        ix = create_idempotent_associated_token_account(
            self.pubkey, Pubkey.from_string(owner), Pubkey.from_string(mint), token_program)
        blockhash, height = self.latest_blockhash()
        sig = self.send([ix], blockhash)
        self.confirm(sig, height)
        dbg("ata_created", owner=owner, mint=mint, ata=ata, sig=sig)
        return ata

    def priority_fee_samples(self) -> List[int]:
        rows = self.rpc("getRecentPrioritizationFees", []) or []
        return [int(r.get("prioritizationFee", 0)) for r in rows]

# ────────────────────────────────────────────────────────────────────────────
# Submission protocol
# ────────────────────────────────────────────────────────────────────────────
class TxSender:
    """Blockhash fence → send → confirm, retried; a prior attempt that landed is never resent."""

    def __init__(self, ledger, cfg: EngineConfig):
        self.ledger = ledger
        self.cfg = cfg

    def priority_fee(self) -> int:
        try:
            samples = self.ledger.priority_fee_samples()
        except Exception as e:
            warn("priority_fee_sample_failed", error=str(e))
            samples = []
        return median_priority_fee(samples, self.cfg)

    def submit(self, instructions: Sequence[Instruction], label: str = "tx") -> str:
        sent: List[str] = []

        def attempt() -> str:
            # any earlier attempt may land late, not only the newest one
            landed = self._first_landed(sent)
            if landed:
                info("tx_already_confirmed", op=label, sig=landed, attempts=len(sent))
                return landed
            blockhash, height = self.ledger.latest_blockhash()
            sig = self.ledger.send(instructions, blockhash)
            sent.append(sig)
            self.ledger.confirm(sig, height)
            return sig

        def guarded() -> str:
            try:
                return attempt()
            except Exception:
                landed = self._first_landed(sent)
                if landed:
                    info("tx_confirmed_after_error", op=label, sig=landed)
                    return landed
                raise

        return retry(guarded, self.cfg.retry_attempts, self.cfg.retry_delay, self.cfg.retry_backoff, label=label)

    def _landed(self, sig: str) -> bool:
        try:
            return self.ledger.is_confirmed(sig)
        except Exception as e:
            dbg("status_lookup_failed", sig=sig, error=str(e))
            return False

    def _first_landed(self, sigs: Sequence[str]) -> Optional[str]:
        return next((s for s in sigs if self._landed(s)), None)


def ensure_observable(ledger, account: str, expected_owner: Pubkey = TOKEN_PROGRAM_ID) -> str:
    owner = ledger.account_owner(account)
    if owner != str(expected_owner):
        raise AccountNotObservable(f"{account} not visible (owner={owner})")
    return account


def system_owned(ledger, address: str) -> bool:
    return ledger.account_owner(address) == str(SYSTEM_PROGRAM_ID)
