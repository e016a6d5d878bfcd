import os, ast
from dataclasses import dataclass
from typing import Optional

from base58 import b58decode
from dotenv import load_dotenv
from solders.keypair import Keypair

from .errors import ConfigurationError

# ────────────────────────────────────────────────────────────────────────────
# Env
# ────────────────────────────────────────────────────────────────────────────
load_dotenv()

WSOL_MINT = "So11111111111111111111111111111111111111112"

RPC_URL            = os.getenv("RPC_URL")
MINT_ADDRESS       = os.getenv("MINT_ADDRESS")                       # REQUIRED
TREASURY_WALLET    = os.getenv("TREASURY_WALLET")
SIDE_WALLET        = os.getenv("SIDE_WALLET")

PRICE_API          = os.getenv("PRICE_API", "https://api.dexscreener.com/latest/dex/tokens")
SWAP_API           = os.getenv("SWAP_API", "https://api.jup.ag/swap/v1")

OUTPUT_MINTS = [m.strip() for m in os.getenv("OUTPUT_MINTS", ",".join([
    WSOL_MINT,                                          # SOL
    "3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh",     # wBTC
    "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs",     # wETH
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",     # USDC
])).split(",") if m.strip()]

HOLDER_PCT         = int(os.getenv("HOLDER_PCT", "80"))
TREASURY_PCT       = int(os.getenv("TREASURY_PCT", "17"))
SIDE_PCT           = int(os.getenv("SIDE_PCT", "3"))

# payout mints whose zero shares are floored to one smallest unit
MIN_UNIT_FLOOR_MINTS = frozenset(m.strip() for m in os.getenv("MIN_UNIT_FLOOR_MINTS", "").split(",") if m.strip())

TOTAL_SUPPLY       = int(os.getenv("TOTAL_SUPPLY", str(1_000_000_000 * 10**9)))
TOKEN_DECIMALS     = int(os.getenv("TOKEN_DECIMALS", "9"))

BATCH_SIZE         = int(os.getenv("BATCH_SIZE", "10"))
HARVEST_BATCH_SIZE = int(os.getenv("HARVEST_BATCH_SIZE", "20"))
HOLDER_PAGE_LIMIT  = int(os.getenv("HOLDER_PAGE_LIMIT", "1000"))

COMPUTE_UNIT_LIMIT      = int(os.getenv("COMPUTE_UNIT_LIMIT", "1000000"))
PRIORITY_FEE_FLOOR      = int(os.getenv("PRIORITY_FEE_FLOOR", "50000"))     # µlamports/CU
PRIORITY_FEE_DEFAULT    = int(os.getenv("PRIORITY_FEE_DEFAULT", "100000"))  # no samples
PRIORITY_FEE_MULTIPLIER = float(os.getenv("PRIORITY_FEE_MULTIPLIER", "1.5"))

SLIPPAGE_BPS       = int(os.getenv("SLIPPAGE_BPS", "2000"))
USD_THRESHOLD      = float(os.getenv("USD_THRESHOLD", "5.0"))
MIN_HOLDER_USD     = float(os.getenv("MIN_HOLDER_USD", "0"))
FALLBACK_PRICE_USD = float(os.getenv("FALLBACK_PRICE_USD", "0.0009846"))

RETRY_ATTEMPTS     = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_DELAY_SEC    = float(os.getenv("RETRY_DELAY_SEC", "3"))
RETRY_BACKOFF      = float(os.getenv("RETRY_BACKOFF", "1.0"))
CONFIRM_TIMEOUT_SEC = float(os.getenv("CONFIRM_TIMEOUT_SEC", "60"))
HTTP_TIMEOUT_SEC   = float(os.getenv("HTTP_TIMEOUT_SEC", "15"))

DISTRIBUTION_INTERVAL_SEC = int(os.getenv("DISTRIBUTION_INTERVAL_SEC", "180"))
STATE_DB           = os.getenv("STATE_DB", "reward_state.sqlite")
METRICS_PORT       = int(os.getenv("METRICS_PORT", "9108"))


@dataclass(frozen=True)
class EngineConfig:
    mint: str = MINT_ADDRESS or ""
    output_mints: tuple = tuple(OUTPUT_MINTS)
    treasury_wallet: Optional[str] = TREASURY_WALLET
    side_wallet: Optional[str] = SIDE_WALLET
    holder_pct: int = HOLDER_PCT
    treasury_pct: int = TREASURY_PCT
    side_pct: int = SIDE_PCT
    total_supply: int = TOTAL_SUPPLY
    token_decimals: int = TOKEN_DECIMALS
    batch_size: int = BATCH_SIZE
    harvest_batch_size: int = HARVEST_BATCH_SIZE
    compute_unit_limit: int = COMPUTE_UNIT_LIMIT
    priority_fee_floor: int = PRIORITY_FEE_FLOOR
    priority_fee_default: int = PRIORITY_FEE_DEFAULT
    priority_fee_multiplier: float = PRIORITY_FEE_MULTIPLIER
    slippage_bps: int = SLIPPAGE_BPS
    usd_threshold: float = USD_THRESHOLD
    min_holder_usd: float = MIN_HOLDER_USD
    retry_attempts: int = RETRY_ATTEMPTS
    retry_delay: float = RETRY_DELAY_SEC
    retry_backoff: float = RETRY_BACKOFF
    min_unit_floor_mints: frozenset = MIN_UNIT_FLOOR_MINTS

    def __post_init__(self):
        if self.holder_pct + self.treasury_pct + self.side_pct > 100:
            raise ConfigurationError(
                f"split exceeds 100%: holders={self.holder_pct} treasury={self.treasury_pct} side={self.side_pct}")
        if not self.output_mints:
            raise ConfigurationError("OUTPUT_MINTS is empty")
        if self.batch_size < 1 or self.harvest_batch_size < 1:
            raise ConfigurationError("batch sizes must be positive")
        if self.total_supply <= 0:
            raise ConfigurationError("TOTAL_SUPPLY must be positive")


def require_env():
    missing = [k for k, v in (("RPC_URL", RPC_URL),
                              ("MINT_ADDRESS", MINT_ADDRESS),
                              ("WITHDRAW_AUTHORITY_PRIVATE_KEY", os.getenv("WITHDRAW_AUTHORITY_PRIVATE_KEY")))
               if not v]
    if missing:
        raise ConfigurationError(f"Missing required env: {', '.join(missing)}")


def load_authority(raw: Optional[str] = None) -> Keypair:
    raw = raw if raw is not None else os.getenv("WITHDRAW_AUTHORITY_PRIVATE_KEY")
    if not raw:
        raise ConfigurationError("WITHDRAW_AUTHORITY_PRIVATE_KEY missing")
    try:
        if raw.strip().startswith("["):
            arr = ast.literal_eval(raw); return Keypair.from_bytes(bytes(arr))
        return Keypair.from_bytes(b58decode(raw.strip()))
    except Exception as e:
        raise ConfigurationError(f"invalid withdraw authority key: {e}") from e

