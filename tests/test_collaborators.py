# ------------------------------------------------------------------------
# tests/test_collaborators.py
# ------------------------------------------------------------------------
# Holder paging, the price oracle's fallbacks, the retry primitive and the
# start-up configuration checks.
# ------------------------------------------------------------------------
import json

import pytest
from base58 import b58encode
from solders.keypair import Keypair

from reward_bot import retry as retry_mod
from reward_bot.config import EngineConfig, load_authority
from reward_bot.errors import ConfigurationError, TransientNetworkError
from reward_bot.holders import HolderSource
from reward_bot.logs import _fmt
from reward_bot.price import PriceOracle, to_usd
from reward_bot.retry import retry

from conftest import REF_MINT, make_cfg


def page(n, start=0):
    return {"token_accounts": [{"address": f"acct{i}", "owner": f"owner{i}", "amount": i * 10}
                               for i in range(start, start + n)], "cursor": f"c{start + n}"}


# ── holders ────────────────────────────────────────────────────────────────
def test_holders_paged_until_short_page(ledger):
    ledger.rpc_pages = [page(2), page(2, 2), page(1, 4)]
    hs = HolderSource(ledger, REF_MINT, page_limit=2, delay=0).fetch()
    assert [h.address for h in hs] == [f"owner{i}" for i in range(5)]
    assert hs[3].balance == 30 and hs[3].token_account == "acct3"
    params = [p for _, p in ledger.rpc_calls]
    assert params[0]["page"] == 1 and "cursor" not in params[0]
    assert params[1]["cursor"] == "c2"
    assert params[0]["options"] == {"showZeroBalance": False}


def test_holders_empty_page_ends_listing(ledger):
    ledger.rpc_pages = [page(2), {"token_accounts": []}]
    assert len(HolderSource(ledger, REF_MINT, page_limit=2, delay=0).fetch()) == 2


def test_holders_failing_page_keeps_what_was_collected(ledger):
    boom = TransientNetworkError("429")
    ledger.rpc_pages = [page(2), boom, boom, boom]
    hs = HolderSource(ledger, REF_MINT, page_limit=2, attempts=3, delay=0).fetch()
    assert len(hs) == 2
    assert len(ledger.rpc_calls) == 4


# ── price ──────────────────────────────────────────────────────────────────
class _Resp:
    def __init__(self, body):
        self.body = body

    def raise_for_status(self):
        pass

    def json(self):
        return self.body


def test_price_picks_first_positive_pair(monkeypatch):
    body = {"pairs": [{"priceUsd": "0"}, {"priceUsd": None}, {"priceUsd": "0.0123"}, {"priceUsd": "9"}]}
    monkeypatch.setattr("reward_bot.price.requests.get", lambda url, timeout=None: _Resp(body))
    assert PriceOracle(REF_MINT).usd_price() == pytest.approx(0.0123)


def test_price_falls_back_to_last_known_then_constant(monkeypatch):
    oracle = PriceOracle(REF_MINT, fallback=0.5)

    def down(url, timeout=None):
        raise ConnectionError("dns")

    monkeypatch.setattr("reward_bot.price.requests.get", down)
    assert oracle.usd_price() == 0.5

    monkeypatch.setattr("reward_bot.price.requests.get", lambda url, timeout=None: _Resp({"pairs": [{"priceUsd": "2"}]}))
    assert oracle.usd_price() == 2.0

    monkeypatch.setattr("reward_bot.price.requests.get", lambda url, timeout=None: _Resp({"pairs": []}))
    assert oracle.usd_price() == 2.0


def test_to_usd_uses_decimals():
    assert to_usd(5 * 10**9, 9, 2.0) == pytest.approx(10.0)
    assert to_usd(0, 9, 2.0) == 0


# ── retry ──────────────────────────────────────────────────────────────────
def test_retry_returns_after_transient_failures(monkeypatch):
    sleeps = []
    monkeypatch.setattr(retry_mod.time, "sleep", sleeps.append)
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientNetworkError("timeout")
        return "ok"

    assert retry(flaky, attempts=3, delay=1.0, backoff=2.0, label="t") == "ok"
    assert sleeps == [1.0, 2.0]


def test_retry_reraises_last_error(monkeypatch):
    monkeypatch.setattr(retry_mod.time, "sleep", lambda s: None)
    calls = []

    def always():
        calls.append(1)
        raise TransientNetworkError(f"fail {len(calls)}")

    with pytest.raises(TransientNetworkError, match="fail 4"):
        retry(always, attempts=4, delay=1.0, label="t")
    assert len(calls) == 4


def test_retry_does_not_catch_unlisted_errors():
    def bad():
        raise KeyError("x")

    with pytest.raises(KeyError):
        retry(bad, attempts=5, delay=0, retry_on=(TransientNetworkError,))


# ── config ─────────────────────────────────────────────────────────────────
def test_split_over_100_percent_is_rejected():
    with pytest.raises(ConfigurationError):
        make_cfg(holder_pct=90, treasury_pct=17, side_pct=3)


def test_empty_output_list_is_rejected():
    with pytest.raises(ConfigurationError):
        make_cfg(output_mints=())


def test_authority_key_formats():
    kp = Keypair()
    assert load_authority(b58encode(bytes(kp)).decode()).pubkey() == kp.pubkey()
    assert load_authority(json.dumps(list(bytes(kp)))).pubkey() == kp.pubkey()
    with pytest.raises(ConfigurationError):
        load_authority("not-a-key")
    with pytest.raises(ConfigurationError):
        load_authority("")


def test_engine_config_is_frozen():
    cfg = make_cfg()
    with pytest.raises(Exception):
        cfg.batch_size = 99
    assert isinstance(cfg, EngineConfig)


def test_log_fields_keep_big_amounts_exact():
    big = 2**60 + 1
    out = json.loads(_fmt("info", "swap_ok", {"received": big, "treasury": [("w1", big), ("w2", 7)], "n": 3}))
    assert out["received"] == str(big)
    assert out["treasury"] == [["w1", str(big)], ["w2", 7]]
    assert out["n"] == 3
