import os, json, logging

import requests

# ────────────────────────────────────────────────────────────────────────────
# Logging
# ────────────────────────────────────────────────────────────────────────────
LOG = logging.getLogger("reward_bot")


def setup_logging():
    logging.basicConfig(
        level=(logging.DEBUG if os.getenv("DEBUG") else logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s"
    )


def _safe(v):
    # raw amounts above 2**53 lose precision in JSON consumers
    if isinstance(v, int) and not isinstance(v, bool) and abs(v) > 2**53:
        return str(v)
    if isinstance(v, (list, tuple)):
        return [_safe(x) for x in v]
    if isinstance(v, dict):
        return {k: _safe(x) for k, x in v.items()}
    return v

def _fmt(kind, msg, kw):
    return json.dumps({kind: msg, **{k: _safe(v) for k, v in kw.items()}}, default=str)

def dbg(msg, **kw): LOG.debug(_fmt("dbg", msg, kw))
def info(msg, **kw): LOG.info(_fmt("info", msg, kw))
def warn(msg, **kw): LOG.warning(_fmt("warn", msg, kw))
def err(msg, **kw): LOG.error(_fmt("err", msg, kw))

# ────────────────────────────────────────────────────────────────────────────
# Telegram (push summaries)
# ────────────────────────────────────────────────────────────────────────────
TG_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TG_CHAT  = os.getenv("TELEGRAM_CHAT_ID")

def tg_send(text: str):
    if not (TG_TOKEN and TG_CHAT): return
    try:
        requests.post(
            f"https://api.telegram.org/bot{TG_TOKEN}/sendMessage",
            json={"chat_id": TG_CHAT, "text": text},
            timeout=5
        )
    except Exception as e:
        warn("telegram_send_failed", error=str(e))
