from prometheus_client import start_http_server, Gauge, Counter

# ────────────────────────────────────────────────────────────────────────────
# Prometheus metrics
# ────────────────────────────────────────────────────────────────────────────
G_CARRY            = Gauge("reward_carry_raw", "Pool amount carried to the next cycle (raw units)")
G_WITHDRAWN        = Gauge("reward_withdrawn_raw", "Fees withdrawn in the last cycle (raw units)")
G_POOL_USD         = Gauge("reward_pool_usd", "USD value of the last cycle's pool")
G_PRICE_USD        = Gauge("reward_price_usd", "Reference token USD price used by the gate")
G_SWAP_RECEIVED    = Gauge("reward_swap_received_raw", "Payout units received from the last swap")
C_CYCLES           = Counter("reward_cycles", "Cycles run, by outcome", ["outcome"])
C_TRANSFERS        = Counter("reward_transfers", "Holder transfers, by result", ["result"])
C_RETRIES          = Counter("reward_retries", "Retried operations", ["op"])


def start_metrics(port: int):
    start_http_server(port)  # scrape with Prometheus
