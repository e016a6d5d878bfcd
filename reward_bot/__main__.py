import sys, time, argparse

from . import __version__, config
from .cache import SettlementAccountCache
from .config import EngineConfig
from .dispatcher import BatchDispatcher
from .errors import ConfigurationError
from .harvest import HarvestCoordinator
from .holders import HolderSource
from .ledger import Ledger, TxSender
from .logs import err, info, setup_logging, tg_send
from .metrics import start_metrics
from .orchestrator import CycleOrchestrator
from .price import PriceOracle
from .store import CycleStateStore, SqliteSettlementStore
from .swap import JupiterRouter, SwapSettlement


def build(cfg: EngineConfig) -> CycleOrchestrator:
    ledger  = Ledger(config.RPC_URL, config.load_authority())
    sender  = TxSender(ledger, cfg)
    cache   = SettlementAccountCache(ledger, SqliteSettlementStore(config.STATE_DB), cfg)
    holders = HolderSource(ledger, cfg.mint)
    return CycleOrchestrator(
        holder_source=holders,
        harvester=HarvestCoordinator(ledger, sender, holders, cfg),
        oracle=PriceOracle(cfg.mint),
        settlement=SwapSettlement(ledger, JupiterRouter(ledger), sender, cache, cfg),
        dispatcher=BatchDispatcher(ledger, sender, cache, cfg),
        cfg=cfg,
    )


def main(argv=None):
    ap = argparse.ArgumentParser(prog="reward-bot", description="Harvest transfer fees and pay holders.")
    ap.add_argument("--once", action="store_true", help="run a single cycle and exit")
    ap.add_argument("--no-metrics", action="store_true", help="do not start the Prometheus endpoint")
    args = ap.parse_args(argv)

    setup_logging()
    try:
        config.require_env()
        cfg = EngineConfig()
        orch = build(cfg)
    except ConfigurationError as e:
        err("config_invalid", error=str(e))
        return 2

    state = CycleStateStore(config.STATE_DB)
    if not args.no_metrics:
        start_metrics(config.METRICS_PORT)
    info("startup", version=__version__, mint=cfg.mint, outputs=len(cfg.output_mints),
         split=[cfg.holder_pct, cfg.treasury_pct, cfg.side_pct], usd_threshold=cfg.usd_threshold)

    while True:
        try:
            carry, cursor = state.load()
            res = orch.run_cycle(carry, cursor)
            state.save(res.carry_out, res.cursor_out)
            summary = {"outcome": res.outcome.value, "carry_out": res.carry_out, "cursor": res.cursor_out}
            if res.dispatch is not None:
                summary.update(paid=res.dispatch.paid, failed=len(res.dispatch.failed))
            info("cycle_summary", **summary)
            tg_send(f"[RewardBot] {res.outcome.value} | carry {res.carry_out} | next output #{res.cursor_out}")
        except Exception as e:
            err("cycle_failed", error=str(e)); tg_send(f"[RewardBot] ERROR: {e}")
        if args.once:
            return 0
        time.sleep(config.DISTRIBUTION_INTERVAL_SEC)


if __name__ == "__main__":
    sys.exit(main())
