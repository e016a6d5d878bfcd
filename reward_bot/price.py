from typing import Optional

import requests

from . import config
from .logs import info, warn


class PriceOracle:
    """USD price of the reference token from DexScreener; never raises."""

    def __init__(self, mint: str, api: str = config.PRICE_API, fallback: float = config.FALLBACK_PRICE_USD,
                 timeout: float = 10):
        self.mint = mint
        self.api = api.rstrip("/")
        self.fallback = fallback
        self.timeout = timeout
        self.last_known: Optional[float] = None

    def fetch(self) -> float:
        r = requests.get(f"{self.api}/{self.mint}", timeout=self.timeout); r.raise_for_status()
        pairs = r.json().get("pairs") or []
        if not pairs:
            raise ValueError("no trading pairs")
        for p in pairs:
            try:
                px = float(p.get("priceUsd") or 0)
            except (TypeError, ValueError):
                continue
            if px > 0:
                return px
        raise ValueError("no pair with a USD price")

    def usd_price(self) -> float:
        try:
            px = self.fetch()
        except Exception as e:
            px = self.last_known if self.last_known is not None else self.fallback
            warn("price_fallback", error=str(e), price=px, last_known=self.last_known is not None)
            return px
        self.last_known = px
        info("price", usd=px)
        return px


def to_usd(raw_amount: int, decimals: int, price: float) -> float:
    # float only for the comparison; the raw integer is never rebuilt from this
    return (raw_amount / 10**decimals) * price
